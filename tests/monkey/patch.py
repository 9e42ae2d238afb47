import os
from typing import Dict

import boto3

from tests.monkey.dynamodb import MonkeyPatchDynamoDBResource
from tests.monkey.session import MonkeyPatchSession
from tests.monkey.sqs import MonkeyPatchSQSClient, MySQS


class MonkeyPatch:

    def __init__(self):
        self.mysqs = MySQS()
        self._clients = {
            'sqs': MonkeyPatchSQSClient(mysqs=self.mysqs),
        }
        self._resources = {
            'dynamodb': MonkeyPatchDynamoDBResource(),
        }
        self._session = MonkeyPatchSession(self._clients, self._resources)
        self._environ = dict()

    def sqs(self) -> MonkeyPatchSQSClient:
        return self._clients['sqs']

    def table(self):
        return self._resources['dynamodb'].Table()

    def Session(self, *args, **kwargs):
        return self._session.open(*args, **kwargs)

    def client(self, name, *args, **kwargs):
        return self._clients[name]

    def resource(self, name, *args, **kwargs):
        return self._resources[name]

    @property
    def environ(self):
        return self._environ

    def patch(self, *, environ: Dict):
        self._environ = environ
        self.mysqs.patch()
        for client in self._clients.values():
            client.patch()
        for resource in self._resources.values():
            resource.patch()
        self._session.patch()
        os.environ.update(self.environ)
        boto3.session.Session = self.Session
        boto3.Session = self.Session
        boto3.client = self.client
        boto3.resource = self.resource


patch = MonkeyPatch()
