from typing import Dict, List, Optional

from botocore.exceptions import ClientError, ConnectTimeoutError, EndpointConnectionError, ReadTimeoutError

from redrive.errors import DeleteError, DeliveryError, NotFound, TransientBackendError
from redrive.facade.queue import Message, QueueEndpoint

MAX_RECEIVE = 10

TRANSIENT_CODES = {
    'Throttling',
    'ThrottlingException',
    'RequestThrottled',
    'ServiceUnavailable',
    'InternalError',
    'InternalFailure',
    'KmsThrottled',
    'KMS.ThrottlingException',
}

NOT_FOUND_CODES = {
    'ReceiptHandleIsInvalid',
    'AWS.SimpleQueueService.ReceiptHandleIsInvalid',
}

REJECTED_CODES = {
    'InvalidMessageContents',
    'InvalidParameterValue',
    'MessageTooLong',
    'InvalidAttributeValue',
    'AWS.SimpleQueueService.NonExistentQueue',
    'QueueDoesNotExist',
    'KMS.DisabledException',
    'KMS.NotFoundException',
    'AccessDenied',
}

CONNECTION_ERRORS = (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError)


def error_code(ex: ClientError) -> str:
    return ex.response.get('Error', {}).get('Code', '')


class SQS:
    def __init__(self, sqs_client):
        self.sqs = sqs_client

    def resolve_queue_url(self, queue: str) -> str:
        if queue.startswith('https://') or queue.startswith('http://'):
            return queue
        response = self.sqs.get_queue_url(QueueName=queue)
        return response['QueueUrl']

    def queue(self, queue: str, wait_time_seconds=0, visibility_timeout=None) -> 'SQSQueue':
        return SQSQueue(
            sqs_client=self.sqs, queue_url=self.resolve_queue_url(queue),
            wait_time_seconds=wait_time_seconds, visibility_timeout=visibility_timeout
        )

    def describe_queues(self, queue_urls: List[str]) -> Dict[str, Dict[str, int]]:
        return {
            queue_url: SQSQueue(sqs_client=self.sqs, queue_url=queue_url).describe()
            for queue_url in queue_urls
        }


class SQSQueue(QueueEndpoint):
    """QueueEndpoint backed by an SQS queue URL"""

    ATTRIBUTE_NAMES = [
        'ApproximateNumberOfMessages',
        'ApproximateNumberOfMessagesNotVisible',
        'ApproximateNumberOfMessagesDelayed'
    ]

    def __init__(self, sqs_client, queue_url: str, wait_time_seconds=0, visibility_timeout=None):
        QueueEndpoint.__init__(self, name=queue_url)
        self.sqs = sqs_client
        self.queue_url = queue_url
        self.wait_time_seconds = wait_time_seconds
        self.visibility_timeout = visibility_timeout

    @property
    def queue_name(self):
        return self.queue_url.split('/')[-1]

    def describe(self) -> Dict[str, int]:
        attributes = dict()
        try:
            response = self.sqs.get_queue_attributes(QueueUrl=self.queue_url, AttributeNames=self.ATTRIBUTE_NAMES)
        except ClientError as ex:
            raise self._classify(ex, default=None)
        except CONNECTION_ERRORS as ex:
            raise TransientBackendError(str(ex), queue_name=self.queue_name) from ex
        total = 0
        if 'Attributes' in response:
            for name in self.ATTRIBUTE_NAMES:
                attributes[name] = int(response['Attributes'].get(name, 0))
                total += attributes[name]
        attributes['Total'] = total
        return attributes

    def approximate_length(self) -> int:
        return self.describe()['Total']

    def receive_batch(self, max_count: int) -> List[Message]:
        messages: List[Message] = []
        while len(messages) < max_count:
            wanted = min(MAX_RECEIVE, max_count - len(messages))
            kwargs = {
                'QueueUrl': self.queue_url,
                'MaxNumberOfMessages': wanted,
                'WaitTimeSeconds': self.wait_time_seconds,
                'AttributeNames': ['ApproximateReceiveCount'],
                'MessageAttributeNames': ['All'],
            }
            if self.visibility_timeout is not None:
                kwargs['VisibilityTimeout'] = self.visibility_timeout
            # messages already collected are leased, so a failing follow-up call returns them
            # and leaves the error to the next receive
            try:
                response = self.sqs.receive_message(**kwargs)
            except ClientError as ex:
                if messages:
                    break
                raise self._classify(ex, default=None)
            except CONNECTION_ERRORS as ex:
                if messages:
                    break
                raise TransientBackendError(str(ex), queue_name=self.queue_name) from ex
            received = response.get('Messages', [])
            for message in received:
                messages.append(Message(
                    message_id=message['MessageId'],
                    payload=message['Body'].encode('utf-8'),
                    handle=message['ReceiptHandle'],
                    dequeue_count=int(message.get('Attributes', {}).get('ApproximateReceiveCount', 0)),
                    attributes=message.get('MessageAttributes')
                ))
            if len(received) < wanted:
                break
        return messages

    def send(self, payload: bytes, attributes: Optional[Dict] = None) -> str:
        try:
            body = payload.decode('utf-8')
        except UnicodeDecodeError as ex:
            raise DeliveryError(f'Payload is not valid UTF-8: {ex}', queue_name=self.queue_name) from ex
        kwargs = {
            'QueueUrl': self.queue_url,
            'MessageBody': body,
        }
        if attributes:
            kwargs['MessageAttributes'] = attributes
        try:
            response = self.sqs.send_message(**kwargs)
        except ClientError as ex:
            raise self._classify(ex, default=DeliveryError if self._sender_fault(ex) else None)
        except CONNECTION_ERRORS as ex:
            raise TransientBackendError(str(ex), queue_name=self.queue_name) from ex
        return response['MessageId']

    def delete_by_handle(self, message_id: str, handle: str) -> None:
        try:
            self.sqs.delete_message(QueueUrl=self.queue_url, ReceiptHandle=handle)
        except ClientError as ex:
            raise self._classify(ex, default=DeleteError, message_id=message_id)
        except CONNECTION_ERRORS as ex:
            raise TransientBackendError(str(ex), queue_name=self.queue_name) from ex

    @staticmethod
    def _sender_fault(ex: ClientError) -> bool:
        code = error_code(ex)
        return code in REJECTED_CODES or ex.response.get('Error', {}).get('Type') == 'Sender'

    def _classify(self, ex: ClientError, default, message_id: str = None):
        """Map a ClientError onto the redrive error taxonomy, or return it unchanged"""
        code = error_code(ex)
        text = ex.response.get('Error', {}).get('Message', str(ex))
        if message_id is not None:
            text = f'{message_id}: {text}'
        if code in TRANSIENT_CODES:
            error = TransientBackendError(text, queue_name=self.queue_name, code=code)
        elif code in NOT_FOUND_CODES or (code == 'InvalidParameterValue' and 'receipt handle' in text.lower()):
            error = NotFound(text, queue_name=self.queue_name, code=code)
        elif default is not None:
            error = default(text, queue_name=self.queue_name, code=code)
        else:
            return ex
        error.__cause__ = ex
        return error
