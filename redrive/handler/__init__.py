import traceback
from typing import Dict, Callable, Optional, Union, Any

import yaml

from redrive.facade.dedup import Deduplicator
from redrive.facade.sqs import SQS


class LambdaHandler:
    """
    Standard lambda handler base class.

    Register run_type handlers in self._handler in subclasses. Events arrive
    either directly or as SQS records whose body is a YAML (or JSON) document.
    """
    def __init__(self, sqs_client, ddb_table, debug=False, log: Optional[Callable] = None):
        self.sqs_client = sqs_client
        if log is not None:
            self.log = log
        self.sqs = SQS(sqs_client=sqs_client)
        self.dedup = Deduplicator(ddb_table=ddb_table, log=self.log)
        self.debug = debug
        self._handler: Dict[str, Callable[[str, Dict, bool], Any]] = dict()

    def handle_request(self, event: Dict):
        if 'Records' in event:
            results = []
            for record in event['Records']:
                if record.get('eventSource') != 'aws:sqs':
                    self.log(f'Ignoring record from {record.get("eventSource")}')
                    continue
                if not self.dedup.claim(record):
                    self.log(f'Skipping duplicate record {record["messageId"]}')
                    continue
                body = self._parse_body(record['body'])
                try:
                    results.append(self._process_message(body))
                except Exception as ex:
                    self.log('Failed to process request')
                    traceback.print_exception(ex)
                    self.dedup.release(record)
                    raise
            return results
        return self._process_message(event)

    def _parse_body(self, text: str) -> Union[Dict, str]:
        try:
            return yaml.load(text, Loader=yaml.SafeLoader)
        except yaml.YAMLError as ex:
            self.log(f'Record body is not YAML: {ex}')
            return text

    def _process_message(self, body: Union[Dict, str]):
        if self.debug:
            self.log(body)
        if not isinstance(body, dict) or 'run_type' not in body:
            raise ValueError(f'Request has no run_type: {body}')
        debug = self.debug or body.get('debug') is True
        run_type: str = body['run_type']
        if run_type not in self._handler:
            raise ValueError(f'Do not know how to handle run_type {run_type}')
        handler = self._handler[run_type]
        return self._handle(handler, run_type, body, debug)

    @staticmethod
    def log(*args, **kwargs):
        print(*args, **kwargs)

    def _handle(self, handler: Callable[[str, Dict, bool], Any], run_type: str, body: Dict, debug: bool):
        return handler(run_type, body, debug)
