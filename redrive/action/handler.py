import time
from typing import Callable, Dict, Optional

from redrive.action.drain import DEFAULT_ATTEMPTS, DEFAULT_BACKOFF, DEFAULT_BATCH_SIZE
from redrive.action.session import RequeueSession
from redrive.errors import ConfigurationError
from redrive.handler import LambdaHandler


class RequeueHandler(LambdaHandler):
    """AWS Lambda handler moving messages from a dead letter queue back to its work queue"""

    def __init__(
            self, sqs_client, ddb_table, config: Dict, debug=False, log: Optional[Callable] = None,
            emit: Optional[Callable[[Dict], None]] = None, sleep: Callable[[float], None] = time.sleep
    ):
        LambdaHandler.__init__(self, sqs_client=sqs_client, ddb_table=ddb_table, debug=debug, log=log)
        self.config = config
        self.emit = emit if emit is not None else self.log
        self.sleep = sleep
        self._handler = {
            'Requeue': self._requeue,
            'Describe': self._describe,
        }

    def _setting(self, body: Dict, name: str, default=None):
        value = body.get(name)
        if value is None:
            value = self.config.get(name)
        if value is None:
            return default
        return value

    def _queues(self, body: Dict):
        source = self._setting(body, 'source_queue')
        target = self._setting(body, 'target_queue')
        if not source or not target:
            raise ConfigurationError('Both source_queue and target_queue are required')
        wait_time_seconds = int(self._setting(body, 'wait_time_seconds', 0))
        visibility_timeout = self._setting(body, 'visibility_timeout')
        if visibility_timeout is not None:
            visibility_timeout = int(visibility_timeout)
        return (
            self.sqs.queue(source, wait_time_seconds=wait_time_seconds, visibility_timeout=visibility_timeout),
            self.sqs.queue(target)
        )

    def _requeue(self, _run_type, body: Dict, debug: bool):
        source, destination = self._queues(body)
        max_batches = self._setting(body, 'max_batches')
        session = RequeueSession(
            source=source, destination=destination,
            batch_size=int(self._setting(body, 'batch_size', DEFAULT_BATCH_SIZE)),
            max_batches=int(max_batches) if max_batches is not None else None,
            dry_run=self._setting(body, 'dry_run', False) is True,
            workers=int(self._setting(body, 'workers', 1)),
            attempts=int(self._setting(body, 'attempts', DEFAULT_ATTEMPTS)),
            backoff=float(self._setting(body, 'backoff', DEFAULT_BACKOFF)),
            log=self.log, debug=debug, emit=self.emit, sleep=self.sleep
        )
        result = session.run()
        return result.as_dict()

    def _describe(self, _run_type, body: Dict, _debug: bool):
        source, destination = self._queues(body)
        queues = self.sqs.describe_queues([source.queue_url, destination.queue_url])
        for queue_url, attributes in queues.items():
            self.log(f'Queue {queue_url} has about {attributes["Total"]} messages')
        return queues
