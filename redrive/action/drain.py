import time
import traceback
from concurrent.futures import ThreadPoolExecutor
from threading import Event
from typing import Callable, List, Optional, Tuple

from redrive.errors import DeleteError, DeliveryError, NotFound, TransientBackendError
from redrive.facade.queue import Message, QueueEndpoint

DEFAULT_BATCH_SIZE = 32
DEFAULT_ATTEMPTS = 3
DEFAULT_BACKOFF = 0.2
EMPTY_STREAK_LIMIT = 2

MOVED = 'MOVED'
FAILED = 'FAILED'
DUPLICATED = 'DUPLICATED'
SKIPPED = 'SKIPPED'

STOP_DRAINED = 'DRAINED'
STOP_CANCELLED = 'CANCELLED'
STOP_MAX_BATCHES = 'MAX_BATCHES'
STOP_RECEIVE_FAILED = 'RECEIVE_FAILED'


class DrainProgress:
    """Counters for one drain. Only the engine's calling thread updates them."""

    def __init__(self):
        self.observed = 0
        self.moved = 0
        self.failed = 0
        self.duplicated = 0
        self.skipped = 0
        self.batches = 0
        self.receives = 0
        self.failed_ids: List[str] = []
        self.duplicated_ids: List[str] = []

    def record(self, outcome: str, message_id: str):
        if outcome == MOVED:
            self.moved += 1
        elif outcome == FAILED:
            self.failed += 1
            self.failed_ids.append(message_id)
        elif outcome == DUPLICATED:
            self.failed += 1
            self.duplicated += 1
            self.duplicated_ids.append(message_id)
        elif outcome == SKIPPED:
            self.skipped += 1
        else:
            raise ValueError(f'Unknown message outcome {outcome}')

    def as_dict(self):
        return {
            'observed': self.observed,
            'moved': self.moved,
            'failed': self.failed,
            'duplicated': self.duplicated,
            'skipped': self.skipped,
            'batches': self.batches,
            'receives': self.receives,
            'failed_ids': list(self.failed_ids),
            'duplicated_ids': list(self.duplicated_ids),
        }


class DrainEngine:
    """
    Move every visible message from source to destination, batch by batch.

    The source length is only ever approximate, so the loop ends after two
    consecutive empty receives rather than after a precomputed number of
    batches. Each message is sent then deleted on its own; a failure on one
    message never stops the rest of its batch.
    """

    def __init__(
            self, source: QueueEndpoint, destination: QueueEndpoint, log: Callable = print, debug=False,
            batch_size=DEFAULT_BATCH_SIZE, max_batches: Optional[int] = None, workers=1,
            attempts=DEFAULT_ATTEMPTS, backoff=DEFAULT_BACKOFF, cancel: Optional[Event] = None,
            sleep: Callable[[float], None] = time.sleep
    ):
        self.source = source
        self.destination = destination
        self.log = log
        self.debug = debug
        self.batch_size = batch_size
        self.max_batches = max_batches
        self.workers = workers
        self.attempts = attempts
        self.backoff = backoff
        self.cancel = cancel if cancel is not None else Event()
        self.sleep = sleep

    def drain(self, progress: DrainProgress, dry_run=False) -> str:
        """Run until a stop condition is met and return the stop reason"""
        empty_streak = 0
        while True:
            if self.cancel.is_set():
                self.log(f'Cancelled after {progress.batches} batches')
                return STOP_CANCELLED
            if self.max_batches is not None and progress.batches >= self.max_batches:
                self.log(f'Reached the ceiling of {self.max_batches} batches')
                return STOP_MAX_BATCHES
            try:
                messages = self.retry(
                    f'receive from {self.source.name}', lambda: self.source.receive_batch(self.batch_size)
                )
            except TransientBackendError as ex:
                self.log(f'Abandoned receive from {self.source.name} after {self.attempts} attempts: {ex}')
                return STOP_RECEIVE_FAILED
            finally:
                progress.receives += 1
            if len(messages) == 0:
                empty_streak += 1
                if empty_streak >= EMPTY_STREAK_LIMIT:
                    return STOP_DRAINED
                continue
            empty_streak = 0
            progress.batches += 1
            progress.observed += len(messages)
            if dry_run:
                self.log(f'Batch {progress.batches}: observed {len(messages)} messages')
                continue
            for outcome, message_id in self._move_batch(messages):
                progress.record(outcome, message_id)
            self.log(f'Batch {progress.batches}: {progress.moved} moved, {progress.failed} failed so far')

    def _move_batch(self, messages: List[Message]) -> List[Tuple[str, str]]:
        if self.workers <= 1 or len(messages) == 1:
            return [self._move_message(message) for message in messages]
        with ThreadPoolExecutor(max_workers=min(self.workers, len(messages))) as executor:
            return list(executor.map(self._move_message, messages))

    def _move_message(self, message: Message) -> Tuple[str, str]:
        if self.cancel.is_set():
            return SKIPPED, message.message_id
        try:
            self.retry(
                f'send {message.message_id}', lambda: self.destination.send(message.payload, message.attributes)
            )
        except (DeliveryError, TransientBackendError) as ex:
            self.log(f'Failed to send {message.message_id} to {self.destination.name}: {ex}')
            return FAILED, message.message_id
        try:
            self.retry(
                f'delete {message.message_id}',
                lambda: self.source.delete_by_handle(message.message_id, message.handle)
            )
        except NotFound:
            if self.debug:
                self.log(f'Message {message.message_id} was already gone from {self.source.name}')
        except (DeleteError, TransientBackendError) as ex:
            self.log(f'Message {message.message_id} is now on both queues, delete failed: {ex}')
            return DUPLICATED, message.message_id
        if self.debug:
            self.log(f'Moved {message.message_id}')
        return MOVED, message.message_id

    def retry(self, what: str, operation: Callable):
        """Call operation, retrying TransientBackendError with a doubling delay, the last failure is raised"""
        delay = self.backoff
        for attempt in range(1, self.attempts + 1):
            try:
                return operation()
            except TransientBackendError as ex:
                if attempt >= self.attempts:
                    raise
                self.log(f'Attempt {attempt} to {what} failed, retry in {delay}s: {ex}')
                if self.debug:
                    traceback.print_exception(ex)
                self.sleep(delay)
                delay *= 2
