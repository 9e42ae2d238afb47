import time
from threading import Event
from typing import Callable, Dict, List, Optional

from redrive.action.drain import (
    DEFAULT_ATTEMPTS, DEFAULT_BACKOFF, DEFAULT_BATCH_SIZE, STOP_CANCELLED, STOP_DRAINED, STOP_MAX_BATCHES,
    STOP_RECEIVE_FAILED, DrainEngine, DrainProgress
)
from redrive.errors import ConfigurationError, QueueError
from redrive.facade.queue import QueueEndpoint

OUTCOME_COMPLETED = 'COMPLETED'
OUTCOME_PARTIAL = 'COMPLETED_WITH_PARTIAL_FAILURES'
OUTCOME_ABORTED = 'ABORTED'


class SessionResult:
    """Terminal snapshot of one requeue session"""

    def __init__(
            self, outcome: str, stop_reason: str, progress: DrainProgress, duration: float,
            dry_run: bool, initial_length: Optional[int]
    ):
        self.outcome = outcome
        self.stop_reason = stop_reason
        self.duration = duration
        self.dry_run = dry_run
        self.initial_length = initial_length
        self.observed = progress.observed
        self.moved = progress.moved
        self.failed = progress.failed
        self.duplicated = progress.duplicated
        self.skipped = progress.skipped
        self.batches = progress.batches
        self.receives = progress.receives
        self.failed_ids: List[str] = list(progress.failed_ids)
        self.duplicated_ids: List[str] = list(progress.duplicated_ids)

    @property
    def drained(self) -> bool:
        return self.stop_reason == STOP_DRAINED

    def as_dict(self) -> Dict:
        return {
            'outcome': self.outcome,
            'stop_reason': self.stop_reason,
            'dry_run': self.dry_run,
            'initial_length': self.initial_length,
            'observed': self.observed,
            'moved': self.moved,
            'failed': self.failed,
            'duplicated': self.duplicated,
            'skipped': self.skipped,
            'batches': self.batches,
            'receives': self.receives,
            'duration': self.duration,
            'failed_ids': list(self.failed_ids),
            'duplicated_ids': list(self.duplicated_ids),
        }

    def __repr__(self):
        return f'SessionResult({self.outcome}, moved={self.moved}, failed={self.failed})'


def decide_outcome(stop_reason: str, progress: DrainProgress) -> str:
    """
    COMPLETED needs the two empty receives that prove the source drained.

    A run that reaches max_batches is ABORTED even when its last batch happened
    to take the final messages. Confirming would cost another receive, which
    leases messages beyond the ceiling the caller asked for. Look at
    SessionResult.observed against initial_length, or run again, to tell the cases apart.
    """
    if stop_reason in (STOP_CANCELLED, STOP_MAX_BATCHES):
        return OUTCOME_ABORTED
    if stop_reason == STOP_RECEIVE_FAILED or progress.failed > 0:
        return OUTCOME_PARTIAL
    return OUTCOME_COMPLETED


class RequeueSession:
    """
    One run moving the messages of a source queue onto a destination queue.

    A session runs once. Calling run() again hands back the first result
    without touching either queue, so a retried trigger cannot move twice
    through the same session object.
    """

    def __init__(
            self, source: QueueEndpoint, destination: QueueEndpoint, batch_size=DEFAULT_BATCH_SIZE,
            max_batches: Optional[int] = None, dry_run=False, workers=1, attempts=DEFAULT_ATTEMPTS,
            backoff=DEFAULT_BACKOFF, cancel: Optional[Event] = None, log: Callable = print, debug=False,
            emit: Optional[Callable[[Dict], None]] = None, sleep: Callable[[float], None] = time.sleep
    ):
        self._validate(source, destination, batch_size, max_batches, workers, attempts)
        self.source = source
        self.destination = destination
        self.batch_size = batch_size
        self.max_batches = max_batches
        self.dry_run = dry_run
        self.cancel = cancel if cancel is not None else Event()
        self.log = log
        self.emit = emit
        self.engine = DrainEngine(
            source=source, destination=destination, log=log, debug=debug,
            batch_size=batch_size, max_batches=max_batches, workers=workers,
            attempts=attempts, backoff=backoff, cancel=self.cancel, sleep=sleep
        )
        self.result: Optional[SessionResult] = None

    @staticmethod
    def _validate(source, destination, batch_size, max_batches, workers, attempts):
        if source is None or destination is None:
            raise ConfigurationError('Both a source and a destination queue are required')
        if source.same_queue(destination):
            raise ConfigurationError(f'Cannot requeue {source.name} into itself')
        if batch_size < 1:
            raise ConfigurationError(f'Batch size must be at least 1, not {batch_size}')
        if max_batches is not None and max_batches < 1:
            raise ConfigurationError(f'Maximum batches must be at least 1, not {max_batches}')
        if workers < 1:
            raise ConfigurationError(f'Workers must be at least 1, not {workers}')
        if attempts < 1:
            raise ConfigurationError(f'Attempts must be at least 1, not {attempts}')

    def run(self) -> SessionResult:
        if self.result is not None:
            self.log(f'Session from {self.source.name} already ran with outcome {self.result.outcome}')
            return self.result
        started = time.monotonic()
        initial_length = self._initial_length()
        mode = 'Inspecting' if self.dry_run else 'Requeuing'
        self.log(f'{mode} about {initial_length} messages from {self.source.name} to {self.destination.name}')
        progress = DrainProgress()
        stop_reason = self.engine.drain(progress, dry_run=self.dry_run)
        outcome = decide_outcome(stop_reason, progress)
        self.result = SessionResult(
            outcome=outcome, stop_reason=stop_reason, progress=progress,
            duration=time.monotonic() - started, dry_run=self.dry_run, initial_length=initial_length
        )
        self.log(f'{outcome}: {progress.moved} moved, {progress.failed} failed, '
                 f'{progress.duplicated} on both queues, {progress.observed} observed')
        if self.emit is not None:
            self.emit(self.summary_event())
        return self.result

    def _initial_length(self) -> Optional[int]:
        # informational only, the drain decides when the source is empty
        try:
            return self.engine.retry(f'measure {self.source.name}', self.source.approximate_length)
        except QueueError as ex:
            self.log(f'Could not measure {self.source.name}, draining anyway: {ex}')
            return None

    def summary_event(self) -> Dict:
        result = self.result
        return {
            'source': self.source.name,
            'destination': self.destination.name,
            'batchesIssued': result.batches,
            'messagesObserved': result.observed,
            'messagesMoved': result.moved,
            'messagesFailed': result.failed,
            'messagesDuplicated': result.duplicated,
            'duplicatedIds': list(result.duplicated_ids),
            'duration': result.duration,
            'outcome': result.outcome,
            'stopReason': result.stop_reason,
            'dryRun': result.dry_run,
        }
