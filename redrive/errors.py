class RedriveError(Exception):
    """Base class for errors raised while moving messages between queues"""


class ConfigurationError(RedriveError):
    """The requeue session is set up incorrectly. Nothing has been moved."""


class QueueError(RedriveError):
    """A queue backend failed a single operation"""

    def __init__(self, message: str, queue_name: str = None, code: str = None):
        RedriveError.__init__(self, message)
        self.queue_name = queue_name
        self.code = code


class DeliveryError(QueueError):
    """The destination rejected a payload or could not be reached"""


class NotFound(QueueError):
    """The receipt handle expired or the message was already deleted"""


class DeleteError(QueueError):
    """The source refused to delete a message that was already delivered"""


class TransientBackendError(QueueError):
    """Throttling, a server fault or a connection hiccup. Worth retrying."""
