from abc import ABC, abstractmethod
from typing import Dict, List, Optional


class Message:
    """A received message, owned by the drain engine until it is moved or released"""

    __slots__ = ('message_id', 'payload', 'handle', 'dequeue_count', 'attributes')

    def __init__(self, message_id: str, payload: bytes, handle: str, dequeue_count: int = 0,
                 attributes: Optional[Dict] = None):
        object.__setattr__(self, 'message_id', message_id)
        object.__setattr__(self, 'payload', payload)
        object.__setattr__(self, 'handle', handle)
        object.__setattr__(self, 'dequeue_count', dequeue_count)
        object.__setattr__(self, 'attributes', dict(attributes) if attributes else {})

    def __setattr__(self, key, value):
        raise AttributeError(f'Message is immutable, cannot set {key}')

    def __repr__(self):
        return f'Message({self.message_id}, {len(self.payload)} bytes, dequeued {self.dequeue_count})'


class QueueEndpoint(ABC):
    """
    Uniform view of one queue.

    The name identifies the queue. Two endpoints with the same name are the same queue.
    """

    def __init__(self, name: str):
        self.name = name

    @abstractmethod
    def approximate_length(self) -> int:
        """Best effort message count, may lag the real state of the queue."""
        pass

    @abstractmethod
    def receive_batch(self, max_count: int) -> List[Message]:
        """Receive up to max_count messages, each leased until deleted or the lease expires."""
        pass

    @abstractmethod
    def send(self, payload: bytes, attributes: Optional[Dict] = None) -> str:
        """Send a payload and return the acknowledgement id. Raises DeliveryError when rejected."""
        pass

    @abstractmethod
    def delete_by_handle(self, message_id: str, handle: str) -> None:
        """Delete a leased message. Raises NotFound when the lease is gone."""
        pass

    def same_queue(self, other: 'QueueEndpoint') -> bool:
        return self is other or self.name == other.name

    def __repr__(self):
        return f'{type(self).__name__}({self.name})'
