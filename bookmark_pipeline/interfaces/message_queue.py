"""Abstract base classes for the message queue seam.

The queue delivers batches of :class:`QueueMessage` at least once.  Each
message is acknowledged or scheduled for redelivery individually; there is
no batch-level transaction.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class QueueMessage(ABC):
    """A delivered message with per-message settlement."""

    @property
    @abstractmethod
    def id(self) -> str:
        """Queue-assigned message identifier."""

    @property
    @abstractmethod
    def body(self) -> dict[str, Any]:
        """Decoded JSON body."""

    @property
    @abstractmethod
    def attempts(self) -> int:
        """Delivery count, starting at 1."""

    @abstractmethod
    def ack(self) -> None:
        """Mark the message as processed; it will not be delivered again."""

    @abstractmethod
    def retry(self) -> None:
        """Schedule the message for redelivery."""


class IMessageQueue(ABC):
    """Contract for the producer side of a queue."""

    @abstractmethod
    async def send(self, body: dict[str, Any]) -> None:
        """Enqueue one JSON-serialisable message body."""

    @abstractmethod
    async def send_batch(self, bodies: list[dict[str, Any]]) -> None:
        """Enqueue several message bodies."""

    @abstractmethod
    def get_queue_name(self) -> str:
        """Return the queue's name for logging."""
