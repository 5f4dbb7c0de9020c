"""In-process message queue with at-least-once batch delivery.

Suitable for local runs and tests.  Messages are delivered in batches;
each delivered message must be settled with ``ack()`` or ``retry()``.
Retried messages go to the back of the queue with their attempt counter
incremented; after ``max_attempts`` deliveries a retried message is moved
to the dead-letter list instead.  Unsettled messages are treated as
retried when the batch is settled, mirroring a visibility timeout.
"""

from __future__ import annotations

import collections
import copy
import uuid
from typing import Any

import structlog

from bookmark_pipeline.interfaces.message_queue import IMessageQueue, QueueMessage

logger = structlog.get_logger(logger_name=__name__)


class InMemoryMessage(QueueMessage):
    """A delivered message; settlement is recorded, not applied, until the batch settles."""

    def __init__(self, message_id: str, body: dict[str, Any], attempts: int) -> None:
        self._id = message_id
        self._body = body
        self._attempts = attempts
        self.acked = False
        self.retried = False

    @property
    def id(self) -> str:
        return self._id

    @property
    def body(self) -> dict[str, Any]:
        return self._body

    @property
    def attempts(self) -> int:
        return self._attempts

    def ack(self) -> None:
        self.acked = True
        self.retried = False

    def retry(self) -> None:
        if not self.acked:
            self.retried = True


class InMemoryQueue(IMessageQueue):
    """FIFO queue kept in process memory.

    Parameters
    ----------
    name:
        Queue name used in log events.
    max_attempts:
        Deliveries before a retried message is dead-lettered.
    """

    def __init__(self, name: str, max_attempts: int = 3) -> None:
        self._name = name
        self._max_attempts = max_attempts
        # (message_id, body, attempts already made)
        self._pending: collections.deque[tuple[str, dict[str, Any], int]] = collections.deque()
        self.dead_letters: list[InMemoryMessage] = []

    # ------------------------------------------------------------------
    # IMessageQueue implementation
    # ------------------------------------------------------------------

    async def send(self, body: dict[str, Any]) -> None:
        self._pending.append((str(uuid.uuid4()), copy.deepcopy(body), 0))
        logger.debug("queue_message_sent", queue=self._name)

    async def send_batch(self, bodies: list[dict[str, Any]]) -> None:
        for body in bodies:
            await self.send(body)

    def get_queue_name(self) -> str:
        return self._name

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._pending)

    def receive_batch(self, max_messages: int = 10) -> list[InMemoryMessage]:
        """Pop up to *max_messages* messages for delivery."""
        batch: list[InMemoryMessage] = []
        while self._pending and len(batch) < max_messages:
            message_id, body, attempts = self._pending.popleft()
            batch.append(InMemoryMessage(message_id, body, attempts + 1))
        return batch

    def settle(self, batch: list[InMemoryMessage]) -> None:
        """Apply the acks and retries recorded on a delivered batch."""
        for message in batch:
            if message.acked:
                continue
            if message.attempts >= self._max_attempts:
                self.dead_letters.append(message)
                logger.warning(
                    "queue_message_dead_lettered",
                    queue=self._name,
                    message_id=message.id,
                    attempts=message.attempts,
                )
                continue
            self._pending.append((message.id, message.body, message.attempts))
