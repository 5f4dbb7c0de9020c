"""Message queue adapters implementing IMessageQueue."""

from bookmark_pipeline.providers.queue.memory_queue import InMemoryMessage, InMemoryQueue

__all__ = ["InMemoryMessage", "InMemoryQueue"]
