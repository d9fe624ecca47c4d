"""Job queue adapters for processing jobs."""

from vidpipe.modules.queue.service import InMemoryJobQueue, RedisJobQueue

__all__ = ["InMemoryJobQueue", "RedisJobQueue"]
