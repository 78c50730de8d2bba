"""
RQ queue helpers for background reconciliation.
"""

from datetime import timedelta
from typing import Any, Callable, Optional

import redis
from rq import Queue
from rq.job import Job

from reelforge.config.settings import settings


def get_redis_connection() -> redis.Redis:
    return redis.from_url(settings.redis_url)


def get_queue(name: Optional[str] = None, connection: Optional[redis.Redis] = None) -> Queue:
    return Queue(name or settings.rq_queue_name, connection=connection or get_redis_connection())


def enqueue_after(
    func: Callable[..., Any],
    delay_s: int,
    *args: Any,
    queue: Optional[Queue] = None,
) -> Job:
    """
    Enqueue func(*args), delayed when delay_s > 0

    Delayed jobs need a worker started with --with-scheduler.
    """
    queue = queue or get_queue()
    if delay_s > 0:
        return queue.enqueue_in(timedelta(seconds=delay_s), func, *args)
    return queue.enqueue(func, *args)
