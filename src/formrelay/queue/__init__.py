"""
Admission control for request handling.

Bounds how many uploads are relayed concurrently and queues the rest in
arrival order.
"""

from formrelay.queue.admission import (
    AdmissionQueue,
    QueuedTask,
    QueueStats,
    QueueError,
    InvalidConfiguration,
    QueueFull,
    TaskTimeout,
    ShuttingDown,
)

__all__ = [
    "AdmissionQueue",
    "QueuedTask",
    "QueueStats",
    "QueueError",
    "InvalidConfiguration",
    "QueueFull",
    "TaskTimeout",
    "ShuttingDown",
]
