"""Bounded producer/consumer queue and a threaded pipeline simulator built on it."""

from prodcon.engine.cancel import CancellationToken
from prodcon.engine.errors import (
    CancelledError,
    ClosedError,
    InvalidArgument,
    PipelineError,
    QueueError,
    QueueTimeoutError,
)
from prodcon.engine.queue import BoundedSynchronizedQueue

__all__ = [
    "BoundedSynchronizedQueue",
    "CancellationToken",
    "CancelledError",
    "ClosedError",
    "InvalidArgument",
    "PipelineError",
    "QueueError",
    "QueueTimeoutError",
]

__version__ = "0.2.0"
