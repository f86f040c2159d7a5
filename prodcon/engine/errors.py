from __future__ import annotations


class QueueError(Exception):
    """Base exception for queue operations"""


class ClosedError(QueueError):
    """Raised by put() on a closed queue, and by get() once a closed queue is drained"""


class QueueTimeoutError(QueueError, TimeoutError):
    """Raised when a blocking put/get exceeds its timeout"""


class CancelledError(QueueError):
    """Raised when a blocking put/get is aborted through a CancellationToken"""


class InvalidArgument(QueueError, ValueError):
    """Raised for programming errors such as a negative capacity or timeout"""


class PipelineError(Exception):
    """Raised for bad pipeline configs and for stage failures that abort a run"""
