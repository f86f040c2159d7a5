from __future__ import annotations
import logging
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, Generic, Optional, TypeVar

from .cancel import CancellationToken
from .errors import CancelledError, ClosedError, InvalidArgument, QueueTimeoutError

T = TypeVar("T")

logger = logging.getLogger(__name__)


class _Waiter:
    """One suspended caller. Its condition shares the queue's lock."""
    __slots__ = ("cond",)

    def __init__(self, lock: threading.Lock):
        self.cond = threading.Condition(lock)


def _deadline(timeout: Optional[float]) -> Optional[float]:
    if timeout is None:
        return None
    if timeout < 0:
        raise InvalidArgument(f"timeout must be non-negative, got {timeout!r}")
    return time.monotonic() + timeout


class BoundedSynchronizedQueue(Generic[T]):
    """
    Thread-safe FIFO queue with blocking put()/get(), close(), timeouts and
    cancellation tokens. capacity=None (or 0) means unbounded.

    Blocked callers wait in two FIFO lines, one for producers and one for
    consumers. Only the head of a line may complete, and new callers queue
    behind existing waiters instead of overtaking them, so wakeup is
    FIFO-fair. A failed put/get (closed, timed out, cancelled) leaves the
    items untouched.
    """
    def __init__(self, capacity: Optional[int] = None, *, name: str = "queue"):
        if capacity is not None:
            if isinstance(capacity, bool) or not isinstance(capacity, int):
                raise InvalidArgument(f"capacity must be an int or None, got {capacity!r}")
            if capacity < 0:
                raise InvalidArgument(f"capacity must be >= 0, got {capacity}")
        self.name = name
        self._capacity = capacity or None
        self._items: Deque[T] = deque()
        self._mutex = threading.Lock()
        self._putters: Deque[_Waiter] = deque()
        self._getters: Deque[_Waiter] = deque()
        self._closed = False
        self._stats: Dict[str, int] = {
            "puts": 0,
            "gets": 0,
            "waits_for_space": 0,
            "waits_for_item": 0,
            "timeouts": 0,
            "cancellations": 0,
            "high_water": 0,
        }

    @property
    def capacity(self) -> Optional[int]:
        return self._capacity

    @property
    def closed(self) -> bool:
        with self._mutex:
            return self._closed

    def put(self, item: T, timeout: Optional[float] = None, cancel: CancellationToken | None = None) -> None:
        """
        Append item at the tail, blocking while the queue is full.

        Raises ClosedError if the queue is (or becomes) closed,
        QueueTimeoutError once `timeout` seconds pass, CancelledError if
        `cancel` fires while waiting.
        """
        deadline = _deadline(timeout)
        waiter = _Waiter(self._mutex)
        handle = self._watch(cancel, waiter)
        try:
            with self._mutex:
                self._wait_turn(
                    self._putters, waiter, self._has_room, self._check_put_closed,
                    deadline, cancel, "waits_for_space", "put",
                )
                self._items.append(item)
                self._stats["puts"] += 1
                if len(self._items) > self._stats["high_water"]:
                    self._stats["high_water"] = len(self._items)
                self._wake_head(self._getters, self._has_item)
                self._wake_head(self._putters, self._has_room)
        finally:
            if cancel is not None:
                cancel.unregister(handle)

    def get(self, timeout: Optional[float] = None, cancel: CancellationToken | None = None) -> T:
        """
        Remove and return the head item, blocking while the queue is empty.

        After close() the remaining items are still handed out; once the
        queue is drained get() raises ClosedError.
        """
        deadline = _deadline(timeout)
        waiter = _Waiter(self._mutex)
        handle = self._watch(cancel, waiter)
        try:
            with self._mutex:
                self._wait_turn(
                    self._getters, waiter, self._has_item, self._check_get_closed,
                    deadline, cancel, "waits_for_item", "get",
                )
                item = self._items.popleft()
                self._stats["gets"] += 1
                self._wake_head(self._putters, self._has_room)
                self._wake_head(self._getters, self._has_item)
                return item
        finally:
            if cancel is not None:
                cancel.unregister(handle)

    def put_nowait(self, item: T) -> None:
        self.put(item, timeout=0)

    def get_nowait(self) -> T:
        return self.get(timeout=0)

    def close(self) -> None:
        """Refuse further puts and wake every waiter. Idempotent."""
        with self._mutex:
            if self._closed:
                return
            self._closed = True
            for w in list(self._putters) + list(self._getters):
                w.cond.notify()
            logger.debug(
                "queue %s closed (%d items left, %d producers and %d consumers waiting)",
                self.name, len(self._items), len(self._putters), len(self._getters),
            )

    def size(self) -> int:
        with self._mutex:
            return len(self._items)

    def is_empty(self) -> bool:
        with self._mutex:
            return not self._items

    def is_full(self) -> bool:
        with self._mutex:
            return not self._has_room()

    def stats(self) -> Dict[str, int]:
        with self._mutex:
            return dict(self._stats)

    def __len__(self) -> int:
        return self.size()

    def __repr__(self) -> str:
        return f"<BoundedSynchronizedQueue {self.name!r} capacity={self._capacity} size={len(self._items)}>"

    # -- internals; everything below expects self._mutex to be held --

    def _has_room(self) -> bool:
        return self._capacity is None or len(self._items) < self._capacity

    def _has_item(self) -> bool:
        return bool(self._items)

    def _check_put_closed(self) -> None:
        if self._closed:
            raise ClosedError(f"queue {self.name} is closed")

    def _check_get_closed(self) -> None:
        if self._closed and not self._items:
            raise ClosedError(f"queue {self.name} is closed and drained")

    def _wake_head(self, line: Deque[_Waiter], ready: Callable[[], bool]) -> None:
        if line and (ready() or self._closed):
            line[0].cond.notify()

    def _wait_turn(
        self,
        line: Deque[_Waiter],
        waiter: _Waiter,
        ready: Callable[[], bool],
        check_closed: Callable[[], None],
        deadline: Optional[float],
        cancel: CancellationToken | None,
        wait_stat: str,
        op: str,
    ) -> None:
        check_closed()
        if not line and ready():
            return

        line.append(waiter)
        self._stats[wait_stat] += 1
        try:
            # re-check on every wake: notifications can be spurious or stale
            while True:
                check_closed()
                if line[0] is waiter and ready():
                    break
                if cancel is not None and cancel.cancelled:
                    self._stats["cancellations"] += 1
                    logger.debug("%s on queue %s cancelled: %s", op, self.name, cancel.reason)
                    raise CancelledError(cancel.reason)
                if deadline is None:
                    waiter.cond.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self._stats["timeouts"] += 1
                    logger.debug("%s on queue %s timed out", op, self.name)
                    raise QueueTimeoutError(f"{op} on queue {self.name} timed out")
                waiter.cond.wait(remaining)
        except BaseException:
            line.remove(waiter)
            # pass the wakeup on in case this waiter was the one notified
            self._wake_head(line, ready)
            raise
        line.popleft()

    def _watch(self, cancel: CancellationToken | None, waiter: _Waiter) -> Optional[int]:
        # Registered before taking the mutex: register() may run the callback inline.
        if cancel is None:
            return None

        def _wake() -> None:
            with self._mutex:
                waiter.cond.notify()

        return cancel.register(_wake)
