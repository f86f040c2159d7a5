from __future__ import annotations
import itertools
import threading
from typing import Callable, Dict, Optional

from .errors import CancelledError


class CancellationToken:
    """
    Explicit cancellation signal passed into blocking calls.
    cancel() fires registered callbacks once; blocked queue calls use them
    to wake up and fail with CancelledError.
    """
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._reason: Optional[str] = None
        self._callbacks: Dict[int, Callable[[], None]] = {}
        self._ids = itertools.count()

    @classmethod
    def after(cls, seconds: float) -> "CancellationToken":
        """Token that cancels itself once `seconds` have elapsed."""
        token = cls()
        token.cancel_after(seconds)
        return token

    def cancel_after(self, seconds: float) -> threading.Timer:
        """Cancel this token once `seconds` have elapsed; stop it with the returned timer's cancel()."""
        timer = threading.Timer(seconds, self.cancel, kwargs={"reason": f"deadline of {seconds}s exceeded"})
        timer.daemon = True
        timer.start()
        return timer

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str | None = None) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._reason = reason or "cancelled"
            self._event.set()
            callbacks = list(self._callbacks.values())
            self._callbacks.clear()
        # outside the lock: callbacks take other locks
        for cb in callbacks:
            cb()

    def register(self, callback: Callable[[], None]) -> Optional[int]:
        """
        Run callback on cancellation. Returns a handle for unregister(), or
        None when the token was already cancelled (callback ran immediately).
        """
        with self._lock:
            if not self._event.is_set():
                handle = next(self._ids)
                self._callbacks[handle] = callback
                return handle
        callback()
        return None

    def unregister(self, handle: Optional[int]) -> None:
        if handle is None:
            return
        with self._lock:
            self._callbacks.pop(handle, None)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancelledError(self._reason)

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)
