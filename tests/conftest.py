import threading
import time

import pytest


def wait_until(predicate, timeout=2.0, interval=0.002):
    """Poll predicate until it holds; fail the test instead of hanging."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return
        time.sleep(interval)
    pytest.fail("condition not reached within %.1fs" % timeout)


class Worker(threading.Thread):
    """Daemon thread that records its target's return value or exception."""

    def __init__(self, target, *args, **kwargs):
        super().__init__(daemon=True)
        self._fn = target
        self._fn_args = args
        self._fn_kwargs = kwargs
        self.result = None
        self.error = None

    def run(self):
        try:
            self.result = self._fn(*self._fn_args, **self._fn_kwargs)
        except BaseException as exc:  # recorded for the test to assert on
            self.error = exc

    def finish(self, timeout=2.0):
        self.join(timeout)
        assert not self.is_alive(), "worker thread did not finish"
        return self


@pytest.fixture
def spawn():
    started = []

    def _spawn(target, *args, **kwargs):
        w = Worker(target, *args, **kwargs)
        w.start()
        started.append(w)
        return w

    yield _spawn
    for w in started:
        w.join(0.5)
