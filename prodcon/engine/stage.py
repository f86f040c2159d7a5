from __future__ import annotations
from dataclasses import dataclass
from typing import Optional
import logging
import random
import threading
import time

from .cancel import CancellationToken
from .errors import CancelledError, ClosedError
from .event import Event
from .queue import BoundedSynchronizedQueue
from .metrics import Metrics

logger = logging.getLogger(__name__)

@dataclass
class RetryPolicy:
    max_attempts: int = 3
    base_delay_s: float = 0.05
    backoff: float = 2.0

    def delay_for_attempt(self, attempt: int) -> float:
        # attempt is 1-based (1 = first retry delay)
        return self.base_delay_s * (self.backoff ** (attempt - 1))

class Stage:
    """
    Base stage: pulls Events from in_q and pushes to out_q.
    Implement process(event) -> Event | None
    Returning None means 'drop' (counted as <name>.dropped).

    The pipeline runs `workers` threads through run(); each returns once
    in_q is closed and drained.
    """
    def __init__(
        self,
        name: str,
        in_q: Optional[BoundedSynchronizedQueue[Event]],
        out_q: Optional[BoundedSynchronizedQueue[Event]],
        *,
        workers: int = 1,
        retry: RetryPolicy | None = None,
        fail_prob: float = 0.0,
        rng_seed: int | None = None,
        idempotency: bool = True,
    ):
        self.name = name
        self.in_q = in_q
        self.out_q = out_q
        self.workers = workers
        self.retry = retry or RetryPolicy()
        self.fail_prob = fail_prob
        self.rng = random.Random(rng_seed)
        self.idempotency = idempotency
        self._seen_ids: set[str] = set()
        self._lock = threading.Lock()

    def maybe_fail(self) -> None:
        if self.fail_prob <= 0:
            return
        with self._lock:
            roll = self.rng.random()
        if roll < self.fail_prob:
            raise RuntimeError(f"Injected failure in stage {self.name}")

    def process(self, event: Event) -> Event | None:
        raise NotImplementedError

    def run(self, metrics: Metrics, cancel: CancellationToken | None = None) -> None:
        while self.run_one(metrics, cancel):
            pass

    def run_one(self, metrics: Metrics, cancel: CancellationToken | None = None) -> bool:
        """
        Handle one event. Returns False once in_q is closed and drained.
        """
        assert self.in_q is not None, "Source stages should override run loop."

        if cancel is not None:
            cancel.raise_if_cancelled()
        try:
            event = self.in_q.get(cancel=cancel)
        except ClosedError:
            return False
        t0 = time.time()

        try:
            # Idempotency guard (per-stage, shared by its workers). The id is
            # claimed in the same critical section as the check.
            if self.idempotency:
                with self._lock:
                    seen = event.id in self._seen_ids
                    if not seen:
                        self._seen_ids.add(event.id)
                if seen:
                    metrics.inc(f"{self.name}.deduped", 1)
                    return True

            try:
                self._handle(event, metrics, cancel)
            except BaseException:
                # not forwarded: release the claim so a redelivery is processed
                if self.idempotency:
                    with self._lock:
                        self._seen_ids.discard(event.id)
                raise
        finally:
            metrics.observe_latency_ms((time.time() - t0) * 1000)

        return True

    def _handle(self, event: Event, metrics: Metrics, cancel: CancellationToken | None) -> None:
        attempt = 0
        while True:
            try:
                self.maybe_fail()
                out = self.process(event)
                break
            except Exception as exc:
                attempt += 1
                metrics.inc(f"{self.name}.errors", 1)
                if attempt >= self.retry.max_attempts:
                    metrics.inc(f"{self.name}.failed", 1)
                    raise
                delay = self.retry.delay_for_attempt(attempt)
                metrics.inc(f"{self.name}.retries", 1)
                logger.warning("stage %s attempt %d failed (%s); retrying in %.3fs",
                               self.name, attempt, exc, delay)
                self._sleep(delay, cancel)

        if out is not None and self.out_q is not None:
            self.out_q.put(out, cancel=cancel)
            metrics.inc(f"{self.name}.out", 1)
        else:
            metrics.inc(f"{self.name}.dropped", 1)

    @staticmethod
    def _sleep(delay: float, cancel: CancellationToken | None) -> None:
        if cancel is None:
            time.sleep(delay)
        elif cancel.wait(delay):
            raise CancelledError(cancel.reason)
