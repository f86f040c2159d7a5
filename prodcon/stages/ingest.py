from __future__ import annotations
import random

from prodcon.engine.cancel import CancellationToken
from prodcon.engine.event import new_event, Event
from prodcon.engine.queue import BoundedSynchronizedQueue
from prodcon.engine.metrics import Metrics

class SequenceProducer:
    """
    Source stage. Each worker emits `items` events numbered 0..items-1,
    tagged with its producer id so the sink can audit delivery and order.
    """
    def __init__(self, name: str, *, items: int = 100, workers: int = 1, rng_seed: int = 123):
        self.name = name
        self.items = items
        self.workers = workers
        self.rng_seed = rng_seed

    @property
    def expected(self) -> int:
        return self.items * self.workers

    def producer_id(self, worker: int) -> str:
        return f"{self.name}-{worker}"

    def emit(self, worker: int, out_q: BoundedSynchronizedQueue[Event], metrics: Metrics,
             cancel: CancellationToken | None = None) -> None:
        rng = random.Random(self.rng_seed + worker)
        producer = self.producer_id(worker)
        for seq in range(self.items):
            if cancel is not None:
                cancel.raise_if_cancelled()
            payload = {
                "producer": producer,
                "seq": seq,
                "value": rng.randint(0, 1_000_000),
            }
            out_q.put(new_event(payload), cancel=cancel)
            metrics.inc(f"{self.name}.out", 1)
