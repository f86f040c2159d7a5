from __future__ import annotations
from typing import Dict, List, Optional
import json
import threading

from prodcon.engine.cancel import CancellationToken
from prodcon.engine.errors import ClosedError
from prodcon.engine.event import Event
from prodcon.engine.queue import BoundedSynchronizedQueue
from prodcon.engine.metrics import Metrics

class AuditSink:
    """
    Consumer stage. Records every (producer, seq) it receives so audit()
    can report duplicates, drops and per-producer FIFO violations.
    """
    def __init__(self, name: str, *, workers: int = 1, limit: int = 0, expected: Optional[int] = None):
        self.name = name
        self.workers = workers
        self.limit = limit
        self.expected = expected
        self._lock = threading.Lock()
        self._printed = 0
        self._delivered: Dict[str, List[int]] = {}

    def consume(self, in_q: BoundedSynchronizedQueue[Event], metrics: Metrics,
                cancel: CancellationToken | None = None) -> None:
        while True:
            if cancel is not None:
                cancel.raise_if_cancelled()
            try:
                ev = in_q.get(cancel=cancel)
            except ClosedError:
                return
            metrics.inc(f"{self.name}.in", 1)
            p = ev.payload
            with self._lock:
                self._delivered.setdefault(p["producer"], []).append(p["seq"])
                show = self._printed < self.limit
                if show:
                    self._printed += 1
            if show:
                print(json.dumps(p, sort_keys=True))

    def audit(self) -> dict:
        with self._lock:
            delivered = {k: list(v) for k, v in self._delivered.items()}
        total = sum(len(v) for v in delivered.values())
        duplicates = sum(len(v) - len(set(v)) for v in delivered.values())
        out_of_order = sum(
            1 for seqs in delivered.values() for a, b in zip(seqs, seqs[1:]) if b < a
        )
        unique = total - duplicates
        missing = None if self.expected is None else self.expected - unique
        return {
            "delivered": total,
            "expected": self.expected,
            "producers": len(delivered),
            "duplicates": duplicates,
            "missing": missing,
            "out_of_order": out_of_order,
            "exactly_once": duplicates == 0 and missing in (0, None),
        }
