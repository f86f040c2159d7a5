from __future__ import annotations
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple
import logging
import threading
import time
import uuid

from .cancel import CancellationToken
from .errors import CancelledError, PipelineError
from .event import Event
from .metrics import Metrics
from .queue import BoundedSynchronizedQueue
from .replay import RunArtifact

logger = logging.getLogger(__name__)

@dataclass
class Pipeline:
    """
    Threaded producer/consumer session.

    stages[0] is a source (emit(worker, out_q, metrics, cancel)), stages[-1]
    a sink (consume(in_q, metrics, cancel)); anything in between is a Stage.
    queues[i] connects stages[i] and stages[i+1]. Every stage runs
    `workers` threads; when the last worker of stage i returns, queues[i]
    is closed, so shutdown flows downstream as each queue drains.
    """
    name: str
    stages: List[Any]
    queues: List[BoundedSynchronizedQueue[Event]]
    sample_interval_s: float = 0.05
    deadline_s: Optional[float] = None

    def run(self, *, cancel: CancellationToken | None = None) -> RunArtifact:
        if len(self.stages) < 2:
            raise PipelineError("Need at least source + sink")
        if len(self.queues) != len(self.stages) - 1:
            raise PipelineError(
                f"{len(self.stages)} stages need {len(self.stages) - 1} queues, got {len(self.queues)}"
            )

        if any(q.closed for q in self.queues):
            # queues are closed as a run finishes; a Pipeline runs once
            raise PipelineError(f"pipeline {self.name} has already run; build a new one")

        metrics = Metrics()
        run_id = time.strftime("%Y%m%d_%H%M%S") + "_" + uuid.uuid4().hex[:8]
        token = CancellationToken()
        failures: List[Tuple[str, BaseException]] = []
        cancelled_workers = [0]
        lock = threading.Lock()
        remaining = [max(1, int(getattr(st, "workers", 1))) for st in self.stages]

        def on_fail(stage_name: str, exc: BaseException) -> None:
            with lock:
                failures.append((stage_name, exc))
            metrics.inc("pipeline.hard_fail", 1)
            token.cancel(reason=f"stage {stage_name} failed: {exc}")

        def on_cancel() -> None:
            with lock:
                cancelled_workers[0] += 1

        def on_done(idx: int) -> None:
            with lock:
                remaining[idx] -= 1
                last = remaining[idx] == 0
            if last and idx < len(self.queues):
                self.queues[idx].close()

        outer = cancel.register(lambda: token.cancel(reason=cancel.reason)) if cancel is not None else None
        timer = token.cancel_after(self.deadline_s) if self.deadline_s is not None else None

        logger.info("pipeline %s run %s starting (%d stages)", self.name, run_id, len(self.stages))
        threads = []
        for idx, st in enumerate(self.stages):
            for w in range(remaining[idx]):
                t = threading.Thread(
                    target=self._worker,
                    args=(idx, st, w, metrics, token, on_fail, on_cancel, on_done),
                    name=f"{self.name}-{st.name}-{w}",
                    daemon=True,
                )
                threads.append(t)

        stop_sampling = threading.Event()
        sampler = threading.Thread(
            target=self._sample, args=(metrics, stop_sampling), name=f"{self.name}-sampler", daemon=True
        )
        sampler.start()
        for t in threads:
            t.start()
        try:
            for t in threads:
                t.join()
        finally:
            if timer is not None:
                timer.cancel()
            stop_sampling.set()
            sampler.join()
            if cancel is not None:
                cancel.unregister(outer)

        for q in self.queues:
            metrics.record_queue_stats(q.name, q.stats())
        metrics.finalize()

        if failures:
            stage_name, exc = failures[0]
            logger.error("pipeline %s run %s aborted: stage %s failed: %s", self.name, run_id, stage_name, exc)
            raise PipelineError(f"stage {stage_name} failed: {exc}") from exc
        if cancelled_workers[0]:
            # a token fired after every worker finished does not fail the run
            logger.error("pipeline %s run %s cancelled: %s", self.name, run_id, token.reason)
            raise PipelineError(f"run cancelled: {token.reason}")

        sink = self.stages[-1]
        audit = sink.audit() if hasattr(sink, "audit") else {}
        summary = metrics.summary()
        logger.info("pipeline %s run %s finished in %.3fs", self.name, run_id, summary["duration_s"])
        return RunArtifact(
            run_id=run_id,
            pipeline_name=self.name,
            created_ts=time.time(),
            metrics=summary,
            audit=audit,
            config_snapshot={},  # filled by loader for replay
        )

    def _worker(self, idx, stage, worker, metrics, token, on_fail, on_cancel, on_done) -> None:
        try:
            if idx == 0:
                stage.emit(worker, self.queues[0], metrics, token)
            elif idx == len(self.stages) - 1:
                stage.consume(self.queues[-1], metrics, token)
            else:
                stage.run(metrics, token)
        except CancelledError:
            logger.debug("stage %s worker %d cancelled", stage.name, worker)
            on_cancel()
        except Exception as exc:
            logger.exception("stage %s worker %d failed", stage.name, worker)
            on_fail(stage.name, exc)
        finally:
            on_done(idx)

    def _sample(self, metrics: Metrics, stop: threading.Event) -> None:
        while not stop.wait(self.sample_interval_s):
            metrics.sample_queue_depth({q.name: q.size() for q in self.queues})
