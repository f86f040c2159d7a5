from __future__ import annotations
import argparse
import json
import logging
import os
import sys
from typing import Any, Dict, Tuple

import yaml

from prodcon.engine.errors import PipelineError
from prodcon.engine.pipeline import Pipeline
from prodcon.engine.queue import BoundedSynchronizedQueue
from prodcon.engine.replay import RunArtifact
from prodcon.engine.stage import RetryPolicy
from prodcon.stages.ingest import SequenceProducer
from prodcon.stages.transform import Checksum
from prodcon.stages.validate import ValidateSequence
from prodcon.stages.sink import AuditSink

logger = logging.getLogger(__name__)

SOURCE_TYPES = {"sequence_producer"}
MIDDLE_TYPES = {"checksum": Checksum, "validate_sequence": ValidateSequence}
SINK_TYPES = {"audit_sink"}

SAMPLE_PIPELINE = """name: seq_basic
queues:
  maxsize: 8
  sample_interval_s: 0.05
stages:
  - type: sequence_producer
    name: producers
    workers: 3
    items: 200
    rng_seed: 7
  - type: checksum
    name: checksum
    workers: 2
    fail_prob: 0.01
    retry:
      max_attempts: 3
      base_delay_s: 0.001
      backoff: 2
  - type: validate_sequence
    name: validate
    retry:
      max_attempts: 2
      base_delay_s: 0.001
      backoff: 2
  - type: audit_sink
    name: sink
    workers: 1
    limit: 5
"""

def _coerce(kind, value, where: str):
    try:
        return kind(value)
    except (TypeError, ValueError) as exc:
        raise PipelineError(f"{where} must be {kind.__name__}, got {value!r}") from exc

def _section(value, where: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise PipelineError(f"{where} must be a mapping, got {value!r}")
    return value

def build_pipeline(cfg: Dict[str, Any]) -> Pipeline:
    if not isinstance(cfg, dict):
        raise PipelineError("Pipeline config must be a mapping")
    name = cfg.get("name", "pipeline")

    q_cfg = _section(cfg.get("queues"), "queues")
    qsize = _coerce(int, q_cfg.get("maxsize", 0), "queues.maxsize")
    if qsize < 0:
        raise PipelineError(f"queues.maxsize must be >= 0, got {qsize}")
    sample_interval_s = _coerce(float, q_cfg.get("sample_interval_s", 0.05), "queues.sample_interval_s")
    if sample_interval_s <= 0:
        raise PipelineError("queues.sample_interval_s must be > 0")

    deadline_s = cfg.get("deadline_s")
    deadline_s = _coerce(float, deadline_s, "deadline_s") if deadline_s is not None else None

    stage_cfgs = cfg.get("stages") or []
    if not isinstance(stage_cfgs, list):
        raise PipelineError(f"stages must be a list, got {stage_cfgs!r}")
    if len(stage_cfgs) < 2:
        raise PipelineError("Need at least source + sink")

    # Create queues between stages (len(stages)-1)
    queues = []
    for i in range(len(stage_cfgs) - 1):
        queues.append(BoundedSynchronizedQueue(qsize, name=f"q{i}"))

    stages = []
    last = len(stage_cfgs) - 1
    for i, s in enumerate(stage_cfgs):
        if not isinstance(s, dict):
            raise PipelineError(f"Stage {i} must be a mapping, got {s!r}")
        stype = s.get("type")
        if not stype:
            raise PipelineError(f"Stage {i} has no type")
        sname = s.get("name", stype)
        workers = _coerce(int, s.get("workers", 1), f"{sname}.workers")
        if workers < 1:
            raise PipelineError(f"Stage {sname}: workers must be >= 1")

        if i == 0:
            if stype not in SOURCE_TYPES:
                raise PipelineError(f"First stage must be a source, got {stype}")
            stages.append(SequenceProducer(
                sname,
                items=_coerce(int, s.get("items", 100), f"{sname}.items"),
                workers=workers,
                rng_seed=_coerce(int, s.get("rng_seed", 123), f"{sname}.rng_seed"),
            ))
        elif i == last:
            if stype not in SINK_TYPES:
                raise PipelineError(f"Last stage must be a sink, got {stype}")
            stages.append(AuditSink(
                sname, workers=workers, limit=_coerce(int, s.get("limit", 0), f"{sname}.limit"),
                expected=stages[0].expected,
            ))
        elif stype in MIDDLE_TYPES:
            # common knobs for Stage-based ones
            retry_cfg = _section(s.get("retry"), f"{sname}.retry")
            retry = RetryPolicy(
                max_attempts=_coerce(int, retry_cfg.get("max_attempts", 3), f"{sname}.retry.max_attempts"),
                base_delay_s=_coerce(float, retry_cfg.get("base_delay_s", 0.05), f"{sname}.retry.base_delay_s"),
                backoff=_coerce(float, retry_cfg.get("backoff", 2.0), f"{sname}.retry.backoff"),
            )
            rng_seed = s.get("rng_seed", None)
            stages.append(MIDDLE_TYPES[stype](
                sname, queues[i-1], queues[i],
                workers=workers,
                retry=retry,
                fail_prob=_coerce(float, s.get("fail_prob", 0.0), f"{sname}.fail_prob"),
                rng_seed=_coerce(int, rng_seed, f"{sname}.rng_seed") if rng_seed is not None else None,
            ))
        else:
            raise PipelineError(f"Unknown stage type: {stype}")

    return Pipeline(name=name, stages=stages, queues=queues,
                    sample_interval_s=sample_interval_s, deadline_s=deadline_s)

def build_pipeline_from_yaml(path: str) -> Tuple[Pipeline, Dict[str, Any]]:
    with open(path, "r", encoding="utf-8") as f:
        try:
            cfg = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise PipelineError(f"{path} is not valid YAML: {exc}") from exc
    return build_pipeline(cfg), cfg

def cmd_init() -> None:
    os.makedirs("pipeline_examples", exist_ok=True)
    out = os.path.join("pipeline_examples", "seq_basic.yaml")
    if not os.path.exists(out):
        with open(out, "w", encoding="utf-8") as f:
            f.write(SAMPLE_PIPELINE)
    print(f"Wrote {out}")

def cmd_run(pipeline_path: str, deadline_s: float | None = None) -> int:
    pipe, cfg = build_pipeline_from_yaml(pipeline_path)
    if deadline_s is not None:
        pipe.deadline_s = deadline_s
    artifact = pipe.run()

    # attach snapshot for replay/debug
    artifact.config_snapshot = cfg

    out_path = os.path.join("runs", f"{artifact.run_id}.json")
    artifact.save(out_path)
    print(f"Run saved: {out_path}")
    print("Counters:", artifact.metrics["counters"])
    print("Audit:", artifact.audit)
    if not artifact.audit.get("exactly_once", False):
        logger.error("delivery audit failed: %s", artifact.audit)
        return 1
    return 0

def cmd_report(run_path: str) -> None:
    artifact = RunArtifact.load(run_path)
    m = artifact.metrics
    print(f"Pipeline: {artifact.pipeline_name}")
    print(f"Run ID:   {artifact.run_id}")
    print(f"Duration: {m.get('duration_s'):.3f}s")
    print("Counters:")
    for k, v in sorted(m.get("counters", {}).items()):
        print(f"  {k}: {v}")
    lat = m.get("latency_ms", {})
    print("Latency(ms):", lat)
    for qname, st in sorted(m.get("queue_stats", {}).items()):
        print(f"Queue {qname}:", json.dumps(st, sort_keys=True))
    print("Audit:", json.dumps(artifact.audit, sort_keys=True))

def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(prog="prodcon")
    ap.add_argument("--log-level", default="WARNING",
                    choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    sub = ap.add_subparsers(dest="cmd", required=True)

    sub.add_parser("init")

    runp = sub.add_parser("run")
    runp.add_argument("pipeline", help="YAML pipeline config path")
    runp.add_argument("--deadline-s", type=float, default=None,
                      help="Cancel the run if it takes longer than this")

    rep = sub.add_parser("report")
    rep.add_argument("runfile", help="Path to a run json artifact")

    args = ap.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(threadName)s %(name)s: %(message)s",
    )

    if args.cmd == "init":
        cmd_init()
    elif args.cmd == "run":
        try:
            return cmd_run(args.pipeline, args.deadline_s)
        except PipelineError as exc:
            logger.error("run failed: %s", exc)
            return 1
    elif args.cmd == "report":
        cmd_report(args.runfile)
    return 0

if __name__ == "__main__":
    sys.exit(main())
