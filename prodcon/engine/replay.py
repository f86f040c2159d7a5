from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict
import json
import os

@dataclass
class RunArtifact:
    run_id: str
    pipeline_name: str
    created_ts: float
    metrics: Dict[str, Any]
    audit: Dict[str, Any] = field(default_factory=dict)
    config_snapshot: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "pipeline_name": self.pipeline_name,
            "created_ts": self.created_ts,
            "metrics": self.metrics,
            "audit": self.audit,
            "config_snapshot": self.config_snapshot,
        }

    def save(self, path: str) -> None:
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, path: str) -> "RunArtifact":
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return cls(
            run_id=data["run_id"],
            pipeline_name=data["pipeline_name"],
            created_ts=data["created_ts"],
            metrics=data.get("metrics", {}),
            audit=data.get("audit", {}),
            config_snapshot=data.get("config_snapshot", {}),
        )
