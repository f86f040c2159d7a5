from __future__ import annotations
from prodcon.engine.stage import Stage
from prodcon.stages.transform import checksum

class ValidateSequence(Stage):
    def __init__(self, *args, required=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.required = required or ["producer", "seq", "value", "checksum"]

    def process(self, event):
        p = event.payload
        for k in self.required:
            if k not in p:
                raise ValueError(f"Missing field {k}")
        if p["seq"] < 0:
            raise ValueError("Negative seq")
        if p["checksum"] != checksum(p):
            raise ValueError(f"Checksum mismatch for {p['producer']}#{p['seq']}")
        return event
