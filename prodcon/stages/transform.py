from __future__ import annotations
import hashlib

from prodcon.engine.stage import Stage

def checksum(payload) -> str:
    raw = f"{payload['producer']}:{payload['seq']}:{payload['value']}".encode("utf-8")
    return hashlib.sha256(raw).hexdigest()[:16]

class Checksum(Stage):
    def process(self, event):
        p = dict(event.payload)
        p["checksum"] = checksum(p)
        return event.with_payload(p)
