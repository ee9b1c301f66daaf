from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, Optional


@dataclass(slots=True)
class MessageEnvelope:
    """One message on the lab engine bus.

    ``sticky`` envelopes are kept as the topic's current value; a copy handed
    to a late subscriber carries ``replayed=True``.
    """

    msg_id: str
    type: str
    timestamp: str
    source: str
    payload: Dict[str, object] = field(default_factory=dict)
    trace_id: str = ""
    target: Optional[str] = None
    sticky: bool = False
    replayed: bool = False

    def as_replay(self) -> "MessageEnvelope":
        return replace(self, payload=dict(self.payload), replayed=True)

    def to_dict(self) -> Dict[str, object]:
        return {
            "msg_id": self.msg_id,
            "type": self.type,
            "timestamp": self.timestamp,
            "source": self.source,
            "payload": dict(self.payload),
            "trace_id": self.trace_id,
            "target": self.target,
            "sticky": self.sticky,
            "replayed": self.replayed,
        }
