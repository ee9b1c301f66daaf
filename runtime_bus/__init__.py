"""In-process event bus for lab sessions.

Pub/sub with sticky topics (late subscribers can replay the current value)
and request/reply bounded by a timeout.
"""

from . import topics
from .bus import RuntimeBus, get_global_bus
from .messages import MessageEnvelope

__all__ = ["MessageEnvelope", "RuntimeBus", "get_global_bus", "topics"]
