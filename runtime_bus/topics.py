"""Topic constants for the runtime bus."""

# Session documents / persistence
LAB_SESSION_DOCUMENT_CHANGED = "lab.session.document.changed"
LAB_SESSION_NOTICE = "lab.session.notice"
LAB_SESSION_STATE = "lab.session.state"

# Simulations
LAB_DECAY_TICK = "lab.decay.tick"
LAB_CIRCUIT_THRESHOLD_CROSSED = "lab.circuit.threshold_crossed"

# Submission
LAB_SUBMIT_REQUEST = "lab.submit.request"

__all__ = [
    "LAB_SESSION_DOCUMENT_CHANGED",
    "LAB_SESSION_NOTICE",
    "LAB_SESSION_STATE",
    "LAB_DECAY_TICK",
    "LAB_CIRCUIT_THRESHOLD_CROSSED",
    "LAB_SUBMIT_REQUEST",
]
