from .config import EngineConfig, load_engine_config
from .controller import LabSessionController, SessionState
from .registry import get_lab, list_labs, register_lab, require_lab
from .session import DocumentKey, LabSession
from .store import AssessmentRecordStore, JsonDocumentStore, StoreWriteError
from .submission import (
    BusSubmissionEndpoint,
    LabSubmissionService,
    StudentIdentity,
    SubmissionResult,
)

__all__ = [
    "EngineConfig",
    "load_engine_config",
    "LabSessionController",
    "SessionState",
    "get_lab",
    "list_labs",
    "register_lab",
    "require_lab",
    "DocumentKey",
    "LabSession",
    "AssessmentRecordStore",
    "JsonDocumentStore",
    "StoreWriteError",
    "BusSubmissionEndpoint",
    "LabSubmissionService",
    "StudentIdentity",
    "SubmissionResult",
]
