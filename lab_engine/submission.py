from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol

from runtime_bus import topics

from .labs.base import LabDefinition
from .registry import get_lab
from .sections import SectionStatus
from .session import DocumentKey
from .store import AssessmentRecordStore, DocumentStore, StoreWriteError

logger = logging.getLogger(__name__)

MAX_DOCUMENT_BYTES = 1024 * 1024


@dataclass(frozen=True)
class StudentIdentity:
    user_id: str
    email: str = ""


@dataclass(frozen=True)
class SubmissionResult:
    success: bool
    error: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class SubmissionEndpoint(Protocol):
    def submit(
        self,
        exercise_id: str,
        student: StudentIdentity,
        course_id: str,
        is_privileged: bool,
    ) -> SubmissionResult:  # pragma: no cover - interface
        ...


class BusSubmissionEndpoint:
    """Calls the submission service through a runtime bus request."""

    def __init__(self, bus, *, timeout_ms: int = 5000, source: str = "lab_engine.controller"):
        self.bus = bus
        self.timeout_ms = timeout_ms
        self.source = source

    def submit(
        self,
        exercise_id: str,
        student: StudentIdentity,
        course_id: str,
        is_privileged: bool,
    ) -> SubmissionResult:
        response = self.bus.request(
            topics.LAB_SUBMIT_REQUEST,
            {
                "exercise_id": exercise_id,
                "course_id": course_id,
                "user_id": student.user_id,
                "email": student.email,
                "is_privileged": bool(is_privileged),
            },
            source=self.source,
            timeout_ms=self.timeout_ms,
        )
        if response.get("ok") and response.get("success", True):
            return SubmissionResult(success=True, details=dict(response))
        error = response.get("error") or "submission_failed"
        return SubmissionResult(success=False, error=str(error), details=dict(response))


def completion_percentage(section_status: Mapping[str, Any], section_keys: List[str]) -> int:
    if not section_keys:
        return 0
    completed = sum(1 for key in section_keys if section_status.get(key) == SectionStatus.COMPLETED.value)
    return int(round(completed * 100 / len(section_keys)))


def validate_document(document: Mapping[str, Any], definition: LabDefinition) -> List[str]:
    errors: List[str] = []
    statuses = document.get("section_status")
    if not isinstance(statuses, Mapping):
        return ["section_status missing from lab data"]
    for key in definition.section_keys:
        if key not in statuses:
            errors.append(f"required section '{key}' is missing from section_status")
    size = len(json.dumps(document))
    if size > MAX_DOCUMENT_BYTES:
        errors.append(f"lab data size ({size // 1024}KB) exceeds maximum allowed (1MB)")
    return errors


class LabSubmissionService:
    """Grades a stored session document into the course assessment record.

    Registered on the bus under ``lab.submit.request``. Resubmitting is safe:
    the record keeps its first timestamp and bumps ``version``.
    """

    def __init__(
        self,
        store: DocumentStore,
        records: AssessmentRecordStore,
        *,
        lookup: Callable[[str], Optional[LabDefinition]] = get_lab,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.records = records
        self._lookup = lookup
        self._clock = clock

    def register(self, bus) -> None:
        bus.register_handler(topics.LAB_SUBMIT_REQUEST, self.handle_request)

    def handle_request(self, envelope) -> Dict[str, object]:
        payload = envelope.payload
        missing = [name for name in ("exercise_id", "course_id", "user_id") if not payload.get(name)]
        if missing:
            return {"ok": False, "error": f"missing required parameter: {missing[0]}"}
        key = DocumentKey(
            user_id=str(payload["user_id"]),
            course_id=str(payload["course_id"]),
            exercise_id=str(payload["exercise_id"]),
        )
        return self.submit(key, is_privileged=bool(payload.get("is_privileged", False)))

    def submit(self, key: DocumentKey, *, is_privileged: bool = False) -> Dict[str, object]:
        definition = self._lookup(key.exercise_id)
        if definition is None:
            return {"ok": False, "error": f"unknown exercise: {key.exercise_id}"}
        document = self.store.read(key)
        if document is None:
            return {"ok": False, "error": "no saved lab data"}
        errors = validate_document(document, definition)
        if errors:
            logger.warning("lab data validation failed for %s: %s", key.exercise_id, errors)
            return {"ok": False, "error": "lab data validation failed: " + ", ".join(errors)}

        statuses = document["section_status"]
        keys = list(definition.section_keys)
        percentage = completion_percentage(statuses, keys)
        completed = sum(1 for k in keys if statuses.get(k) == SectionStatus.COMPLETED.value)
        is_complete = definition.submission.allows(completed, len(keys))
        points = definition.points_value
        now = self._clock()

        existing = self.records.get(key) or {}
        record = {
            "exercise_id": key.exercise_id,
            "course_id": key.course_id,
            "user_id": key.user_id,
            "timestamp": existing.get("timestamp", now),
            "last_modified": now,
            "completion_percentage": percentage,
            "status": SectionStatus.COMPLETED.value if is_complete else SectionStatus.IN_PROGRESS.value,
            "submission_type": "lab",
            "points_value": points,
            "score": int(round(percentage / 100 * points)),
            "version": int(existing.get("version", 0)) + 1,
            "submitted": True,
            "submission_timestamp": existing.get("submission_timestamp", now),
            "is_privileged": is_privileged,
            "lab_data": document,
        }
        try:
            self.records.put(key, record)
        except StoreWriteError as exc:
            logger.error("could not record submission for %s: %s", key.exercise_id, exc)
            return {"ok": False, "error": "could not record submission"}
        logger.info(
            "lab submitted exercise=%s user=%s version=%s completion=%s",
            key.exercise_id,
            key.user_id,
            record["version"],
            percentage,
        )
        return {
            "ok": True,
            "success": True,
            "exercise_id": key.exercise_id,
            "completion_percentage": percentage,
            "status": record["status"],
            "version": record["version"],
            "submission_timestamp": record["submission_timestamp"],
        }
