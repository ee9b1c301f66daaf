from __future__ import annotations

import json
import logging
import os
import re
import time
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Protocol

from runtime_bus import topics

from .session import DocumentKey

logger = logging.getLogger(__name__)

_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._@-]*$")

DocumentCallback = Callable[[Dict[str, Any]], None]
Unsubscribe = Callable[[], None]


class StoreWriteError(OSError):
    """A document write did not reach the store."""


class DocumentStore(Protocol):
    def read(self, key: DocumentKey) -> Optional[Dict[str, Any]]:  # pragma: no cover - interface
        ...

    def update(self, key: DocumentKey, partial: Mapping[str, Any]) -> Dict[str, Any]:  # pragma: no cover
        ...

    def subscribe(self, key: DocumentKey, callback: DocumentCallback) -> Unsubscribe:  # pragma: no cover
        ...


def _safe_id(value: str, label: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned or cleaned in {".", ".."} or not _ID_RE.fullmatch(cleaned):
        raise ValueError(f"invalid {label}: {value!r}")
    return cleaned


def document_topic(key: DocumentKey) -> str:
    return f"{topics.LAB_SESSION_DOCUMENT_CHANGED}:{key.user_id}:{key.course_id}:{key.exercise_id}"


def _write_json_atomic(path: Path, data: Mapping[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
    os.replace(tmp, path)


def _read_json(path: Path) -> Optional[Dict[str, Any]]:
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("unreadable document at %s: %s", path, exc)
        return None
    return data if isinstance(data, dict) else None


class JsonDocumentStore:
    """Session documents as JSON files, one per (user, course, exercise).

    ``update`` applies a partial update: top-level keys in the payload replace
    the stored ones, everything else is kept. Every write publishes the full
    document on the key's sticky bus topic, which is what ``subscribe`` listens
    to.
    """

    def __init__(self, root: Path, *, bus=None, clock: Callable[[], float] = time.time):
        self.root = Path(root)
        self.bus = bus
        self._clock = clock

    def path_for(self, key: DocumentKey) -> Path:
        user = _safe_id(key.user_id, "user_id")
        course = _safe_id(key.course_id, "course_id")
        exercise = _safe_id(key.exercise_id, "exercise_id")
        return self.root / "users" / user / "courses" / course / f"{exercise}.json"

    def read(self, key: DocumentKey) -> Optional[Dict[str, Any]]:
        return _read_json(self.path_for(key))

    def update(self, key: DocumentKey, partial: Mapping[str, Any]) -> Dict[str, Any]:
        path = self.path_for(key)
        document = _read_json(path) or {}
        document.update(json.loads(json.dumps(dict(partial))))
        document["last_modified"] = self._clock()
        try:
            _write_json_atomic(path, document)
        except OSError as exc:
            raise StoreWriteError(f"could not write {path}: {exc}") from exc
        logger.debug("document written %s keys=%s", path, sorted(partial))
        if self.bus is not None:
            self.bus.publish(
                document_topic(key),
                {"key": key.as_dict(), "document": document},
                source="lab_engine.store",
                sticky=True,
            )
        return document

    def subscribe(self, key: DocumentKey, callback: DocumentCallback) -> Unsubscribe:
        """Deliver the current document now and every later write."""
        topic = document_topic(key)
        if self.bus is None or self.bus.last_sticky(topic) is None:
            current = self.read(key)
            if current is not None:
                callback(current)
        if self.bus is None:
            return lambda: None

        def _handler(envelope) -> None:
            document = envelope.payload.get("document")
            if isinstance(document, dict):
                callback(document)

        sub_id = self.bus.subscribe(topic, _handler, replay_sticky=True)
        return lambda: self.bus.unsubscribe(sub_id)


class AssessmentRecordStore:
    """Course assessment records written by the submission service.

    The session controller only reads them; they are the authoritative source
    for the submitted flag and time.
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    def path_for(self, key: DocumentKey) -> Path:
        user = _safe_id(key.user_id, "user_id")
        course = _safe_id(key.course_id, "course_id")
        exercise = _safe_id(key.exercise_id, "exercise_id")
        return self.root / "assessments" / user / course / f"{exercise}.json"

    def get(self, key: DocumentKey) -> Optional[Dict[str, Any]]:
        return _read_json(self.path_for(key))

    def put(self, key: DocumentKey, record: Mapping[str, Any]) -> None:
        try:
            _write_json_atomic(self.path_for(key), record)
        except OSError as exc:
            raise StoreWriteError(f"could not write assessment record: {exc}") from exc
