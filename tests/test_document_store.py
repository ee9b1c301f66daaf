from __future__ import annotations

from pathlib import Path

import pytest

from lab_engine.labs import plancks_constant
from lab_engine.sections import SectionStatusDeriver
from lab_engine.session import DocumentKey, LabSession
from lab_engine.store import (
    AssessmentRecordStore,
    JsonDocumentStore,
    StoreWriteError,
    document_topic,
)
from runtime_bus import RuntimeBus

KEY = DocumentKey("student1", "course2", plancks_constant.EXERCISE_ID)


def test_update_merges_top_level_fields(tmp_path: Path) -> None:
    store = JsonDocumentStore(tmp_path, clock=lambda: 100.0)
    store.update(KEY, {"started": True, "analysis_data": {"slope": 4.1e-15}})
    document = store.update(KEY, {"current_section": "analysis"})

    assert document == {
        "started": True,
        "analysis_data": {"slope": 4.1e-15},
        "current_section": "analysis",
        "last_modified": 100.0,
    }
    expected = tmp_path / "users" / "student1" / "courses" / "course2" / f"{KEY.exercise_id}.json"
    assert store.path_for(KEY) == expected
    assert store.read(KEY) == document


def test_unsafe_identifiers_are_rejected(tmp_path: Path) -> None:
    store = JsonDocumentStore(tmp_path)
    with pytest.raises(ValueError):
        store.path_for(DocumentKey("../other", "course2", "lab"))
    with pytest.raises(ValueError):
        store.path_for(DocumentKey("student1", "", "lab"))


def test_unwritable_root_raises_store_error(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    store = JsonDocumentStore(blocker)
    with pytest.raises(StoreWriteError):
        store.update(KEY, {"started": True})


def test_unreadable_document_reads_as_missing(tmp_path: Path) -> None:
    store = JsonDocumentStore(tmp_path)
    path = store.path_for(KEY)
    path.parent.mkdir(parents=True)
    path.write_text("{not json", encoding="utf-8")
    assert store.read(KEY) is None


def test_subscribe_without_bus_delivers_current_document_once(tmp_path: Path) -> None:
    store = JsonDocumentStore(tmp_path)
    store.update(KEY, {"started": True})
    seen = []

    unsubscribe = store.subscribe(KEY, seen.append)
    unsubscribe()

    assert len(seen) == 1
    assert seen[0]["started"] is True


def test_subscribe_replays_current_value_then_follows_writes(tmp_path: Path) -> None:
    bus = RuntimeBus()
    store = JsonDocumentStore(tmp_path, bus=bus)
    store.update(KEY, {"started": True})
    seen = []

    unsubscribe = store.subscribe(KEY, seen.append)
    store.update(KEY, {"current_section": "analysis"})
    unsubscribe()
    store.update(KEY, {"current_section": "error"})

    assert [doc.get("current_section") for doc in seen] == [None, "analysis"]
    assert bus.subscriber_count(document_topic(KEY)) == 0


def test_session_round_trip_reproduces_state(tmp_path: Path) -> None:
    definition = plancks_constant.DEFINITION
    session = LabSession.from_document(
        definition.default_document(),
        exercise_id=definition.exercise_id,
        course_id="course2",
        section_keys=definition.section_keys,
    )
    session.started = True
    session.current_section = "observations"
    session.sections["hypothesis"].content["text"] = "Higher frequency LEDs need a larger voltage to emit light."
    session.observation_data["measurements"][0]["voltage"] = 1.88
    for key, status in SectionStatusDeriver(definition.sections).derive_all(session.to_document()).items():
        session.sections[key].status = status

    store = JsonDocumentStore(tmp_path)
    store.update(KEY, session.to_document())
    reloaded = LabSession.from_document(
        store.read(KEY),
        exercise_id=definition.exercise_id,
        course_id="course2",
        section_keys=definition.section_keys,
    )

    assert reloaded.section_status() == session.section_status()
    assert reloaded.observation_data == session.observation_data
    assert reloaded.current_section == "observations"
    assert reloaded.section_status()["hypothesis"] == "completed"


def test_assessment_records_round_trip(tmp_path: Path) -> None:
    records = AssessmentRecordStore(tmp_path)
    assert records.get(KEY) is None
    records.put(KEY, {"submitted": True, "version": 1})
    assert records.get(KEY) == {"submitted": True, "version": 1}
    assert records.path_for(KEY).parent == tmp_path / "assessments" / "student1" / "course2"
