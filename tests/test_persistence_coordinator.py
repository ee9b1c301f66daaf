from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

from lab_engine.labs import half_life, plancks_constant
from lab_engine.persistence import PersistenceCoordinator, merge_snapshot
from lab_engine.session import DocumentKey
from lab_engine.store import JsonDocumentStore, StoreWriteError
from runtime_bus import RuntimeBus, topics

KEY = DocumentKey("student1", "course2", "course2_lab_half_life")


class FailingStore(JsonDocumentStore):
    def __init__(self, root: Path):
        super().__init__(root)
        self.fail = True

    def update(self, key, partial):
        if self.fail:
            raise StoreWriteError("store offline")
        return super().update(key, partial)


def _coordinator(store, timers, state: Dict[str, Any], **kwargs) -> PersistenceCoordinator:
    return PersistenceCoordinator(store, KEY, lambda: dict(state), timers=timers, **kwargs)


def test_debounce_restarts_on_every_edit(tmp_path: Path, timers) -> None:
    store = JsonDocumentStore(tmp_path)
    coordinator = _coordinator(store, timers, {})

    coordinator.schedule_save({"analysis_data": {"manual_slope": "-0.02"}})
    timers.advance(800)
    coordinator.schedule_save({"current_section": "analysis"})
    timers.advance(800)
    assert store.read(KEY) is None

    timers.advance(200)
    document = store.read(KEY)
    assert document["analysis_data"] == {"manual_slope": "-0.02"}
    assert document["current_section"] == "analysis"
    assert coordinator.write_count == 1
    assert coordinator.pending_keys == ()


def test_autosave_writes_full_snapshot_while_active(tmp_path: Path, timers) -> None:
    store = JsonDocumentStore(tmp_path)
    state = {"started": True, "submitted": False, "observation_data": {"measurements": [1, 2]}}
    coordinator = _coordinator(store, timers, state)

    timers.advance(30000)
    assert store.read(KEY) is None

    coordinator.activate()
    timers.advance(30000)
    assert store.read(KEY)["observation_data"] == {"measurements": [1, 2]}

    state["started"] = False
    timers.advance(30000)
    assert coordinator.write_count == 1


def test_autosave_skips_submitted_sessions(tmp_path: Path, timers) -> None:
    store = JsonDocumentStore(tmp_path)
    coordinator = _coordinator(store, timers, {"started": True, "submitted": True})
    coordinator.activate()
    timers.advance(60000)
    assert store.read(KEY) is None


def test_freeze_disables_every_write_but_the_exempt_one(tmp_path: Path, timers) -> None:
    store = JsonDocumentStore(tmp_path)
    coordinator = _coordinator(store, timers, {"started": True, "submitted": False})
    coordinator.activate()
    coordinator.schedule_save({"current_section": "analysis"})

    coordinator.freeze()
    coordinator.schedule_save({"current_section": "conclusions"})
    timers.advance(60000)

    assert store.read(KEY) is None
    assert not coordinator.save_now({"started": True})
    assert not coordinator.save_snapshot()
    assert timers.active() == []

    assert coordinator.exempt_write({"analysis_data": {"graph_analysis": "regraded"}})
    assert store.read(KEY)["analysis_data"] == {"graph_analysis": "regraded"}


def test_failed_write_keeps_edits_and_notifies(tmp_path: Path, timers) -> None:
    store = FailingStore(tmp_path)
    bus = RuntimeBus()
    published = []
    bus.subscribe(topics.LAB_SESSION_NOTICE, lambda envelope: published.append(envelope.payload))
    notices = []
    coordinator = _coordinator(store, timers, {}, bus=bus, on_notice=lambda level, msg: notices.append((level, msg)))

    coordinator.schedule_save({"current_section": "analysis"})
    timers.advance(1000)

    assert notices == [("error", "Failed to save progress")]
    assert published[0]["level"] == "error"
    assert published[0]["exercise_id"] == KEY.exercise_id
    assert coordinator.pending_keys == ("current_section",)
    assert "store offline" in coordinator.last_error

    store.fail = False
    coordinator.schedule_save({"started": True})
    timers.advance(1000)
    assert store.read(KEY)["current_section"] == "analysis"
    assert coordinator.last_error is None


def test_close_stops_timers_without_flushing(tmp_path: Path, timers) -> None:
    store = JsonDocumentStore(tmp_path)
    coordinator = _coordinator(store, timers, {"started": True})
    coordinator.activate()
    coordinator.schedule_save({"current_section": "analysis"})

    coordinator.close()
    timers.advance(60000)

    assert timers.active() == []
    assert store.read(KEY) is None


def test_merge_keeps_static_reference_values() -> None:
    local = {
        "observation_data": {
            "background_cpm": 25.0,
            "isotope_id": "unknown1",
            "notes": "local",
            "measurements": [{"color": "Red", "frequency": 4.54e14, "voltage": None}],
        },
        "current_section": "observations",
    }
    remote = {
        "observation_data": {
            "background_cpm": None,
            "notes": None,
            "measurements": [{"color": None, "frequency": None, "voltage": 1.88}],
        },
    }

    merged = merge_snapshot(
        local,
        remote,
        static_paths=(
            "observation_data.background_cpm",
            "observation_data.measurements.*.color",
        ),
    )

    data = merged["observation_data"]
    assert data["background_cpm"] == 25.0
    assert data["isotope_id"] == "unknown1"
    assert data["notes"] is None
    assert data["measurements"] == [{"color": "Red", "frequency": None, "voltage": 1.88}]
    assert merged["current_section"] == "observations"


def test_merge_skips_pending_local_edits() -> None:
    local = {"section_content": {"hypothesis": {"text": "draft"}}, "started": False}
    remote = {"section_content": {"hypothesis": {"text": ""}}, "started": True}

    merged = merge_snapshot(local, remote, pending_keys=["section_content"])

    assert merged["section_content"] == {"hypothesis": {"text": "draft"}}
    assert merged["started"] is True


def test_merge_keeps_led_rows_missing_from_a_shorter_remote_list() -> None:
    definition = plancks_constant.DEFINITION
    local = definition.default_document()
    remote = {"observation_data": {"measurements": [{"voltage": 1.88, "measured": True}]}}

    merged = merge_snapshot(local, remote, static_paths=definition.static_paths)

    rows = merged["observation_data"]["measurements"]
    assert len(rows) == len(plancks_constant.LEDS)
    assert rows[0] == {"color": "Red", "frequency": 4.54e14, "voltage": 1.88, "measured": True}
    assert [row["color"] for row in rows] == ["Red", "Amber", "Yellow", "Green", "Blue"]
    assert rows[4]["frequency"] == 6.38e14
    assert rows[4]["voltage"] is None


def test_merge_drops_unreferenced_rows_past_the_remote_list() -> None:
    local = {"observation_data": {"measurements": [{"time": 0, "counts": 10}, {"time": 10, "counts": 8}]}}
    remote = {"observation_data": {"measurements": [{"time": 0, "counts": 12}]}}

    merged = merge_snapshot(local, remote, static_paths=half_life.DEFINITION.static_paths)

    assert merged["observation_data"]["measurements"] == [{"time": 0, "counts": 12}]


def test_null_parent_keeps_static_children() -> None:
    definition = half_life.DEFINITION
    local = definition.default_document()
    local["observation_data"]["isotope_id"] = "unknown3"

    merged = merge_snapshot(local, {"observation_data": None}, static_paths=definition.static_paths)

    assert merged["observation_data"] == {"background_cpm": 25.0, "isotope_id": "unknown3"}


def test_null_measurement_list_keeps_led_reference_columns() -> None:
    definition = plancks_constant.DEFINITION
    local = definition.default_document()

    merged = merge_snapshot(
        local, {"observation_data": {"measurements": None}}, static_paths=definition.static_paths
    )

    rows = merged["observation_data"]["measurements"]
    assert rows[1] == {"color": "Amber", "frequency": 5.00e14}
    assert len(rows) == len(plancks_constant.LEDS)
    assert merged["observation_data"]["current_item"] == 0


def test_null_parent_without_static_children_is_cleared() -> None:
    merged = merge_snapshot({"analysis_data": {"slope": 1.0}}, {"analysis_data": None}, static_paths=("observation_data.*",))
    assert merged["analysis_data"] is None
