from __future__ import annotations

import copy
import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from runtime_bus import topics

from .circuit import ThresholdCircuitModel
from .config import EngineConfig
from .decay import CountSampler, DecayExperiment, make_sampler
from .labs.base import LabDefinition
from .persistence import PersistenceCoordinator
from .sections import AcknowledgmentRule, SectionStatus, SectionStatusDeriver
from .session import DocumentKey, LabSession
from .store import AssessmentRecordStore, DocumentStore
from .submission import StudentIdentity, SubmissionEndpoint, SubmissionResult
from .timers import QtTimerFactory, TimerFactory

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    NOT_STARTED = "not-started"
    IN_PROGRESS = "in-progress"
    SUBMITTED = "submitted"


class LabSessionController:
    """One student's run through a lab: state machine, edits and submission.

    The controller owns the session and every timer or subscription it
    creates; ``open()`` and ``close()`` bracket their lifetime.
    """

    def __init__(
        self,
        definition: LabDefinition,
        key: DocumentKey,
        *,
        store: DocumentStore,
        endpoint: SubmissionEndpoint,
        records: Optional[AssessmentRecordStore] = None,
        timers: Optional[TimerFactory] = None,
        config: Optional[EngineConfig] = None,
        bus=None,
        privileged: bool = False,
        student: Optional[StudentIdentity] = None,
        sampler: Optional[CountSampler] = None,
        on_notice: Optional[Callable[[str, str], None]] = None,
        clock: Callable[[], float] = time.time,
    ):
        if key.exercise_id != definition.exercise_id:
            raise ValueError(f"document {key.exercise_id} does not belong to lab {definition.exercise_id}")
        self.definition = definition
        self.key = key
        self.store = store
        self.endpoint = endpoint
        self.records = records
        self.config = config or EngineConfig()
        self.bus = bus
        self.privileged = privileged
        self.student = student or StudentIdentity(user_id=key.user_id)
        self._on_notice = on_notice
        self._clock = clock
        self.notices: List[Tuple[str, str]] = []
        self.last_error: Optional[str] = None
        self._deriver = SectionStatusDeriver(definition.sections)
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._opened = False

        self.session = self._session_from(definition.default_document())
        self._refresh_statuses()

        timers = timers or QtTimerFactory()
        self.coordinator = PersistenceCoordinator(
            store,
            key,
            self.snapshot,
            timers=timers,
            debounce_ms=self.config.debounce_ms,
            autosave_ms=self.config.autosave_ms,
            static_paths=definition.static_paths,
            bus=bus,
            on_notice=self._notice,
        )

        self.decay: Optional[DecayExperiment] = None
        if definition.isotopes:
            self.decay = DecayExperiment(
                definition.isotopes,
                timers=timers,
                tick_ms=self.config.tick_ms,
                sample_stride=self.config.sample_stride,
                sampler=sampler or make_sampler(self.config.sampler),
                bus=bus,
            )

        self.circuit: Optional[ThresholdCircuitModel] = None
        if definition.circuit_items:
            self.circuit = ThresholdCircuitModel(definition.circuit_items, experiment_mode=True, bus=bus)
            self.circuit.on_threshold_crossed(self.record_threshold)

    # --- state ---------------------------------------------------------------
    @property
    def state(self) -> SessionState:
        if self.session.submitted:
            return SessionState.SUBMITTED
        if self.session.started:
            return SessionState.IN_PROGRESS
        return SessionState.NOT_STARTED

    @property
    def read_only(self) -> bool:
        return self.state is SessionState.SUBMITTED and not self.privileged

    @property
    def completed_count(self) -> int:
        return self.session.completed_count()

    @property
    def required_count(self) -> int:
        return self.definition.submission.required_count(len(self.definition.sections))

    @property
    def can_submit(self) -> bool:
        return self.state is SessionState.IN_PROGRESS and self.completed_count >= self.required_count

    def section_status(self, section_key: str) -> SectionStatus:
        return self.session.sections[section_key].status

    def snapshot(self) -> Dict[str, Any]:
        return self.session.to_document()

    # --- lifecycle -----------------------------------------------------------
    def open(self) -> "LabSessionController":
        if self._opened:
            return self
        self._opened = True
        if self.records is not None:
            record = self.records.get(self.key)
            if record and record.get("submitted"):
                self._lock_from_record(record)
        self._unsubscribe = self.store.subscribe(self.key, self._on_remote)
        if self.privileged and self.state is SessionState.NOT_STARTED:
            self.session.started = True
            self.session.current_section = self.definition.first_section
        if self.state is SessionState.IN_PROGRESS:
            self.coordinator.activate()
        self._publish_state()
        return self

    def close(self) -> None:
        if self.decay is not None:
            self.decay.close()
        if self.circuit is not None:
            self.circuit.close()
        self.coordinator.close()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._opened = False

    def __enter__(self) -> "LabSessionController":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # --- transitions ---------------------------------------------------------
    def start(self) -> bool:
        if self.state is not SessionState.NOT_STARTED:
            return False
        first = self.definition.first_section
        self.session.started = True
        self.session.current_section = first
        self.coordinator.save_now({"started": True, "current_section": first})
        self.coordinator.activate()
        self._publish_state()
        return True

    def navigate_to(self, section_key: str) -> bool:
        if not self.definition.has_section(section_key):
            raise KeyError(f"unknown section: {section_key}")
        if self.state is not SessionState.IN_PROGRESS:
            return False
        self.session.current_section = section_key
        self.coordinator.save_now({"current_section": section_key})
        return True

    def submit(self) -> SubmissionResult:
        if self.state is SessionState.SUBMITTED:
            return SubmissionResult(success=False, error="already_submitted")
        if self.state is SessionState.NOT_STARTED:
            return SubmissionResult(success=False, error="not_started")
        completed, required = self.completed_count, self.required_count
        if completed < required:
            return SubmissionResult(
                success=False,
                error="insufficient_sections",
                details={"completed": completed, "required": required},
            )

        if not self.coordinator.save_snapshot():
            self.last_error = "save_failed"
            return SubmissionResult(success=False, error="save_failed")

        try:
            result = self.endpoint.submit(
                self.definition.exercise_id,
                self.student,
                self.key.course_id,
                self.privileged,
            )
        except Exception as exc:
            logger.error("submission endpoint raised for %s: %s", self.key.exercise_id, exc)
            result = SubmissionResult(success=False, error=str(exc) or "submission_failed")

        if not result.success:
            self.last_error = result.error or "submission_failed"
            self._notice("error", "Failed to submit lab. Please try again.")
            return result

        details = result.details or {}
        timestamp = details.get("submission_timestamp") or self._clock()
        self.session.submitted = True
        self.session.submission_timestamp = timestamp
        self.coordinator.exempt_write({"submitted": True, "submission_timestamp": timestamp})
        self._freeze()
        self.last_error = None
        self._notice("info", "Lab submitted successfully!")
        self._publish_state()
        return result

    # --- edits ---------------------------------------------------------------
    def update_section(self, section_key: str, **fields: Any) -> bool:
        if not self._can_edit():
            return False
        section = self._section(section_key)
        section.content.update(copy.deepcopy(fields))
        self._commit("section_content")
        return True

    def update_answer(self, section_key: str, index: int, value: Any, *, field: str = "answers") -> bool:
        if not self._can_edit():
            return False
        section = self._section(section_key)
        answers = list(section.content.get(field) or [])
        if index < 0:
            raise IndexError(f"answer index must not be negative: {index}")
        while len(answers) <= index:
            answers.append("")
        answers[index] = value
        section.content[field] = answers
        self._commit("section_content")
        return True

    def acknowledge(self, section_key: str) -> bool:
        rule = self._section_rule(section_key)
        if not isinstance(rule, AcknowledgmentRule):
            raise ValueError(f"section {section_key} is not an acknowledgment section")
        if not self._can_edit():
            return False
        self._section(section_key).content[rule.field] = True
        self._commit("section_content")
        return True

    def update_observations(self, **fields: Any) -> bool:
        if not self._can_edit():
            return False
        self.session.observation_data.update(copy.deepcopy(fields))
        self._commit("observation_data")
        return True

    def update_analysis(self, **fields: Any) -> bool:
        if not self._can_edit():
            return False
        self.session.analysis_data.update(copy.deepcopy(fields))
        self._commit("analysis_data")
        return True

    def record_decay_export(self, export: Optional[Dict[str, Any]] = None) -> bool:
        """Copy the current decay run into the observations."""
        if export is None:
            if self.decay is None:
                raise RuntimeError(f"{self.definition.exercise_id} has no decay experiment")
            export = self.decay.export()
        return self.update_observations(**export)

    def record_threshold(self, voltage: float) -> bool:
        """Store a detected LED threshold for the selected item."""
        if not self._can_edit():
            return False
        data = self.session.observation_data
        rows = data.get("measurements")
        if not isinstance(rows, list) or not rows:
            return False
        index = data.get("current_item", 0)
        if not isinstance(index, int) or not 0 <= index < len(rows):
            return False
        row = dict(rows[index] or {})
        row.update({"voltage": round(float(voltage), 2), "measured": True})
        rows[index] = row
        data["completed_measurements"] = sum(1 for r in rows if isinstance(r, dict) and r.get("measured"))
        self._commit("observation_data")
        return True

    def select_item(self, index: int) -> bool:
        if self.circuit is None:
            raise RuntimeError(f"{self.definition.exercise_id} has no circuit experiment")
        self.circuit.select_item(index)
        if not self._can_edit():
            return False
        self.session.observation_data["current_item"] = index
        self._commit("observation_data")
        return True

    def select_isotope(self, isotope_id: str) -> None:
        if self.decay is None:
            raise RuntimeError(f"{self.definition.exercise_id} has no decay experiment")
        self.decay.select_isotope(isotope_id)

    # --- internals -----------------------------------------------------------
    def _section(self, section_key: str):
        try:
            return self.session.sections[section_key]
        except KeyError:
            raise KeyError(f"unknown section: {section_key}") from None

    def _section_rule(self, section_key: str):
        for spec in self.definition.sections:
            if spec.key == section_key:
                return spec.rule
        raise KeyError(f"unknown section: {section_key}")

    def _can_edit(self) -> bool:
        if self.read_only:
            return False
        return self.state is not SessionState.NOT_STARTED

    def _commit(self, *changed: str) -> None:
        self._refresh_statuses()
        document = self.snapshot()
        partial = {name: document[name] for name in changed}
        partial["section_status"] = document["section_status"]
        if self.state is SessionState.SUBMITTED:
            self.coordinator.exempt_write(partial)
        else:
            self.coordinator.schedule_save(partial)

    def _refresh_statuses(self) -> None:
        statuses = self._deriver.derive_all(self.session.to_document())
        for key, status in statuses.items():
            self.session.sections[key].status = status

    def _session_from(self, document: Dict[str, Any]) -> LabSession:
        return LabSession.from_document(
            document,
            exercise_id=self.definition.exercise_id,
            course_id=self.key.course_id,
            section_keys=self.definition.section_keys,
        )

    def _on_remote(self, document: Dict[str, Any]) -> None:
        was_started, was_submitted = self.session.started, self.session.submitted
        merged = self.coordinator.reconcile(self.snapshot(), document)
        # started and submitted never revert locally
        merged["started"] = bool(merged.get("started")) or was_started
        merged["submitted"] = bool(merged.get("submitted")) or was_submitted
        self.session = self._session_from(merged)
        self._refresh_statuses()
        if self.session.submitted and not was_submitted:
            self._freeze()
            self._publish_state()
        elif self.session.started and not self.coordinator.frozen:
            self.coordinator.activate()

    def _lock_from_record(self, record: Dict[str, Any]) -> None:
        self.session.submitted = True
        if record.get("submission_timestamp") is not None:
            self.session.submission_timestamp = record["submission_timestamp"]
        self._freeze()

    def _freeze(self) -> None:
        self.coordinator.freeze()
        if self.circuit is not None:
            self.circuit.set_experiment_mode(False)

    def _notice(self, level: str, message: str) -> None:
        self.notices.append((level, message))
        if self._on_notice is not None:
            self._on_notice(level, message)

    def _publish_state(self) -> None:
        if self.bus is None:
            return
        self.bus.publish(
            topics.LAB_SESSION_STATE,
            {
                "state": self.state.value,
                "current_section": self.session.current_section,
                "completed": self.completed_count,
                "privileged": self.privileged,
                **self.key.as_dict(),
            },
            source="lab_engine.controller",
        )
