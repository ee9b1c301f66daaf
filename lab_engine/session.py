from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional

from .sections import SectionStatus

DOCUMENT_FIELDS = (
    "section_status",
    "section_content",
    "observation_data",
    "analysis_data",
    "started",
    "submitted",
    "submission_timestamp",
    "current_section",
    "last_modified",
)


@dataclass(frozen=True)
class DocumentKey:
    """Identity of one student's session document."""

    user_id: str
    course_id: str
    exercise_id: str

    def as_dict(self) -> Dict[str, str]:
        return {"user_id": self.user_id, "course_id": self.course_id, "exercise_id": self.exercise_id}


@dataclass
class Section:
    key: str
    status: SectionStatus = SectionStatus.NOT_STARTED
    content: Dict[str, Any] = field(default_factory=dict)


@dataclass
class LabSession:
    exercise_id: str
    course_id: str
    sections: Dict[str, Section] = field(default_factory=dict)
    observation_data: Dict[str, Any] = field(default_factory=dict)
    analysis_data: Dict[str, Any] = field(default_factory=dict)
    started: bool = False
    submitted: bool = False
    submission_timestamp: Optional[float] = None
    current_section: Optional[str] = None
    last_modified: Optional[float] = None

    @classmethod
    def blank(
        cls,
        exercise_id: str,
        course_id: str,
        section_keys: Iterable[str],
        *,
        section_content: Optional[Mapping[str, Mapping[str, Any]]] = None,
        observation_data: Optional[Mapping[str, Any]] = None,
        analysis_data: Optional[Mapping[str, Any]] = None,
    ) -> "LabSession":
        defaults = section_content or {}
        sections = {
            key: Section(key=key, content=copy.deepcopy(dict(defaults.get(key) or {})))
            for key in section_keys
        }
        return cls(
            exercise_id=exercise_id,
            course_id=course_id,
            sections=sections,
            observation_data=copy.deepcopy(dict(observation_data or {})),
            analysis_data=copy.deepcopy(dict(analysis_data or {})),
        )

    def completed_count(self) -> int:
        return sum(1 for section in self.sections.values() if section.status is SectionStatus.COMPLETED)

    def section_status(self) -> Dict[str, str]:
        return {key: section.status.value for key, section in self.sections.items()}

    def section_content(self) -> Dict[str, Dict[str, Any]]:
        return {key: copy.deepcopy(section.content) for key, section in self.sections.items()}

    def to_document(self) -> Dict[str, Any]:
        return {
            "exercise_id": self.exercise_id,
            "course_id": self.course_id,
            "section_status": self.section_status(),
            "section_content": self.section_content(),
            "observation_data": copy.deepcopy(self.observation_data),
            "analysis_data": copy.deepcopy(self.analysis_data),
            "started": self.started,
            "submitted": self.submitted,
            "submission_timestamp": self.submission_timestamp,
            "current_section": self.current_section,
            "last_modified": self.last_modified,
        }

    @classmethod
    def from_document(
        cls,
        document: Mapping[str, Any],
        *,
        exercise_id: str,
        course_id: str,
        section_keys: Iterable[str],
    ) -> "LabSession":
        statuses = document.get("section_status") or {}
        contents = document.get("section_content") or {}
        sections: Dict[str, Section] = {}
        for key in section_keys:
            content = contents.get(key) if isinstance(contents, Mapping) else None
            status = statuses.get(key) if isinstance(statuses, Mapping) else None
            sections[key] = Section(
                key=key,
                status=SectionStatus.parse(status),
                content=copy.deepcopy(dict(content)) if isinstance(content, Mapping) else {},
            )
        observation = document.get("observation_data")
        analysis = document.get("analysis_data")
        return cls(
            exercise_id=exercise_id,
            course_id=course_id,
            sections=sections,
            observation_data=copy.deepcopy(dict(observation)) if isinstance(observation, Mapping) else {},
            analysis_data=copy.deepcopy(dict(analysis)) if isinstance(analysis, Mapping) else {},
            started=bool(document.get("started", False)),
            submitted=bool(document.get("submitted", False)),
            submission_timestamp=document.get("submission_timestamp"),
            current_section=document.get("current_section"),
            last_modified=document.get("last_modified"),
        )
