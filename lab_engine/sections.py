"""Section completion rules.

Statuses are always recomputed from content; nothing here keeps state between
calls. A section whose content shrinks below its threshold regresses.
"""

from __future__ import annotations

import html
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[^>]*>")

SOURCE_SECTION = "section"
SOURCE_OBSERVATIONS = "observation_data"
SOURCE_ANALYSIS = "analysis_data"


class SectionStatus(str, Enum):
    NOT_STARTED = "not-started"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"

    @classmethod
    def parse(cls, value: Any) -> "SectionStatus":
        try:
            return cls(value)
        except ValueError:
            return cls.NOT_STARTED


def normalize_text(value: Any) -> str:
    """Plain text of an editor value: markup removed, entities decoded, trimmed."""
    if not isinstance(value, str):
        return ""
    text = _TAG_RE.sub("", value)
    return html.unescape(text).replace("\xa0", " ").strip()


def _satisfies(value: Any, min_length: int) -> bool:
    if value is None or value is False:
        return False
    if isinstance(value, str):
        text = normalize_text(value)
        return len(text) > min_length if min_length > 0 else bool(text)
    if isinstance(value, (list, tuple, dict)):
        return len(value) > 0
    return True


def _field(content: Any, name: Optional[str]) -> Any:
    if name is None:
        return content
    if isinstance(content, Mapping):
        return content.get(name)
    return content if isinstance(content, str) else None


class SectionRule:
    source: str = SOURCE_SECTION

    def evaluate(self, content: Any) -> SectionStatus:  # pragma: no cover - interface
        raise NotImplementedError


@dataclass(frozen=True)
class TextRule(SectionRule):
    min_length: int = 50
    field: Optional[str] = "text"
    source: str = SOURCE_SECTION

    def evaluate(self, content: Any) -> SectionStatus:
        text = normalize_text(_field(content, self.field))
        if len(text) > self.min_length:
            return SectionStatus.COMPLETED
        if text:
            return SectionStatus.IN_PROGRESS
        return SectionStatus.NOT_STARTED


@dataclass(frozen=True)
class StructuredRule(SectionRule):
    """Several sub-answers, each with its own minimum length.

    ``parts`` maps a field name (or list position as a string) to its minimum
    normalized length; 0 means "present and non-blank". ``required`` defaults
    to every part.
    """

    parts: Tuple[Tuple[str, int], ...] = ()
    required: Optional[int] = None
    field: Optional[str] = None
    source: str = SOURCE_SECTION

    def evaluate(self, content: Any) -> SectionStatus:
        answers = _field(content, self.field)
        satisfied = sum(1 for name, minimum in self.parts if _satisfies(self._answer(answers, name), minimum))
        required = self.required if self.required is not None else len(self.parts)
        if self.parts and satisfied >= required:
            return SectionStatus.COMPLETED
        if satisfied > 0:
            return SectionStatus.IN_PROGRESS
        return SectionStatus.NOT_STARTED

    @staticmethod
    def _answer(answers: Any, name: str) -> Any:
        if isinstance(answers, Mapping):
            return answers.get(name)
        if isinstance(answers, (list, tuple)) and name.isdigit():
            index = int(name)
            return answers[index] if index < len(answers) else None
        return None


@dataclass(frozen=True)
class AcknowledgmentRule(SectionRule):
    field: str = "acknowledged"
    source: str = SOURCE_SECTION

    def evaluate(self, content: Any) -> SectionStatus:
        if _field(content, self.field) is True:
            return SectionStatus.COMPLETED
        return SectionStatus.NOT_STARTED


@dataclass(frozen=True)
class MeasurementCountRule(SectionRule):
    """Counts recorded measurements (entries present and non-null)."""

    required: int = 1
    key: str = "measurements"
    value_key: Optional[str] = None
    source: str = SOURCE_OBSERVATIONS

    def evaluate(self, content: Any) -> SectionStatus:
        entries = _field(content, self.key)
        if not isinstance(entries, (list, tuple)):
            return SectionStatus.NOT_STARTED
        count = sum(1 for entry in entries if self._recorded(entry))
        if count >= self.required:
            return SectionStatus.COMPLETED
        if count > 0:
            return SectionStatus.IN_PROGRESS
        return SectionStatus.NOT_STARTED

    def _recorded(self, entry: Any) -> bool:
        if entry is None:
            return False
        if self.value_key is None:
            return True
        return isinstance(entry, Mapping) and entry.get(self.value_key) is not None


@dataclass(frozen=True)
class SectionSpec:
    key: str
    label: str
    rule: SectionRule = field(default_factory=lambda: TextRule())


_EVALUATION_ERRORS = (TypeError, ValueError, AttributeError, KeyError, IndexError)


class SectionStatusDeriver:
    def __init__(self, sections: Sequence[SectionSpec]):
        self._specs: Dict[str, SectionSpec] = {spec.key: spec for spec in sections}

    @property
    def keys(self) -> Tuple[str, ...]:
        return tuple(self._specs)

    def derive(self, section_key: str, content: Any) -> SectionStatus:
        spec = self._specs.get(section_key)
        if spec is None:
            return SectionStatus.NOT_STARTED
        try:
            return spec.rule.evaluate(content)
        except _EVALUATION_ERRORS as exc:
            logger.debug("status evaluation failed for %s: %s", section_key, exc)
            return SectionStatus.NOT_STARTED

    def content_for(self, section_key: str, snapshot: Mapping[str, Any]) -> Any:
        """Pick the part of a session document a section's rule reads."""
        spec = self._specs[section_key]
        source = spec.rule.source
        if source == SOURCE_SECTION:
            contents = snapshot.get("section_content") or {}
            return contents.get(section_key) if isinstance(contents, Mapping) else None
        return snapshot.get(source)

    def derive_all(self, snapshot: Mapping[str, Any]) -> Dict[str, SectionStatus]:
        return {key: self.derive(key, self.content_for(key, snapshot)) for key in self._specs}
