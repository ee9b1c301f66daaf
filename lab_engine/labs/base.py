from __future__ import annotations

import copy
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from ..circuit import LedProfile
from ..decay import IsotopeProfile
from ..sections import SectionSpec


@dataclass(frozen=True)
class SubmissionPolicy:
    """Minimum completed sections before a lab may be submitted.

    When both limits are set the stricter one applies; with neither, every
    section must be complete.
    """

    min_completed: Optional[int] = None
    min_fraction: Optional[float] = None

    def required_count(self, total: int) -> int:
        limits = []
        if self.min_completed is not None:
            limits.append(int(self.min_completed))
        if self.min_fraction is not None:
            limits.append(int(math.ceil(total * float(self.min_fraction) - 1e-9)))
        if not limits:
            return total
        return min(total, max(limits))

    def allows(self, completed: int, total: int) -> bool:
        return completed >= self.required_count(total)


@dataclass(frozen=True)
class LabDefinition:
    exercise_id: str
    title: str
    sections: Tuple[SectionSpec, ...]
    submission: SubmissionPolicy = field(default_factory=SubmissionPolicy)
    static_paths: Tuple[str, ...] = ()
    section_defaults: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    observation_defaults: Mapping[str, Any] = field(default_factory=dict)
    analysis_defaults: Mapping[str, Any] = field(default_factory=dict)
    isotopes: Mapping[str, IsotopeProfile] = field(default_factory=dict)
    circuit_items: Tuple[LedProfile, ...] = ()
    points_value: int = 10

    @property
    def section_keys(self) -> Tuple[str, ...]:
        return tuple(spec.key for spec in self.sections)

    @property
    def first_section(self) -> str:
        return self.sections[0].key

    def has_section(self, key: str) -> bool:
        return key in self.section_keys

    def default_document(self) -> Dict[str, Any]:
        """Reference document the local session starts from before any load."""
        return {
            "section_content": {
                key: copy.deepcopy(dict(self.section_defaults.get(key) or {})) for key in self.section_keys
            },
            "observation_data": copy.deepcopy(dict(self.observation_defaults)),
            "analysis_data": copy.deepcopy(dict(self.analysis_defaults)),
        }
