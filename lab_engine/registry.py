from __future__ import annotations

from typing import Dict, Optional

from .labs import half_life, plancks_constant
from .labs.base import LabDefinition

_REGISTRY: Dict[str, LabDefinition] = {}


def register_lab(definition: LabDefinition) -> None:
    _REGISTRY[definition.exercise_id] = definition


register_lab(half_life.DEFINITION)
register_lab(plancks_constant.DEFINITION)


def get_lab(exercise_id: str) -> Optional[LabDefinition]:
    return _REGISTRY.get(exercise_id)


def require_lab(exercise_id: str) -> LabDefinition:
    definition = _REGISTRY.get(exercise_id)
    if definition is None:
        raise KeyError(f"no lab registered for exercise '{exercise_id}'")
    return definition


def list_labs() -> Dict[str, LabDefinition]:
    return dict(_REGISTRY)
