# =============================================================================
# NAV INDEX (search these tags)
# [NAV-00] Imports / constants
# [NAV-10] Config loading (defaults/roaming)
# [NAV-99] End
# =============================================================================

# === [NAV-00] Imports / constants ============================================
from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)

CONFIG_PATH = Path("data/roaming/lab_engine_config.json")
SAMPLERS = ("gaussian", "poisson")


@dataclass(frozen=True)
class EngineConfig:
    """Timing and storage settings shared by every lab session."""

    debounce_ms: int = 1000
    autosave_ms: int = 30000
    tick_ms: int = 1000
    sample_stride: int = 5
    submit_timeout_ms: int = 5000
    sampler: str = "gaussian"
    store_root: str = "data/store/lab_sessions"

    @property
    def store_path(self) -> Path:
        return Path(self.store_root)


_DEFAULT_ENGINE_CONFIG = asdict(EngineConfig())


# === [NAV-10] Config loading (defaults/roaming) ==============================
def load_engine_config_data(path: Optional[Path] = None) -> Dict:
    path = path or CONFIG_PATH
    if not path.exists():
        return _DEFAULT_ENGINE_CONFIG.copy()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("engine config unreadable at %s: %s", path, exc)
        return _DEFAULT_ENGINE_CONFIG.copy()
    if not isinstance(data, dict):
        return _DEFAULT_ENGINE_CONFIG.copy()
    for key, value in _DEFAULT_ENGINE_CONFIG.items():
        data.setdefault(key, value)
    return data


def save_engine_config(config: EngineConfig, path: Optional[Path] = None) -> None:
    path = path or CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(asdict(config), indent=2), encoding="utf-8")


def load_engine_config(path: Optional[Path] = None) -> EngineConfig:
    data = load_engine_config_data(path)
    known = {f.name for f in fields(EngineConfig)}
    values = {}
    for key in known:
        default = _DEFAULT_ENGINE_CONFIG[key]
        raw = data.get(key, default)
        try:
            values[key] = type(default)(raw)
        except (TypeError, ValueError):
            logger.warning("engine config key %s has invalid value %r; using default", key, raw)
            values[key] = default
    if values["sampler"] not in SAMPLERS:
        logger.warning("unknown sampler %r; using gaussian", values["sampler"])
        values["sampler"] = "gaussian"
    for key in ("debounce_ms", "autosave_ms", "tick_ms", "sample_stride", "submit_timeout_ms"):
        if values[key] <= 0:
            values[key] = _DEFAULT_ENGINE_CONFIG[key]
    return EngineConfig(**values)


# === [NAV-99] End =============================================================
__all__ = [
    "CONFIG_PATH",
    "SAMPLERS",
    "EngineConfig",
    "load_engine_config_data",
    "load_engine_config",
    "save_engine_config",
]
