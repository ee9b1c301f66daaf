from __future__ import annotations

import copy
import logging
from fnmatch import fnmatchcase
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Sequence

from runtime_bus import topics

from .session import DocumentKey
from .store import DocumentStore, StoreWriteError
from .timers import ScopedTimer, TimerFactory

logger = logging.getLogger(__name__)

NoticeCallback = Callable[[str, str], None]


def _is_static(path: str, static_paths: Sequence[str]) -> bool:
    return any(fnmatchcase(path, pattern) for pattern in static_paths)


def _has_static_below(path: str, static_paths: Sequence[str]) -> bool:
    depth = path.count(".") + 1
    for pattern in static_paths:
        parts = pattern.split(".")
        if len(parts) > depth and fnmatchcase(path, ".".join(parts[:depth])):
            return True
    return False


def _static_part(local: Any, path: str, static_paths: Sequence[str]) -> Any:
    """Copy of ``local`` reduced to the entries whose paths are static."""
    if isinstance(local, Mapping):
        kept: Dict[str, Any] = {}
        for name, value in local.items():
            child = f"{path}.{name}"
            if _is_static(child, static_paths):
                kept[name] = copy.deepcopy(value)
            elif _has_static_below(child, static_paths):
                part = _static_part(value, child, static_paths)
                if part is not None:
                    kept[name] = part
        return kept
    if isinstance(local, list):
        return [_static_part(value, f"{path}.{index}", static_paths) for index, value in enumerate(local)]
    return None


def _merge_value(local: Any, remote: Any, path: str, static_paths: Sequence[str]) -> Any:
    if remote is None:
        if local is None:
            return None
        if _is_static(path, static_paths):
            return copy.deepcopy(local)
        if _has_static_below(path, static_paths):
            return _static_part(local, path, static_paths)
        return None
    if isinstance(local, Mapping) and isinstance(remote, Mapping):
        merged = copy.deepcopy(dict(local))
        for name, value in remote.items():
            merged[name] = _merge_value(local.get(name), value, f"{path}.{name}", static_paths)
        return merged
    if isinstance(local, list) and isinstance(remote, list):
        merged_list = []
        for index, value in enumerate(remote):
            base = local[index] if index < len(local) else None
            merged_list.append(_merge_value(base, value, f"{path}.{index}", static_paths))
        # rows the remote list does not reach keep their reference values
        for index in range(len(remote), len(local)):
            child = f"{path}.{index}"
            if _is_static(child, static_paths) or _has_static_below(child, static_paths):
                merged_list.append(copy.deepcopy(local[index]))
        return merged_list
    return copy.deepcopy(remote)


def merge_snapshot(
    local: Mapping[str, Any],
    remote: Mapping[str, Any],
    *,
    static_paths: Sequence[str] = (),
    pending_keys: Iterable[str] = (),
) -> Dict[str, Any]:
    """Fold a (possibly partial) remote document into the local one.

    - keys missing from ``remote`` keep their local value;
    - a null remote value replaces the local one, unless the dotted path
      matches one of ``static_paths`` (fnmatch patterns such as
      ``observation_data.measurements.*.frequency``), in which case the local
      reference value survives; a null parent keeps only its static children;
    - mappings merge key by key, lists of mappings element by element, and
      local rows past the end of a shorter remote list survive when they
      hold static values;
    - top-level keys listed in ``pending_keys`` are local edits not yet written
      and are never overwritten.
    """
    pending = set(pending_keys)
    merged = copy.deepcopy(dict(local))
    for name, value in remote.items():
        if name in pending:
            continue
        merged[name] = _merge_value(local.get(name), value, name, static_paths)
    return merged


class PersistenceCoordinator:
    """Debounced and periodic writes of one session document.

    ``snapshot`` returns the full current document; ``schedule_save`` collects
    partial updates and writes them once edits pause. After ``freeze()`` every
    write path except ``exempt_write`` is a no-op.
    """

    def __init__(
        self,
        store: DocumentStore,
        key: DocumentKey,
        snapshot: Callable[[], Dict[str, Any]],
        *,
        timers: TimerFactory,
        debounce_ms: int = 1000,
        autosave_ms: int = 30000,
        static_paths: Sequence[str] = (),
        bus=None,
        on_notice: Optional[NoticeCallback] = None,
    ):
        self.store = store
        self.key = key
        self._snapshot = snapshot
        self.static_paths = tuple(static_paths)
        self.bus = bus
        self._on_notice = on_notice
        self._pending: Dict[str, Any] = {}
        self._frozen = False
        self._active = False
        self.last_error: Optional[str] = None
        self.write_count = 0
        self._debounce: ScopedTimer = timers.single_shot(debounce_ms, self.flush_pending)
        self._autosave: ScopedTimer = timers.repeating(autosave_ms, self.autosave)

    # --- lifecycle -----------------------------------------------------------
    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def pending_keys(self) -> tuple[str, ...]:
        return tuple(self._pending)

    def activate(self) -> None:
        """Start periodic autosave (session started and not submitted)."""
        if self._frozen or (self._active and self._autosave.is_active()):
            return
        self._active = True
        self._autosave.start()

    def close(self) -> None:
        """Stop both timers. Pending edits are dropped, not awaited."""
        self._active = False
        self._debounce.stop()
        self._autosave.stop()
        if self._pending:
            logger.info("closing with unsaved fields %s for %s", sorted(self._pending), self.key.exercise_id)

    def freeze(self) -> None:
        self._frozen = True
        self._pending.clear()
        self.close()

    # --- writes --------------------------------------------------------------
    def schedule_save(self, partial: Mapping[str, Any]) -> None:
        if self._frozen:
            return
        self._pending.update(copy.deepcopy(dict(partial)))
        self._debounce.start()

    def flush_pending(self) -> bool:
        self._debounce.stop()
        if self._frozen or not self._pending:
            return False
        pending, self._pending = self._pending, {}
        if self._write(pending):
            return True
        for name, value in pending.items():
            self._pending.setdefault(name, value)
        return False

    def autosave(self) -> bool:
        if self._frozen or not self._active:
            return False
        document = self._snapshot()
        if not document.get("started") or document.get("submitted"):
            return False
        pending, self._pending = self._pending, {}
        if self._write(document):
            self._debounce.stop()
            return True
        for name, value in pending.items():
            self._pending.setdefault(name, value)
        return False

    def save_now(self, partial: Mapping[str, Any]) -> bool:
        if self._frozen:
            return False
        for name in partial:
            self._pending.pop(name, None)
        return self._write(dict(partial))

    def save_snapshot(self) -> bool:
        if self._frozen:
            return False
        self._debounce.stop()
        self._pending.clear()
        return self._write(self._snapshot())

    def exempt_write(self, partial: Mapping[str, Any]) -> bool:
        """Privileged write that ignores the submission freeze."""
        return self._write(dict(partial))

    def reconcile(self, local: Mapping[str, Any], remote: Mapping[str, Any]) -> Dict[str, Any]:
        return merge_snapshot(
            local,
            remote,
            static_paths=self.static_paths,
            pending_keys=self._pending,
        )

    def _write(self, partial: Mapping[str, Any]) -> bool:
        try:
            self.store.update(self.key, partial)
        except StoreWriteError as exc:
            self.last_error = str(exc)
            logger.warning("save failed for %s: %s", self.key.exercise_id, exc)
            self._notify("error", "Failed to save progress")
            return False
        self.write_count += 1
        self.last_error = None
        return True

    def _notify(self, level: str, message: str) -> None:
        if self._on_notice is not None:
            self._on_notice(level, message)
        if self.bus is not None:
            self.bus.publish(
                topics.LAB_SESSION_NOTICE,
                {"level": level, "message": message, **self.key.as_dict()},
                source="lab_engine.persistence",
            )
