from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

from pydantic import ValidationError

from . import storage
from .locks import PRESENCE_LOCK, LockRegistry
from .models import PresenceEntry
from .utils import parse_iso, to_iso, utc_now


DEFAULT_STALE_SECONDS = 12.0


class PresenceRegistry:
    """
    Who is looking at which row, keyed by user label (one position per user).

    Entries expire lazily: every heartbeat and every ``list_active`` call
    sweeps entries older than the staleness threshold and rewrites the state
    file, so the registry stays bounded without a background timer.
    """

    def __init__(
        self,
        path: str | Path,
        locks: LockRegistry,
        stale_seconds: float = DEFAULT_STALE_SECONDS,
        clock: Callable[[], datetime] = utc_now,
        logger: Optional[logging.Logger] = None,
    ):
        self.path = Path(path)
        self.locks = locks
        self.stale_seconds = float(stale_seconds)
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)

    def _load(self) -> Dict[str, PresenceEntry]:
        raw = storage.read_json_or_default(self.path, {})
        if not isinstance(raw, dict):
            self.logger.warning("[presence] State file is not a mapping, starting fresh")
            return {}
        entries: Dict[str, PresenceEntry] = {}
        for key, value in raw.items():
            try:
                entries[key] = PresenceEntry.model_validate(value)
            except ValidationError:
                self.logger.warning("[presence] Dropping malformed entry %r", key)
        return entries

    def _save(self, entries: Dict[str, PresenceEntry]) -> None:
        storage.write_json(self.path, {key: entry.to_state() for key, entry in entries.items()})

    def _is_active(self, entry: PresenceEntry, now: datetime) -> bool:
        return (now - parse_iso(entry.timestamp)).total_seconds() < self.stale_seconds

    def _sweep(self, entries: Dict[str, PresenceEntry], now: datetime) -> Dict[str, PresenceEntry]:
        return {key: entry for key, entry in entries.items() if self._is_active(entry, now)}

    def heartbeat(self, user_label: Optional[str], section: str, row_id: Optional[str] = None) -> PresenceEntry:
        label = user_label or "Anonymous"
        now = self.clock()
        entry = PresenceEntry(user_label=label, section=section, row_id=row_id, timestamp=to_iso(now))
        with self.locks.hold(PRESENCE_LOCK):
            entries = self._sweep(self._load(), now)
            entries[label] = entry
            self._save(entries)
        self.logger.info("[presence] Heartbeat: %s on %s%s", label, section, f":{row_id}" if row_id else "")
        return entry.model_copy(update={"active": True})

    def list_active(self, section: str) -> List[PresenceEntry]:
        now = self.clock()
        if not self.path.exists():
            return []
        with self.locks.hold(PRESENCE_LOCK):
            entries = self._load()
            kept = self._sweep(entries, now)
            if len(kept) != len(entries):
                self._save(kept)
                self.logger.info("[presence] Swept %s stale entries", len(entries) - len(kept))
        return [
            entry.model_copy(update={"active": self._is_active(entry, now)})
            for entry in kept.values()
            if entry.section == section
        ]
