"""
Append-only change stream with a persisted per-section revision counter.

Layout under ``sync_dir``::

    stream.ndjson          one ChangeRecord per line, all sections
    state/<section>.json   {"revision": N}, the committed counter

An append writes and fsyncs the record line first, then atomically replaces
the counter file; the counter write is the commit point. Readers only return
records with ``rev <= committed`` so they never observe an uncommitted
revision. Every append compares the counter with the highest revision already
logged for the section and rolls it forward first, so a record that reached
the log without its counter write (a crash, a failed write, another process)
never has its revision issued again.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from . import storage
from .locks import LockRegistry, section_lock_name
from .models import ChangeRecord
from .utils import parse_iso, to_iso, utc_now


_SECTION_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


def validate_section(section: str) -> str:
    if not section or not _SECTION_RE.match(section) or section in (".", ".."):
        raise ValueError(f"Invalid section id: {section!r}")
    return section


class ChangeLog:
    def __init__(
        self,
        sync_dir: str | Path,
        locks: LockRegistry,
        clock: Callable[[], datetime] = utc_now,
        logger: Optional[logging.Logger] = None,
    ):
        self.sync_dir = Path(sync_dir)
        self.stream_path = self.sync_dir / "stream.ndjson"
        self.state_dir = self.sync_dir / "state"
        self.locks = locks
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)

    def _state_path(self, section: str) -> Path:
        return self.state_dir / f"{validate_section(section)}.json"

    def _read_counter(self, section: str) -> Optional[int]:
        state = storage.read_json_or_default(self._state_path(section), None)
        if state is None:
            return None
        try:
            return max(0, int(state.get("revision", 0) or 0))
        except (AttributeError, TypeError, ValueError):
            self.logger.warning("[sync] Invalid revision state for %s: %r", section, state)
            return 0

    def _write_counter(self, section: str, revision: int) -> None:
        storage.write_json(self._state_path(section), {"revision": revision})

    def _iter_records(self) -> List[ChangeRecord]:
        records: List[ChangeRecord] = []
        for line_no, rec, _ in storage.iter_jsonl(self.stream_path, label="sync"):
            if rec is None:
                continue
            try:
                records.append(ChangeRecord.model_validate(rec))
            except ValidationError as exc:
                self.logger.warning("[sync] Skipping invalid change record on line %s: %s", line_no, exc.errors()[:1])
        return records

    def _max_logged_rev(self, section: str) -> int:
        return max((r.rev for r in self._iter_records() if r.section == section), default=0)

    def current_revision(self, section: str) -> int:
        """
        Committed revision for ``section``.

        A missing counter is initialized, to 0 for a fresh stream or to the
        highest logged revision when a stream already exists.
        """
        committed = self._read_counter(section)
        if committed is not None:
            return committed
        with self.locks.hold(section_lock_name(section)):
            committed = self._read_counter(section)
            if committed is None:
                committed = self._max_logged_rev(section)
                self._write_counter(section, committed)
        return committed

    def append(self, section: str, row_id: str, changes: Dict[str, Any], origin: str = "user") -> ChangeRecord:
        validate_section(section)
        with self.locks.hold(section_lock_name(section)):
            committed = self._read_counter(section) or 0
            logged = self._max_logged_rev(section)
            if logged > committed:
                self.logger.warning(
                    "[sync] Rolling revision for %s forward from %s to logged %s", section, committed, logged
                )
                self._write_counter(section, logged)
                committed = logged

            record = ChangeRecord(
                section=section,
                row_id=row_id,
                rev=committed + 1,
                changes=dict(changes or {}),
                timestamp=to_iso(self.clock()),
                origin=origin or "unknown",
            )
            storage.append_jsonl(self.stream_path, record.to_dict())
            self._write_counter(section, record.rev)
        self.logger.info("[sync] %s rev %s: %s by %s", section, record.rev, row_id, record.origin)
        return record

    def read_since(self, section: str, since: int, upto: Optional[int] = None) -> List[ChangeRecord]:
        """
        Records of ``section`` with ``since < rev <= upto`` ordered by timestamp, then rev.

        ``upto`` defaults to the committed revision.
        """
        validate_section(section)
        if upto is None:
            upto = self.current_revision(section)
        if not self.stream_path.exists():
            return []
        selected = [
            r for r in self._iter_records() if r.section == section and since < r.rev <= upto
        ]
        selected.sort(key=lambda r: (parse_iso(r.timestamp), r.rev))
        return selected
