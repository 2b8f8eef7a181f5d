from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .changelog import ChangeLog
from .models import ChangeRecord, ChangedRow, PresenceEntry, SyncDelta, normalize_status
from .presence import PresenceRegistry
from .segment_store import SegmentStore, index_by_id
from .utils import to_iso, utc_now


# Change keys understood by the dataset and by pull clients.
TARGET_FIELD = "english"
ENHANCED_FIELD = "enhanced"
STATUS_FIELD = "status"


def project_change(record: ChangeRecord) -> ChangedRow:
    """Reduce a change record to the fields pull clients consume."""
    fields: Dict[str, Any] = {
        "row_id": record.row_id,
        "timestamp": record.timestamp,
        "origin": record.origin or "unknown",
    }
    if TARGET_FIELD in record.changes:
        fields["en"] = _as_text(record.changes[TARGET_FIELD])
    if ENHANCED_FIELD in record.changes:
        fields["ar_enhanced"] = _as_text(record.changes[ENHANCED_FIELD])
    return ChangedRow(**fields)


def _as_text(value: Any) -> str:
    return "" if value is None else str(value)


class DeltaSyncService:
    """Pull/push/heartbeat over the change log, the presence registry and the dataset."""

    def __init__(
        self,
        changelog: ChangeLog,
        presence: PresenceRegistry,
        store: Optional[SegmentStore] = None,
        default_section: str = "S001",
        logger: Optional[logging.Logger] = None,
    ):
        self.changelog = changelog
        self.presence = presence
        self.store = store
        self.default_section = default_section
        self.logger = logger or logging.getLogger(__name__)

    def pull(self, section: Optional[str] = None, since: int = 0) -> SyncDelta:
        """
        Everything that changed in ``section`` after revision ``since``.

        The committed revision is read first and bounds the rows returned, so
        a concurrent append can never show up half-committed. Failure to read
        rows or presence degrades to empty lists; failure to read the
        revision propagates.
        """
        section = section or self.default_section
        since = max(0, int(since))
        rev = self.changelog.current_revision(section)

        changed_rows: List[ChangedRow] = []
        try:
            changed_rows = [project_change(r) for r in self.changelog.read_since(section, since, upto=rev)]
        except Exception:
            self.logger.warning("[sync] Failed to read changes for %s since %s", section, since, exc_info=True)

        presence: List[PresenceEntry] = []
        try:
            presence = self.presence.list_active(section)
        except Exception:
            self.logger.warning("[sync] Failed to read presence for %s", section, exc_info=True)

        return SyncDelta(rev=rev, changed_rows=changed_rows, presence=presence)

    def push(self, section: str, row_id: str, changes: Dict[str, Any], origin: str = "user") -> ChangeRecord:
        """Record an editor change, then fold it into the dataset."""
        record = self.changelog.append(section, row_id, changes, origin=origin)
        if self.store is not None:
            self._apply_to_store(record)
        return record

    def heartbeat(self, user_label: Optional[str], section: str, row_id: Optional[str] = None) -> PresenceEntry:
        return self.presence.heartbeat(user_label, section, row_id)

    def _apply_to_store(self, record: ChangeRecord) -> None:
        # The change stream is the source of truth for sync clients; a dataset
        # that lacks the row is reported and left alone.
        if not self.store.exists():
            self.logger.warning("[sync] Dataset %s not found, skipping update of %s", self.store.path, record.row_id)
            return
        with self.store.locked():
            rows = self.store.read_rows()
            segment = index_by_id(rows).get(record.row_id)
            if segment is None:
                self.logger.warning("[sync] Row %s not in dataset, change kept in stream only", record.row_id)
                return
            changes = record.changes
            if TARGET_FIELD in changes:
                segment.set_target(_as_text(changes[TARGET_FIELD]))
            if ENHANCED_FIELD in changes:
                segment.metadata[ENHANCED_FIELD] = _as_text(changes[ENHANCED_FIELD])
            if STATUS_FIELD in changes:
                segment.status = normalize_status(changes[STATUS_FIELD])
            segment.metadata["updatedAt"] = to_iso(utc_now())
            segment.metadata["updatedBy"] = record.origin
            segment.metadata["rev"] = record.rev
            self.store.write_rows(rows)
