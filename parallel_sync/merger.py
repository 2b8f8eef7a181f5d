from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from . import storage
from .batches import list_batch_files, parse_batch_document
from .changelog import ChangeLog
from .errors import BackupError, MergeError
from .models import Segment, SegmentStatus
from .segment_store import SegmentStore, index_by_id
from .sync import TARGET_FIELD
from .utils import section_from_row_id, to_iso, utc_now, visible_length


MERGE_ORIGIN = "batch-merge"
# Set on a merged segment until its batch-merge change record is logged.
PENDING_KEY = "changePending"


class MergeState(str, Enum):
    START = "start"
    BACKED_UP = "backed_up"
    PARSED = "parsed"
    MERGED = "merged"
    DONE = "done"
    FAILED = "failed"


@dataclass
class MergeReport:
    state: MergeState = MergeState.START
    backup_path: Optional[Path] = None
    translations_found: int = 0
    merged_count: int = 0
    conflicts: int = 0
    unknown_ids: int = 0
    too_short: int = 0
    dataset_written: bool = False
    merged_ids: List[str] = field(default_factory=list)
    change_revisions: Dict[str, int] = field(default_factory=dict)
    error: Optional[str] = None

    def as_dict(self) -> Dict[str, object]:
        return {
            "state": self.state.value,
            "backupPath": str(self.backup_path) if self.backup_path else None,
            "translationsFound": self.translations_found,
            "mergedCount": self.merged_count,
            "conflicts": self.conflicts,
            "unknownIds": self.unknown_ids,
            "tooShort": self.too_short,
            "datasetWritten": self.dataset_written,
            "changeRevisions": dict(self.change_revisions),
            "error": self.error,
        }


def section_of(segment: Segment, default_section: str) -> str:
    section = segment.metadata.get("section")
    if isinstance(section, str) and section:
        return section
    return section_from_row_id(segment.row_id) or section_from_row_id(segment.id) or default_section


class BatchMerger:
    """
    Fold completed batch documents back into the dataset.

    START -> BACKED_UP -> PARSED -> MERGED -> DONE, or FAILED from any state.
    A translation is merged only while the segment's target is still a gap;
    anything filled in meanwhile (typically by an editor push) wins and the
    batch result is dropped. Translations that would still read as a gap
    (fewer than ``min_target_chars`` visible characters) are never merged.

    Merged segments carry a pending marker until their change record is
    logged, so a failed append is retried by the next run.
    """

    def __init__(
        self,
        store: SegmentStore,
        batch_dir: str | Path,
        backup_dir: str | Path,
        changelog: Optional[ChangeLog] = None,
        translated_path: Optional[str | Path] = None,
        min_target_chars: int = 3,
        translated_by: str = "batch",
        style_digest: str = "",
        merged_status: SegmentStatus | str = SegmentStatus.REVIEW_PENDING,
        default_section: str = "S001",
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.batch_dir = Path(batch_dir)
        self.backup_dir = Path(backup_dir)
        self.changelog = changelog
        self.translated_path = Path(translated_path) if translated_path else None
        self.min_target_chars = min_target_chars
        self.translated_by = translated_by
        self.style_digest = style_digest
        self.merged_status = merged_status
        self.default_section = default_section
        self.logger = logger or logging.getLogger(__name__)

    def parse_batches(self) -> Dict[str, str]:
        translations: Dict[str, str] = {}
        files = list_batch_files(self.batch_dir)
        for path in files:
            try:
                text = storage.read_text(path)
            except (OSError, UnicodeDecodeError) as exc:
                self.logger.warning("[merge] Could not read batch file %s: %s", path.name, exc)
                continue
            for gap_id, tgt in parse_batch_document(text).items():
                translations[gap_id] = tgt
                self.logger.info("[merge] Found translation for %s: %s...", gap_id, tgt[:50])
        self.logger.info("[merge] Parsed %s completed translations from %s batch files", len(translations), len(files))
        return translations

    def _write_translated_entries(self, translations: Dict[str, str]) -> None:
        if not self.translated_path:
            return
        entries = [
            {"id": gap_id, "tgt": tgt, "flags": {"fromBatch": True, "styleDigest": self.style_digest}}
            for gap_id, tgt in translations.items()
        ]
        storage.write_jsonl(self.translated_path, entries)
        self.logger.info("[merge] Wrote %s translated entries to: %s", len(entries), self.translated_path)

    def _apply(self, segment: Segment, tgt: str) -> None:
        segment.set_target(tgt)
        segment.advance_status(self.merged_status)
        segment.metadata["translatedBy"] = self.translated_by
        segment.metadata["translatedAt"] = to_iso(utc_now())
        if self.style_digest:
            segment.metadata["styleProfile"] = self.style_digest
        if self.changelog is not None:
            segment.metadata[PENDING_KEY] = True

    def publish_pending(self, report: Optional[MergeReport] = None) -> Dict[str, int]:
        """
        Log a batch-merge change record for every segment still marked pending.

        Covers this run's merges and any left behind by an earlier run whose
        record appends failed. Markers are cleared for the records that were
        logged, even when a later append raises.
        """
        if self.changelog is None:
            return {}
        with self.store.locked():
            pending = [
                (seg.id, section_of(seg, self.default_section), seg.tgt)
                for seg in index_by_id(self.store.read_rows()).values()
                if seg.metadata.get(PENDING_KEY)
            ]
        if not pending:
            return {}

        logged: Dict[str, int] = {}
        try:
            for seg_id, section, tgt in pending:
                record = self.changelog.append(section, seg_id, {TARGET_FIELD: tgt}, origin=MERGE_ORIGIN)
                logged[seg_id] = record.rev
                if report is not None:
                    report.change_revisions[seg_id] = record.rev
        finally:
            if logged:
                with self.store.locked():
                    rows = self.store.read_rows()
                    by_id = index_by_id(rows)
                    for seg_id, rev in logged.items():
                        segment = by_id.get(seg_id)
                        if segment is not None and segment.metadata.pop(PENDING_KEY, None):
                            segment.metadata["rev"] = rev
                    self.store.write_rows(rows)
        self.logger.info("[merge] Logged %s batch-merge change records", len(logged))
        return logged

    def run(self) -> MergeReport:
        report = MergeReport()
        try:
            report.backup_path = self.store.backup(self.backup_dir)
            report.state = MergeState.BACKED_UP

            merged: List[Segment] = []
            with self.store.locked():
                translations = self.parse_batches()
                report.translations_found = len(translations)
                report.state = MergeState.PARSED
                if translations:
                    self._write_translated_entries(translations)

                rows = self.store.read_rows()
                by_id = index_by_id(rows)
                for gap_id, tgt in translations.items():
                    segment = by_id.get(gap_id)
                    if segment is None:
                        report.unknown_ids += 1
                        self.logger.warning("[merge] No segment with id %s in dataset", gap_id)
                        continue
                    if visible_length(tgt) < self.min_target_chars:
                        report.too_short += 1
                        self.logger.warning("[merge] Translation for %s is too short to merge: %r", gap_id, tgt)
                        continue
                    if not segment.target_missing(self.min_target_chars):
                        report.conflicts += 1
                        self.logger.info("[merge] %s already has a target, batch result discarded", gap_id)
                        continue
                    self._apply(segment, tgt)
                    merged.append(segment)
                    self.logger.info("[merge] Merged translation for %s", gap_id)
                report.merged_count = len(merged)
                report.merged_ids = [seg.id for seg in merged]
                report.state = MergeState.MERGED

                if merged:
                    self.store.write_rows(rows)
                    report.dataset_written = True

            self.publish_pending(report)
            report.state = MergeState.DONE
        except BackupError as exc:
            report.error = str(exc)
            report.state = MergeState.FAILED
            self.logger.error("[merge] Failed to back up dataset, nothing merged: %s", exc)
            exc.report = report
            raise
        except Exception as exc:
            failed_in = report.state
            report.error = str(exc)
            report.state = MergeState.FAILED
            self.logger.exception("[merge] Merge failed after state %s", failed_in.value)
            raise MergeError(f"Merge failed after state {failed_in.value}: {exc}", report) from exc

        self.logger.info("[merge] Summary:")
        self.logger.info("  Backup: %s", report.backup_path)
        self.logger.info("  Translations found: %s", report.translations_found)
        self.logger.info("  Merged into dataset: %s", report.merged_count)
        self.logger.info("  Discarded (already filled): %s", report.conflicts)
        self.logger.info("  Discarded (too short): %s", report.too_short)
        return report
