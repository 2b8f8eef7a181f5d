from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

from pydantic import ValidationError

from . import storage
from .errors import BackupError, DatasetWriteError
from .locks import SEGMENTS_LOCK, LockRegistry
from .models import Segment
from .utils import backup_stamp, utc_now


# A dataset line is either a parsed segment or a raw line that failed
# validation. Raw lines are written back verbatim so a rewrite never drops data.
Row = Union[Segment, str]


class SegmentStore:
    """The parallel dataset: one segment per JSONL line, in document order."""

    def __init__(self, path: str | Path, locks: LockRegistry, logger: Optional[logging.Logger] = None):
        self.path = Path(path)
        self.locks = locks
        self.logger = logger or logging.getLogger(__name__)

    def exists(self) -> bool:
        return self.path.exists()

    def read_rows(self) -> List[Row]:
        rows: List[Row] = []
        for line_no, rec, raw in storage.iter_jsonl(self.path, label="segments"):
            if rec is None:
                rows.append(raw)
                continue
            try:
                rows.append(Segment.model_validate(rec))
            except ValidationError as exc:
                self.logger.warning("[segments] Invalid segment on line %s kept as-is: %s", line_no, exc.errors()[:1])
                rows.append(raw)
        return rows

    def load(self) -> List[Segment]:
        """Snapshot of the valid segments. Missing dataset -> []."""
        return [row for row in self.read_rows() if isinstance(row, Segment)]

    def write_rows(self, rows: List[Row]) -> None:
        payload = [row if isinstance(row, str) else row.to_dict() for row in rows]
        try:
            storage.write_jsonl(self.path, payload)
        except OSError as exc:
            raise DatasetWriteError(f"Failed to write dataset {self.path}: {exc}") from exc

    @contextmanager
    def locked(self, timeout: Optional[float] = None) -> Iterator[None]:
        """Exclusive write access to the dataset file."""
        with self.locks.hold(SEGMENTS_LOCK, timeout=timeout):
            yield

    def backup(self, backup_dir: str | Path) -> Path:
        """Copy the dataset to ``<backup_dir>/segments.<timestamp>.jsonl``."""
        stamp = backup_stamp(utc_now())
        dest = Path(backup_dir) / f"segments.{stamp}{self.path.suffix or '.jsonl'}"
        try:
            storage.copy_file(self.path, dest)
        except OSError as exc:
            raise BackupError(f"Failed to back up {self.path} to {dest}: {exc}") from exc
        self.logger.info("[merge] Backup created: %s", dest)
        return dest


def index_by_id(rows: List[Row]) -> Dict[str, Segment]:
    return {row.id: row for row in rows if isinstance(row, Segment)}
