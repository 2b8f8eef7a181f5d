from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import List, Optional, Sequence

from pydantic import ValidationError

from . import storage
from .models import GapRecord, Segment
from .utils import build_context_windows, visible_length


DEFAULT_SOURCE_SCRIPT = "\\u0600-\\u06FF"  # Arabic block
DEFAULT_MIN_TARGET_CHARS = 3


class GapDetector:
    """
    Find segments whose translation is missing.

    A segment is a gap when its source holds at least one character of the
    source script and its target is empty or shorter than ``min_target_chars``
    once trimmed.
    """

    def __init__(
        self,
        source_script: str = DEFAULT_SOURCE_SCRIPT,
        min_target_chars: int = DEFAULT_MIN_TARGET_CHARS,
        logger: Optional[logging.Logger] = None,
    ):
        self.script_re = re.compile(f"[{source_script}]")
        self.min_target_chars = min_target_chars
        self.logger = logger or logging.getLogger(__name__)

    def is_gap(self, segment: Segment) -> bool:
        src = (segment.src or "").strip()
        if not src or not self.script_re.search(src):
            return False
        return visible_length(segment.tgt) < self.min_target_chars

    def detect(self, segments: Sequence[Segment]) -> List[GapRecord]:
        """Gap records in document order, each with its neighbours' source as context."""
        windows = build_context_windows([seg.src for seg in segments])
        gaps: List[GapRecord] = []
        for seg, window in zip(segments, windows):
            if not self.is_gap(seg):
                continue
            gaps.append(
                GapRecord(
                    id=seg.id,
                    file_refs=list(seg.file_refs),
                    para_index=seg.para_index,
                    seg_index=seg.seg_index,
                    src=seg.src.strip(),
                    context_prev=window["previous"],
                    context_next=window["next"],
                )
            )
        self.logger.info("[gaps] Found %s segments needing translation", len(gaps))
        return gaps


def write_gap_manifest(gaps: Sequence[GapRecord], path: str | Path) -> Path:
    storage.write_jsonl(path, [gap.to_dict() for gap in gaps])
    return Path(path)


def read_gap_manifest(path: str | Path, logger: Optional[logging.Logger] = None) -> List[GapRecord]:
    log = logger or logging.getLogger(__name__)
    gaps: List[GapRecord] = []
    for line_no, rec, _ in storage.iter_jsonl(path, label="gaps"):
        if rec is None:
            continue
        try:
            gaps.append(GapRecord.model_validate(rec))
        except ValidationError:
            log.warning("[gaps] Skipping invalid gap record on line %s", line_no)
    return gaps
