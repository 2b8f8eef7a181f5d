from __future__ import annotations

import hashlib
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Sequence, TypeVar


T = TypeVar("T")

_SECTION_ROW_RE = re.compile(r"^(S\d+)-")


def setup_logger(log_dir: str | Path, name: str = "parallel-sync") -> logging.Logger:
    """Create a simple file+console logger."""
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)

    # Avoid adding multiple handlers (e.g., uvicorn reloads)
    if logger.handlers:
        return logger

    fmt = logging.Formatter("%(asctime)s | %(levelname)s | %(message)s")

    fh = logging.FileHandler(log_dir / "app.log", encoding="utf-8")
    fh.setLevel(logging.INFO)
    fh.setFormatter(fmt)

    ch = logging.StreamHandler()
    ch.setLevel(logging.INFO)
    ch.setFormatter(fmt)

    logger.addHandler(fh)
    logger.addHandler(ch)
    return logger


def sha1_text(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_iso(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    ts = datetime.fromisoformat(text)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def backup_stamp(ts: datetime) -> str:
    """Filesystem-safe timestamp, e.g. 2024-05-01T10-22-03-123456Z."""
    return re.sub(r"[:.+]", "-", to_iso(ts))


def visible_length(s: str | None) -> int:
    return len((s or "").strip())


def chunk_fixed(items: Sequence[T], size: int) -> Iterator[List[T]]:
    """Yield consecutive slices of ``size`` items, preserving order."""
    if size <= 0:
        raise ValueError(f"Chunk size must be positive, got {size}")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def build_context_windows(texts: Sequence[str]) -> List[Dict[str, str]]:
    """
    Previous/next neighbour text for every position of ``texts``.

    Boundaries get empty strings. Used to give a translator local coherence
    without changing batch boundaries.
    """
    cleaned = [(t or "").strip() for t in texts]
    out: List[Dict[str, str]] = []
    for i in range(len(cleaned)):
        out.append(
            {
                "previous": cleaned[i - 1] if i > 0 else "",
                "next": cleaned[i + 1] if i < len(cleaned) - 1 else "",
            }
        )
    return out


def section_from_row_id(row_id: str) -> str | None:
    m = _SECTION_ROW_RE.match(row_id or "")
    return m.group(1) if m else None


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = dict(base)
    for key, val in (override or {}).items():
        if isinstance(val, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], val)
        else:
            merged[key] = val
    return merged
