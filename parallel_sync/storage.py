from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

import pandas as pd


logger = logging.getLogger(__name__)


def _ensure_exists(path: Path) -> Path:
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    return path


def read_text(path: str | Path, encoding: str = "utf-8") -> str:
    p = _ensure_exists(Path(path))
    return p.read_text(encoding=encoding)


def write_text(path: str | Path, text: str, encoding: str = "utf-8") -> None:
    """Replace ``path`` atomically: readers see the old or the new file, never half of one."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{p.name}.", suffix=".tmp", dir=p.parent)
    try:
        with os.fdopen(fd, "w", encoding=encoding, newline="") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, p)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def read_json(path: str | Path) -> Any:
    p = _ensure_exists(Path(path))
    with open(p, "r", encoding="utf-8") as f:
        return json.load(f)


def read_json_or_default(path: str | Path, default: Any) -> Any:
    """Missing file -> ``default``. Unparsable file -> ``default`` with a warning."""
    p = Path(path)
    if not p.exists():
        return default
    try:
        return read_json(p)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        logger.warning("Unparsable JSON in %s, using default: %s", p, exc)
        return default


def write_json(path: str | Path, obj: Any, indent: int = 2) -> None:
    write_text(path, json.dumps(obj, ensure_ascii=False, indent=indent) + "\n")


def iter_jsonl(path: str | Path, label: str = "") -> Iterator[Tuple[int, Optional[Dict[str, Any]], str]]:
    """
    Yield ``(line_no, record_or_None, raw_line)`` for every non-blank line.

    A line that is not a JSON object yields ``None`` and logs a warning; the
    caller decides whether to drop or keep it. Missing file yields nothing.
    """
    p = Path(path)
    if not p.exists():
        return
    tag = label or p.name
    with open(p, "r", encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            raw = line.rstrip("\n")
            if not raw.strip():
                continue
            try:
                rec = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("[%s] Skipping malformed line %s: %s...", tag, line_no, raw[:50])
                yield line_no, None, raw
                continue
            if not isinstance(rec, dict):
                logger.warning("[%s] Skipping non-object line %s", tag, line_no)
                yield line_no, None, raw
                continue
            yield line_no, rec, raw


def read_jsonl(path: str | Path, label: str = "") -> List[Dict[str, Any]]:
    return [rec for _, rec, _ in iter_jsonl(path, label=label) if rec is not None]


def write_jsonl(path: str | Path, rows: List[Any]) -> None:
    """Rewrite a JSONL file atomically. ``str`` rows are written verbatim."""
    lines = [row if isinstance(row, str) else json.dumps(row, ensure_ascii=False) for row in rows]
    payload = "\n".join(lines) + ("\n" if lines else "")
    write_text(path, payload)


def append_jsonl(path: str | Path, record: Dict[str, Any]) -> None:
    """Append one record and fsync before returning."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with open(p, "a", encoding="utf-8") as f:
        f.write(json.dumps(record, ensure_ascii=False) + "\n")
        f.flush()
        os.fsync(f.fileno())


def copy_file(src: str | Path, dst: str | Path) -> Path:
    s = _ensure_exists(Path(src))
    d = Path(dst)
    d.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(s, d)
    return d


def write_segments_csv(path: str | Path, rows: List[Dict[str, Any]]) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    df = pd.DataFrame(rows)
    df.to_csv(p, index=False, encoding="utf-8")
