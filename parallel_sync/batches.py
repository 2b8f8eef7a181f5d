"""
Batch documents: rendering gap records for translation and reading them back.

Document grammar (line oriented)::

    # Translation Batch 0001              header
    ...instructions...
    ---                                   block delimiter
    **<id>**                              visible id (ignored by the parser)
    <!-- gap-id: <id> -->                 id marker, opens a gap block
    *Previous:* <text>                    optional
    **Arabic:**
    <source lines>
    *Next:* <text>                        optional
    [EN]:                                 slot marker
    <translation lines>                   filled in by the translator
    ---

Inside an open slot every non-empty line is collected until the next block
delimiter, the next id marker, or the end of the document. Source lines that
would read as a marker or a delimiter are escaped with a leading backslash so
that an untouched document parses to nothing.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from . import storage
from .models import GapRecord
from .utils import chunk_fixed, sha1_text


DEFAULT_BATCH_SIZE = 60
BATCH_GLOB = "batch-*.md"
BLOCK_DELIMITER = "---"

_ID_MARKER_RE = re.compile(r"^<!--\s*gap-id:\s*(.+?)\s*-->$")
_SLOT_RE = re.compile(r"^\[([A-Za-z][A-Za-z-]*)\]:\s*(.*)$")

LANGUAGE_NAMES = {"ar": "Arabic", "en": "English", "fr": "French"}


def id_marker(gap_id: str) -> str:
    return f"<!-- gap-id: {gap_id} -->"


def slot_marker(target_lang: str) -> str:
    return f"[{target_lang.upper()}]:"


# --- Style profile -----------------------------------------------------------


@dataclass
class StyleProfile:
    name: str = "auto-derived-v1"
    digits: str = "Use western digits (0-9)"
    quotes: str = "Use ASCII quotes for English"
    punctuation: str = "Use Arabic question mark ؟ in Arabic source"
    preserve_terms: List[str] = field(default_factory=lambda: ["الله", "محمد", "القرآن"])
    conventions: List[str] = field(default_factory=list)

    def as_instructions(self) -> List[str]:
        lines = [self.digits, self.quotes, self.punctuation]
        if self.preserve_terms:
            lines.append("Preserve terms untranslated: " + "، ".join(self.preserve_terms))
        lines.extend(self.conventions)
        return [line for line in lines if line]

    @property
    def digest(self) -> str:
        payload = json.dumps(self.__dict__, ensure_ascii=False, sort_keys=True)
        return f"{self.name}:{sha1_text(payload)[:10]}"


_STYLE_ALLOWED_KEYS = {"name", "digits", "quotes", "punctuation", "preserve_terms", "conventions"}


def _validate_style_profile_dict(data: Dict[str, Any]) -> None:
    if not isinstance(data, dict):
        raise ValueError("Style profile must be a JSON object.")
    extra = set(data.keys()) - _STYLE_ALLOWED_KEYS
    if extra:
        raise ValueError(f"Unknown keys in style profile: {', '.join(sorted(extra))}")
    for key in ["name", "digits", "quotes", "punctuation"]:
        if not isinstance(data.get(key), str) or len(data[key].strip()) < 3:
            raise ValueError(f"Missing or empty style profile field: {key}")
    for key in ["preserve_terms", "conventions"]:
        items = data.get(key, []) or []
        if not isinstance(items, list) or not all(isinstance(item, str) and item.strip() for item in items):
            raise ValueError(f"Style profile field {key} must be a list of non-empty strings.")


def load_style_profile(path: Optional[str | Path], logger: Optional[logging.Logger] = None) -> StyleProfile:
    """Merge a JSON style profile over the defaults and validate the result."""
    base = StyleProfile().__dict__
    override = storage.read_json_or_default(path, {}) if path else {}
    if not isinstance(override, dict):
        raise ValueError("Style profile must be a JSON object.")
    merged = {**base, **{k: v for k, v in override.items() if v is not None}}
    _validate_style_profile_dict(merged)
    profile = StyleProfile(**merged)
    if logger:
        logger.info("Style profile loaded (%s, source=%s)", profile.digest, path or "defaults")
    return profile


# --- Building ----------------------------------------------------------------


@dataclass
class BatchDocument:
    number: int
    gaps: List[GapRecord]

    @property
    def filename(self) -> str:
        return f"batch-{self.number:04d}.md"


def _one_line(text: str) -> str:
    return " ".join(text.split())


def _escape_source_line(line: str) -> str:
    stripped = line.strip()
    if stripped == BLOCK_DELIMITER or _ID_MARKER_RE.match(stripped) or _SLOT_RE.match(stripped):
        return "\\" + line
    return line


class BatchBuilder:
    def __init__(
        self,
        batch_size: int = DEFAULT_BATCH_SIZE,
        style: Optional[StyleProfile] = None,
        source_lang: str = "ar",
        target_lang: str = "en",
        logger: Optional[logging.Logger] = None,
    ):
        self.batch_size = batch_size
        self.style = style or StyleProfile()
        self.source_lang = source_lang
        self.target_lang = target_lang
        self.logger = logger or logging.getLogger(__name__)

    def build(self, gaps: Sequence[GapRecord]) -> List[BatchDocument]:
        """Split ``gaps`` into consecutive batches of ``batch_size``, order preserved."""
        return [
            BatchDocument(number=i + 1, gaps=chunk)
            for i, chunk in enumerate(chunk_fixed(list(gaps), self.batch_size))
        ]

    def render(self, doc: BatchDocument) -> str:
        source_name = LANGUAGE_NAMES.get(self.source_lang, self.source_lang.upper())
        slot = slot_marker(self.target_lang)
        out: List[str] = [
            f"# Translation Batch {doc.number:04d}",
            "",
            f"*{len(doc.gaps)} segments for translation*",
            "",
            "## Instructions",
            "",
            f"Translate the {source_name} text after each {slot} marker. Follow the style profile:",
        ]
        out.extend(f"- {line}" for line in self.style.as_instructions())
        out.extend(["", BLOCK_DELIMITER, ""])

        for gap in doc.gaps:
            out.extend([f"**{gap.id}**", id_marker(gap.id), ""])
            if gap.context_prev:
                out.extend([f"*Previous:* {_one_line(gap.context_prev)}", ""])
            out.append(f"**{source_name}:**")
            out.extend(_escape_source_line(line) for line in gap.src.splitlines() or [""])
            out.append("")
            if gap.context_next:
                out.extend([f"*Next:* {_one_line(gap.context_next)}", ""])
            out.extend([slot, "", BLOCK_DELIMITER, ""])
        return "\n".join(out)

    def write_batches(self, docs: Sequence[BatchDocument], out_dir: str | Path) -> List[Path]:
        """Replace every previous batch document in ``out_dir`` with ``docs``."""
        out = Path(out_dir)
        out.mkdir(parents=True, exist_ok=True)
        for stale in out.glob(BATCH_GLOB):
            stale.unlink()

        written: List[Path] = []
        for doc in docs:
            path = out / doc.filename
            storage.write_text(path, self.render(doc))
            written.append(path)
            self.logger.info("[gaps] Created batch file: %s (%s segments)", doc.filename, len(doc.gaps))
        if not docs:
            self.logger.info("[gaps] No gaps found - no batch files needed")
        return written


def list_batch_files(batch_dir: str | Path) -> List[Path]:
    d = Path(batch_dir)
    if not d.exists():
        return []
    return sorted(p for p in d.glob(BATCH_GLOB) if p.is_file())


# --- Parsing -----------------------------------------------------------------


def list_gap_ids(text: str) -> List[str]:
    """Gap ids in document order, as declared by their id markers."""
    ids: List[str] = []
    for line in text.splitlines():
        marker = _ID_MARKER_RE.match(line.strip())
        if marker:
            ids.append(marker.group(1))
    return ids


def parse_batch_document(text: str) -> Dict[str, str]:
    """Return ``{gap_id: translation}`` for every gap whose slot holds text."""
    found: Dict[str, str] = {}
    current_id: Optional[str] = None
    in_slot = False
    collected: List[str] = []

    def _close() -> None:
        if current_id and collected:
            found[current_id] = " ".join(collected).strip()
        collected.clear()

    for line in text.splitlines():
        stripped = line.strip()
        marker = _ID_MARKER_RE.match(stripped)
        if marker:
            _close()
            current_id, in_slot = marker.group(1), False
            continue
        if stripped == BLOCK_DELIMITER:
            if in_slot:
                _close()
                current_id, in_slot = None, False
            continue
        if in_slot:
            if stripped:
                collected.append(stripped)
            continue
        slot = _SLOT_RE.match(stripped)
        if slot and current_id:
            in_slot = True
            if slot.group(2).strip():
                collected.append(slot.group(2).strip())

    if in_slot:
        _close()
    return found


def insert_translation(text: str, gap_id: str, translation: str) -> str:
    """Put ``translation`` into the slot of ``gap_id``, replacing any previous content."""
    lines = text.splitlines()
    start = next((i for i, line in enumerate(lines) if line.strip() == id_marker(gap_id)), None)
    if start is None:
        raise KeyError(f"Gap id not found in batch document: {gap_id}")

    slot_idx = None
    for i in range(start + 1, len(lines)):
        stripped = lines[i].strip()
        if _ID_MARKER_RE.match(stripped):
            break
        if _SLOT_RE.match(stripped):
            slot_idx = i
            break
    if slot_idx is None:
        raise KeyError(f"No translation slot for gap id: {gap_id}")

    end = slot_idx + 1
    while end < len(lines):
        stripped = lines[end].strip()
        if stripped == BLOCK_DELIMITER or _ID_MARKER_RE.match(stripped):
            break
        end += 1

    marker = _SLOT_RE.match(lines[slot_idx].strip())
    flat = re.sub(r"\s+", " ", translation).strip()
    new_lines = lines[:slot_idx] + [f"[{marker.group(1)}]:", flat, ""] + lines[end:]
    return "\n".join(new_lines) + ("\n" if text.endswith("\n") else "")
