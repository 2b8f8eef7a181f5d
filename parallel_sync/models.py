"""
Record schemas for the dataset, the change stream and presence.

Every field has a defined default so legacy or partial JSON lines validate to
a complete record instead of propagating missing keys. Wire names keep the
camelCase used in the files (``rowId``, ``lengthRatio``...); Python code uses
snake_case attributes.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from .utils import parse_iso, visible_length


class SegmentStatus(str, Enum):
    UNALIGNED = "unaligned"
    DRAFT = "draft"
    REVIEW_PENDING = "review_pending"
    REVIEWED = "reviewed"


STATUS_RANK = {
    SegmentStatus.UNALIGNED: 0,
    SegmentStatus.DRAFT: 1,
    SegmentStatus.REVIEW_PENDING: 2,
    SegmentStatus.REVIEWED: 3,
}

# Values written by the alignment step of older datasets.
_LEGACY_STATUS = {
    "missing_tgt": SegmentStatus.UNALIGNED,
    "missing_src": SegmentStatus.UNALIGNED,
    "needs_review": SegmentStatus.DRAFT,
    "aligned": SegmentStatus.REVIEWED,
}


def normalize_status(value: Any) -> SegmentStatus:
    if isinstance(value, SegmentStatus):
        return value
    text = str(value or "").strip().lower()
    if text in _LEGACY_STATUS:
        return _LEGACY_STATUS[text]
    try:
        return SegmentStatus(text)
    except ValueError:
        return SegmentStatus.UNALIGNED


def compute_length_ratio(src: str, tgt: str) -> float:
    return round(len(tgt or "") / max(len(src or ""), 1), 3)


class FileReference(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    path: str = ""
    row_id: Optional[str] = Field(None, alias="rowId")
    span: Optional[List[int]] = None


class Segment(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    row_id: str = Field("", alias="rowId")
    para_index: int = Field(0, alias="paraIndex")
    seg_index: int = Field(0, alias="segIndex")
    src: str = ""
    tgt: str = ""
    src_lang: str = Field("ar", alias="srcLang")
    tgt_lang: str = Field("en", alias="tgtLang")
    status: SegmentStatus = SegmentStatus.UNALIGNED
    length_ratio: float = Field(0.0, alias="lengthRatio")
    file_refs: List[FileReference] = Field(default_factory=list, alias="fileRefs")
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("src", "tgt", "row_id", "src_lang", "tgt_lang", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("para_index", "seg_index", mode="before")
    @classmethod
    def _none_to_zero(cls, v: Any) -> Any:
        return 0 if v is None else v

    @field_validator("length_ratio", mode="before")
    @classmethod
    def _ratio_default(cls, v: Any) -> Any:
        return 0.0 if v is None else v

    @field_validator("file_refs", "metadata", mode="before")
    @classmethod
    def _none_to_container(cls, v: Any, info: ValidationInfo) -> Any:
        if v is None:
            return {} if info.field_name == "metadata" else []
        return v

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, v: Any) -> SegmentStatus:
        return normalize_status(v)

    def target_missing(self, min_chars: int = 3) -> bool:
        return visible_length(self.tgt) < min_chars

    def set_target(self, tgt: str) -> None:
        self.tgt = tgt
        self.length_ratio = compute_length_ratio(self.src, tgt)

    def advance_status(self, status: SegmentStatus | str) -> None:
        """Move status forward only. Explicit human edits assign ``status`` directly."""
        new = normalize_status(status)
        if STATUS_RANK[new] > STATUS_RANK[self.status]:
            self.status = new

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class ChangeRecord(BaseModel):
    model_config = ConfigDict(extra="allow")

    section: str
    row_id: str
    rev: int = Field(ge=1)
    changes: Dict[str, Any] = Field(default_factory=dict)
    timestamp: str
    origin: str = "unknown"

    @field_validator("timestamp")
    @classmethod
    def _valid_timestamp(cls, v: str) -> str:
        parse_iso(v)
        return v

    @field_validator("origin", mode="before")
    @classmethod
    def _origin_default(cls, v: Any) -> Any:
        return v or "unknown"

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class PresenceEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_label: str = Field("Anonymous", alias="userLabel")
    section: str
    row_id: Optional[str] = None
    timestamp: str
    active: bool = False

    @field_validator("timestamp")
    @classmethod
    def _valid_timestamp(cls, v: str) -> str:
        parse_iso(v)
        return v

    def to_state(self) -> Dict[str, Any]:
        """Persisted form: ``active`` is derived, never stored."""
        return self.model_dump(by_alias=True, exclude={"active"})

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class GapRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    file_refs: List[FileReference] = Field(default_factory=list, alias="fileRefs")
    para_index: int = Field(0, alias="paraIndex")
    seg_index: int = Field(0, alias="segIndex")
    src: str
    context_prev: str = Field("", alias="contextPrev")
    context_next: str = Field("", alias="contextNext")

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class ChangedRow(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    row_id: str
    en: Optional[str] = None
    ar_enhanced: Optional[str] = Field(None, alias="arEnhanced")
    timestamp: str
    origin: str = "unknown"

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"row_id": self.row_id}
        if self.en is not None:
            out["en"] = self.en
        if self.ar_enhanced is not None:
            out["arEnhanced"] = self.ar_enhanced
        out["timestamp"] = self.timestamp
        out["origin"] = self.origin
        return out


class SyncDelta(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    rev: int = 0
    changed_rows: List[ChangedRow] = Field(default_factory=list, alias="changedRows")
    presence: List[PresenceEntry] = Field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rev": self.rev,
            "changedRows": [row.to_dict() for row in self.changed_rows],
            "presence": [entry.to_dict() for entry in self.presence],
        }


class PushRequest(BaseModel):
    section: str = Field(min_length=1)
    row_id: str = Field(min_length=1)
    changes: Dict[str, Any]
    origin: str = "user"


class HeartbeatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    section: str = Field(min_length=1)
    row_id: Optional[str] = None
    user_label: Optional[str] = Field(None, alias="userLabel")
