from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Dict, Optional

from . import storage
from .utils import deep_merge


CONFIG_ENV_VAR = "PARALLEL_SYNC_CONFIG"

DEFAULT_CONFIG: Dict[str, Any] = {
    "paths": {
        "segments": "data/parallel.jsonl",
        "sync_dir": "data/sync",
        "presence": "data/sync/presence.json",
        "gaps_manifest": "data/gaps.jsonl",
        "batches_dir": "artifacts/gaps",
        "backups_dir": "data/backups",
        "translated_jsonl": "data/translated.jsonl",
        "locks_dir": "data/locks",
        "logs_dir": "logs",
        "style_profile": "",
        "exports_dir": "data/exports",
    },
    "sync": {
        "default_section": "S001",
        "presence_stale_seconds": 12,
        "lock_timeout_seconds": 10,
    },
    "gaps": {
        "source_script": "\\u0600-\\u06FF",
        "min_target_chars": 3,
        "batch_size": 60,
    },
    "merge": {
        "translated_by": "batch",
        "status": "review_pending",
        "append_change_records": True,
    },
    "translation": {
        "provider": "manual",
        "openai": {
            "model": "gpt-4.1-mini",
            "temperature": 0.1,
            "max_output_tokens": 2000,
        },
        "scheduling": {
            "requests_per_minute": 0,
            "max_retries": 2,
            "retry_backoff_seconds": 2.0,
        },
    },
}


def load_config(path: Optional[str | Path] = None) -> Dict[str, Any]:
    """
    Load ``config.json`` over the built-in defaults.

    ``path`` falls back to $PARALLEL_SYNC_CONFIG, then ``config.json``. A
    missing file is not an error: the defaults are returned.
    """
    path = path or os.getenv(CONFIG_ENV_VAR) or "config.json"
    user_cfg = storage.read_json_or_default(path, {})
    if not isinstance(user_cfg, dict):
        raise ValueError(f"Config root must be a JSON object: {path}")
    return deep_merge(copy.deepcopy(DEFAULT_CONFIG), user_cfg)


def resolve_paths(cfg: Dict[str, Any], base_dir: Optional[str | Path] = None) -> Dict[str, Path]:
    """Return ``cfg['paths']`` as Path objects, relative entries anchored at ``base_dir``."""
    base = Path(base_dir) if base_dir else None
    out: Dict[str, Path] = {}
    for key, val in cfg.get("paths", {}).items():
        if not val:
            continue
        p = Path(val)
        out[key] = base / p if base and not p.is_absolute() else p
    return out
