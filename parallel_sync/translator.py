from __future__ import annotations

import logging
import os
import re
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Sequence

from . import storage
from .batches import StyleProfile, insert_translation, list_batch_files, list_gap_ids, parse_batch_document
from .errors import MissingApiKeyError
from .models import GapRecord


SYSTEM_PROMPT_TRANSLATION = """\
You are a professional translation engine. You WILL translate a single Arabic passage into English.
Keep numbers, names and citations exactly as they are. Do not add notes or explanations.
Return only the English translation on a single paragraph."""

USER_PROMPT_TEMPLATE = """\
Translate the following Arabic passage into English.
Use the surrounding passages only as context; do not translate them.

Style profile:
{style}

Previous passage: {context_prev}
Next passage: {context_next}

Passage:
{text}
"""


class BaseTranslator(Protocol):
    def translate_text(
        self,
        text: str,
        context_prev: str = "",
        context_next: str = "",
        style: Optional[StyleProfile] = None,
    ) -> str:
        ...


@dataclass
class OpenAIConfig:
    model: str = "gpt-4.1-mini"
    temperature: float = 0.1
    max_output_tokens: int = 2000


class RateLimiter:
    """Simple thread-safe rate limiter (requests per minute)."""

    def __init__(self, requests_per_minute: Optional[int] = None):
        self.requests_per_minute = requests_per_minute or 0
        self.interval = 60.0 / self.requests_per_minute if self.requests_per_minute > 0 else 0.0
        self._lock = threading.Lock()
        self._last_ts = 0.0

    def wait(self) -> None:
        if self.interval <= 0:
            return
        with self._lock:
            now = time.monotonic()
            delta = now - self._last_ts
            if delta < self.interval:
                time.sleep(self.interval - delta)
            self._last_ts = time.monotonic()


def _strip_code_fences(s: str) -> str:
    s = s.strip()
    s = re.sub(r"^```[a-zA-Z]*\n", "", s)
    s = re.sub(r"\n```$", "", s)
    return s


class OpenAITranslator:
    """
    OpenAI translator for single passages.

    Requires:
      - `openai` python package
      - OPENAI_API_KEY in env or provided.
    """

    def __init__(self, api_key: Optional[str] = None, cfg: Optional[OpenAIConfig] = None):
        self.api_key = api_key or os.getenv("OPENAI_API_KEY", "")
        if not self.api_key:
            raise MissingApiKeyError("OPENAI_API_KEY missing: set the environment variable or add it to your .env.")
        self.cfg = cfg or OpenAIConfig()

        from openai import OpenAI

        self._client = OpenAI(api_key=self.api_key)

    def translate_text(
        self,
        text: str,
        context_prev: str = "",
        context_next: str = "",
        style: Optional[StyleProfile] = None,
    ) -> str:
        style_lines = (style or StyleProfile()).as_instructions()
        user_prompt = USER_PROMPT_TEMPLATE.format(
            style="\n".join(f"- {line}" for line in style_lines),
            context_prev=context_prev or "(none)",
            context_next=context_next or "(none)",
            text=text,
        )

        resp = self._client.chat.completions.create(
            model=self.cfg.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT_TRANSLATION},
                {"role": "user", "content": user_prompt},
            ],
            temperature=self.cfg.temperature,
            max_tokens=self.cfg.max_output_tokens,
        )

        content = resp.choices[0].message.content or ""
        return _strip_code_fences(content).strip()


# Slots are filled by hand in the batch documents; no translator runs.
MANUAL_PROVIDER = "manual"


class DummyTranslator:
    """Offline translator for testing/dev. Does not translate; echoes the source.

    Only ever selected explicitly: its output is the Arabic source, which the
    merge would store as the target.
    """

    def translate_text(
        self,
        text: str,
        context_prev: str = "",
        context_next: str = "",
        style: Optional[StyleProfile] = None,
    ) -> str:
        return text


def build_translator(provider: str, cfg: Optional[Dict[str, Any]] = None) -> BaseTranslator:
    """Instantiate the provider named in ``translation.provider``."""
    cfg = cfg or {}
    provider = (provider or MANUAL_PROVIDER).lower()
    if provider == "openai":
        oa = cfg.get("openai", {})
        return OpenAITranslator(
            cfg=OpenAIConfig(
                model=oa.get("model", "gpt-4.1-mini"),
                temperature=float(oa.get("temperature", 0.1)),
                max_output_tokens=int(oa.get("max_output_tokens", 2000)),
            )
        )
    if provider == "dummy":
        return DummyTranslator()
    if provider == MANUAL_PROVIDER:
        raise ValueError("Provider 'manual' has no translator: fill the batch documents by hand")
    raise ValueError(f"Unknown translation provider: {provider}")


def _translate_with_retries(
    translator: BaseTranslator,
    gap: GapRecord,
    style: Optional[StyleProfile],
    max_retries: int,
    retry_backoff: float,
    rate_limiter: Optional[RateLimiter],
    logger: logging.Logger,
) -> str:
    attempts = max(1, max_retries + 1)
    for attempt in range(attempts):
        if rate_limiter:
            rate_limiter.wait()
        try:
            candidate = translator.translate_text(
                gap.src,
                context_prev=gap.context_prev,
                context_next=gap.context_next,
                style=style,
            ).strip()
            if not candidate:
                raise ValueError("Empty translation returned")
            return candidate
        except Exception as exc:
            logger.warning("Gap %s attempt %s/%s failed: %s", gap.id, attempt + 1, attempts, exc)
            if attempt < attempts - 1:
                time.sleep(retry_backoff * (2**attempt))
            else:
                raise
    return ""


def fill_batches(
    batch_dir: str | Path,
    gaps: Sequence[GapRecord],
    translator: BaseTranslator,
    style: Optional[StyleProfile] = None,
    max_retries: int = 2,
    retry_backoff: float = 2.0,
    rate_limiter: Optional[RateLimiter] = None,
    logger: Optional[logging.Logger] = None,
) -> int:
    """
    Translate every empty slot of the batch documents in ``batch_dir``.

    Slots that already hold text are left alone, so a document edited by hand
    is never overwritten. Gap ids without a manifest record are skipped.
    Returns the number of slots filled.
    """
    log = logger or logging.getLogger(__name__)
    by_id = {gap.id: gap for gap in gaps}
    filled = 0
    for path in list_batch_files(batch_dir):
        text = storage.read_text(path)
        done = parse_batch_document(text)
        changed = False
        for gap_id in list_gap_ids(text):
            if gap_id in done:
                continue
            gap = by_id.get(gap_id)
            if gap is None:
                log.warning("[fill] %s: no gap record for %s, slot left empty", path.name, gap_id)
                continue
            translation = _translate_with_retries(
                translator, gap, style, max_retries, retry_backoff, rate_limiter, log
            )
            text = insert_translation(text, gap_id, translation)
            done[gap_id] = translation
            changed = True
            filled += 1
        if changed:
            storage.write_text(path, text)
            log.info("[fill] Updated %s", path.name)
    log.info("[fill] Filled %s translation slots", filled)
    return filled
