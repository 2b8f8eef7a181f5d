import pytest

from parallel_sync.batches import BatchBuilder, insert_translation, parse_batch_document
from parallel_sync.errors import MissingApiKeyError
from parallel_sync.models import GapRecord
from parallel_sync.translator import DummyTranslator, OpenAITranslator, build_translator, fill_batches


class RecordingTranslator:
    def __init__(self, fail_first=0):
        self.calls = []
        self.fail_first = fail_first

    def translate_text(self, text, context_prev="", context_next="", style=None):
        self.calls.append((text, context_prev, context_next))
        if self.fail_first:
            self.fail_first -= 1
            raise RuntimeError("rate limited")
        return f"EN({text})"


def _write(tmp_path, gaps, batch_size=60):
    builder = BatchBuilder(batch_size=batch_size)
    return builder.write_batches(builder.build(gaps), tmp_path)


def test_dummy_translator_echoes_source():
    assert DummyTranslator().translate_text("مرحبا") == "مرحبا"


def test_fill_batches_fills_every_empty_slot(tmp_path):
    gaps = [
        GapRecord(id="a", src="واحد", context_next="اثنان"),
        GapRecord(id="b", src="اثنان", context_prev="واحد"),
        GapRecord(id="c", src="ثلاثة"),
    ]
    paths = _write(tmp_path, gaps, batch_size=2)
    tr = RecordingTranslator()

    assert fill_batches(tmp_path, gaps, tr) == 3
    assert tr.calls[0] == ("واحد", "", "اثنان")
    assert parse_batch_document(paths[0].read_text(encoding="utf-8")) == {"a": "EN(واحد)", "b": "EN(اثنان)"}
    assert parse_batch_document(paths[1].read_text(encoding="utf-8")) == {"c": "EN(ثلاثة)"}


def test_fill_batches_leaves_filled_slots_alone(tmp_path):
    gaps = [GapRecord(id="a", src="واحد"), GapRecord(id="b", src="اثنان")]
    path = _write(tmp_path, gaps)[0]
    path.write_text(insert_translation(path.read_text(encoding="utf-8"), "a", "One, by hand"), encoding="utf-8")

    tr = RecordingTranslator()
    assert fill_batches(tmp_path, gaps, tr) == 1
    assert [c[0] for c in tr.calls] == ["اثنان"]
    assert parse_batch_document(path.read_text(encoding="utf-8"))["a"] == "One, by hand"
    assert fill_batches(tmp_path, gaps, tr) == 0


def test_fill_batches_retries_then_succeeds(tmp_path):
    gaps = [GapRecord(id="a", src="واحد")]
    _write(tmp_path, gaps)
    tr = RecordingTranslator(fail_first=2)
    assert fill_batches(tmp_path, gaps, tr, max_retries=2, retry_backoff=0) == 1
    assert len(tr.calls) == 3


def test_fill_batches_gives_up_after_retries(tmp_path):
    gaps = [GapRecord(id="a", src="واحد")]
    _write(tmp_path, gaps)
    with pytest.raises(RuntimeError):
        fill_batches(tmp_path, gaps, RecordingTranslator(fail_first=5), max_retries=1, retry_backoff=0)


def test_build_translator_providers(monkeypatch):
    assert isinstance(build_translator("dummy"), DummyTranslator)
    with pytest.raises(ValueError):
        build_translator("manual")
    with pytest.raises(ValueError):
        build_translator("")
    with pytest.raises(ValueError):
        build_translator("babelfish")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(MissingApiKeyError):
        build_translator("openai", {"openai": {"model": "gpt-4.1-mini"}})
    with pytest.raises(MissingApiKeyError):
        OpenAITranslator()
