import json

import pytest

from parallel_sync.batches import (
    BatchBuilder,
    StyleProfile,
    insert_translation,
    list_batch_files,
    load_style_profile,
    parse_batch_document,
)
from parallel_sync.models import GapRecord


def _gaps(n):
    return [GapRecord(id=f"S001-{i:04d}", src=f"نص رقم {i}") for i in range(n)]


def test_build_chunks_into_sixties_in_order():
    docs = BatchBuilder().build(_gaps(125))
    assert [len(d.gaps) for d in docs] == [60, 60, 5]
    assert [d.filename for d in docs] == ["batch-0001.md", "batch-0002.md", "batch-0003.md"]
    assert docs[1].gaps[0].id == "S001-0060"
    assert BatchBuilder().build([]) == []


def test_render_contains_markers_and_style():
    gap = GapRecord(id="s1", src="مرحبا", context_prev="قبل", context_next="بعد")
    text = BatchBuilder().render(BatchBuilder().build([gap])[0])
    assert text.startswith("# Translation Batch 0001")
    assert "## Instructions" in text
    assert "**s1**" in text
    assert "<!-- gap-id: s1 -->" in text
    assert "*Previous:* قبل" in text
    assert "*Next:* بعد" in text
    assert "[EN]:" in text
    assert "Preserve terms untranslated" in text


def test_untouched_document_parses_to_nothing():
    gaps = _gaps(3) + [GapRecord(id="tricky", src="---\n[EN]: not a slot\n<!-- gap-id: fake -->")]
    builder = BatchBuilder()
    text = builder.render(builder.build(gaps)[0])
    assert parse_batch_document(text) == {}


def test_parse_filled_slots():
    builder = BatchBuilder()
    text = builder.render(builder.build(_gaps(3))[0])
    text = insert_translation(text, "S001-0000", "Text number 0")
    text = insert_translation(text, "S001-0002", "Text\nnumber   2")
    assert parse_batch_document(text) == {"S001-0000": "Text number 0", "S001-0002": "Text number 2"}


def test_parse_multiline_slot_and_text_on_marker_line():
    text = "\n".join(
        [
            "<!-- gap-id: a -->",
            "**Arabic:**",
            "مرحبا",
            "[EN]: Hello",
            "there",
            "",
            "friend",
            "---",
            "<!-- gap-id: b -->",
            "[EN]:",
            "Last one",
        ]
    )
    assert parse_batch_document(text) == {"a": "Hello there friend", "b": "Last one"}


def test_arabic_label_is_not_read_as_an_id():
    text = "**S001-0001**\n<!-- gap-id: S001-0001 -->\n**Arabic:**\nمرحبا\n[EN]:\nHello\n---\n"
    assert parse_batch_document(text) == {"S001-0001": "Hello"}


def test_insert_translation_unknown_id():
    text = BatchBuilder().render(BatchBuilder().build(_gaps(1))[0])
    with pytest.raises(KeyError):
        insert_translation(text, "missing", "x")


def test_write_batches_removes_orphans(tmp_path):
    builder = BatchBuilder(batch_size=2)
    builder.write_batches(builder.build(_gaps(5)), tmp_path)
    assert len(list_batch_files(tmp_path)) == 3
    (tmp_path / "notes.md").write_text("keep me", encoding="utf-8")

    builder.write_batches(builder.build(_gaps(1)), tmp_path)
    assert [p.name for p in list_batch_files(tmp_path)] == ["batch-0001.md"]
    assert (tmp_path / "notes.md").exists()

    builder.write_batches([], tmp_path)
    assert list_batch_files(tmp_path) == []


def test_style_profile_override_and_digest(tmp_path):
    path = tmp_path / "style.json"
    path.write_text(json.dumps({"name": "house-style", "conventions": ["Use Oxford commas"]}), encoding="utf-8")
    profile = load_style_profile(path)
    assert profile.name == "house-style"
    assert "Use Oxford commas" in profile.as_instructions()
    assert profile.digest.startswith("house-style:")
    assert profile.digest != StyleProfile().digest
    assert load_style_profile(None).digest == StyleProfile().digest


def test_style_profile_rejects_unknown_keys(tmp_path):
    path = tmp_path / "style.json"
    path.write_text(json.dumps({"colour": "blue"}), encoding="utf-8")
    with pytest.raises(ValueError):
        load_style_profile(path)
