import copy

from parallel_sync import storage
from parallel_sync.batches import StyleProfile, insert_translation, list_batch_files, parse_batch_document
from parallel_sync.changelog import ChangeLog
from parallel_sync.config import DEFAULT_CONFIG, resolve_paths
from parallel_sync.locks import LockRegistry
from parallel_sync.segment_store import SegmentStore
from parallel_sync.utils import setup_logger
from run_pipeline import detect_and_build, merge_batches, translate_batches


def test_pipeline_with_default_config_waits_for_hand_translation(tmp_path):
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    assert cfg["translation"]["provider"] == "manual"
    paths = resolve_paths(cfg, tmp_path)
    storage.write_jsonl(
        paths["segments"],
        [
            {"id": "s1", "rowId": "S001-0001", "src": "مرحبا", "tgt": ""},
            {"id": "s2", "rowId": "S001-0002", "src": "hello", "tgt": "hi"},
        ],
    )
    logger = setup_logger(paths["logs_dir"], name="parallel-sync-test")
    locks = LockRegistry(paths["locks_dir"])
    store = SegmentStore(paths["segments"], locks, logger=logger)
    style = StyleProfile()

    gaps = detect_and_build(cfg, paths, store, style, logger)
    assert [g.id for g in gaps] == ["s1"]
    assert len(storage.read_jsonl(paths["gaps_manifest"])) == 1

    assert translate_batches(cfg, paths, style, logger) == 0
    (batch,) = list_batch_files(paths["batches_dir"])
    assert parse_batch_document(storage.read_text(batch)) == {}

    report = merge_batches(cfg, paths, store, locks, style, logger)
    assert report.merged_count == 0
    assert {s.id: s for s in store.load()}["s1"].tgt == ""

    storage.write_text(batch, insert_translation(storage.read_text(batch), "s1", "Hello"))
    report = merge_batches(cfg, paths, store, locks, style, logger)
    assert report.merged_count == 1
    merged = {s.id: s for s in store.load()}["s1"]
    assert merged.tgt == "Hello"
    assert merged.metadata["styleProfile"] == style.digest

    records = ChangeLog(paths["sync_dir"], locks).read_since("S001", 0)
    assert [(r.row_id, r.origin) for r in records] == [("s1", "batch-merge")]
    assert (paths["logs_dir"] / "app.log").exists()
