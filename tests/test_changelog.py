import json
import threading

import pytest

from parallel_sync import storage
from parallel_sync.changelog import ChangeLog, validate_section


def test_append_assigns_consecutive_revisions_per_section(tmp_path, locks, clock):
    log = ChangeLog(tmp_path / "sync", locks, clock=clock)
    r1 = log.append("S001", "S001-0001", {"english": "Hello"})
    r2 = log.append("S001", "S001-0002", {"english": "World"})
    other = log.append("S002", "S002-0001", {"english": "Elsewhere"})
    assert (r1.rev, r2.rev) == (1, 2)
    assert other.rev == 1
    assert log.current_revision("S001") == 2
    assert log.current_revision("S002") == 1


def test_counter_survives_restart(tmp_path, locks, clock):
    sync_dir = tmp_path / "sync"
    ChangeLog(sync_dir, locks, clock=clock).append("S001", "a", {"english": "one"})
    ChangeLog(sync_dir, locks, clock=clock).append("S001", "b", {"english": "two"})
    reopened = ChangeLog(sync_dir, locks, clock=clock)
    assert reopened.current_revision("S001") == 2
    assert reopened.append("S001", "c", {}).rev == 3


def test_counter_rolls_forward_after_crash_between_log_and_commit(tmp_path, locks, clock):
    sync_dir = tmp_path / "sync"
    log = ChangeLog(sync_dir, locks, clock=clock)
    log.append("S001", "a", {"english": "one"})
    # A record that reached the log but whose counter write never happened.
    storage.append_jsonl(
        sync_dir / "stream.ndjson",
        {"section": "S001", "row_id": "b", "rev": 2, "changes": {}, "timestamp": "2024-05-01T10:00:00Z", "origin": "user"},
    )
    assert log.current_revision("S001") == 1
    assert [r.rev for r in log.read_since("S001", 0)] == [1]

    restarted = ChangeLog(sync_dir, locks, clock=clock)
    assert restarted.append("S001", "c", {}).rev == 3
    assert [r.rev for r in restarted.read_since("S001", 0)] == [1, 2, 3]


def test_missing_counter_initialized_from_stream(tmp_path, locks, clock):
    sync_dir = tmp_path / "sync"
    log = ChangeLog(sync_dir, locks, clock=clock)
    assert log.current_revision("S009") == 0
    assert json.loads((sync_dir / "state" / "S009.json").read_text()) == {"revision": 0}

    log.append("S001", "a", {})
    log.append("S001", "b", {})
    (sync_dir / "state" / "S001.json").unlink()
    assert ChangeLog(sync_dir, locks, clock=clock).current_revision("S001") == 2


def test_read_since_filters_and_orders(tmp_path, locks, clock):
    log = ChangeLog(tmp_path / "sync", locks, clock=clock)
    log.append("S001", "a", {"english": "A"})
    clock.advance(1)
    log.append("S002", "x", {"english": "X"})
    log.append("S001", "b", {"english": "B"})
    clock.advance(1)
    log.append("S001", "c", {"english": "C"})

    records = log.read_since("S001", 1)
    assert [r.row_id for r in records] == ["b", "c"]
    assert all(r.section == "S001" for r in records)
    assert log.read_since("S001", 3) == []


def test_read_since_skips_malformed_lines(tmp_path, locks, clock):
    log = ChangeLog(tmp_path / "sync", locks, clock=clock)
    log.append("S001", "a", {})
    with open(log.stream_path, "a", encoding="utf-8") as f:
        f.write("{not json\n")
        f.write(json.dumps({"section": "S001", "row_id": "bad"}) + "\n")
    log.append("S001", "b", {})
    assert [r.row_id for r in log.read_since("S001", 0)] == ["a", "b"]


def test_read_since_without_stream_is_empty(tmp_path, locks):
    assert ChangeLog(tmp_path / "sync", locks).read_since("S001", 0) == []


def test_concurrent_appends_get_distinct_revisions(tmp_path, locks):
    log = ChangeLog(tmp_path / "sync", locks)
    revs = []
    guard = threading.Lock()

    def worker(n):
        for i in range(10):
            rec = log.append("S001", f"row-{n}-{i}", {"english": str(i)})
            with guard:
                revs.append(rec.rev)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(revs) == list(range(1, 41))
    assert log.current_revision("S001") == 40


@pytest.mark.parametrize("section", ["", "..", "a/b", "S 1"])
def test_invalid_section_rejected(section):
    with pytest.raises(ValueError):
        validate_section(section)


def test_origin_defaults_to_unknown(tmp_path, locks, clock):
    log = ChangeLog(tmp_path / "sync", locks, clock=clock)
    assert log.append("S001", "a", {}, origin="").origin == "unknown"


def test_failed_counter_write_never_reissues_revision(tmp_path, locks, clock, monkeypatch):
    log = ChangeLog(tmp_path / "sync", locks, clock=clock)
    log.append("S001", "a", {"english": "one"})

    original = log._write_counter
    calls = []

    def flaky(section, revision):
        calls.append(revision)
        if len(calls) == 1:
            raise OSError("disk full")
        original(section, revision)

    monkeypatch.setattr(log, "_write_counter", flaky)
    with pytest.raises(OSError):
        log.append("S001", "b", {"english": "two"})
    assert log.append("S001", "c", {"english": "three"}).rev == 3
    assert [r.rev for r in log.read_since("S001", 0)] == [1, 2, 3]


def test_append_rolls_forward_over_record_logged_by_another_writer(tmp_path, locks, clock):
    sync_dir = tmp_path / "sync"
    log = ChangeLog(sync_dir, locks, clock=clock)
    log.append("S001", "a", {})
    storage.append_jsonl(
        sync_dir / "stream.ndjson",
        {"section": "S001", "row_id": "b", "rev": 2, "changes": {}, "timestamp": "2024-05-01T10:00:00Z", "origin": "user"},
    )
    assert log.append("S001", "c", {}).rev == 3


def test_read_since_orders_by_timestamp_not_revision(tmp_path, locks, clock):
    log = ChangeLog(tmp_path / "sync", locks, clock=clock)
    log.append("S001", "late", {})
    clock.advance(-5)
    log.append("S001", "early", {})
    clock.advance(10)
    log.append("S001", "latest", {})
    assert [(r.row_id, r.rev) for r in log.read_since("S001", 0)] == [("early", 2), ("late", 1), ("latest", 3)]


def test_read_since_breaks_timestamp_ties_by_revision(tmp_path, locks, clock):
    log = ChangeLog(tmp_path / "sync", locks, clock=clock)
    for row in ["x", "y", "z"]:
        log.append("S001", row, {})
    clock.advance(-1)
    log.append("S001", "w", {})
    assert [(r.row_id, r.rev) for r in log.read_since("S001", 0)] == [("w", 4), ("x", 1), ("y", 2), ("z", 3)]


def test_read_since_without_counter_file_uses_logged_revisions(tmp_path, locks, clock):
    sync_dir = tmp_path / "sync"
    log = ChangeLog(sync_dir, locks, clock=clock)
    log.append("S001", "a", {})
    log.append("S001", "b", {})
    (sync_dir / "state" / "S001.json").unlink()
    assert [r.row_id for r in ChangeLog(sync_dir, locks, clock=clock).read_since("S001", 0)] == ["a", "b"]
