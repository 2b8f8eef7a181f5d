import json

from parallel_sync.presence import PresenceRegistry


def test_heartbeat_then_list_active(tmp_path, locks, clock):
    reg = PresenceRegistry(tmp_path / "presence.json", locks, clock=clock)
    entry = reg.heartbeat("alice", "S001", "S001-0003")
    assert entry.active
    active = reg.list_active("S001")
    assert [(e.user_label, e.row_id, e.active) for e in active] == [("alice", "S001-0003", True)]
    assert reg.list_active("S002") == []


def test_one_entry_per_user_label(tmp_path, locks, clock):
    reg = PresenceRegistry(tmp_path / "presence.json", locks, clock=clock)
    reg.heartbeat("alice", "S001", "r1")
    clock.advance(1)
    reg.heartbeat("alice", "S002", "r9")
    assert reg.list_active("S001") == []
    assert [e.row_id for e in reg.list_active("S002")] == ["r9"]


def test_missing_label_is_anonymous(tmp_path, locks, clock):
    reg = PresenceRegistry(tmp_path / "presence.json", locks, clock=clock)
    assert reg.heartbeat(None, "S001").user_label == "Anonymous"


def test_stale_entries_are_swept(tmp_path, locks, clock):
    path = tmp_path / "presence.json"
    reg = PresenceRegistry(path, locks, stale_seconds=12, clock=clock)
    reg.heartbeat("alice", "S001", "r1")
    clock.advance(5)
    reg.heartbeat("bob", "S002", "r2")

    clock.advance(6.9)
    assert [e.user_label for e in reg.list_active("S001")] == ["alice"]

    clock.advance(0.1)
    assert reg.list_active("S001") == []
    # The sweep covers every section, not only the one asked for.
    assert set(json.loads(path.read_text())) == {"bob"}


def test_missing_or_corrupt_file_is_empty(tmp_path, locks, clock):
    path = tmp_path / "presence.json"
    reg = PresenceRegistry(path, locks, clock=clock)
    assert reg.list_active("S001") == []
    path.write_text("{oops", encoding="utf-8")
    assert reg.list_active("S001") == []
    reg.heartbeat("carol", "S001")
    assert [e.user_label for e in reg.list_active("S001")] == ["carol"]


def test_state_file_does_not_store_active_flag(tmp_path, locks, clock):
    path = tmp_path / "presence.json"
    PresenceRegistry(path, locks, clock=clock).heartbeat("alice", "S001", "r1")
    state = json.loads(path.read_text())
    assert state["alice"] == {
        "userLabel": "alice",
        "section": "S001",
        "row_id": "r1",
        "timestamp": "2024-05-01T10:00:00Z",
    }
