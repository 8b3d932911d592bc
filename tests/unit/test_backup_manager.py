from __future__ import annotations

import asyncio
import base64
import json
from datetime import datetime, UTC
from typing import Any, Dict, List, Mapping

import pytest
from structlog.testing import capture_logs

from backup.manager import (
    BackupManager,
    FileBackupSink,
    InvalidPasswordOrCorrupt,
    OwnershipMismatch,
    PasswordRequired,
    RestoreFailed,
    backup_filename,
)
from common.status import STATUS_ERROR, STATUS_RUNNING, STATUS_SUCCESS
from state.s3_store import BackupNotFound


FIXED_NOW = datetime(2024, 5, 1, 10, 0, 0, tzinfo=UTC)


class _FakeDataStore:
    def __init__(self, data: Dict[str, Any] | None = None, *, fail_import: bool = False) -> None:
        self.data = data if data is not None else {"transactions": [{"id": 1, "amount": 9.99}], "settings": {}}
        self.imports: List[Dict[str, Any]] = []
        self.fail_import = fail_import

    def get_all_data(self) -> Dict[str, Any]:
        return json.loads(json.dumps(self.data))

    def import_data(self, data: Mapping[str, Any]) -> None:
        if self.fail_import:
            raise OSError("disk full")
        self.imports.append(dict(data))


class _MemorySink:
    def __init__(self, *, ok: bool = True) -> None:
        self.saved: Dict[str, str] = {}
        self.ok = ok

    def save(self, content: str, filename: str) -> bool:
        if self.ok:
            self.saved[filename] = content
        return self.ok

    def load(self, filename: str) -> str:
        if filename not in self.saved:
            raise BackupNotFound(filename)
        return self.saved[filename]

    def list_backups(self) -> List[str]:
        return sorted(self.saved)


def _manager(store=None, sink=None) -> BackupManager:
    return BackupManager(store or _FakeDataStore(), sink or _MemorySink(), clock=lambda: FIXED_NOW)


def test_plaintext_backup_roundtrip():
    store = _FakeDataStore()
    sink = _MemorySink()
    mgr = _manager(store, sink)

    result = mgr.create_backup(user_id="user_A")

    assert result.saved is True
    assert result.filename == "pocketwall_backup_2024-05-01T10-00-00-000Z.json"
    assert sink.saved[result.filename] == result.content
    wire = json.loads(result.content)
    assert wire["meta"] == {
        "version": "2.0",
        "createdAt": "2024-05-01T10:00:00.000Z",
        "userId": "user_A",
        "encrypted": False,
    }
    assert wire["payload"] == store.data

    mgr.restore_backup(result.content, current_user_id="user_A")
    assert store.imports == [store.data]


def test_encrypted_backup_roundtrip():
    store = _FakeDataStore()
    mgr = _manager(store)

    result = mgr.create_backup(encrypt=True, password="p@ss", user_id="user_A")

    assert result.filename.endswith(".enc.pwb")
    assert not result.content.startswith("{")
    assert "transactions" not in result.content

    mgr.restore_backup(result.content, password="p@ss", current_user_id="user_A", filename=result.filename)
    assert store.imports == [store.data]


def test_encrypted_backup_without_password_writes_nothing():
    sink = _MemorySink()
    mgr = _manager(sink=sink)

    with pytest.raises(PasswordRequired):
        mgr.create_backup(encrypt=True, password="")
    assert sink.saved == {}


def test_restore_encrypted_without_password_imports_nothing():
    store = _FakeDataStore()
    mgr = _manager(store)
    content = mgr.create_backup(encrypt=True, password="pw").content

    with pytest.raises(PasswordRequired):
        mgr.restore_backup(content)
    assert store.imports == []


def test_wrong_password_is_invalid_password_or_corrupt():
    store = _FakeDataStore()
    mgr = _manager(store)
    content = mgr.create_backup(encrypt=True, password="right").content

    with pytest.raises(InvalidPasswordOrCorrupt):
        mgr.restore_backup(content, password="wrong")
    assert store.imports == []


def test_restore_of_other_users_backup_is_refused():
    store = _FakeDataStore()
    mgr = _manager(store)
    content = mgr.create_backup(user_id="user_A").content

    with capture_logs() as logs:
        with pytest.raises(OwnershipMismatch) as exc:
            mgr.restore_backup(content, current_user_id="user_B")

    assert "user_A" in str(exc.value) and "user_B" in str(exc.value)
    assert exc.value.backup_user == "user_A"
    assert store.imports == []
    assert any(e["event"] == "backup_ownership_mismatch" for e in logs)


def test_force_restore_overrides_ownership():
    store = _FakeDataStore()
    mgr = _manager(store)
    content = mgr.create_backup(user_id="user_A").content

    mgr.restore_backup(content, current_user_id="user_B", force_restore=True)
    assert len(store.imports) == 1


@pytest.mark.parametrize(
    "backup_user,current_user",
    [("", "user_B"), ("user_A", "")],
)
def test_unbound_backup_or_anonymous_session_restores(backup_user, current_user):
    store = _FakeDataStore()
    mgr = _manager(store)
    content = mgr.create_backup(user_id=backup_user).content

    mgr.restore_backup(content, current_user_id=current_user)
    assert len(store.imports) == 1


def test_pre_v2_backup_without_meta_restores():
    store = _FakeDataStore()
    mgr = _manager(store)

    mgr.restore_backup(json.dumps({"transactions": [{"id": 7}]}), current_user_id="user_B")
    assert store.imports == [{"transactions": [{"id": 7}]}]


def test_merged_meta_layout_is_split_before_import():
    store = _FakeDataStore()
    mgr = _manager(store)
    legacy = {"transactions": [], "_meta": {"version": "2.0", "userId": "user_A", "encrypted": False}}

    with pytest.raises(OwnershipMismatch):
        mgr.restore_backup(json.dumps(legacy), current_user_id="user_B")

    mgr.restore_backup(json.dumps(legacy), current_user_id="user_A")
    assert store.imports == [{"transactions": []}]


def test_legacy_base64_backup_restores_with_warning():
    store = _FakeDataStore()
    mgr = _manager(store)
    content = base64.b64encode(json.dumps({"transactions": [{"id": 3}]}).encode("utf-8")).decode("ascii")

    with capture_logs() as logs:
        mgr.restore_backup(content, password="anything", filename="old.enc")

    assert store.imports == [{"transactions": [{"id": 3}]}]
    assert any(e["event"] == "backup_legacy_decode_used" for e in logs)


def test_garbage_encrypted_content_is_invalid_password_or_corrupt():
    mgr = _manager()
    with pytest.raises(InvalidPasswordOrCorrupt):
        mgr.restore_backup("definitely not a backup", password="pw")


def test_bad_json_is_restore_failed():
    mgr = _manager()
    with pytest.raises(RestoreFailed):
        mgr.restore_backup("{not json")


def test_import_failure_is_restore_failed_with_cause():
    store = _FakeDataStore(fail_import=True)
    mgr = _manager(store)
    content = mgr.create_backup().content

    with pytest.raises(RestoreFailed) as exc:
        mgr.restore_backup(content)
    assert isinstance(exc.value.__cause__, OSError)


def test_status_notifications():
    mgr = _manager(sink=_MemorySink(ok=False))
    seen = []
    mgr.status.subscribe(lambda e: seen.append(e.status))

    result = mgr.create_backup()
    assert result.saved is False
    assert seen == [STATUS_RUNNING, STATUS_ERROR]

    seen.clear()
    mgr.restore_backup(result.content)
    assert seen == [STATUS_RUNNING, STATUS_SUCCESS]
    assert mgr.status.last_success == FIXED_NOW


@pytest.mark.parametrize(
    "name,expected",
    [
        ("pocketwall_backup_x.enc.pwb", True),
        ("old_backup.enc", True),
        ("pocketwall_backup_x.json", False),
        ("", False),
        (None, False),
    ],
)
def test_is_encrypted_backup(name, expected):
    assert BackupManager.is_encrypted_backup(name) is expected


def test_backup_filename():
    assert backup_filename(FIXED_NOW, encrypted=True) == "pocketwall_backup_2024-05-01T10-00-00-000Z.enc.pwb"


def test_file_sink_and_restore_from_file(tmp_path):
    store = _FakeDataStore()
    sink = FileBackupSink(tmp_path / "backups")
    mgr = _manager(store, sink)

    result = mgr.create_backup(encrypt=True, password="pw", user_id="u1")
    path = tmp_path / "backups" / result.filename
    assert path.read_text(encoding="utf-8") == result.content
    assert list((tmp_path / "backups").iterdir()) == [path]

    mgr.restore_from_file(path, password="pw", current_user_id="u1")
    assert store.imports == [store.data]


def test_restore_from_missing_file_is_restore_failed(tmp_path):
    with pytest.raises(RestoreFailed):
        _manager().restore_from_file(tmp_path / "nope.json")


def test_file_sink_returns_false_when_directory_is_a_file(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("x", encoding="utf-8")
    assert FileBackupSink(blocker).save("content", "a.json") is False


def test_async_wrappers():
    store = _FakeDataStore()
    mgr = _manager(store)

    async def go():
        result = await mgr.create_backup_async(True, "pw", "u1")
        await mgr.restore_backup_async(result.content, "pw", "u1")

    asyncio.run(go())
    assert store.imports == [store.data]


def test_restore_from_sink_uses_saved_name_for_detection():
    store = _FakeDataStore()
    sink = _MemorySink()
    mgr = _manager(store, sink)
    result = mgr.create_backup(encrypt=True, password="pw", user_id="u1")

    assert mgr.list_backups() == [result.filename]
    mgr.restore_from_sink(result.filename, password="pw", current_user_id="u1")
    assert store.imports == [store.data]

    with pytest.raises(OwnershipMismatch):
        mgr.restore_from_sink(result.filename, password="pw", current_user_id="u2")


def test_restore_from_sink_missing_backup_is_restore_failed():
    store = _FakeDataStore()
    with pytest.raises(RestoreFailed) as exc:
        _manager(store).restore_from_sink("pocketwall_backup_missing.json")
    assert isinstance(exc.value.__cause__, BackupNotFound)
    assert store.imports == []


def test_file_sink_lists_and_loads_backups(tmp_path):
    sink = FileBackupSink(tmp_path / "backups")
    assert sink.list_backups() == []

    sink.save("b", "pocketwall_backup_2.json")
    sink.save("a", "pocketwall_backup_1.enc.pwb")
    (tmp_path / "backups" / "notes.txt").write_text("x", encoding="utf-8")

    assert sink.list_backups() == ["pocketwall_backup_1.enc.pwb", "pocketwall_backup_2.json"]
    assert sink.load("pocketwall_backup_2.json") == "b"
    with pytest.raises(BackupNotFound):
        sink.load("pocketwall_backup_3.json")


def test_restore_from_file_sink_refuses_paths_outside_its_directory(tmp_path):
    (tmp_path / "pocketwall_backup_x.json").write_text("{}", encoding="utf-8")
    mgr = _manager(sink=FileBackupSink(tmp_path / "backups"))

    with pytest.raises(RestoreFailed) as exc:
        mgr.restore_from_sink("../pocketwall_backup_x.json")
    assert isinstance(exc.value.__cause__, ValueError)
