from __future__ import annotations

import asyncio
import base64
import json
import os
from dataclasses import dataclass
from datetime import datetime, UTC
from pathlib import Path
from typing import Any, Callable, List, Optional, Protocol

from common import crypto
from common.crypto import DecryptionFailed, EncryptedPackage
from common.log import get_logger
from common.status import STATUS_ERROR, STATUS_RUNNING, STATUS_SUCCESS, StatusController
from state.data_store import DataStore
from state.models import ANONYMOUS_USER, BackupEnvelope, BackupMeta, iso_z
from state.s3_store import BackupNotFound


FILENAME_PREFIX = "pocketwall_backup_"
PLAIN_SUFFIX = ".json"
ENCRYPTED_SUFFIX = ".enc.pwb"
# Older clients also wrote bare ".enc" files
ENCRYPTED_SUFFIXES = (ENCRYPTED_SUFFIX, ".enc")

logger = get_logger(__name__)


class BackupError(RuntimeError):
    """Base error for backup and restore."""


class PasswordRequired(BackupError):
    """An encrypted backup was requested or supplied without a password."""


class InvalidPasswordOrCorrupt(BackupError):
    """Neither AES-GCM nor the legacy decoding could read the backup."""


class OwnershipMismatch(BackupError):
    """The backup belongs to a different account than the signed-in one."""

    def __init__(self, backup_user: str, current_user: str) -> None:
        super().__init__(
            f'This backup belongs to "{backup_user}". '
            f'You are logged in as "{current_user}". '
            "Restore not allowed for security reasons."
        )
        self.backup_user = backup_user
        self.current_user = current_user


class RestoreFailed(BackupError):
    """The backup could not be parsed or imported; the cause is chained."""


class BackupSink(Protocol):
    """Where finished backups go (folder, bucket) and where restores read them from."""

    def save(self, content: str, filename: str) -> bool: ...

    def load(self, filename: str) -> str: ...

    def list_backups(self) -> List[str]: ...


class FileBackupSink:
    """
    Backups as files in one directory.

    `save` returns False (logged) on OS errors; `load` raises BackupNotFound
    for a missing file.
    """

    def __init__(self, directory: os.PathLike[str] | str) -> None:
        self._dir = Path(directory)

    @property
    def directory(self) -> Path:
        return self._dir

    def _path(self, filename: str) -> Path:
        if not filename or Path(filename).name != filename:
            raise ValueError(f"Invalid backup filename: {filename!r}")
        return self._dir / filename

    def save(self, content: str, filename: str) -> bool:
        target = self._path(filename)
        tmp = target.with_name(f".{filename}.tmp")
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            tmp.write_text(content, encoding="utf-8")
            os.replace(tmp, target)
        except OSError as ex:
            logger.error("backup_write_failed", path=str(target), error=str(ex))
            try:
                tmp.unlink()
            except OSError:
                pass
            return False
        return True

    def load(self, filename: str) -> str:
        path = self._path(filename)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError as ex:
            raise BackupNotFound(str(path)) from ex

    def list_backups(self) -> List[str]:
        if not self._dir.is_dir():
            return []
        return sorted(p.name for p in self._dir.iterdir() if p.is_file() and p.name.startswith(FILENAME_PREFIX))


@dataclass(frozen=True)
class BackupResult:
    content: str
    filename: str
    saved: bool


def backup_filename(now: datetime, *, encrypted: bool) -> str:
    """pocketwall_backup_2024-05-01T10-00-00-000Z.json (or .enc.pwb)."""
    stamp = iso_z(now).replace(":", "-").replace(".", "-")
    return f"{FILENAME_PREFIX}{stamp}{ENCRYPTED_SUFFIX if encrypted else PLAIN_SUFFIX}"


class BackupManager:
    """
    Whole-data-store snapshots with account binding and optional encryption.

    - `create_backup` wraps `data_store.get_all_data()` with a metadata block
      (format version, creation time, owning user, encrypted flag) and hands
      the serialized result to the sink.
    - `restore_backup` detects encryption, decrypts (falling back to the legacy
      base64 encoding), refuses backups owned by another account unless
      `force_restore`, then imports the payload in one step.

    Nothing reaches the importer unless every check above passed.
    """

    def __init__(
        self,
        data_store: DataStore,
        sink: BackupSink,
        *,
        status: Optional[StatusController] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._data_store = data_store
        self._sink = sink
        self._status = status or StatusController(clock=clock)
        self._clock = clock

    @property
    def status(self) -> StatusController:
        return self._status

    @staticmethod
    def is_encrypted_backup(filename: Optional[str]) -> bool:
        return bool(filename) and filename.endswith(ENCRYPTED_SUFFIXES)

    # --------------- Create ---------------
    def create_backup(self, encrypt: bool = False, password: str = "", user_id: str = "") -> BackupResult:
        if encrypt and not password:
            raise PasswordRequired("Password required for encrypted backup")

        self._status.notify(STATUS_RUNNING, "Creating backup...")
        try:
            now = self._clock()
            envelope = BackupEnvelope(
                meta=BackupMeta(
                    created_at=iso_z(now),
                    user_id=user_id or ANONYMOUS_USER,
                    encrypted=bool(encrypt),
                ),
                payload=self._data_store.get_all_data(),
            )
            if encrypt:
                content = crypto.encrypt(envelope.to_wire(), password).to_token()
            else:
                content = json.dumps(envelope.to_wire(), indent=2)
            filename = backup_filename(now, encrypted=bool(encrypt))

            saved = self._sink.save(content, filename)
        except Exception as ex:
            self._status.notify(STATUS_ERROR, str(ex))
            raise

        if saved:
            self._status.notify(STATUS_SUCCESS, f"Backup saved as {filename}")
        else:
            self._status.notify(STATUS_ERROR, "Backup could not be saved")
        logger.info(
            "backup_created",
            filename=filename,
            encrypted=bool(encrypt),
            user_id=user_id or ANONYMOUS_USER,
            saved=saved,
        )
        return BackupResult(content=content, filename=filename, saved=saved)

    # --------------- Restore ---------------
    def restore_backup(
        self,
        file_content: str,
        password: str = "",
        current_user_id: str = "",
        force_restore: bool = False,
        *,
        filename: Optional[str] = None,
    ) -> None:
        self._status.notify(STATUS_RUNNING, "Restoring backup...")
        try:
            envelope = self._read_envelope(file_content, password, filename)
            self._check_owner(envelope, current_user_id, force_restore)
            try:
                self._data_store.import_data(envelope.payload)
            except Exception as ex:
                raise RestoreFailed(f"Import failed: {ex}") from ex
        except Exception as ex:
            self._status.notify(STATUS_ERROR, str(ex))
            raise

        self._status.notify(STATUS_SUCCESS, "Backup restored")
        logger.info(
            "backup_restored",
            filename=filename,
            owner=envelope.meta.owner if envelope.meta else None,
            current_user_id=current_user_id or None,
            forced=force_restore,
        )

    def restore_from_file(
        self,
        path: os.PathLike[str] | str,
        password: str = "",
        current_user_id: str = "",
        force_restore: bool = False,
    ) -> None:
        p = Path(path)
        try:
            content = p.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as ex:
            raise RestoreFailed(f"Cannot read backup file {p}") from ex
        self.restore_backup(content, password, current_user_id, force_restore, filename=p.name)

    def list_backups(self) -> List[str]:
        """Backups available at the configured destination, oldest first."""
        return self._sink.list_backups()

    def restore_from_sink(
        self,
        filename: str,
        password: str = "",
        current_user_id: str = "",
        force_restore: bool = False,
    ) -> None:
        """Restore a backup previously saved to the configured destination."""
        try:
            content = self._sink.load(filename)
        except (BackupNotFound, OSError, ValueError) as ex:
            raise RestoreFailed(f"Cannot read backup {filename}") from ex
        self.restore_backup(content, password, current_user_id, force_restore, filename=filename)

    async def create_backup_async(self, encrypt: bool = False, password: str = "", user_id: str = "") -> BackupResult:
        return await asyncio.to_thread(self.create_backup, encrypt, password, user_id)

    async def restore_backup_async(
        self,
        file_content: str,
        password: str = "",
        current_user_id: str = "",
        force_restore: bool = False,
        *,
        filename: Optional[str] = None,
    ) -> None:
        await asyncio.to_thread(
            self.restore_backup, file_content, password, current_user_id, force_restore, filename=filename
        )

    # --------------- Internals ---------------
    def _read_envelope(self, file_content: str, password: str, filename: Optional[str]) -> BackupEnvelope:
        content = file_content.strip()
        encrypted = self.is_encrypted_backup(filename) or not content.startswith("{")

        if encrypted:
            if not password:
                raise PasswordRequired("Password required for encrypted backup")
            raw = self._decrypt_content(content, password)
        else:
            try:
                raw = json.loads(content)
            except ValueError as ex:
                raise RestoreFailed("Backup is not valid JSON") from ex

        try:
            return BackupEnvelope.from_wire(raw)
        except ValueError as ex:
            raise RestoreFailed(f"Unrecognized backup layout: {ex}") from ex

    def _decrypt_content(self, content: str, password: str) -> Any:
        try:
            value = crypto.decrypt(EncryptedPackage.loads(content), password)
        except (DecryptionFailed, ValueError):
            return self._legacy_decode(content)

        if isinstance(value, str):
            try:
                value = json.loads(value)
            except ValueError as ex:
                raise RestoreFailed("Decrypted backup is not valid JSON") from ex
        return value

    @staticmethod
    def _legacy_decode(content: str) -> Any:
        # Pre-AES backups were plain base64 of the UTF-8 JSON text
        try:
            legacy = json.loads(base64.b64decode(content, validate=True).decode("utf-8"))
        except ValueError:
            legacy = None
        if not isinstance(legacy, dict):
            logger.warning("backup_decrypt_failed")
            raise InvalidPasswordOrCorrupt("Wrong password or corrupted backup")
        logger.warning("backup_legacy_decode_used")
        return legacy

    @staticmethod
    def _check_owner(envelope: BackupEnvelope, current_user_id: str, force_restore: bool) -> None:
        owner = envelope.meta.owner if envelope.meta else None
        if owner is None or not current_user_id or owner == current_user_id:
            return
        if force_restore:
            logger.warning("backup_ownership_overridden", owner=owner, current_user_id=current_user_id)
            return
        logger.warning("backup_ownership_mismatch", owner=owner, current_user_id=current_user_id)
        raise OwnershipMismatch(owner, current_user_id)
