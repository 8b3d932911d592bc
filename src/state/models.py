from __future__ import annotations

from datetime import datetime, UTC
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from common.log import get_logger


BACKUP_FORMAT_VERSION = "2.0"
TRIAL_STATE_VERSION = "1.0"
ANONYMOUS_USER = "anonymous"

# Top-level key older backups merged into the data payload
LEGACY_META_KEY = "_meta"

logger = get_logger(__name__)


def _as_utc(v: Optional[datetime]) -> Optional[datetime]:
    if v is not None and v.tzinfo is None:
        return v.replace(tzinfo=UTC)
    return v


def iso_z(dt: datetime) -> str:
    """Millisecond ISO-8601 in UTC with a trailing "Z" (e.g. 2024-05-01T10:00:00.000Z)."""
    dt = dt.astimezone(UTC)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


class BackupMeta(BaseModel):
    """
    Metadata block stored with every backup (v2.0+).

    `userId` binds the snapshot to the account that produced it; it is
    immutable once written ("anonymous" when nobody was signed in).
    Fields are optional on input so that hand-edited or older `_meta`
    blocks still parse.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    version: Optional[str] = BACKUP_FORMAT_VERSION
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    user_id: Optional[str] = Field(default=ANONYMOUS_USER, alias="userId")
    encrypted: bool = False

    @property
    def owner(self) -> Optional[str]:
        """The bound account, or None for anonymous/unbound backups."""
        if not self.user_id or self.user_id == ANONYMOUS_USER:
            return None
        return self.user_id


class BackupEnvelope(BaseModel):
    """
    A backup snapshot: metadata kept beside, never inside, the data payload.

    Wire form (written): {"meta": {...}, "payload": {...}}
    Also read:
    - v2.0 files from older clients with `_meta` merged into the payload;
    - pre-2.0 files, which are the bare payload with no metadata.
    """

    meta: Optional[BackupMeta] = None
    payload: Dict[str, Any] = Field(default_factory=dict)

    def to_wire(self) -> Dict[str, Any]:
        return {
            "meta": self.meta.model_dump(by_alias=True) if self.meta else None,
            "payload": self.payload,
        }

    @classmethod
    def from_wire(cls, raw: Any) -> "BackupEnvelope":
        if not isinstance(raw, dict):
            raise ValueError("Backup content must be a JSON object")

        if set(raw) == {"meta", "payload"} and isinstance(raw["payload"], dict):
            meta_raw = raw["meta"]
            meta = BackupMeta.model_validate(meta_raw) if isinstance(meta_raw, dict) else None
            return cls(meta=meta, payload=dict(raw["payload"]))

        payload = dict(raw)
        if LEGACY_META_KEY in payload:
            meta_raw = payload.pop(LEGACY_META_KEY)
            meta = BackupMeta.model_validate(meta_raw) if isinstance(meta_raw, dict) else None
            return cls(meta=meta, payload=payload)

        return cls(meta=None, payload=payload)


class TrialState(BaseModel):
    """Trial clock state; persisted only in encrypted form."""

    model_config = ConfigDict(populate_by_name=True)

    start_time: datetime = Field(alias="startTime")
    version: str = TRIAL_STATE_VERSION

    @field_validator("start_time")
    @classmethod
    def start_time_utc(cls, v: datetime) -> datetime:
        return _as_utc(v)

    def to_storage(self) -> Dict[str, str]:
        return {"startTime": iso_z(self.start_time), "version": self.version}


class LicenseActivation(BaseModel):
    """
    The license record kept in user settings after a successful activation.

    Computed once at activation; expiry is compared against the clock by
    callers (see `is_expired`), never re-derived from the key.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    license_key: str = Field(alias="licenseKey")
    license_tier: str = Field(alias="licenseTier")
    license_duration: Optional[str] = Field(default=None, alias="licenseDuration")
    license_activated_at: Optional[datetime] = Field(default=None, alias="licenseActivatedAt")
    license_expires_at: Optional[datetime] = Field(default=None, alias="licenseExpiresAt")

    @field_validator("license_activated_at", "license_expires_at")
    @classmethod
    def timestamps_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)

    def is_expired(self, now: datetime) -> bool:
        if self.license_expires_at is None:
            return False
        return now >= self.license_expires_at

    def to_settings(self) -> Dict[str, Optional[str]]:
        return {
            "licenseKey": self.license_key,
            "licenseTier": self.license_tier,
            "licenseDuration": self.license_duration,
            "licenseActivatedAt": iso_z(self.license_activated_at) if self.license_activated_at else None,
            "licenseExpiresAt": iso_z(self.license_expires_at) if self.license_expires_at else None,
        }

    @classmethod
    def from_settings(cls, settings: Dict[str, Any]) -> Optional["LicenseActivation"]:
        """The stored record, or None if absent or unreadable (logged)."""
        if not settings.get("licenseKey") or not settings.get("licenseTier"):
            return None
        try:
            return cls.model_validate(settings)
        except ValidationError as ex:
            logger.warning("license_record_invalid", errors=ex.error_count())
            return None
