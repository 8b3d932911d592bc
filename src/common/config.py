from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


# Environment variable names
ENV_DATA_DIR = "POCKETWALL_DATA_DIR"
ENV_BACKUP_DIR = "POCKETWALL_BACKUP_DIR"
ENV_BACKUP_BUCKET = "POCKETWALL_BACKUP_BUCKET"
ENV_BACKUP_PREFIX = "POCKETWALL_BACKUP_PREFIX"
ENV_LOG_LEVEL = "POCKETWALL_LOG_LEVEL"
ENV_LOG_JSON = "POCKETWALL_LOG_JSON"

DEFAULT_DATA_DIR = Path.home() / ".pocketwall"
SETTINGS_FILENAME = "settings.json"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _getenv(name: str, default: Optional[str] = None) -> Optional[str]:
    val = os.environ.get(name)
    return val if val not in (None, "") else default


def _parse_bool(raw: Optional[str], default: bool) -> bool:
    if raw is None:
        return default
    s = raw.strip().lower()
    if s in ("1", "true", "yes", "on"):
        return True
    if s in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"Invalid boolean value: {raw!r}")


@dataclass(frozen=True)
class AppConfig:
    """
    Runtime configuration for the local protection layer.

    Environment variables (all optional)
    - `POCKETWALL_DATA_DIR`:      directory holding settings.json (default ~/.pocketwall)
    - `POCKETWALL_BACKUP_DIR`:    where file backups are written (default <data dir>/backups)
    - `POCKETWALL_BACKUP_BUCKET`: when set, backups go to this S3 bucket instead
    - `POCKETWALL_BACKUP_PREFIX`: key prefix inside the bucket (default "backups/")
    - `POCKETWALL_LOG_LEVEL`:     stdlib level name (default INFO)
    - `POCKETWALL_LOG_JSON`:      render logs as JSON (default true)
    """

    data_dir: Path = DEFAULT_DATA_DIR
    backup_dir: Optional[Path] = None
    backup_bucket: Optional[str] = None
    backup_prefix: str = "backups/"
    log_level: str = "INFO"
    log_json: bool = True

    @property
    def settings_path(self) -> Path:
        return self.data_dir / SETTINGS_FILENAME

    @property
    def resolved_backup_dir(self) -> Path:
        return self.backup_dir or (self.data_dir / "backups")

    @classmethod
    def from_env(cls) -> "AppConfig":
        data_dir = Path(_getenv(ENV_DATA_DIR) or DEFAULT_DATA_DIR).expanduser()
        backup_dir_raw = _getenv(ENV_BACKUP_DIR)
        level = (_getenv(ENV_LOG_LEVEL, "INFO") or "INFO").upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"{ENV_LOG_LEVEL} must be one of {', '.join(_LOG_LEVELS)}; got {level!r}")
        return cls(
            data_dir=data_dir,
            backup_dir=Path(backup_dir_raw).expanduser() if backup_dir_raw else None,
            backup_bucket=_getenv(ENV_BACKUP_BUCKET),
            backup_prefix=_getenv(ENV_BACKUP_PREFIX, "backups/") or "backups/",
            log_level=level,
            log_json=_parse_bool(_getenv(ENV_LOG_JSON), True),
        )
