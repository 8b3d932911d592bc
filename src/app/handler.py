from __future__ import annotations

import json
import sys
from dataclasses import dataclass
from typing import Any, Dict, Optional

from backup.manager import BackupManager, BackupSink, FileBackupSink
from common.config import AppConfig
from common.kvstore import JsonFileStore
from common.log import configure_logging, get_logger
from licensing.manager import Entitlements, LicenseManager
from state.data_store import LocalDataStore
from state.s3_store import S3BackupStore
from trial.clock import TrialClock


logger = get_logger(__name__)


@dataclass
class Services:
    config: AppConfig
    store: JsonFileStore
    data: LocalDataStore
    backups: BackupManager
    trial: TrialClock
    licenses: LicenseManager
    entitlements: Entitlements


def _build_sink(config: AppConfig, user_id: Optional[str], s3: Optional[object]) -> BackupSink:
    if config.backup_bucket:
        return S3BackupStore(s3=s3, bucket=config.backup_bucket, prefix=config.backup_prefix, user_id=user_id)
    return FileBackupSink(config.resolved_backup_dir)


def build_services(
    config: Optional[AppConfig] = None,
    *,
    user_id: Optional[str] = None,
    s3: Optional[object] = None,
) -> Services:
    """Wire every component against one settings file.

    Backups go to S3 when a bucket is configured, otherwise to the backup
    directory. `s3` lets callers pass a preconfigured (or fake) client.
    """
    config = config or AppConfig.from_env()
    configure_logging(config.log_level, json_output=config.log_json)

    store = JsonFileStore(config.settings_path)
    data = LocalDataStore(store)
    trial = TrialClock(store)
    licenses = LicenseManager(data)
    return Services(
        config=config,
        store=store,
        data=data,
        backups=BackupManager(data, _build_sink(config, user_id, s3)),
        trial=trial,
        licenses=licenses,
        entitlements=Entitlements(licenses, trial),
    )


def run_once(config: Optional[AppConfig] = None) -> Dict[str, Any]:
    """Startup check: resolve the effective tier and report it."""
    services = build_services(config)
    ent = services.entitlements.resolve()
    out: Dict[str, Any] = {
        "ok": True,
        "tier": ent.tier,
        "is_trial": ent.is_trial,
        "license_expires_at": None,
        "trial_remaining_hours": None,
    }
    if ent.license is not None and ent.license.license_expires_at is not None:
        out["license_expires_at"] = ent.license.license_expires_at.isoformat()
    if ent.trial is not None:
        out["trial_remaining_hours"] = round(ent.trial.remaining_hours, 2)
    logger.info("entitlements_resolved", **out)
    return out


def main() -> int:
    print(json.dumps(run_once()))
    return 0


if __name__ == "__main__":
    sys.exit(main())
