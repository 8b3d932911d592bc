from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime, UTC
from typing import Callable, Optional

from common.log import get_logger
from state.data_store import SettingsStore
from state.models import LicenseActivation
from trial.clock import TrialClock, TrialStatus

from . import codec, tiers
from .tiers import PRO, STARTER


LICENSE_FIELDS = (
    "licenseKey",
    "licenseTier",
    "licenseDuration",
    "licenseActivatedAt",
    "licenseExpiresAt",
)

logger = get_logger(__name__)


class InvalidLicenseKey(codec.LicenseError):
    """Activation refused. The message never says which check failed."""


def add_months(dt: datetime, months: int) -> datetime:
    """Calendar-month addition, clamping the day (Jan 31 + 1 month -> Feb 28/29)."""
    total = dt.month - 1 + months
    year = dt.year + total // 12
    month = total % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


class LicenseManager:
    """
    Activates license keys into user settings.

    Purely local: validation is the offline checksum in `codec`, and the
    activation record is written through the settings collaborator.
    """

    def __init__(
        self,
        settings: SettingsStore,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._settings = settings
        self._clock = clock

    def activate(self, key: str) -> LicenseActivation:
        result = codec.validate(key)
        if not result.is_valid or result.tier is None or result.duration is None:
            logger.info("license_activation_rejected", reason=result.error.value if result.error else None)
            raise InvalidLicenseKey("Invalid license key")

        try:
            months = codec.duration_months(result.duration)
        except codec.LicenseError as ex:
            logger.info("license_activation_rejected", reason="UnsupportedDuration")
            raise InvalidLicenseKey("Invalid license key") from ex

        now = self._clock()
        record = LicenseActivation(
            license_key=key.strip().upper(),
            license_tier=result.tier,
            license_duration=result.duration,
            license_activated_at=now,
            license_expires_at=add_months(now, months),
        )
        settings = dict(self._settings.get_user_settings())
        settings.update(record.to_settings())
        self._settings.update_user_settings(settings)
        logger.info("license_activated", tier=record.license_tier, expires_at=settings["licenseExpiresAt"])
        return record

    def deactivate(self) -> None:
        settings = dict(self._settings.get_user_settings())
        settings.update({name: None for name in LICENSE_FIELDS})
        self._settings.update_user_settings(settings)
        logger.info("license_deactivated")

    def current(self) -> Optional[LicenseActivation]:
        """The stored activation record, if any (expired or not)."""
        return LicenseActivation.from_settings(self._settings.get_user_settings())


@dataclass(frozen=True)
class EntitlementStatus:
    tier: str
    is_trial: bool
    license: Optional[LicenseActivation] = None
    trial: Optional[TrialStatus] = None

    def has_feature(self, feature: str) -> bool:
        return tiers.has_feature(self.tier, feature)

    def check_limit(self, limit: str, current: int) -> bool:
        return tiers.check_limit(self.tier, limit, current)


class Entitlements:
    """
    Decides the effective tier.

    1. An activated license that has not expired grants its tier.
    2. Otherwise an active trial grants Pro.
    3. Otherwise Starter.

    The trial clock is only consulted (and thus only started) when no valid
    license exists.
    """

    def __init__(
        self,
        licenses: LicenseManager,
        trial: TrialClock,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._licenses = licenses
        self._trial = trial
        self._clock = clock

    def resolve(self) -> EntitlementStatus:
        record = self._licenses.current()
        if record is not None:
            if not record.is_expired(self._clock()):
                return EntitlementStatus(tier=record.license_tier, is_trial=False, license=record)
            logger.info("license_expired", tier=record.license_tier)

        status = self._trial.check_status()
        if status.is_active:
            return EntitlementStatus(tier=PRO, is_trial=True, license=record, trial=status)
        return EntitlementStatus(tier=STARTER, is_trial=False, license=record, trial=status)
