from __future__ import annotations

from datetime import datetime, timedelta, UTC
from typing import Callable, Optional

from pydantic import BaseModel

from common import crypto
from common.crypto import DecryptionFailed
from common.kvstore import KeyValueStore
from common.log import get_logger
from state.models import TrialState


TRIAL_DURATION_HOURS = 72
STORAGE_KEY = "pocketwall_trial_data"
# Compiled into every client, so this only stops casual edits of the stored
# state. It is not a secret.
SYSTEM_KEY = "pw_sys_trial_v1_secure_key_998877"

logger = get_logger(__name__)


class TrialStatus(BaseModel):
    is_active: bool
    remaining_hours: float
    is_expired: bool
    start_time: datetime


class TrialClock:
    """
    One non-extendable evaluation window per installation.

    State machine: Unstarted -> Active -> Expired. The start time is stored
    encrypted under `SYSTEM_KEY` in the settings store.

    Missing, undecryptable or unparsable state restarts the trial (fail open)
    and is logged; a user is never locked out by a damaged settings file.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
        duration_hours: float = TRIAL_DURATION_HOURS,
    ) -> None:
        if duration_hours <= 0:
            raise ValueError("duration_hours must be > 0")
        self._store = store
        self._clock = clock
        self._duration = float(duration_hours)

    def check_status(self) -> TrialStatus:
        state = self._load()
        if state is None:
            return self._write(self._clock())
        return self._status_for(state.start_time)

    def start_trial(self) -> TrialStatus:
        """Start the window unless a valid one already exists (never extends it)."""
        state = self._load()
        if state is not None:
            logger.info("trial_already_started")
            return self._status_for(state.start_time)
        return self._write(self._clock())

    def reset_trial(self) -> TrialStatus:
        """Administrative: overwrite any existing state with a fresh start."""
        logger.info("trial_reset")
        return self._write(self._clock())

    def expire_trial(self) -> TrialStatus:
        """Testing aid: backdate the start so the window is already over."""
        start = self._clock() - timedelta(hours=self._duration + 1)
        return self._write(start)

    # -------- Internals --------
    def _load(self) -> Optional[TrialState]:
        stored = self._store.get(STORAGE_KEY)
        if not stored:
            logger.info("trial_state_missing")
            return None
        try:
            return self._read(stored)
        except (DecryptionFailed, ValueError) as ex:
            logger.warning("trial_state_invalid", error=str(ex))
            return None

    def _read(self, stored: object) -> TrialState:
        # Older clients stored the package as a JSON string
        if not isinstance(stored, (str, dict)):
            raise ValueError(f"Unexpected trial state type: {type(stored).__name__}")
        value = crypto.decrypt(stored, SYSTEM_KEY)
        if not isinstance(value, dict):
            raise ValueError("Trial state is not an object")
        return TrialState.model_validate(value)

    def _write(self, start: datetime) -> TrialStatus:
        state = TrialState(start_time=start)
        package = crypto.encrypt(state.to_storage(), SYSTEM_KEY)
        self._store.set(STORAGE_KEY, package.model_dump())
        return self._status_for(state.start_time)

    def _status_for(self, start: datetime) -> TrialStatus:
        elapsed_hours = (self._clock() - start).total_seconds() / 3600.0
        if elapsed_hours < 0:
            # Clock rolled back or state edited
            logger.warning("trial_start_in_future", start_time=start.isoformat())
            elapsed_hours = 0.0
        remaining = max(0.0, self._duration - elapsed_hours)
        expired = remaining <= 0
        return TrialStatus(
            is_active=not expired,
            remaining_hours=remaining,
            is_expired=expired,
            start_time=start,
        )
