from __future__ import annotations

from typing import Any, Dict, Mapping, Protocol

from common.kvstore import JsonFileStore
from common.log import get_logger


SETTINGS_KEY = "pocketwall_settings"

# Backup collection name -> (storage key, empty value)
COLLECTIONS: Dict[str, tuple[str, Any]] = {
    "transactions": ("pocketwall_transactions", []),
    "payees": ("pocketwall_payees", []),
    "recurring": ("pocketwall_recurring", []),
    "investments": ("pocketwall_investments", []),
    "goals": ("pocketwall_goals", []),
    "settings": (SETTINGS_KEY, {}),
    "budgets": ("pocketwall_budgets", {}),
    "friends": ("pocketwall_friends", []),
    "shared_expenses": ("pocketwall_shared_expenses", []),
    "alerts": ("pocketwall_alerts", []),
    "crypto_holdings": ("pocketwall_crypto_holdings", {}),
    "crypto_watchlist": ("pocketwall_crypto_watchlist", []),
    "prices": ("pocketwall_prices", {}),
    "trial_data": ("pocketwall_trial_data", {}),
    "feature_flags": ("feature_flags", {}),
    "reminders": ("pocketwall_reminders", []),
    "loans": ("pocketwall_loans", []),
    "assets": ("pocketwall_assets", []),
    "charity": ("pocketwall_charity", []),
}

logger = get_logger(__name__)


class DataStore(Protocol):
    """Whole-application data as seen by BackupManager (opaque pass-through)."""

    def get_all_data(self) -> Dict[str, Any]: ...

    def import_data(self, data: Mapping[str, Any]) -> None: ...


class SettingsStore(Protocol):
    def get_user_settings(self) -> Dict[str, Any]: ...

    def update_user_settings(self, settings: Mapping[str, Any]) -> None: ...


class LocalDataStore:
    """
    DataStore + SettingsStore over the local JSON key-value store.

    - `get_all_data()` returns every known collection, empty ones included.
    - `import_data()` writes all present collections in one atomic update;
      `None` values are skipped and unknown names are ignored (logged).
    - Settings are replaced wholesale on update, like the app's own storage.
    """

    def __init__(self, store: JsonFileStore) -> None:
        self._store = store

    def get_all_data(self) -> Dict[str, Any]:
        return {name: self._store.get(key, empty) for name, (key, empty) in COLLECTIONS.items()}

    def import_data(self, data: Mapping[str, Any]) -> None:
        if not isinstance(data, Mapping):
            raise TypeError("import_data expects a mapping of collections")
        updates: Dict[str, Any] = {}
        for name, value in data.items():
            entry = COLLECTIONS.get(name)
            if entry is None:
                logger.warning("import_unknown_collection", collection=name)
                continue
            if value is None:
                continue
            updates[entry[0]] = value
        self._store.update(updates)
        logger.info("data_imported", collections=sorted(k for k in data if k in COLLECTIONS))

    def get_user_settings(self) -> Dict[str, Any]:
        settings = self._store.get(SETTINGS_KEY, {})
        return settings if isinstance(settings, dict) else {}

    def update_user_settings(self, settings: Mapping[str, Any]) -> None:
        self._store.set(SETTINGS_KEY, dict(settings))
