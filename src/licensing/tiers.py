from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional


STARTER = "starter"
PRO = "pro"
ELITE = "elite"

UNLIMITED = -1


@dataclass(frozen=True)
class TierConfig:
    label: str
    limits: Dict[str, int] = field(default_factory=dict)
    features: Dict[str, bool] = field(default_factory=dict)


TIER_CONFIG: Dict[str, TierConfig] = {
    STARTER: TierConfig(
        label="Starter Plan",
        limits={"maxAccounts": 2, "maxBudgets": 5, "maxRecurring": 2},
        features={
            "exportPDF": False,
            "aiInsights": False,
            "privacyMode": False,
            "investments": False,
            "crypto": False,
            "incognito": False,
            "secureNotes": False,
        },
    ),
    PRO: TierConfig(
        label="Pro Plan",
        limits={"maxAccounts": UNLIMITED, "maxBudgets": UNLIMITED, "maxRecurring": UNLIMITED},
        features={
            "exportPDF": True,
            "aiInsights": False,
            "privacyMode": True,
            "investments": True,
            "crypto": True,
            "incognito": False,
            "secureNotes": True,
        },
    ),
    ELITE: TierConfig(
        label="Elite Plan",
        limits={"maxAccounts": UNLIMITED, "maxBudgets": UNLIMITED, "maxRecurring": UNLIMITED},
        features={
            "exportPDF": True,
            "aiInsights": True,
            "privacyMode": True,
            "investments": True,
            "crypto": True,
            "incognito": True,
            "secureNotes": True,
        },
    ),
}


def has_feature(tier: str, feature: str) -> bool:
    cfg = TIER_CONFIG.get(tier)
    return bool(cfg and cfg.features.get(feature) is True)


def get_limit(tier: str, limit: str) -> Optional[int]:
    cfg = TIER_CONFIG.get(tier)
    return cfg.limits.get(limit) if cfg else None


def check_limit(tier: str, limit: str, current: int) -> bool:
    """True if one more item fits; undefined limits and UNLIMITED always fit."""
    value = get_limit(tier, limit)
    if value is None or value == UNLIMITED:
        return True
    return current < value

