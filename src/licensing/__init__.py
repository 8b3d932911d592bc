"""
Offline license keys, tier catalogue and entitlement resolution.
"""

from .codec import LicenseError, LicenseValidation, ValidationErrorCode, generate, validate
from .manager import EntitlementStatus, Entitlements, InvalidLicenseKey, LicenseManager

__all__ = [
    "EntitlementStatus",
    "Entitlements",
    "InvalidLicenseKey",
    "LicenseError",
    "LicenseManager",
    "LicenseValidation",
    "ValidationErrorCode",
    "generate",
    "validate",
]
