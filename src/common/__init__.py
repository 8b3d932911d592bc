"""
Common utilities for the PocketWall protection layer.

Modules:
- crypto: PBKDF2 key derivation and AES-256-GCM encrypt/decrypt
- kvstore: JSON-file key-value store (local settings storage)
- status: observable progress status with subscribe/unsubscribe
- config: environment-driven configuration
- log: structlog setup
"""

__all__ = [
    "config",
    "crypto",
    "kvstore",
    "log",
    "status",
]
