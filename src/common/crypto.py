"""
Password-based authenticated encryption for application data.

PBKDF2-HMAC-SHA256 (100,000 iterations) turns a password plus a random
16-byte salt into a 256-bit key; AES-256-GCM with a random 96-bit nonce
encrypts the payload and appends a 16-byte authentication tag.

Every encryption produces an `EncryptedPackage` with fresh salt and nonce.
Decryption with a wrong password and decryption of tampered ciphertext fail
the same way (`DecryptionFailed`); callers never see unauthenticated bytes.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import json
import os
from functools import lru_cache
from typing import Any, Mapping, Union

from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .log import get_logger


PACKAGE_VERSION = "1"
SALT_SIZE = 16
NONCE_SIZE = 12
KEY_SIZE = 32
TAG_SIZE = 16
KDF_ITERATIONS = 100_000

logger = get_logger(__name__)


class CryptoError(RuntimeError):
    """Base error for the encryption layer."""


class EncryptionError(CryptoError):
    """The AEAD/KDF backend is unavailable or failed unexpectedly."""


class DecryptionFailed(CryptoError):
    """Wrong password, or the package was corrupted or tampered with."""


def _b64encode(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def _b64decode(text: str) -> bytes:
    return base64.b64decode(text.strip(), validate=True)


class EncryptedPackage(BaseModel):
    """
    The unit of ciphertext interchange.

    Binary fields are standard base64. `ciphertext` includes the GCM tag.
    Packages written by older clients name that field `encrypted`; both
    names are accepted on input, `ciphertext` is written.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    ciphertext: str = Field(validation_alias=AliasChoices("ciphertext", "encrypted"))
    iv: str
    salt: str
    version: str = PACKAGE_VERSION

    def raw_parts(self) -> tuple[bytes, bytes, bytes]:
        """Return decoded (salt, iv, ciphertext); raises ValueError on bad base64."""
        return _b64decode(self.salt), _b64decode(self.iv), _b64decode(self.ciphertext)

    def to_json(self) -> str:
        return json.dumps(self.model_dump(), separators=(",", ":"), sort_keys=True)

    def to_token(self) -> str:
        """Compact form: base64(salt || iv || ciphertext). Never starts with '{'."""
        salt, iv, ct = self.raw_parts()
        return _b64encode(salt + iv + ct)

    @classmethod
    def from_token(cls, token: str) -> "EncryptedPackage":
        raw = _b64decode(token)
        if len(raw) < SALT_SIZE + NONCE_SIZE + TAG_SIZE:
            raise ValueError("Encrypted token is too short")
        return cls(
            salt=_b64encode(raw[:SALT_SIZE]),
            iv=_b64encode(raw[SALT_SIZE:SALT_SIZE + NONCE_SIZE]),
            ciphertext=_b64encode(raw[SALT_SIZE + NONCE_SIZE:]),
        )

    @classmethod
    def loads(cls, text: str) -> "EncryptedPackage":
        """Parse either the JSON object form or the compact token form."""
        s = text.strip()
        if s.startswith("{"):
            return cls.model_validate(json.loads(s))
        return cls.from_token(s)


PackageLike = Union[EncryptedPackage, Mapping[str, Any], str]


@lru_cache(maxsize=1)
def is_encryption_supported() -> bool:
    """Can this interpreter's crypto backend do PBKDF2 + AES-GCM?"""
    try:
        key = PBKDF2HMAC(
            algorithm=hashes.SHA256(), length=KEY_SIZE, salt=bytes(SALT_SIZE), iterations=1
        ).derive(b"self-test")
        AESGCM(key).encrypt(bytes(NONCE_SIZE), b"self-test", None)
    except (UnsupportedAlgorithm, ValueError, TypeError) as ex:
        logger.error("crypto_backend_unavailable", error=str(ex))
        return False
    return True


def _require_backend() -> None:
    if not is_encryption_supported():
        raise EncryptionError("AES-256-GCM is not available on this system")


def _require_password(password: str) -> None:
    if not isinstance(password, str) or not password:
        raise ValueError("password must be a non-empty string")


def derive_key(password: str, salt: bytes) -> bytes:
    """Derive a 256-bit AES key from `password` and a 16-byte `salt`.

    Deterministic for identical inputs; deliberately slow (100k PBKDF2 rounds).
    """
    _require_password(password)
    if len(salt) != SALT_SIZE:
        raise ValueError(f"salt must be {SALT_SIZE} bytes")
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=salt,
        iterations=KDF_ITERATIONS,
    )
    return kdf.derive(password.encode("utf-8"))


def _to_bytes(data: Any) -> bytes:
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    # Strings too, so that "123" or "null" decrypt back to strings
    return json.dumps(data, separators=(",", ":")).encode("utf-8")


def encrypt(data: Any, password: str) -> EncryptedPackage:
    """Encrypt `data` under `password`.

    Every value except bytes is JSON-serialized first (TypeError if it is not
    serializable), so `decrypt` returns an equal value. Bytes are taken as
    already-serialized plaintext and are not wrapped: `decrypt` hands back
    whatever they parse to (JSON value, text, or the bytes themselves).
    """
    _require_password(password)
    _require_backend()
    plaintext = _to_bytes(data)

    salt = os.urandom(SALT_SIZE)
    iv = os.urandom(NONCE_SIZE)
    key = derive_key(password, salt)
    try:
        ciphertext = AESGCM(key).encrypt(iv, plaintext, None)
    except (UnsupportedAlgorithm, OverflowError) as ex:
        raise EncryptionError("Failed to encrypt data") from ex

    return EncryptedPackage(
        ciphertext=_b64encode(ciphertext),
        iv=_b64encode(iv),
        salt=_b64encode(salt),
        version=PACKAGE_VERSION,
    )


def _coerce_package(pkg: PackageLike) -> EncryptedPackage:
    if isinstance(pkg, EncryptedPackage):
        return pkg
    if isinstance(pkg, str):
        return EncryptedPackage.loads(pkg)
    return EncryptedPackage.model_validate(dict(pkg))


def decrypt(pkg: PackageLike, password: str) -> Any:
    """Decrypt a package produced by `encrypt`.

    Returns the parsed JSON value when the plaintext is JSON, the text
    otherwise (or raw bytes if the plaintext is not UTF-8).
    Raises DecryptionFailed for a wrong password or any corruption.
    """
    _require_password(password)
    _require_backend()
    try:
        package = _coerce_package(pkg)
        salt, iv, ciphertext = package.raw_parts()
    except ValueError as ex:
        raise DecryptionFailed("Malformed encrypted package") from ex

    if len(salt) != SALT_SIZE or len(iv) != NONCE_SIZE or len(ciphertext) < TAG_SIZE:
        raise DecryptionFailed("Malformed encrypted package")

    key = derive_key(password, salt)
    try:
        plaintext = AESGCM(key).decrypt(iv, ciphertext, None)
    except InvalidTag as ex:
        logger.debug("decrypt_failed", reason="authentication tag mismatch")
        raise DecryptionFailed("Failed to decrypt data. Wrong password?") from ex

    try:
        text = plaintext.decode("utf-8")
    except UnicodeDecodeError:
        return plaintext
    try:
        return json.loads(text)
    except ValueError:
        return text


async def encrypt_async(data: Any, password: str) -> EncryptedPackage:
    """`encrypt` on a worker thread so key derivation never blocks the event loop."""
    return await asyncio.to_thread(encrypt, data, password)


async def decrypt_async(pkg: PackageLike, password: str) -> Any:
    return await asyncio.to_thread(decrypt, pkg, password)


def generate_password(length: int = 32) -> str:
    """Random base64-alphabet password of `length` characters."""
    if length <= 0:
        raise ValueError("length must be > 0")
    return _b64encode(os.urandom(length))[:length]


def hash_password(password: str) -> str:
    """SHA-256 digest of `password`, base64-encoded (for verification, not storage of keys)."""
    return _b64encode(hashlib.sha256(password.encode("utf-8")).digest())
