from __future__ import annotations

import asyncio
import base64
import json
import random
import string

import pytest

from common import crypto
from common.crypto import DecryptionFailed, EncryptedPackage


def _flip_bit(b64: str, rng: random.Random) -> str:
    raw = bytearray(base64.b64decode(b64))
    bit = rng.randrange(len(raw) * 8)
    raw[bit // 8] ^= 1 << (bit % 8)
    return base64.b64encode(bytes(raw)).decode("ascii")


def _random_sample(rng: random.Random) -> tuple[dict, str]:
    payload = {
        "transactions": [
            {"id": rng.randrange(10**6), "amount": round(rng.uniform(-500, 500), 2)}
            for _ in range(rng.randint(1, 5))
        ],
        "note": "".join(rng.choice(string.printable) for _ in range(rng.randint(0, 40))),
    }
    password = "".join(rng.choice(string.ascii_letters + string.digits) for _ in range(rng.randint(1, 24)))
    return payload, password


def test_roundtrip_json_value():
    data = {"transactions": [{"id": 1, "amount": -12.5, "note": "café"}], "settings": {}}
    pkg = crypto.encrypt(data, "s3cret")

    assert pkg.version == "1"
    assert len(base64.b64decode(pkg.salt)) == 16
    assert len(base64.b64decode(pkg.iv)) == 12
    assert crypto.decrypt(pkg, "s3cret") == data


def test_roundtrip_plain_text_and_bytes():
    assert crypto.decrypt(crypto.encrypt("hello world", "pw"), "pw") == "hello world"
    assert crypto.decrypt(crypto.encrypt(b"\xff\x00\xfe", "pw"), "pw") == b"\xff\x00\xfe"


@pytest.mark.parametrize("value", ["123", "true", "null", '{"a": 1}', "[1, 2]", '"quoted"', ""])
def test_strings_that_look_like_json_stay_strings(value):
    assert crypto.decrypt(crypto.encrypt(value, "pw"), "pw") == value


@pytest.mark.parametrize("value", [0, 1.5, None, True, [], {}, ["a", {"b": None}]])
def test_roundtrip_scalars_and_containers(value):
    assert crypto.decrypt(crypto.encrypt(value, "pw"), "pw") == value


def test_bytes_are_encrypted_unwrapped():
    # Plaintext written by older clients: JSON text or free text as raw bytes
    assert crypto.decrypt(crypto.encrypt(b'{"a": 1}', "pw"), "pw") == {"a": 1}
    assert crypto.decrypt(crypto.encrypt(b"plain text", "pw"), "pw") == "plain text"


def test_fresh_salt_and_nonce_every_time():
    a = crypto.encrypt("same", "pw")
    b = crypto.encrypt("same", "pw")
    assert a.salt != b.salt
    assert a.iv != b.iv
    assert a.ciphertext != b.ciphertext


def test_wrong_password_fails():
    pkg = crypto.encrypt({"x": 1}, "right")
    with pytest.raises(DecryptionFailed):
        crypto.decrypt(pkg, "wrong")


@pytest.mark.parametrize("seed", [11, 23, 37, 41])
def test_random_samples_roundtrip_and_reject_any_flipped_bit(seed):
    rng = random.Random(seed)
    payload, password = _random_sample(rng)
    pkg = crypto.encrypt(payload, password)
    assert crypto.decrypt(pkg, password) == payload

    for field in ("ciphertext", "iv", "salt"):
        tampered = pkg.model_copy(update={field: _flip_bit(getattr(pkg, field), rng)})
        with pytest.raises(DecryptionFailed):
            crypto.decrypt(tampered, password)


def test_malformed_package_is_decryption_failure():
    with pytest.raises(DecryptionFailed):
        crypto.decrypt({"ciphertext": "not base64!!", "iv": "AAAA", "salt": "AAAA"}, "pw")
    with pytest.raises(DecryptionFailed):
        crypto.decrypt({"iv": "AAAA"}, "pw")


def test_accepts_legacy_field_name_and_dict_input():
    pkg = crypto.encrypt([1, 2, 3], "pw")
    legacy = {"encrypted": pkg.ciphertext, "iv": pkg.iv, "salt": pkg.salt, "version": "1"}

    assert crypto.decrypt(legacy, "pw") == [1, 2, 3]
    assert crypto.decrypt(json.dumps(legacy), "pw") == [1, 2, 3]


def test_token_form_roundtrip():
    pkg = crypto.encrypt({"k": "v"}, "pw")
    token = pkg.to_token()

    assert not token.startswith("{")
    assert EncryptedPackage.loads(token) == pkg
    assert EncryptedPackage.loads(pkg.to_json()) == pkg
    assert crypto.decrypt(token, "pw") == {"k": "v"}


def test_short_token_rejected():
    with pytest.raises(ValueError):
        EncryptedPackage.from_token(base64.b64encode(b"x" * 20).decode())


def test_empty_password_rejected():
    with pytest.raises(ValueError):
        crypto.encrypt({"x": 1}, "")
    with pytest.raises(ValueError):
        crypto.derive_key("", bytes(16))


def test_derive_key_is_deterministic():
    salt = bytes(range(16))
    k1 = crypto.derive_key("pw", salt)
    assert len(k1) == 32
    assert crypto.derive_key("pw", salt) == k1
    assert crypto.derive_key("pw2", salt) != k1


def test_encryption_backend_is_supported():
    assert crypto.is_encryption_supported() is True


def test_async_wrappers():
    async def go():
        pkg = await crypto.encrypt_async({"a": [1]}, "pw")
        return await crypto.decrypt_async(pkg, "pw")

    assert asyncio.run(go()) == {"a": [1]}


def test_generate_and_hash_password():
    pw = crypto.generate_password()
    assert len(pw) == 32
    assert crypto.generate_password(8) != crypto.generate_password(8)
    assert len(crypto.generate_password(5)) == 5

    digest = crypto.hash_password("hello")
    assert digest == crypto.hash_password("hello")
    assert len(base64.b64decode(digest)) == 32

    with pytest.raises(ValueError):
        crypto.generate_password(0)
