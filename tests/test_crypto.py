"""
Key store + AES-GCM codec tests.

Usage:
    python -m pytest tests/test_crypto.py -v
"""

import os
from dataclasses import replace

import pytest

from ciphercast import crypto
from ciphercast.crypto import Envelope, SecretKey
from ciphercast.errors import AuthenticationFailed, KeyLengthInvalid, KeyMissing, MalformedEnvelope

from conftest import flip_bit


# =============================================================================
# Key store
# =============================================================================

def test_load_key_missing_file(tmp_path):
    with pytest.raises(KeyMissing):
        crypto.load_key(tmp_path / "secret.key")


@pytest.mark.parametrize("size", [0, 16, 31, 33, 64])
def test_load_key_wrong_length(tmp_path, size):
    path = tmp_path / "secret.key"
    path.write_bytes(os.urandom(size))
    with pytest.raises(KeyLengthInvalid):
        crypto.load_key(path)


def test_load_key_ok(tmp_path):
    raw = os.urandom(32)
    path = tmp_path / "secret.key"
    path.write_bytes(raw)
    key = crypto.load_key(path)
    assert key.material == raw
    assert raw.hex() not in repr(key)


def test_secret_key_is_immutable(key):
    with pytest.raises(AttributeError):
        key.material = b"\x00" * 32


def test_generate_key_does_not_overwrite(tmp_path):
    path = tmp_path / "keys" / "secret.key"
    assert crypto.generate_key(path) is True
    first = path.read_bytes()
    assert len(first) == 32
    assert crypto.generate_key(path) is False
    assert path.read_bytes() == first
    assert crypto.generate_key(path, overwrite=True) is True
    assert path.read_bytes() != first


def test_generate_keys_script(tmp_path, capsys):
    import generate_keys

    out = tmp_path / "secret.key"
    assert generate_keys.main(["--out", str(out)]) == 0
    assert len(out.read_bytes()) == 32
    assert "Generated secret.key" in capsys.readouterr().out
    assert generate_keys.main(["--out", str(out)]) == 0
    assert "already exists" in capsys.readouterr().out


# =============================================================================
# Codec
# =============================================================================

@pytest.mark.parametrize("plaintext", [b"", b"hello", os.urandom(1), os.urandom(70_000)])
def test_round_trip(key, plaintext):
    env = crypto.encrypt(key, plaintext)
    assert len(env.nonce) == crypto.NONCE_SIZE
    assert len(env.tag) == crypto.TAG_SIZE
    assert len(env.ciphertext) == len(plaintext)
    assert crypto.decrypt(key, env) == plaintext


def test_fixed_nonce_is_deterministic(key):
    nonce = bytes(range(12))
    a = crypto.encrypt(key, b"same input", nonce=nonce)
    b = crypto.encrypt(key, b"same input", nonce=nonce)
    assert a == b


def test_nonces_are_unique(key):
    nonces = {crypto.encrypt(key, b"x").nonce for _ in range(2000)}
    assert len(nonces) == 2000


def test_injected_nonce_must_be_12_bytes(key):
    with pytest.raises(ValueError):
        crypto.encrypt(key, b"x", nonce=b"short")


@pytest.mark.parametrize("field", ["nonce", "tag", "ciphertext"])
def test_every_single_bit_flip_fails(key, field):
    env = crypto.encrypt(key, b"attack at dawn")
    value = getattr(env, field)
    for i in range(len(value)):
        for bit in range(8):
            tampered = replace(env, **{field: flip_bit(value, i, bit)})
            with pytest.raises(AuthenticationFailed):
                crypto.decrypt(key, tampered)


def test_wrong_key_fails(key):
    env = crypto.encrypt(key, b"for the right key only")
    other = SecretKey(os.urandom(32))
    with pytest.raises(AuthenticationFailed):
        crypto.decrypt(other, env)


def test_substituted_ciphertext_fails(key):
    a = crypto.encrypt(key, b"first message")
    b = crypto.encrypt(key, b"other message")
    with pytest.raises(AuthenticationFailed):
        crypto.decrypt(key, Envelope(nonce=a.nonce, tag=a.tag, ciphertext=b.ciphertext))


def test_failure_message_is_generic(key):
    env = crypto.encrypt(key, b"secret")
    with pytest.raises(AuthenticationFailed) as info:
        crypto.decrypt(key, replace(env, tag=flip_bit(env.tag, 0)))
    assert str(info.value) == "authentication failed"


@pytest.mark.parametrize(
    "mangle",
    [
        lambda e: replace(e, nonce=e.nonce[:-1]),
        lambda e: replace(e, nonce=e.nonce + b"\x00"),
        lambda e: replace(e, tag=e.tag[:8]),
        lambda e: replace(e, ciphertext="not bytes"),
        lambda e: {"iv": e.nonce, "authTag": e.tag, "content": e.ciphertext},
    ],
)
def test_malformed_envelope_rejected(key, mangle):
    env = crypto.encrypt(key, b"payload")
    with pytest.raises(MalformedEnvelope):
        crypto.decrypt(key, mangle(env))
