"""
crypto.py: the shared key and the AES-256-GCM envelope codec.

Why this exists:
- Keep every cipher detail in one place so the relay code only ever calls
  `encrypt(key, data)` / `decrypt(key, envelope)`.
- The key is loaded once and handed around as an immutable `SecretKey`
  value. Nothing reads it from a global.

Notes:
- 12-byte random nonce per encryption (os.urandom), 16-byte tag.
- `AESGCM.decrypt` checks the tag (constant time) before it returns any
  plaintext, so a failed check never leaks partial output.
"""

import base64
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import AuthenticationFailed, KeyLengthInvalid, KeyMissing, MalformedEnvelope

KEY_SIZE = 32    # AES-256
NONCE_SIZE = 12  # 96-bit GCM nonce
TAG_SIZE = 16    # 128-bit tag


# ---------
# Key store
# ---------

@dataclass(frozen=True)
class SecretKey:
    """Read-only 32-byte key. Safe to share between any number of tasks."""
    material: bytes = field(repr=False)

    def __post_init__(self) -> None:
        if not isinstance(self.material, bytes) or len(self.material) != KEY_SIZE:
            raise KeyLengthInvalid(f"Key must be {KEY_SIZE} bytes.")

    def to_base64(self) -> str:
        """Standard Base64 of the raw key. Only the demo /get_key route uses this."""
        return base64.b64encode(self.material).decode("ascii")


def load_key(path: Union[str, Path]) -> SecretKey:
    """
    Read the key file once at startup.

    Raises:
        KeyMissing: nothing at `path`.
        KeyLengthInvalid: file is not exactly 32 bytes.
    """
    p = Path(path)
    if not p.is_file():
        raise KeyMissing(f"{p} not found. Run: python generate_keys.py")
    data = p.read_bytes()
    if len(data) != KEY_SIZE:
        raise KeyLengthInvalid(f"{p} must be {KEY_SIZE} bytes (got {len(data)}).")
    return SecretKey(data)


def generate_key(path: Union[str, Path], overwrite: bool = False) -> bool:
    """
    Write a fresh random key to `path` with owner-only permissions.
    Returns False (and leaves the file alone) if one already exists.
    """
    p = Path(path)
    if p.exists() and not overwrite:
        return False
    p.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(p, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as f:
        f.write(os.urandom(KEY_SIZE))
    return True


# ----------
# AEAD codec
# ----------

@dataclass(frozen=True)
class Envelope:
    """nonce + tag + ciphertext. Useless unless all three travel together."""
    nonce: bytes
    tag: bytes
    ciphertext: bytes


def encrypt(key: SecretKey, plaintext: bytes, nonce: Optional[bytes] = None) -> Envelope:
    """
    Encrypt `plaintext` under `key`.

    A new nonce is drawn for every call. `nonce` is only there so tests can
    pin the output; never pass one in production code.
    """
    if nonce is None:
        nonce = os.urandom(NONCE_SIZE)
    elif len(nonce) != NONCE_SIZE:
        raise ValueError(f"nonce must be {NONCE_SIZE} bytes")
    sealed = AESGCM(key.material).encrypt(nonce, bytes(plaintext), None)  # ct || tag
    return Envelope(nonce=nonce, tag=sealed[-TAG_SIZE:], ciphertext=sealed[:-TAG_SIZE])


def check_envelope(env: Envelope) -> None:
    """Shape checks only; raises MalformedEnvelope before any crypto runs."""
    if not isinstance(env, Envelope):
        raise MalformedEnvelope("not an envelope")
    for name in ("nonce", "tag", "ciphertext"):
        if not isinstance(getattr(env, name), bytes):
            raise MalformedEnvelope(f"{name} must be bytes")
    if len(env.nonce) != NONCE_SIZE:
        raise MalformedEnvelope(f"nonce must be {NONCE_SIZE} bytes")
    if len(env.tag) != TAG_SIZE:
        raise MalformedEnvelope(f"tag must be {TAG_SIZE} bytes")


def decrypt(key: SecretKey, env: Envelope) -> bytes:
    """
    Verify and decrypt. Either the whole plaintext comes back or
    AuthenticationFailed is raised; there is no in-between.
    """
    check_envelope(env)
    try:
        return AESGCM(key.material).decrypt(env.nonce, env.ciphertext + env.tag, None)
    except InvalidTag:
        raise AuthenticationFailed() from None
