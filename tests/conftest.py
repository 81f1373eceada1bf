import os

import pytest

from ciphercast.crypto import SecretKey
from ciphercast.registry import ConnectionRegistry


@pytest.fixture
def key() -> SecretKey:
    return SecretKey(os.urandom(32))


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry(max_queue=8)


def flip_bit(data: bytes, index: int, bit: int = 0) -> bytes:
    out = bytearray(data)
    out[index] ^= 1 << bit
    return bytes(out)
