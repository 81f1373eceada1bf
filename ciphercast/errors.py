"""
errors.py: exception taxonomy for the relay.

Two kinds of failure live here:
- Startup configuration errors (the key file). These stop the process before
  it binds a port; nothing else in the relay is allowed to do that.
- Per-request errors. They are reported to whoever asked and never affect
  other connections.
"""


class RelayError(Exception):
    """Base class for everything the relay raises on purpose."""


class KeyConfigError(RelayError):
    """The shared key could not be loaded. Fatal at startup."""


class KeyMissing(KeyConfigError):
    """No key material at the configured path."""


class KeyLengthInvalid(KeyConfigError):
    """Key material exists but is not exactly 32 bytes."""


class MalformedEnvelope(RelayError):
    """Envelope fields are missing, mis-encoded, or the wrong length."""


class AuthenticationFailed(RelayError):
    """
    Tag verification failed. The message is deliberately generic: callers
    must not learn whether the nonce, tag or ciphertext was the bad part.
    """

    def __init__(self, message: str = "authentication failed") -> None:
        super().__init__(message)


class EncryptionError(RelayError):
    """The codec could not produce an envelope for an upload."""


class MissingChunk(RelayError):
    """A stream_chunk event arrived with no payload to relay."""
