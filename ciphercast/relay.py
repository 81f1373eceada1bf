import logging
from typing import Any, Dict, Optional

from . import crypto
from . import messages as m
from .crypto import Envelope, SecretKey
from .errors import EncryptionError, MissingChunk
from .framing import make_frame
from .registry import ConnectionRegistry

"""
relay.py: the three things the relay actually does.

- BroadcastRelay:  plaintext upload -> encrypt -> everyone connected
- StreamRelay:     ciphertext chunk from one participant -> everyone else,
                   untouched (we never look inside)
- DecryptService:  envelope in, plaintext out, or a clean failure

The key and the registry are passed in; nothing here reaches for globals.
"""

logger = logging.getLogger(__name__)


class BroadcastRelay:
    """Upload path. Uploads come over HTTP, so there is no sender to exclude."""
    def __init__(self, key: SecretKey, registry: ConnectionRegistry) -> None:
        self.key = key
        self.registry = registry

    def seal(self, filename: Optional[str], filetype: Optional[str], plaintext: bytes) -> Dict[str, Any]:
        """
        Encrypt an upload into a ready-to-send encrypted_broadcast frame.
        Touches no shared state, so it may run in a worker thread.
        """
        try:
            env = crypto.encrypt(self.key, plaintext)
        except Exception as exc:
            raise EncryptionError("could not encrypt upload") from exc
        return make_frame(m.ENCRYPTED_BROADCAST, m.broadcast_message(filename, filetype, env))

    def publish(self, frame: Dict[str, Any]) -> int:
        """Hand a sealed frame to every outbox. Call from the event loop."""
        delivered = self.registry.broadcast_except_sender(None, frame)
        logger.info("Encrypted and broadcast %s to %d client(s)", frame["data"]["filename"], delivered)
        return delivered

    def broadcast(self, filename: Optional[str], filetype: Optional[str], plaintext: bytes) -> int:
        """
        Encrypt once and hand the same envelope to every outbox.
        Returns the number of recipients it was queued for (fire-and-forget).
        """
        return self.publish(self.seal(filename, filetype, plaintext))


class StreamRelay:
    """Chunk path. Pure pass-through; chunk contents are the clients’ business."""
    def __init__(self, registry: ConnectionRegistry) -> None:
        self.registry = registry

    def relay_chunk(self, sender_id: str, chunk: Any) -> int:
        if chunk is None:
            raise MissingChunk("stream_chunk without data")
        delivered = self.registry.broadcast_except_sender(sender_id, make_frame(m.STREAM_CHUNK, chunk))
        logger.debug("Relayed chunk from %s to %d client(s)", sender_id, delivered)
        return delivered


class DecryptService:
    """Stateless request/response wrapper around crypto.decrypt()."""
    def __init__(self, key: SecretKey) -> None:
        self.key = key

    def decrypt_on_demand(self, env: Envelope) -> bytes:
        return crypto.decrypt(self.key, env)

    def decrypt_wire(self, payload: Dict[str, Any]) -> bytes:
        """Same as decrypt_on_demand() but takes the {"iv", "authTag", "content"} form."""
        return self.decrypt_on_demand(m.envelope_from_wire(payload))
