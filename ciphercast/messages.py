import base64
import binascii
from typing import Any, Dict, Optional

from .crypto import Envelope
from .errors import MalformedEnvelope

"""
messages.py: wire shapes for envelopes and the events we push to clients.

Wire rules (kept compatible with the browser client):
- nonce -> "iv" as lowercase hex
- tag -> "authTag" as lowercase hex
- ciphertext -> "content" as standard Base64
All three must be present together; anything else is a MalformedEnvelope.
"""

# -----------------------
# Event names on the channel
# -----------------------
CONNECTED = "connected"
ENCRYPTED_BROADCAST = "encrypted_broadcast"
STREAM_CHUNK = "stream_chunk"


def envelope_to_wire(env: Envelope) -> Dict[str, str]:
    """Envelope -> {"iv", "authTag", "content"} strings."""
    return {
        "iv": env.nonce.hex(),
        "authTag": env.tag.hex(),
        "content": base64.b64encode(env.ciphertext).decode("ascii"),
    }


def _field(payload: Dict[str, Any], name: str) -> str:
    value = payload.get(name)
    if not isinstance(value, str):
        raise MalformedEnvelope(f"missing or non-string field: {name}")
    return value


def envelope_from_wire(payload: Dict[str, Any]) -> Envelope:
    """
    Inverse of envelope_to_wire(). Only decodes; length checks happen in
    crypto.check_envelope() so both entry points share one rule.
    """
    if not isinstance(payload, dict):
        raise MalformedEnvelope("envelope must be an object")
    try:
        nonce = bytes.fromhex(_field(payload, "iv"))
        tag = bytes.fromhex(_field(payload, "authTag"))
        ciphertext = base64.b64decode(_field(payload, "content"), validate=True)
    except (ValueError, binascii.Error) as exc:
        raise MalformedEnvelope("bad field encoding") from exc
    return Envelope(nonce=nonce, tag=tag, ciphertext=ciphertext)


def broadcast_message(filename: Optional[str], filetype: Optional[str], env: Envelope) -> Dict[str, Any]:
    """Body of an encrypted_broadcast event: file metadata + wire envelope."""
    msg: Dict[str, Any] = {"filename": filename, "filetype": filetype}
    msg.update(envelope_to_wire(env))
    return msg


def stream_chunk(iv: str, ciphertext: str, meta: Any = None, ts: Optional[int] = None) -> Dict[str, Any]:
    """
    Build a stream_chunk body the way clients send it. The relay itself never
    calls this; it forwards whatever the sender gave it.
    """
    return {"iv": iv, "ciphertext": ciphertext, "meta": meta, "ts": ts}
