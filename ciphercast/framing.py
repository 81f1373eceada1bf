import json
from typing import Any, Dict, Tuple

"""
framing.py: JSON event frames for the participant channel.

Protocol (simple on purpose):
- Each WebSocket text message is one compact JSON object:
  {"event": "<name>", "data": <anything JSON>}
- Inbound frames are capped at 4 MiB of UTF-8 so a buggy peer can’t make us
  hold silly amounts of memory per frame. Outbound frames are not capped:
  an encrypted upload is as big as the upload limit allows.

The WebSocket layer already delimits messages, so unlike a raw TCP stream
there is no length prefix here.
"""

MAX_FRAME_SIZE = 4 * 1024 * 1024  # 4 MiB limit on inbound frames


def make_frame(event: str, data: Any) -> Dict[str, Any]:
    """Tiny helper so callers build frames with one clear shape."""
    return {"event": event, "data": data}


def encode_frame(frame: Dict[str, Any]) -> str:
    """Serialize a frame to compact JSON text."""
    # Compact JSON: stable separators, keep non-ASCII as UTF-8 (not \u escapes).
    return json.dumps(frame, separators=(",", ":"), ensure_ascii=False)


def decode_frame(text: str) -> Tuple[str, Any]:
    """
    Parse one inbound frame and return (event, data).

    Raises:
        ValueError: oversized, not JSON, or not an {"event": str, ...} object.
    """
    if len(text.encode("utf-8")) > MAX_FRAME_SIZE:
        raise ValueError(f"Frame too large: > {MAX_FRAME_SIZE}")
    try:
        obj = json.loads(text)
    except json.JSONDecodeError as exc:
        # Keep the message short; no payload echo to avoid leaking big data.
        raise ValueError(f"Invalid JSON frame: {exc}") from exc
    if not isinstance(obj, dict) or not isinstance(obj.get("event"), str):
        raise ValueError("Frame must be an object with a string 'event'")
    return obj["event"], obj.get("data")
