import asyncio
import base64
import binascii
import logging
import uuid
from functools import partial
from pathlib import PurePosixPath, PureWindowsPath
from typing import Any, Optional
from urllib.parse import quote

from fastapi import FastAPI, WebSocket
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import BaseModel

from . import messages as m
from .crypto import SecretKey
from .errors import EncryptionError, MissingChunk, RelayError
from .framing import decode_frame, encode_frame, make_frame
from .registry import Connection, ConnectionRegistry
from .relay import BroadcastRelay, DecryptService, StreamRelay

"""
app.py: HTTP routes + the persistent participant channel.

Routes (field names are what the browser client sends, keep them):
- GET  /get_key               demo only: hands out the raw key
- POST /upload-and-broadcast  {filename, filetype, filedata(base64)}
- POST /decrypt-file          {filename, filetype, iv, authTag, content}
- WS   /ws                    {"event": ..., "data": ...} frames

All handlers are async so registry work stays on the event loop.
"""

logger = logging.getLogger(__name__)

DEFAULT_MAX_UPLOAD_BYTES = 200 * 1024 * 1024
DEFAULT_MEDIA_TYPE = "application/octet-stream"


class UploadRequest(BaseModel):
    filename: Optional[str] = None
    filetype: Optional[str] = None
    filedata: Optional[str] = None


class DecryptRequest(BaseModel):
    filename: Optional[str] = None
    filetype: Optional[str] = None
    # Left untyped so a bad value fails as a MalformedEnvelope, not a 422.
    iv: Any = None
    authTag: Any = None
    content: Any = None


def _printable(s: str) -> bool:
    return all(32 <= ord(ch) < 127 for ch in s)


def safe_filename(name: Optional[str]) -> str:
    """Basename only, ASCII only, no quotes; usable inside Content-Disposition."""
    base = PureWindowsPath(PurePosixPath(name or "").name).name
    cleaned = "".join(ch for ch in base if _printable(ch) and ch not in '"\\')
    return cleaned.strip() or "download"


def content_disposition(name: Optional[str]) -> str:
    """ASCII fallback plus an RFC 5987 filename* so non-ASCII names survive."""
    fallback = safe_filename(name)
    base = PureWindowsPath(PurePosixPath(name or "").name).name.strip()
    header = f'attachment; filename="{fallback}"'
    if base and base != fallback and not any(ord(ch) < 32 or ord(ch) == 127 for ch in base):
        header += f"; filename*=UTF-8''{quote(base, safe='')}"
    return header


def safe_media_type(filetype: Optional[str]) -> str:
    if not filetype or not _printable(filetype) or "/" not in filetype:
        return DEFAULT_MEDIA_TYPE
    return filetype


def create_app(
    key: SecretKey,
    registry: Optional[ConnectionRegistry] = None,
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
) -> FastAPI:
    """Wire the services around one already-loaded key."""
    registry = registry if registry is not None else ConnectionRegistry()
    broadcast_relay = BroadcastRelay(key, registry)
    stream_relay = StreamRelay(registry)
    decrypt_service = DecryptService(key)

    app = FastAPI(title="ciphercast")
    app.state.registry = registry
    app.state.broadcast_relay = broadcast_relay
    app.state.stream_relay = stream_relay
    app.state.decrypt_service = decrypt_service

    @app.get("/get_key")
    async def get_key():
        logger.warning("Shared key handed out via /get_key (demo only)")
        return {"key_base64": key.to_base64()}

    @app.post("/upload-and-broadcast")
    async def upload_and_broadcast(body: UploadRequest):
        if not body.filedata:
            return JSONResponse(status_code=400, content={"message": "no filedata"})
        # Base64 is 4 chars per 3 bytes; reject before decoding anything huge.
        if len(body.filedata) // 4 * 3 > max_upload_bytes:
            return JSONResponse(status_code=413, content={"message": "payload too large"})

        # Decoding and encryption scale with the upload; keep them off the loop.
        loop = asyncio.get_running_loop()
        try:
            data = await loop.run_in_executor(None, partial(base64.b64decode, body.filedata, validate=True))
        except (binascii.Error, ValueError):
            return JSONResponse(status_code=400, content={"message": "invalid filedata"})

        try:
            frame = await loop.run_in_executor(None, broadcast_relay.seal, body.filename, body.filetype, data)
        except EncryptionError:
            logger.exception("upload error")
            return JSONResponse(status_code=500, content={"message": "server error"})
        broadcast_relay.publish(frame)
        return {"status": "ok"}

    @app.post("/decrypt-file")
    async def decrypt_file(body: DecryptRequest):
        payload = {"iv": body.iv, "authTag": body.authTag, "content": body.content}
        try:
            plaintext = await asyncio.get_running_loop().run_in_executor(
                None, decrypt_service.decrypt_wire, payload
            )
        except RelayError as exc:
            # Same answer for bad encoding and bad tag; the log keeps the detail.
            logger.warning("decrypt-file error for %r: %s", body.filename, exc)
            return PlainTextResponse("decrypt failed", status_code=500)

        return Response(
            content=plaintext,
            media_type=safe_media_type(body.filetype),
            headers={"Content-Disposition": content_disposition(body.filename)},
        )

    @app.websocket("/ws")
    async def channel(websocket: WebSocket):
        await websocket.accept()
        connection_id = uuid.uuid4().hex
        conn = registry.register(connection_id)
        logger.info("Client connected: %s", connection_id)
        sender = None
        try:
            await websocket.send_text(encode_frame(make_frame(m.CONNECTED, {"id": connection_id})))
            sender = asyncio.create_task(send_loop(websocket, conn))
            await receive_loop(websocket, connection_id, stream_relay)
        finally:
            if sender is not None:
                sender.cancel()
            registry.unregister(connection_id)
            logger.info("Client disconnected: %s", connection_id)

    return app


async def send_loop(websocket: WebSocket, conn: Connection) -> None:
    """
    Drain the outbox to the socket. If draining stops on its own (overflow
    disconnect or a failed send) close the socket so receive_loop ends too.
    """
    try:
        await conn.drain(websocket.send_text)
    except Exception as exc:
        logger.info("Send to %s failed: %r", conn.connection_id, exc)
    try:
        await websocket.close()
    except Exception as exc:
        logger.debug("Close on %s failed: %r", conn.connection_id, exc)


async def receive_loop(websocket: WebSocket, connection_id: str, stream_relay: StreamRelay) -> None:
    """Read frames until the client goes away; only stream_chunk does anything."""
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return
        text = message.get("text")
        if text is None:
            logger.warning("Ignoring binary frame from %s", connection_id)
            continue
        try:
            event, data = decode_frame(text)
        except ValueError as exc:
            logger.warning("Bad frame from %s: %s", connection_id, exc)
            continue

        if event == m.STREAM_CHUNK:
            try:
                stream_relay.relay_chunk(connection_id, data)
            except MissingChunk:
                logger.warning("Empty stream_chunk from %s", connection_id)
        else:
            logger.debug("Ignoring %r event from %s", event, connection_id)
