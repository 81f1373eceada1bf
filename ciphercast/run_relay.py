import argparse
import logging
import os
from typing import List, Optional

import uvicorn

from .app import DEFAULT_MAX_UPLOAD_BYTES, create_app
from .crypto import load_key
from .errors import KeyConfigError
from .registry import DEFAULT_MAX_QUEUE, OVERFLOW_DROP, OVERFLOW_POLICIES, ConnectionRegistry

"""
run_relay.py: single entry point for the relay process.

Order matters here:
1) parse flags (environment variables fill in anything not given)
2) set up logging
3) load the key; a missing or wrong-sized key stops us before we bind a port
4) build the app and hand it to uvicorn
"""

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Quick examples:
      python -m ciphercast.run_relay
      python -m ciphercast.run_relay --port 8080 --key /etc/ciphercast/secret.key
      PORT=8080 CIPHERCAST_OVERFLOW=disconnect python -m ciphercast.run_relay
    """
    env = os.environ
    p = argparse.ArgumentParser(description="Encrypted broadcast relay")
    p.add_argument("--host", default=env.get("CIPHERCAST_HOST", "127.0.0.1"))
    p.add_argument("--port", type=int, default=int(env.get("PORT", "3000")))
    p.add_argument("--key", dest="key_path", default=env.get("CIPHERCAST_KEY_PATH", "secret.key"),
                   help="Path to the 32-byte shared key")
    p.add_argument("--max-queue", type=int, default=int(env.get("CIPHERCAST_MAX_QUEUE", DEFAULT_MAX_QUEUE)),
                   help="Outbound frames buffered per client")
    p.add_argument("--overflow", choices=OVERFLOW_POLICIES,
                   default=env.get("CIPHERCAST_OVERFLOW", OVERFLOW_DROP),
                   help="What to do when a client's outbox is full")
    p.add_argument("--max-upload-mb", type=int,
                   default=int(env.get("CIPHERCAST_MAX_UPLOAD_MB", DEFAULT_MAX_UPLOAD_BYTES // (1024 * 1024))))
    p.add_argument("--log-level", default=env.get("CIPHERCAST_LOG_LEVEL", "INFO"))
    return p.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format=LOG_FORMAT)

    try:
        key = load_key(args.key_path)
    except KeyConfigError as exc:
        raise SystemExit(f"Refusing to start: {exc}")
    logger.info("Loaded AES-256 key (32 bytes) from %s", args.key_path)

    registry = ConnectionRegistry(max_queue=args.max_queue, overflow=args.overflow)
    app = create_app(key, registry, max_upload_bytes=args.max_upload_mb * 1024 * 1024)

    logger.info("Relay listening on http://%s:%d", args.host, args.port)
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level.lower())


if __name__ == "__main__":
    main()
