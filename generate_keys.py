import argparse
import base64
from pathlib import Path

from ciphercast import crypto

# Quick one-off keygen for the relay.
# - 32 random bytes = one AES-256 key, shared by the relay and (demo) clients.
# - Written raw to ./secret.key with owner-only permissions.
# - An existing key is never overwritten unless you ask for it.


def main(argv=None) -> int:
    p = argparse.ArgumentParser(description="Generate the relay's shared key")
    p.add_argument("--out", default="secret.key")
    p.add_argument("--force", action="store_true", help="Overwrite an existing key")
    args = p.parse_args(argv)

    out = Path(args.out).resolve()
    if not crypto.generate_key(out, overwrite=args.force):
        print("secret.key already exists. Path:", out)
        return 0

    key = crypto.load_key(out)
    print(f"Generated secret.key ({crypto.KEY_SIZE} bytes) at", out)
    print("Base64 key (for debugging/demo):", base64.b64encode(key.material).decode("ascii"))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
