"""
ciphercast: encrypted broadcast relay.

One shared AES-256 key lives on the relay. Plaintext uploads are encrypted
(AES-GCM, fresh nonce each time) and pushed to every connected client;
ciphertext stream chunks are forwarded between clients untouched; and
envelopes can be sent back for decryption on demand.

Create the key with `python generate_keys.py`, then run
`python -m ciphercast.run_relay`.
"""
__all__ = ["app", "crypto", "errors", "framing", "messages", "registry", "relay", "run_relay"]
