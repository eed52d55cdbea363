"""
argdecrypt - resolve inline encrypted arguments before a command runs.

Arguments carrying an OC_ENCRYPTED...DETPYRCNE_CO span are sent to the
decryption service (the "reaper") and swapped for their plaintext just
before execution.

Features:
- scan: find encrypted spans locally (no network, values never shown)
- exec: run a command with its arguments decrypted
- status: show which decryptor is active and why

Outside a cloud runner the no-op decryptor is used and arguments pass
through untouched.
"""

__version__ = "0.1.0"
