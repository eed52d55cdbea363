"""
Signed-nonce authorization for the decryption service.

The service shares a secret with each command executor. Every request
carries a freshly generated nonce signed with that secret (HS256 JWS),
proving possession of the secret without sending it.
"""

import json
import random
import string
from typing import Optional, Union

import jwt

from .errors import SigningError

NONCE_LENGTH = 32
SIGNING_ALGORITHM = "HS256"

_LETTERS = string.ascii_letters


def generate_nonce(length: int = NONCE_LENGTH, rng: Optional[random.Random] = None) -> str:
    """
    Random string of letters to be signed into the token.

    Uses the non-cryptographic PRNG; the value only has to be fresh.
    """
    rng = rng or random
    return "".join(rng.choice(_LETTERS) for _ in range(length))


def sign(secret: Union[str, bytes], nonce: Optional[str] = None) -> str:
    """
    Sign a nonce with the shared secret.

    The payload is the JSON encoding of the nonce string itself, not a
    claims object. Returns the compact token.
    """
    if not secret:
        raise SigningError("cannot sign authorization token with an empty secret")

    if isinstance(secret, str):
        secret = secret.encode("utf-8")

    nonce = nonce or generate_nonce()
    payload = json.dumps(nonce).encode("utf-8")

    try:
        return jwt.PyJWS().encode(payload, secret, algorithm=SIGNING_ALGORITHM)
    except (jwt.PyJWTError, TypeError, ValueError) as e:
        raise SigningError(f"error signing authorization token: {e}") from e


def bearer_header(secret: Union[str, bytes]) -> dict[str, str]:
    """Authorization header carrying a freshly signed token."""
    return {"Authorization": f"Bearer {sign(secret)}"}
