"""Detection of encrypted spans inside command-line arguments."""

import re
from typing import Sequence

ENCRYPT_START = "OC_ENCRYPTED"
ENCRYPT_END = "DETPYRCNE_CO"

ENCRYPTED_PATTERN = re.compile(
    re.escape(ENCRYPT_START) + "(.*?)" + re.escape(ENCRYPT_END)
)


def contains_encrypted(arg: str) -> bool:
    """Check if a single argument carries an encrypted span."""
    return ENCRYPTED_PATTERN.search(arg) is not None


def has_encrypted_arguments(args: Sequence[str]) -> bool:
    """
    Check if any argument carries an encrypted span.

    Purely local. When this is False there is nothing to decrypt and the
    decryption service must not be called.
    """
    return any(contains_encrypted(arg) for arg in args)


def encrypted_positions(args: Sequence[str]) -> list[int]:
    """Indices of the arguments that carry an encrypted span."""
    return [i for i, arg in enumerate(args) if contains_encrypted(arg)]


def extract_secret_token(arg: str) -> str:
    """
    Get the ciphertext token of the first span in an argument.

    Returns "" when there is no span or the span is empty, e.g.
    "--key=OC_ENCRYPTEDabcDETPYRCNE_CO" -> "abc".
    """
    match = ENCRYPTED_PATTERN.search(arg)
    if match is None:
        return ""
    return match.group(1)
