"""
Secure token generation.

All secrets (verification tokens, CSRF tokens, session ids, CSP nonces) come
from the OS CSPRNG via the secrets module. There is no fallback generator:
if the entropy source fails the exception propagates and the request fails.
"""

import base64
import secrets

DEFAULT_TOKEN_BYTES = 32
DEFAULT_NONCE_BYTES = 16


def generate_token(byte_length: int = DEFAULT_TOKEN_BYTES) -> str:
    """
    Generate a random hex token.

    Args:
        byte_length: Number of random bytes (32 bytes = 256 bits)

    Returns:
        str: Lowercase hex string of length 2 * byte_length
    """
    if byte_length <= 0:
        raise ValueError("byte_length must be positive")
    return secrets.token_hex(byte_length)


def generate_nonce(byte_length: int = DEFAULT_NONCE_BYTES) -> str:
    """Base64 nonce for Content-Security-Policy 'nonce-...' sources."""
    if byte_length <= 0:
        raise ValueError("byte_length must be positive")
    return base64.b64encode(secrets.token_bytes(byte_length)).decode("ascii")
