"""PKCE (Proof Key for Code Exchange) implementation.

RFC 7636 - Proof Key for Code Exchange for OAuth 2.0 public clients.
Uses S256 challenge method (SHA-256 hash of the code verifier).
"""

from __future__ import annotations

import hashlib
import secrets

from base64 import urlsafe_b64encode
from dataclasses import dataclass


VERIFIER_BYTES = 32
STATE_BYTES = 32


def _b64url(data: bytes) -> str:
    return urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_code_verifier() -> str:
    """Generate a code verifier.

    Returns
    -------
    str
        32 CSPRNG bytes, base64url-encoded without padding (43 characters).
    """
    return _b64url(secrets.token_bytes(VERIFIER_BYTES))


def generate_code_challenge(verifier: str) -> str:
    """Derive the S256 code challenge for ``verifier``.

    Parameters
    ----------
    verifier : str
        The code verifier.

    Returns
    -------
    str
        base64url(SHA-256(verifier)) without padding.
    """
    return _b64url(hashlib.sha256(verifier.encode("ascii")).digest())


def generate_state(length: int = STATE_BYTES) -> str:
    """Generate an opaque CSRF state value.

    Parameters
    ----------
    length : int
        Number of random bytes (default 32); the result has ``2 * length``
        hex characters.

    Returns
    -------
    str
    """
    if length < 16:
        msg = "state needs at least 16 bytes of entropy"
        raise ValueError(msg)
    return secrets.token_hex(length)


@dataclass(frozen=True)
class PKCEChallenge:
    """PKCE code verifier and challenge pair.

    Attributes
    ----------
    verifier : str
        The code verifier (high-entropy random string).
    challenge : str
        The code challenge (base64url-encoded SHA-256 hash of verifier).
    method : str
        The challenge method, always "S256".
    """

    verifier: str
    challenge: str
    method: str = "S256"

    def __repr__(self) -> str:
        return f"PKCEChallenge(challenge={self.challenge!r}, method={self.method!r})"

    @classmethod
    def generate(cls) -> PKCEChallenge:
        """Generate a new PKCE code verifier and challenge.

        Returns
        -------
        PKCEChallenge
            A new PKCE challenge pair.
        """
        verifier = generate_code_verifier()
        return cls(verifier=verifier, challenge=generate_code_challenge(verifier))
