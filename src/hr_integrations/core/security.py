from __future__ import annotations

import base64
import hashlib
import json
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken

from .constants import PKCE_VERIFIER_LENGTH
from .errors import ConfigurationError
from .logging import get_logger

logger = get_logger(__name__)

# RFC 7636 unreserved characters
_PKCE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-._~"


@dataclass
class PKCEBundle:
    verifier: str
    challenge: str
    method: str = "S256"


class TokenCipher:
    """Fernet wrapper used for tokens at rest and for OAuth state blobs.

    The configured key may be any string; it is stretched with SHA-256 into the
    32-byte urlsafe key Fernet expects.
    """

    def __init__(self, raw_key: str):
        if not raw_key:
            raise ConfigurationError("ENCRYPTION_KEY is not configured")
        digest = hashlib.sha256(raw_key.encode("utf-8")).digest()
        self._fernet = Fernet(base64.urlsafe_b64encode(digest))

    # PUBLIC_INTERFACE
    def encrypt(self, plaintext: str) -> str:
        """Encrypt a string; returns a urlsafe base64 token."""
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    # PUBLIC_INTERFACE
    def decrypt(self, token: Optional[str]) -> Optional[str]:
        """Decrypt a token; returns None if input is None or cannot be decrypted."""
        if token is None:
            return None
        try:
            return self._fernet.decrypt(token.encode("utf-8")).decode("utf-8")
        except (InvalidToken, ValueError):
            # Do not leak the token content in logs
            logger.warning("Failed to decrypt secret token; treating as missing.")
            return None

    # PUBLIC_INTERFACE
    def encrypt_json(self, payload: Dict[str, Any]) -> str:
        return self.encrypt(json.dumps(payload, separators=(",", ":"), default=str))

    # PUBLIC_INTERFACE
    def decrypt_json(self, token: str) -> Optional[Dict[str, Any]]:
        """Decrypt a JSON object; None when tampered, foreign or not an object."""
        plain = self.decrypt(token)
        if plain is None:
            return None
        try:
            data = json.loads(plain)
        except ValueError:
            return None
        return data if isinstance(data, dict) else None


# PUBLIC_INTERFACE
def generate_code_verifier(length: int = PKCE_VERIFIER_LENGTH) -> str:
    """Cryptographically random PKCE verifier (43..128 chars of the unreserved set)."""
    if not 43 <= length <= 128:
        raise ValueError("PKCE verifier length must be between 43 and 128")
    return "".join(secrets.choice(_PKCE_ALPHABET) for _ in range(length))


# PUBLIC_INTERFACE
def code_challenge_s256(verifier: str) -> str:
    """base64url(SHA256(verifier)) without padding."""
    sha = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(sha).decode("ascii").rstrip("=")


# PUBLIC_INTERFACE
def generate_pkce() -> PKCEBundle:
    """Generate PKCE code_verifier and S256 code_challenge."""
    verifier = generate_code_verifier()
    return PKCEBundle(verifier=verifier, challenge=code_challenge_s256(verifier))


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


# PUBLIC_INTERFACE
def compute_expiry(expires_in_seconds: float, now: Optional[datetime] = None) -> datetime:
    """Return the absolute expiry of a token issued now."""
    return (now or now_utc()) + timedelta(seconds=max(0.0, float(expires_in_seconds)))


# PUBLIC_INTERFACE
def is_expired(expires_at: Optional[datetime], margin_seconds: float = 0.0, now: Optional[datetime] = None) -> bool:
    """True if the timestamp is missing or falls within margin_seconds from now."""
    if not expires_at:
        return True
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return (expires_at - (now or now_utc())).total_seconds() < margin_seconds
