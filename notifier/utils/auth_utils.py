"""
Authentication utilities for the MotorLog notifier.

Identity is owned by the main application; the notifier only needs to know
which user a push subscription belongs to. Clients present a bearer token of
the form ``<user_id>.<signature>`` where the signature is an HMAC-SHA256 of
the user id keyed with SECRET_KEY.

Provides functions for:
- Issuing user tokens (CLI / main application)
- Verifying user tokens (subscription routes)
- Checking the optional cron shared secret
- Generating VAPID key pairs and secret keys (CLI)
"""

import base64
import hashlib
import hmac
import logging
import secrets
from typing import Optional, Tuple

from config import Config
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

logger = logging.getLogger(__name__)

TOKEN_SEPARATOR = "."


def _sign(user_id: str, secret_key: str) -> str:
    return hmac.new(secret_key.encode(), user_id.encode(), hashlib.sha256).hexdigest()


def issue_user_token(user_id: str, secret_key: Optional[str] = None) -> str:
    """
    Issue a bearer token identifying ``user_id``.

    Example:
        >>> token = issue_user_token("user-1", secret_key="s3cret")
        >>> token.startswith("user-1.")
        True
    """
    if not user_id or TOKEN_SEPARATOR in user_id:
        raise ValueError("user_id must be non-empty and must not contain '.'")
    return f"{user_id}{TOKEN_SEPARATOR}{_sign(user_id, secret_key or Config.SECRET_KEY)}"


def verify_user_token(token: Optional[str], secret_key: Optional[str] = None) -> Optional[str]:
    """
    Verify a bearer token.

    Returns:
        The user id when the signature matches, otherwise None
    """
    if not token or TOKEN_SEPARATOR not in token:
        return None

    user_id, _, signature = token.rpartition(TOKEN_SEPARATOR)
    if not user_id or not signature:
        return None

    expected = _sign(user_id, secret_key or Config.SECRET_KEY)
    if not hmac.compare_digest(expected, signature):
        logger.warning("Rejected user token with invalid signature")
        return None
    return user_id


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Pull the token out of an ``Authorization: Bearer <token>`` header."""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[len("Bearer "):].strip()
    return token or None


def verify_cron_secret(authorization: Optional[str], secret: Optional[str]) -> bool:
    """True when no secret is configured or the header carries it."""
    if not secret:
        return True
    token = extract_bearer_token(authorization)
    return token is not None and hmac.compare_digest(token, secret)


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_vapid_keys() -> Tuple[str, str]:
    """
    Generate a P-256 VAPID key pair.

    Returns:
        (public_key, private_key) as unpadded base64url strings: the 65-byte
        uncompressed public point (what browsers expect as
        ``applicationServerKey``) and the 32-byte raw private scalar (what
        pywebpush accepts as ``vapid_private_key``)
    """
    private_key = ec.generate_private_key(ec.SECP256R1())
    private_bytes = private_key.private_numbers().private_value.to_bytes(32, "big")
    public_bytes = private_key.public_key().public_bytes(Encoding.X962, PublicFormat.UncompressedPoint)
    return _b64url(public_bytes), _b64url(private_bytes)


def generate_secret_key(length: int = 32) -> str:
    """Generate a random key suitable for SECRET_KEY or CRON_SECRET."""
    return secrets.token_urlsafe(length)
