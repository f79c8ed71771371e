"""
Authentication service: bearer token issuance and third-party identity
token verification (Google, Apple).
"""

import os
import secrets
import logging
from datetime import timedelta
from typing import Dict, List, Optional

import jwt
from jwt import PyJWKClient, InvalidTokenError
from google.oauth2 import id_token as google_id_token
from google.auth.transport import requests as google_requests

from picklehub.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRATION_DAYS = int(os.getenv("ACCESS_TOKEN_EXPIRATION_DAYS", "30"))

APPLE_ISSUER = "https://appleid.apple.com"
APPLE_KEYS_URL = "https://appleid.apple.com/auth/keys"

_apple_jwk_client: Optional[PyJWKClient] = None


def create_access_token(data: Dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a signed JWT access token.

    Args:
        data: Claims to embed (must include user_id)
        expires_delta: Optional custom lifetime; defaults to ACCESS_TOKEN_EXPIRATION_DAYS

    Returns:
        Encoded JWT string
    """
    to_encode = data.copy()
    now = utcnow()
    expire = now + (expires_delta or timedelta(days=ACCESS_TOKEN_EXPIRATION_DAYS))
    to_encode.update({"exp": expire, "iat": now})
    return jwt.encode(to_encode, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def verify_token(token: str) -> Optional[Dict]:
    """
    Decode and validate an access token.

    Returns:
        The token payload, or None if the token is invalid or expired
    """
    try:
        return jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError as e:
        logger.debug(f"Rejected access token: {e}")
        return None


def generate_invite_token() -> str:
    """64 hex characters of randomness for single-use invite URLs."""
    return secrets.token_hex(32)


def _google_client_ids() -> List[str]:
    client_ids = [
        os.getenv("GOOGLE_CLIENT_ID_IOS"),
        os.getenv("GOOGLE_CLIENT_ID_WEB"),
        os.getenv("GOOGLE_CLIENT_ID"),
    ]
    return [client_id for client_id in client_ids if client_id]


def verify_google_id_token(token: str) -> Dict:
    """
    Verify a Google ID token issued to one of our client apps.

    Returns:
        Google's claims (sub, email, name, picture)

    Raises:
        ValueError: If the token is invalid or not issued for our clients
    """
    client_ids = _google_client_ids()
    if not client_ids:
        raise ValueError("Google sign-in is not configured")

    # audience=None so one check covers every configured client id
    idinfo = google_id_token.verify_oauth2_token(token, google_requests.Request(), audience=None)

    if idinfo.get("aud") not in client_ids:
        raise ValueError("Google token was not issued for this application")
    if not idinfo.get("email"):
        raise ValueError("Google account has no email address")
    if idinfo.get("email_verified") is False:
        raise ValueError("Google email address is not verified")
    return idinfo


def _get_apple_jwk_client() -> PyJWKClient:
    global _apple_jwk_client
    if _apple_jwk_client is None:
        _apple_jwk_client = PyJWKClient(APPLE_KEYS_URL)
    return _apple_jwk_client


def verify_apple_identity_token(token: str) -> Dict:
    """
    Verify an Apple identity token against Apple's published signing keys.

    Returns:
        Apple's claims (sub, and email when the user shared it)

    Raises:
        ValueError: If the token is invalid
    """
    client_id = os.getenv("APPLE_CLIENT_ID")
    if not client_id:
        raise ValueError("Apple sign-in is not configured")

    try:
        signing_key = _get_apple_jwk_client().get_signing_key_from_jwt(token)
        return jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256"],
            audience=client_id,
            issuer=APPLE_ISSUER,
        )
    except jwt.PyJWTError as e:
        raise ValueError(f"Invalid Apple identity token: {e}") from e
