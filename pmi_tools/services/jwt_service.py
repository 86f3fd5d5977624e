"""
Bearer token helpers (PyJWT, HS256).

Production tokens come from the campus SSO gateway, signed with the shared
JWT_SECRET_KEY; ``generate_access_token`` exists for the CLI and the test
suite. Claims:

    sub   instructor / staff email (the identity every service works with)
    type  always "access"
    iat, exp, jti
"""

import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

ALGORITHM = "HS256"
TOKEN_TYPE = "access"
DEFAULT_LIFETIME_SECONDS = 3600


def _signing_key() -> str:
    cfg = current_app.config
    return cfg.get("JWT_SECRET_KEY") or cfg["SECRET_KEY"]


def _lifetime() -> timedelta:
    return timedelta(seconds=current_app.config.get("JWT_ACCESS_EXPIRES", DEFAULT_LIFETIME_SECONDS))


def generate_access_token(email: str) -> str:
    """Mint a signed access token for ``email``."""
    issued = datetime.now(timezone.utc)
    claims = {
        "sub": email,
        "type": TOKEN_TYPE,
        "iat": issued,
        "exp": issued + _lifetime(),
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(claims, _signing_key(), algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """
    Verify signature, expiry and token type; return the claims.

    Raises jwt.ExpiredSignatureError or jwt.InvalidTokenError. A token whose
    ``type`` claim is not "access" counts as invalid.
    """
    claims = jwt.decode(token, _signing_key(), algorithms=[ALGORITHM], options={"require": ["sub", "exp"]})
    if claims.get("type") != TOKEN_TYPE:
        raise jwt.InvalidTokenError(f"unexpected token type {claims.get('type')!r}")
    return claims
