"""
Resolve the caller's identity from an ``Authorization: Bearer`` header.

Sets ``g.current_user_email`` for every request. Missing, expired or forged
tokens leave it as None; answering 401 is left to the endpoint decorators
in pmi_tools.auth, so public routes never see an auth error.
"""

import logging

import jwt
from flask import g, request

from pmi_tools.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1/"
PUBLIC_PATHS = ("/api/v1/health",)


def _bearer_token():
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def init_jwt_middleware(app):
    @app.before_request
    def _resolve_identity():
        g.current_user_email = None
        if not request.path.startswith(API_PREFIX) or request.path.startswith(PUBLIC_PATHS):
            return

        token = _bearer_token()
        if token is None:
            return
        try:
            claims = decode_access_token(token)
        except jwt.ExpiredSignatureError:
            logger.info("Expired bearer token", extra={"path": request.path})
            return
        except jwt.InvalidTokenError as exc:
            logger.warning("Rejected bearer token: %s", exc, extra={"path": request.path})
            return

        subject = claims.get("sub")
        if isinstance(subject, str) and subject.strip():
            g.current_user_email = subject.strip()
