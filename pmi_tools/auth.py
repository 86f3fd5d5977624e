"""
PMI Paramedic Tools
Role ordering & request authorization decorators.

Provides:
    - ROLE_LEVELS: explicit total order over lab roles
    - has_min_role / is_admin_tier: the only sanctioned role comparisons
    - require_identity: endpoint needs a JWT-authenticated caller
    - require_role: endpoint needs a caller at or above a role

Security model:
    - The JWT middleware puts the token subject (an email) on
      g.current_user_email; nothing else is trusted as identity.
    - Role is always read from lab_users, never from the token, so a
      demotion takes effect on the next request.
"""

import functools
import logging

from flask import g, jsonify

logger = logging.getLogger(__name__)

# ── Roles ────────────────────────────────────────────────────────────────────

# superadmin > admin > lead_instructor > instructor > guest
ROLE_LEVELS = {
    "superadmin": 5,
    "admin": 4,
    "lead_instructor": 3,
    "instructor": 2,
    "guest": 1,
}

ADMIN_TIER = "admin"


def get_role_level(role: str | None) -> int:
    """Numeric level of a role; unknown or missing roles rank below guest."""
    return ROLE_LEVELS.get(role or "", 0)


def has_min_role(role: str | None, threshold: str) -> bool:
    """True when ``role`` is at or above ``threshold`` in ROLE_LEVELS."""
    if threshold not in ROLE_LEVELS:
        raise ValueError(f"Unknown role threshold: {threshold}")
    return get_role_level(role) >= ROLE_LEVELS[threshold]


def is_admin_tier(role: str | None) -> bool:
    return has_min_role(role, ADMIN_TIER)


# ── Decorators ───────────────────────────────────────────────────────────────


def current_user_email() -> str | None:
    return getattr(g, "current_user_email", None)


def require_identity(f):
    """
    Decorator: require a JWT-authenticated caller.

    Returns 401 when the request carried no valid bearer token.
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if not current_user_email():
            return jsonify({"error": "Unauthorized"}), 401
        return f(*args, **kwargs)

    return decorated


def require_role(minimum_role: str):
    """
    Decorator: require a minimum role level.

    Usage:
        @require_identity
        @require_role("admin")
        def create_assignment(): ...

    Sets g.current_user to the resolved User.
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            from pmi_tools.services.identity_service import resolve_user

            email = current_user_email()
            user = resolve_user(email) if email else None
            if user is None:
                return jsonify({"error": "Unauthorized"}), 401

            if not has_min_role(user.role, minimum_role):
                logger.warning(
                    "Access denied: role '%s' tried to access '%s'-level endpoint",
                    user.role, minimum_role,
                    extra={"event_type": "access_denied", "actor": email},
                )
                return jsonify({"error": "Forbidden"}), 403

            g.current_user = user
            return f(*args, **kwargs)

        return decorated

    return decorator
