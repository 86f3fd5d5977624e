"""
Identity collaborator - user lookup and endorsement checks.

The onboarding engine consumes two questions from here:
    resolve_user(email)                     -> User | None
    has_active_director_endorsement(user_id) -> bool
Everything else (granting endorsements) exists for administrators and tests.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import or_, select

from pmi_tools.core.exceptions import AuthenticationError, NotFoundError, ValidationError
from pmi_tools.models import db
from pmi_tools.models.auth import ENDORSEMENT_TYPES, User, UserEndorsement

logger = logging.getLogger(__name__)


def resolve_user(email: str | None) -> User | None:
    """Return the active user with this email (case-insensitive), or None."""
    if not email:
        return None
    return db.session.execute(
        select(User).where(
            db.func.lower(User.email) == email.strip().lower(),
            User.is_active.is_(True),
        )
    ).scalar_one_or_none()


def require_user(email: str | None) -> User:
    """Resolve the acting principal or raise AuthenticationError."""
    user = resolve_user(email)
    if user is None:
        raise AuthenticationError()
    return user


def get_user_or_404(email: str, label: str = "User") -> User:
    user = resolve_user(email)
    if user is None:
        raise NotFoundError(resource=label, resource_id=email)
    return user


def display_name(email: str | None) -> str | None:
    """Name for an email, falling back to the email itself."""
    if not email:
        return None
    user = resolve_user(email)
    return user.name if user and user.name else email


def has_active_director_endorsement(user_id: int) -> bool:
    """True when the user holds an active, unexpired director endorsement."""
    now = datetime.now(timezone.utc)
    found = db.session.execute(
        select(UserEndorsement.id).where(
            UserEndorsement.user_id == user_id,
            UserEndorsement.endorsement_type == "director",
            UserEndorsement.is_active.is_(True),
            or_(UserEndorsement.expires_at.is_(None), UserEndorsement.expires_at > now),
        ).limit(1)
    ).scalar_one_or_none()
    return found is not None


def grant_endorsement(
    user_id: int,
    endorsement_type: str,
    granted_by: str,
    title: str | None = None,
    expires_at: datetime | None = None,
) -> UserEndorsement:
    """Grant a standing endorsement and commit."""
    if endorsement_type not in ENDORSEMENT_TYPES:
        raise ValidationError(
            f"Invalid endorsement_type '{endorsement_type}'",
            details={"endorsement_type": f"Must be one of: {', '.join(sorted(ENDORSEMENT_TYPES))}"},
        )
    if db.session.get(User, user_id) is None:
        raise NotFoundError(resource="User", resource_id=user_id)

    endorsement = UserEndorsement(
        user_id=user_id,
        endorsement_type=endorsement_type,
        title=title,
        granted_by=granted_by,
        expires_at=expires_at,
        is_active=True,
    )
    db.session.add(endorsement)
    db.session.commit()
    logger.info(
        "Endorsement granted type=%s user_id=%s", endorsement_type, user_id,
        extra={"event_type": "endorsement_granted", "actor": granted_by},
    )
    return endorsement
