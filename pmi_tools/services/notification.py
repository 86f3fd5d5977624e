"""
Notification recording.

Onboarding services call ``NotificationService.notify`` only after their own
transaction has committed. Recording is best effort: a database failure here
is logged and swallowed so it can never undo an assignment change.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError

from pmi_tools.models import db
from pmi_tools.models.notification import NOTIFICATION_CATEGORIES, Notification

logger = logging.getLogger(__name__)


class NotificationService:

    @staticmethod
    def notify(recipient_email, title, message="", *, category="system",
               link_url=None, reference_type="", reference_id=None):
        """Queue one notification; returns the row, or None if nothing was recorded."""
        if not recipient_email:
            return None
        if category not in NOTIFICATION_CATEGORIES:
            category = "system"

        row = Notification(
            recipient_email=recipient_email,
            title=title,
            message=message,
            category=category,
            link_url=link_url,
            reference_type=reference_type,
            reference_id=reference_id,
        )
        try:
            db.session.add(row)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception(
                "Could not record notification %r for %s", title, recipient_email,
                extra={"event_type": "notification_failed"},
            )
            return None
        return row
