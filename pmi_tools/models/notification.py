"""
Outbound notification queue.

NotificationService appends rows here; a separate delivery worker (not part
of this package) sends them and flips ``is_read`` / ``read_at``.
"""

from datetime import datetime, timezone

from pmi_tools.models import db

NOTIFICATION_CATEGORIES = {"onboarding", "system"}


class Notification(db.Model):
    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    recipient_email = db.Column(db.String(200), nullable=False, index=True)
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    category = db.Column(db.String(30), default="system")
    link_url = db.Column(db.String(500), nullable=True)

    # Polymorphic pointer back to whatever raised the notification
    reference_type = db.Column(db.String(50), default="")
    reference_id = db.Column(db.Integer, nullable=True)

    is_read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        data = {
            c: getattr(self, c)
            for c in ("id", "recipient_email", "title", "message", "category",
                      "link_url", "reference_type", "reference_id", "is_read")
        }
        data["read_at"] = self.read_at.isoformat() if self.read_at else None
        data["created_at"] = self.created_at.isoformat() if self.created_at else None
        return data

    def __repr__(self):
        return f"<Notification #{self.id} to={self.recipient_email}>"
