"""
Identity models - lab users and their endorsements.

These tables belong to the identity collaborator. The onboarding engine
reads them (role lookups, director endorsement checks) and never writes
users; endorsements are granted by administrators.
"""

from datetime import datetime, timezone

from pmi_tools.models import db


USER_ROLES = {"superadmin", "admin", "lead_instructor", "instructor", "guest"}

ENDORSEMENT_TYPES = {"director", "mentor", "preceptor", "lead_instructor"}


# ═══════════════════════════════════════════════════════════════
# 1. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "lab_users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(200), unique=True, nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False, default="")
    role = db.Column(
        db.String(30), nullable=False, default="instructor",
        comment="superadmin | admin | lead_instructor | instructor | guest",
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    endorsements = db.relationship(
        "UserEndorsement", back_populates="user", lazy="dynamic",
        cascade="all, delete-orphan", foreign_keys="UserEndorsement.user_id",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<User {self.email} ({self.role})>"


# ═══════════════════════════════════════════════════════════════
# 2. ENDORSEMENTS
# ═══════════════════════════════════════════════════════════════
class UserEndorsement(db.Model):
    """
    Standing credential granted to a user independently of their role.

    A director endorsement counts only while ``is_active`` is set and
    ``expires_at`` is empty or in the future.
    """

    __tablename__ = "user_endorsements"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("lab_users.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    endorsement_type = db.Column(
        db.String(30), nullable=False,
        comment="director | mentor | preceptor | lead_instructor",
    )
    title = db.Column(db.String(200), nullable=True, comment="e.g. 'Program Director, Paramedic'")
    granted_by = db.Column(db.String(200), nullable=True)
    granted_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    user = db.relationship("User", back_populates="endorsements", foreign_keys=[user_id])

    __table_args__ = (
        db.Index("ix_user_endorsements_type_active", "user_id", "endorsement_type", "is_active"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "endorsement_type": self.endorsement_type,
            "title": self.title,
            "granted_by": self.granted_by,
            "granted_at": self.granted_at.isoformat() if self.granted_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<UserEndorsement {self.endorsement_type} user={self.user_id}>"
