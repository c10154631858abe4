from __future__ import annotations

from ..extensions import db
from elman.time_utils import to_utc_z, utcnow


class AuditLog(db.Model):
    """
    Who did what, when.

    IMMUTABLE: Never update or delete. User fields are snapshots so the row
    stays readable after the account is renamed or deactivated.
    """
    __tablename__ = "audit_log"
    __table_args__ = (
        db.Index("ix_audit_log_created", "created_at"),
        db.Index("ix_audit_log_entity_action", "entity", "action"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    username = db.Column(db.String(64), nullable=True)
    role = db.Column(db.String(16), nullable=True)

    action = db.Column(db.String(64), nullable=False)   # e.g. "sale.create"
    entity = db.Column(db.String(64), nullable=False)   # e.g. "sale"
    entity_id = db.Column(db.String(64), nullable=True)
    meta = db.Column(db.JSON, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "created_at": to_utc_z(self.created_at),
            "user_id": self.user_id,
            "username": self.username,
            "role": self.role,
            "action": self.action,
            "entity": self.entity,
            "entity_id": self.entity_id,
            "meta": self.meta,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
        }
