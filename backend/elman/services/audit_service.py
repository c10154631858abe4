# Overview: Best-effort audit trail of mutating actions.

from __future__ import annotations

import logging

from flask import g, has_request_context, request
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import AuditLog


logger = logging.getLogger(__name__)

DEFAULT_AUDIT_LIMIT = 200
SENSITIVE_KEYS = {"password", "new_password"}


def _mask(meta):
    if not isinstance(meta, dict):
        return meta
    return {k: ("***" if k in SENSITIVE_KEYS and v else v) for k, v in meta.items()}


def record(action: str, entity: str, entity_id=None, meta: dict | None = None, user=None) -> bool:
    """
    Append an audit row for the current request.

    Best-effort: a failure is logged and rolled back, never raised. Call it
    after the business transaction has committed so a rollback here cannot
    undo business writes. Returns True when the row was written.
    """
    if user is None and has_request_context():
        user = getattr(g, "current_user", None)

    ip_address = None
    user_agent = None
    if has_request_context():
        ip_address = request.remote_addr
        user_agent = (request.headers.get("User-Agent") or "")[:512] or None

    entry = AuditLog(
        user_id=user.id if user is not None else None,
        username=user.username if user is not None else None,
        role=user.role if user is not None else None,
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        meta=_mask(meta),
        ip_address=ip_address,
        user_agent=user_agent,
    )
    try:
        db.session.add(entry)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to write audit entry %s %s", action, entity)
        return False
    return True


def list_audit(*, entity: str | None = None, action: str | None = None,
               limit: int = DEFAULT_AUDIT_LIMIT, max_limit: int = 500) -> list[dict]:
    limit = max(1, min(max_limit, limit))
    query = db.session.query(AuditLog)
    if entity:
        query = query.filter(AuditLog.entity == entity)
    if action:
        query = query.filter(AuditLog.action == action)
    rows = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit).all()
    return [row.to_dict() for row in rows]
