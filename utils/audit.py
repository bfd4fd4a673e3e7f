import json
import logging

from flask import g, has_request_context, request
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.audit_log import AuditLog

logger = logging.getLogger(__name__)


def log_event(action: str, entity=None, entity_id=None, metadata=None, actor_id=None):
    """
    Appends an audit row and commits it. Safe outside a request (sweeper
    job, CLI); audit failures are logged and never break the caller.
    """
    ip = None
    user_agent = None
    if has_request_context():
        ip = request.headers.get("X-Forwarded-For", request.remote_addr)
        user_agent = request.headers.get("User-Agent", "")
        if actor_id is None and getattr(g, "user", None) is not None:
            actor_id = g.user.id

    row = AuditLog(
        actor_id=actor_id,
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        ip=ip,
        user_agent=user_agent[:255] if user_agent else None,
        metadata_json=json.dumps(metadata, default=str) if metadata else None
    )
    db.session.add(row)
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to write audit event %s for %s %s", action, entity, entity_id)
