import json
import logging
from contextlib import nullcontext

from flask import has_app_context, has_request_context, request
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.audit_log import AuditLog
from utils.geolocation import client_ip_from_headers

logger = logging.getLogger(__name__)


def request_ip() -> str:
    return client_ip_from_headers(request.headers, request.remote_addr) or request.remote_addr or "unknown"


def _row(action, user_id, email, session_id, metadata, ip=None, user_agent=None):
    return AuditLog(
        user_id=int(user_id) if user_id not in (None, "") else None,
        action=action,
        email=email,
        session_id=session_id,
        ip=ip,
        user_agent=user_agent[:255] if user_agent else None,
        metadata_json=json.dumps(metadata) if metadata else None
    )


def log_event(action: str, user_id=None, email=None, session_id=None, metadata=None):
    row = _row(action, user_id, email, session_id, metadata,
               ip=request_ip(), user_agent=request.headers.get("User-Agent", ""))
    db.session.add(row)
    db.session.commit()


def log_background_event(app, action: str, user_id=None, email=None, session_id=None, metadata=None):
    """
    For events raised off the request path (session timers). Pushes an app
    context when none is active; failures are logged, not raised.
    """
    ctx = nullcontext() if has_app_context() else app.app_context()
    with ctx:
        ip = request_ip() if has_request_context() else None
        try:
            db.session.add(_row(action, user_id, email, session_id, metadata, ip=ip))
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Could not write audit event %s", action)


def session_end_auditor(app):
    """Hook for LoginGate: records timeout and idle expiries."""

    def _audit(reason, session):
        log_background_event(
            app,
            "CONSOLE_SESSION_EXPIRED",
            user_id=session.user_id,
            email=session.email or None,
            session_id=session.session_id,
            metadata={"reason": reason},
        )

    return _audit
