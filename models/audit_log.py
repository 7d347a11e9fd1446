from models.db import db
from models.user import _utcnow

class AuditLog(db.Model):
    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=True)  # nullable for unauth events
    action = db.Column(db.String(80), nullable=False)  # e.g. CONSOLE_LOGIN_FAIL, CONSOLE_LOGOUT
    email = db.Column(db.String(255), nullable=True)
    session_id = db.Column(db.String(64), nullable=True, index=True)

    ip = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(255), nullable=True)
    metadata_json = db.Column(db.Text, nullable=True)

    timestamp = db.Column(db.DateTime, default=_utcnow, nullable=False)
