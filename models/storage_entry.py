from models.db import db
from models.user import _utcnow

class StorageEntry(db.Model):
    """One key of a client's durable key/value storage."""

    __tablename__ = "storage_entries"
    __table_args__ = (
        db.UniqueConstraint("namespace", "key", name="uq_storage_namespace_key"),
    )

    id = db.Column(db.Integer, primary_key=True)

    # namespace = one "browser profile"; every tab of it shares these keys
    namespace = db.Column(db.String(64), nullable=False, index=True)
    key = db.Column(db.String(128), nullable=False)
    value = db.Column(db.Text, nullable=False)

    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)
