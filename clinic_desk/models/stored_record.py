from extensions import db
from datetime import datetime, timezone


def _utcnow():
    return datetime.now(timezone.utc)


class StoredRecord(db.Model):
    """One serialized JSON document per storage key."""
    __tablename__ = "stored_records"

    key = db.Column(db.String(100), primary_key=True)
    value = db.Column(db.Text, nullable=False)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)
