from flask_sqlalchemy import SQLAlchemy
from datetime import datetime

db = SQLAlchemy()


class StoreRecord(db.Model):
    """
    One record of the key-value store, addressed as ``{collection}/{owner}/{key}``.
    The payload is whatever the client wrote; the store never inspects it.
    """
    __tablename__ = 'store_record'
    __table_args__ = (
        db.UniqueConstraint('collection', 'owner', 'key', name='uq_store_record_path'),
    )

    id = db.Column(db.Integer, primary_key=True)
    collection = db.Column(db.String(50), nullable=False, index=True)  # notes | todos | calendarItems | admins
    owner = db.Column(db.String(128), nullable=False, index=True)  # user identifier
    key = db.Column(db.String(128), nullable=False)
    payload = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def path(self):
        return f"{self.collection}/{self.owner}/{self.key}"
