"""Named task queries saved by a user."""

from __future__ import annotations

from datetime import datetime

from database import db


class SavedSearch(db.Model):
    __tablename__ = "saved_searches"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    # "query" would shadow Model.query
    query_string = db.Column("query", db.Text, nullable=False, default="")
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "query": self.query_string,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
