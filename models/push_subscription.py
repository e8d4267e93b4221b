"""Browser push endpoints registered by a user."""
from __future__ import annotations

from datetime import datetime

from database import db


class PushSubscription(db.Model):
    __tablename__ = "push_subscriptions"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    endpoint = db.Column(db.Text, nullable=False)
    p256dh = db.Column(db.String(255), nullable=False)
    auth = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    user = db.relationship("User", back_populates="push_subscriptions")

    __table_args__ = (
        db.UniqueConstraint("user_id", "endpoint", name="uq_push_subscription_endpoint"),
    )

    def subscription_info(self) -> dict[str, object]:
        """Return the structure expected by the Web Push protocol libraries."""

        return {"endpoint": self.endpoint, "keys": {"p256dh": self.p256dh, "auth": self.auth}}
