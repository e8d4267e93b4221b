"""Web Push delivery through pywebpush."""
from __future__ import annotations

import json
import logging

from flask import current_app
from pywebpush import WebPushException, webpush

from database import db
from models.push_subscription import PushSubscription
from models.user import User

logger = logging.getLogger(__name__)

# Push services answer these when a subscription has been revoked
GONE_STATUS_CODES = frozenset({404, 410})


def push_enabled() -> bool:
    config = current_app.config
    return bool(config.get("VAPID_PUBLIC_KEY") and config.get("VAPID_PRIVATE_KEY"))


def send_push(subscription: PushSubscription, data: dict[str, object]) -> bool:
    """Deliver ``data`` to one subscription; return True on success."""

    if not push_enabled():
        return False
    try:
        webpush(
            subscription_info=subscription.subscription_info(),
            data=json.dumps(data),
            vapid_private_key=current_app.config["VAPID_PRIVATE_KEY"],
            vapid_claims={"sub": current_app.config.get("VAPID_CLAIMS_EMAIL")},
        )
    except WebPushException as exc:
        status = getattr(exc.response, "status_code", None)
        if status in GONE_STATUS_CODES:
            logger.info("Removing expired push subscription %s", subscription.id)
            db.session.delete(subscription)
        else:
            logger.warning("Push delivery to subscription %s failed: %s", subscription.id, exc)
        return False
    return True


def send_push_to_user(user: User, data: dict[str, object]) -> int:
    """Send to every subscription of ``user``; return the number delivered."""

    if not user.notify_push:
        return 0
    delivered = 0
    for subscription in list(user.push_subscriptions):
        if send_push(subscription, data):
            delivered += 1
    return delivered


def subscribe(user: User, endpoint: str, p256dh: str, auth: str) -> PushSubscription:
    """Register an endpoint for the user; repeated calls update the keys."""

    subscription = PushSubscription.query.filter_by(user_id=user.id, endpoint=endpoint).one_or_none()
    if subscription is None:
        subscription = PushSubscription(user_id=user.id, endpoint=endpoint, p256dh=p256dh, auth=auth)
        db.session.add(subscription)
    else:
        subscription.p256dh = p256dh
        subscription.auth = auth
    return subscription


def unsubscribe(user: User, endpoint: str) -> bool:
    subscription = PushSubscription.query.filter_by(user_id=user.id, endpoint=endpoint).one_or_none()
    if subscription is None:
        return False
    db.session.delete(subscription)
    return True
