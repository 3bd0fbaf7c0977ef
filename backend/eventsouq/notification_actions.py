"""Inline accept/decline actions carried by some notification types."""

from sqlalchemy.orm import Session

from . import models, social
from .errors import DomainError
from .logging_utils import log_event
from .notifications import NotificationService

ACTIONABLE_TYPES = ("group_invitation", "friend_request")


def _payload_id(notification: models.Notification, field: str) -> int:
    data = notification.data or {}
    try:
        return int(data[field])
    except (KeyError, TypeError, ValueError):
        raise DomainError("notification_no_actions")


def respond(db: Session, user: models.User, notification_id: int, accept: bool) -> str:
    """Run the type-specific action and drop the notification in one transaction.

    Returns the message key describing the outcome.
    """
    service = NotificationService(db, user.id)
    notification = service.get(notification_id)
    if notification.type not in ACTIONABLE_TYPES:
        raise DomainError("notification_no_actions")
    notification_type = notification.type

    if notification_type == "group_invitation":
        group_id = _payload_id(notification, "group_id")
        if accept:
            social.join_group(db, group_id, user.id)
            outcome = "group_joined"
        else:
            outcome = "invitation_declined"
    else:
        request_id = _payload_id(notification, "request_id")
        action = "accept" if accept else "reject"
        social.manage_friend_request(db, user, request_id, action, commit=False)
        outcome = f"friend_request_{action}ed"

    service.remove(notification)
    db.commit()
    log_event(
        "notification_action",
        user_id=user.id,
        notification_id=notification_id,
        type=notification_type,
        accepted=accept,
    )
    return outcome
