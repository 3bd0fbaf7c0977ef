from typing import Any, Optional, Protocol

from sqlalchemy.orm import Session

from . import models
from .config import settings
from .errors import NotFound
from .i18n import normalize_language, translate
from .logging_utils import log_event, log_warning
from .realtime import row_to_dict


def recipient_language(db: Session, user_id: int) -> str:
    profile = db.query(models.Profile).filter(models.Profile.user_id == user_id).first()
    return normalize_language(profile.language_preference if profile else None)


def create_notification(
    db: Session,
    *,
    user_id: int,
    type: str,
    template: Optional[str] = None,
    data: Optional[dict] = None,
    **params,
) -> models.Notification:
    """Add a notification rendered in the recipient's language. The caller commits."""
    lang = recipient_language(db, user_id)
    template = template or type
    notification = models.Notification(
        user_id=user_id,
        type=type,
        title=translate(f"notif.{template}.title", lang, **params),
        message=translate(f"notif.{template}.message", lang, **params),
        data=data or {},
        read=False,
    )
    db.add(notification)
    return notification


def serialize_notification(notification: models.Notification) -> dict:
    return row_to_dict(notification)


class NotificationService:
    """Notification reads and mutations scoped to one recipient."""

    def __init__(self, db: Session, user_id: int):
        self.db = db
        self.user_id = user_id

    def _query(self):
        return self.db.query(models.Notification).filter(models.Notification.user_id == self.user_id)

    def get(self, notification_id: int) -> models.Notification:
        notification = self._query().filter(models.Notification.id == notification_id).first()
        if not notification:
            raise NotFound("notification_not_found")
        return notification

    def list_recent(self, limit: Optional[int] = None) -> list[dict]:
        limit = limit or settings.notification_feed_limit
        rows = (
            self._query()
            .order_by(models.Notification.created_at.desc(), models.Notification.id.desc())
            .limit(limit)
            .all()
        )
        return [serialize_notification(row) for row in rows]

    def unread_count(self) -> int:
        return self._query().filter(models.Notification.read.is_(False)).count()

    def mark_read(self, notification_id: int) -> models.Notification:
        notification = self.get(notification_id)
        if not notification.read:
            notification.read = True
            self.db.commit()
        return notification

    def mark_all_read(self) -> int:
        # Row by row so each update reaches the change feed.
        unread = self._query().filter(models.Notification.read.is_(False)).all()
        for notification in unread:
            notification.read = True
        if unread:
            self.db.commit()
        return len(unread)

    def remove(self, notification: models.Notification) -> None:
        """Stage a delete inside the caller's transaction."""
        self.db.delete(notification)

    def delete(self, notification_id: int) -> None:
        notification = self.get(notification_id)
        self.remove(notification)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        log_event("notification_deleted", user_id=self.user_id, notification_id=notification_id)


class NotificationSource(Protocol):
    def list_recent(self, limit: int) -> list[dict]: ...

    def delete(self, notification_id: int) -> Any: ...


class NotificationFeed:
    """Local projection of a user's latest notifications.

    Change messages are applied in arrival order and reconciled only by id.
    Deletes are optimistic: the item disappears locally first and the list is
    reloaded from the source if the backend delete fails.
    """

    def __init__(self, source: NotificationSource, limit: Optional[int] = None):
        self.source = source
        self.limit = limit or settings.notification_feed_limit
        self.items: list[dict] = []
        self.last_error: Optional[Exception] = None

    def load(self) -> list[dict]:
        self.items = list(self.source.list_recent(self.limit))[: self.limit]
        return self.items

    @property
    def unread_count(self) -> int:
        return sum(1 for item in self.items if not item.get("read"))

    def apply(self, change: dict) -> None:
        kind = change.get("event")
        if kind == "INSERT" and change.get("new"):
            self.items = [change["new"], *self.items][: self.limit]
        elif kind == "UPDATE" and change.get("new"):
            updated = change["new"]
            self.items = [updated if item.get("id") == updated.get("id") else item for item in self.items]
        elif kind == "DELETE" and change.get("old"):
            removed_id = change["old"].get("id")
            self.items = [item for item in self.items if item.get("id") != removed_id]

    def delete(self, notification_id: int) -> bool:
        self.items = [item for item in self.items if item.get("id") != notification_id]
        self.last_error = None
        try:
            self.source.delete(notification_id)
        except Exception as exc:
            self.last_error = exc
            log_warning("notification_delete_failed", notification_id=notification_id, error=str(exc))
            self.load()
            return False
        return True
