"""In-process change feed for committed row changes.

Models opt in with ``__changefeed__ = True``. Changes are captured when the
session flushes and published only once the transaction commits, in flush
order, to subscribers keyed by ``(table, user_id)``.
"""

import asyncio
import threading
from collections import defaultdict
from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from sqlalchemy import event
from sqlalchemy.orm import Session

from .logging_utils import log_warning

_PENDING_KEY = "changefeed_pending"


class Subscription:
    def __init__(self, feed: "ChangeFeed", table: str, user_id: int, loop: asyncio.AbstractEventLoop):
        self._feed = feed
        self.table = table
        self.user_id = user_id
        self.loop = loop
        self.queue: asyncio.Queue = asyncio.Queue()

    async def get(self) -> dict:
        return await self.queue.get()

    def close(self) -> None:
        self._feed.unsubscribe(self)


class ChangeFeed:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[tuple[str, int], list[Subscription]] = defaultdict(list)

    def subscribe(self, table: str, user_id: int) -> Subscription:
        sub = Subscription(self, table, user_id, asyncio.get_running_loop())
        with self._lock:
            self._subscribers[(table, user_id)].append(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subscribers.get((sub.table, sub.user_id))
            if not subs:
                return
            if sub in subs:
                subs.remove(sub)
            if not subs:
                del self._subscribers[(sub.table, sub.user_id)]

    def subscriber_count(self, table: str, user_id: int) -> int:
        with self._lock:
            return len(self._subscribers.get((table, user_id), []))

    def publish(self, table: str, user_id: int, message: dict) -> None:
        with self._lock:
            subs = list(self._subscribers.get((table, user_id), []))
        for sub in subs:
            try:
                sub.loop.call_soon_threadsafe(sub.queue.put_nowait, message)
            except RuntimeError:
                # Loop already closed; the socket is gone.
                log_warning("changefeed_publish_failed", table=table, user_id=user_id)
                self.unsubscribe(sub)

    def clear(self) -> None:
        with self._lock:
            self._subscribers.clear()


change_feed = ChangeFeed()


def row_to_dict(obj: Any) -> dict:
    return jsonable_encoder({attr.key: getattr(obj, attr.key) for attr in obj.__mapper__.column_attrs})


def _tracked(obj: Any) -> bool:
    return bool(getattr(type(obj), "__changefeed__", False))


@event.listens_for(Session, "after_flush")
def _collect_changes(session: Session, flush_context) -> None:
    pending: list[tuple[str, Optional[int], dict]] = session.info.setdefault(_PENDING_KEY, [])
    for obj in session.new:
        if _tracked(obj):
            row = row_to_dict(obj)
            pending.append((obj.__tablename__, row.get("user_id"), {"event": "INSERT", "new": row, "old": None}))
    for obj in session.dirty:
        if _tracked(obj) and session.is_modified(obj, include_collections=False):
            row = row_to_dict(obj)
            pending.append((obj.__tablename__, row.get("user_id"), {"event": "UPDATE", "new": row, "old": {"id": row["id"]}}))
    for obj in session.deleted:
        if _tracked(obj):
            row = row_to_dict(obj)
            pending.append((obj.__tablename__, row.get("user_id"), {"event": "DELETE", "new": None, "old": row}))


@event.listens_for(Session, "after_commit")
def _publish_changes(session: Session) -> None:
    pending = session.info.pop(_PENDING_KEY, None)
    if not pending:
        return
    for table, user_id, change in pending:
        if user_id is None:
            continue
        change_feed.publish(table, int(user_id), {"type": "change", "table": table, **change})


@event.listens_for(Session, "after_rollback")
def _discard_changes(session: Session) -> None:
    session.info.pop(_PENDING_KEY, None)
