"""Admin moderation of events, services and provider applications.

Every action is keyed by ``(admin, "<kind>-<id>")`` in the in-flight guard. A
repeated action for a key that is still running is ignored without touching
the database. The status change, the activity log entry and the owner
notification are committed together. The pending -> decided transition itself is
a conditional UPDATE, so two admins deciding the same item cannot both win.
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from cachetools import TTLCache
from sqlalchemy import func, update
from sqlalchemy.orm import Session, object_session
from sqlalchemy.orm.attributes import set_committed_value

from . import accounts, models
from .config import settings
from .errors import DomainError, NotFound
from .guard import action_guard, action_key
from .logging_utils import log_event, log_warning
from .notifications import create_notification

KINDS = ("event", "service", "provider")
PENDING_CACHE_KEY = "pending-items"
STATS_CACHE_KEY = "admin-stats"


@dataclass(frozen=True)
class KindSpec:
    model: Any
    status_attr: str
    owner_attr: str
    title_attr: str
    rejected_status: str
    not_found_key: str


KIND_SPECS: dict[str, KindSpec] = {
    "event": KindSpec(models.Event, "status", "organizer_id", "title", "cancelled", "event_not_found"),
    "service": KindSpec(models.Service, "status", "provider_id", "name", "cancelled", "service_not_found"),
    "provider": KindSpec(
        models.ProviderApplication, "verification_status", "user_id", "business_name", "rejected", "provider_not_found"
    ),
}


@dataclass
class ModerationOutcome:
    outcome: str
    kind: str
    id: int
    status: Optional[str] = None

    @property
    def ignored(self) -> bool:
        return self.outcome == "ignored"


_cache_lock = threading.Lock()
_cache: TTLCache = TTLCache(maxsize=32, ttl=settings.moderation_cache_ttl_seconds)


def cached(key: str, compute: Callable[[], Any]) -> Any:
    with _cache_lock:
        if key in _cache:
            return _cache[key]
    value = compute()
    with _cache_lock:
        _cache[key] = value
    return value


def invalidate_caches() -> None:
    with _cache_lock:
        _cache.clear()


def _spec(kind: str) -> KindSpec:
    spec = KIND_SPECS.get(kind)
    if spec is None:
        raise DomainError("unknown_kind")
    return spec


def record_activity(
    db: Session,
    *,
    admin_id: Optional[int],
    action: str,
    entity_type: str,
    entity_id: int,
    details: Optional[dict] = None,
) -> None:
    db.add(
        models.ActivityLog(
            admin_id=admin_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            details=details,
        )
    )


def _load(db: Session, spec: KindSpec, entity_id: int, *, pending_only: bool = True):
    item = db.get(spec.model, entity_id)
    if item is None:
        raise NotFound(spec.not_found_key)
    if pending_only and getattr(item, spec.status_attr) != models.ModerationStatus.pending.value:
        raise DomainError("item_not_pending")
    return item


def _apply_status(item: Any, spec: KindSpec, status: str) -> None:
    column = getattr(spec.model, spec.status_attr)
    result = object_session(item).execute(
        update(spec.model)
        .where(spec.model.id == item.id, column == models.ModerationStatus.pending.value)
        .values({spec.status_attr: status})
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise DomainError("item_not_pending")
    set_committed_value(item, spec.status_attr, status)


def _ignored(actor: models.User, kind: str, entity_id: int, action: str) -> ModerationOutcome:
    log_warning("moderation_action_ignored", admin_id=actor.id, kind=kind, entity_id=entity_id, action=action)
    return ModerationOutcome("ignored", kind, entity_id)


def approve(db: Session, actor: models.User, kind: str, entity_id: int) -> ModerationOutcome:
    spec = _spec(kind)
    with action_guard.hold(action_key(actor.id, kind, entity_id)) as acquired:
        if not acquired:
            return _ignored(actor, kind, entity_id, "approve")
        try:
            item = _load(db, spec, entity_id)
            title = getattr(item, spec.title_attr)
            owner_id = getattr(item, spec.owner_attr)
            _apply_status(item, spec, models.ModerationStatus.approved.value)
            if kind == "provider":
                item.reviewed_by = actor.id
                item.reviewed_at = datetime.now(timezone.utc)
                applicant = db.get(models.User, owner_id)
                if applicant is not None and applicant.role != models.UserRole.admin:
                    applicant.role = models.UserRole.provider
            record_activity(
                db,
                admin_id=actor.id,
                action=f"approve_{kind}",
                entity_type=kind,
                entity_id=entity_id,
                details={"title": title},
            )
            if owner_id:
                create_notification(
                    db,
                    user_id=owner_id,
                    type=f"{kind}_approved",
                    data={"entity_type": kind, "entity_id": entity_id},
                    title=title,
                )
            db.commit()
        except Exception:
            db.rollback()
            raise
    invalidate_caches()
    log_event(f"{kind}_approved", admin_id=actor.id, entity_id=entity_id)
    return ModerationOutcome("done", kind, entity_id, models.ModerationStatus.approved.value)


def reject(db: Session, actor: models.User, kind: str, entity_id: int, comment: str) -> ModerationOutcome:
    spec = _spec(kind)
    with action_guard.hold(action_key(actor.id, kind, entity_id)) as acquired:
        if not acquired:
            return _ignored(actor, kind, entity_id, "reject")
        try:
            item = _load(db, spec, entity_id)
            title = getattr(item, spec.title_attr)
            owner_id = getattr(item, spec.owner_attr)
            _apply_status(item, spec, spec.rejected_status)
            if kind == "provider":
                item.rejection_reason = comment
                item.reviewed_by = actor.id
                item.reviewed_at = datetime.now(timezone.utc)
            record_activity(
                db,
                admin_id=actor.id,
                action=f"reject_{kind}",
                entity_type=kind,
                entity_id=entity_id,
                details={"title": title, "comment": comment},
            )
            if owner_id:
                create_notification(
                    db,
                    user_id=owner_id,
                    type="rejection",
                    template=f"{kind}_rejected",
                    data={"entity_type": kind, "entity_id": entity_id, "comment": comment},
                    title=title,
                    comment=comment,
                )
            db.commit()
        except Exception:
            db.rollback()
            raise
    invalidate_caches()
    log_event(f"{kind}_rejected", admin_id=actor.id, entity_id=entity_id)
    return ModerationOutcome("done", kind, entity_id, spec.rejected_status)


def delete(db: Session, actor: models.User, kind: str, entity_id: int) -> ModerationOutcome:
    if kind not in ("event", "service"):
        raise DomainError("unknown_kind")
    spec = _spec(kind)
    with action_guard.hold(action_key(actor.id, kind, entity_id)) as acquired:
        if not acquired:
            return _ignored(actor, kind, entity_id, "delete")
        try:
            item = _load(db, spec, entity_id, pending_only=False)
            title = getattr(item, spec.title_attr)
            if kind == "event":
                db.query(models.Booking).filter(models.Booking.event_id == entity_id).delete(synchronize_session=False)
                db.query(models.EventShare).filter(models.EventShare.event_id == entity_id).delete(
                    synchronize_session=False
                )
                db.query(models.EventGroup).filter(models.EventGroup.event_id == entity_id).update(
                    {models.EventGroup.event_id: None}, synchronize_session=False
                )
            else:
                db.query(models.ServiceBooking).filter(models.ServiceBooking.service_id == entity_id).delete(
                    synchronize_session=False
                )
            db.delete(item)
            record_activity(
                db,
                admin_id=actor.id,
                action=f"delete_{kind}",
                entity_type=kind,
                entity_id=entity_id,
                details={"title": title},
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
    invalidate_caches()
    log_event(f"{kind}_deleted", admin_id=actor.id, entity_id=entity_id)
    return ModerationOutcome("done", kind, entity_id, "deleted")


def bulk_approve(db: Session, actor: models.User, items: list[tuple[str, int]]) -> list[dict]:
    results = []
    for kind, entity_id in items:
        try:
            outcome = approve(db, actor, kind, entity_id)
        except DomainError as exc:
            results.append({"kind": kind, "id": entity_id, "success": False, "error": exc.key})
            continue
        if outcome.ignored:
            results.append({"kind": kind, "id": entity_id, "success": False, "error": "action_in_progress"})
        else:
            results.append({"kind": kind, "id": entity_id, "success": True, "error": None})
    log_event(
        "bulk_approve_completed",
        admin_id=actor.id,
        requested=len(items),
        succeeded=sum(1 for r in results if r["success"]),
    )
    return results


def _compute_pending_items(db: Session) -> dict[str, list[dict]]:
    result: dict[str, list[dict]] = {}
    for kind, spec in KIND_SPECS.items():
        status_col = getattr(spec.model, spec.status_attr)
        rows = (
            db.query(spec.model)
            .filter(status_col == models.ModerationStatus.pending.value)
            .order_by(spec.model.created_at.asc(), spec.model.id.asc())
            .all()
        )
        names = accounts.display_names(db, [getattr(row, spec.owner_attr) for row in rows])
        result[f"{kind}s"] = [
            {
                "kind": kind,
                "id": row.id,
                "title": getattr(row, spec.title_attr),
                "owner_id": getattr(row, spec.owner_attr),
                "owner_name": names.get(getattr(row, spec.owner_attr)),
                "created_at": row.created_at,
            }
            for row in rows
        ]
    return result


def pending_items(db: Session) -> dict[str, list[dict]]:
    return cached(PENDING_CACHE_KEY, lambda: _compute_pending_items(db))


def _compute_stats(db: Session) -> dict[str, int]:
    def count(model, *criteria) -> int:
        return db.query(func.count(model.id)).filter(*criteria).scalar() or 0

    return {
        "total_users": count(models.User),
        "total_events": count(models.Event, models.Event.status == "approved"),
        "total_services": count(models.Service, models.Service.status == "approved"),
        "pending_events": count(models.Event, models.Event.status == "pending"),
        "pending_services": count(models.Service, models.Service.status == "pending"),
        "pending_providers": count(
            models.ProviderApplication, models.ProviderApplication.verification_status == "pending"
        ),
        "pending_reports": count(models.EntityReport, models.EntityReport.status == "pending"),
        "total_bookings": count(models.Booking, models.Booking.status == "confirmed"),
        "pending_withdrawals": count(
            models.WalletTransaction,
            models.WalletTransaction.type == "withdraw",
            models.WalletTransaction.status == "pending",
        ),
    }


def admin_stats(db: Session) -> dict[str, int]:
    return cached(STATS_CACHE_KEY, lambda: _compute_stats(db))


def list_activity_logs(
    db: Session,
    *,
    admin_id: Optional[int] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    limit: int = 50,
) -> list[dict]:
    query = db.query(models.ActivityLog)
    if admin_id is not None:
        query = query.filter(models.ActivityLog.admin_id == admin_id)
    if entity_type:
        query = query.filter(models.ActivityLog.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(models.ActivityLog.entity_id == entity_id)
    rows = query.order_by(models.ActivityLog.created_at.desc(), models.ActivityLog.id.desc()).limit(limit).all()
    names = accounts.display_names(db, [row.admin_id for row in rows])
    return [
        {
            "id": row.id,
            "admin_id": row.admin_id,
            "admin_name": names.get(row.admin_id) if row.admin_id else None,
            "action": row.action,
            "entity_type": row.entity_type,
            "entity_id": row.entity_id,
            "details": row.details,
            "created_at": row.created_at,
        }
        for row in rows
    ]


_PERFORMANCE_COUNTERS = {
    "approve_event": "events_approved",
    "reject_event": "events_rejected",
    "approve_service": "services_approved",
    "reject_service": "services_rejected",
    "approve_provider": "providers_approved",
    "reject_provider": "providers_rejected",
}


def admin_performance(db: Session, days: int = 30) -> list[dict]:
    since = datetime.now(timezone.utc) - timedelta(days=days)
    rows = (
        db.query(models.ActivityLog.admin_id, models.ActivityLog.action, models.ActivityLog.created_at)
        .filter(models.ActivityLog.admin_id.isnot(None), models.ActivityLog.created_at >= since)
        .all()
    )
    stats: dict[int, dict] = {}
    for admin_id, action, created_at in rows:
        entry = stats.setdefault(
            admin_id,
            {
                "admin_id": admin_id,
                **{counter: 0 for counter in _PERFORMANCE_COUNTERS.values()},
                "reports_handled": 0,
                "withdrawals_processed": 0,
                "total_actions": 0,
                "last_active": None,
            },
        )
        counter = _PERFORMANCE_COUNTERS.get(action)
        if counter:
            entry[counter] += 1
        if "report" in action:
            entry["reports_handled"] += 1
        if "withdrawal" in action:
            entry["withdrawals_processed"] += 1
        entry["total_actions"] += 1
        if entry["last_active"] is None or created_at > entry["last_active"]:
            entry["last_active"] = created_at

    names = accounts.display_names(db, stats.keys())
    result = []
    for admin_id, entry in stats.items():
        entry["admin_name"] = names.get(admin_id)
        result.append(entry)
    result.sort(key=lambda item: item["total_actions"], reverse=True)
    return result
