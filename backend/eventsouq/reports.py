from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from . import models, schemas
from .errors import DomainError, NotFound
from .guard import action_guard, action_key
from .logging_utils import log_event, log_warning
from .moderation import ModerationOutcome, invalidate_caches, record_activity


def submit_report(db: Session, reporter: models.User, payload: schemas.ReportCreate) -> models.EntityReport:
    report = models.EntityReport(
        entity_type=payload.entity_type,
        entity_id=payload.entity_id,
        reporter_id=reporter.id,
        reason=payload.reason,
        details=(payload.details or "").strip() or None,
        status="pending",
    )
    db.add(report)
    db.commit()
    db.refresh(report)
    invalidate_caches()
    log_event("report_submitted", report_id=report.id, entity_type=report.entity_type, reason=report.reason)
    return report


def list_reports(db: Session, status: Optional[str] = None, limit: int = 100) -> list[models.EntityReport]:
    query = db.query(models.EntityReport)
    if status:
        if status not in ("pending", "reviewed", "resolved", "dismissed"):
            raise DomainError("invalid_report_status")
        query = query.filter(models.EntityReport.status == status)
    return query.order_by(models.EntityReport.created_at.desc(), models.EntityReport.id.desc()).limit(limit).all()


def review_report(
    db: Session, actor: models.User, report_id: int, payload: schemas.ReportUpdate
) -> tuple[ModerationOutcome, Optional[models.EntityReport]]:
    with action_guard.hold(action_key(actor.id, "report", report_id)) as acquired:
        if not acquired:
            log_warning("moderation_action_ignored", admin_id=actor.id, kind="report", entity_id=report_id)
            return ModerationOutcome("ignored", "report", report_id), None
        report = db.get(models.EntityReport, report_id)
        if report is None:
            raise NotFound("report_not_found")
        report.status = payload.status
        report.admin_notes = payload.admin_notes
        report.reviewed_by = actor.id
        report.reviewed_at = datetime.now(timezone.utc)
        record_activity(
            db,
            admin_id=actor.id,
            action=f"{payload.status}_report",
            entity_type="report",
            entity_id=report_id,
            details={
                "reported_entity_type": report.entity_type,
                "reported_entity_id": report.entity_id,
                "admin_notes": payload.admin_notes,
            },
        )
        db.commit()
        db.refresh(report)
    invalidate_caches()
    log_event("report_reviewed", admin_id=actor.id, report_id=report_id, status=payload.status)
    return ModerationOutcome("done", "report", report_id, payload.status), report
