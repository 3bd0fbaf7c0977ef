from typing import Optional

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from . import accounts, models, schemas, social
from .errors import DomainError, NotFound
from .logging_utils import log_event
from .moderation import invalidate_caches
from .notifications import create_notification


def create_event(db: Session, organizer: models.User, payload: schemas.EventCreate) -> models.Event:
    event = models.Event(**payload.model_dump(), organizer_id=organizer.id, status="pending")
    db.add(event)
    db.commit()
    db.refresh(event)
    invalidate_caches()
    log_event("event_submitted", event_id=event.id, organizer_id=organizer.id)
    return event


def create_service(db: Session, provider: models.User, payload: schemas.ServiceCreate) -> models.Service:
    service = models.Service(**payload.model_dump(), provider_id=provider.id, status="pending")
    db.add(service)
    db.commit()
    db.refresh(service)
    invalidate_caches()
    log_event("service_submitted", service_id=service.id, provider_id=provider.id)
    return service


def list_events(db: Session, *, category_id: Optional[int] = None, search: Optional[str] = None, limit: int = 50):
    query = db.query(models.Event).filter(models.Event.status == "approved")
    if category_id is not None:
        query = query.filter(models.Event.category_id == category_id)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(models.Event.title.ilike(like), models.Event.title_ar.ilike(like)))
    return query.order_by(models.Event.start_time.asc(), models.Event.id.asc()).limit(limit).all()


def list_services(db: Session, *, category_id: Optional[int] = None, limit: int = 50):
    query = db.query(models.Service).filter(models.Service.status == "approved")
    if category_id is not None:
        query = query.filter(models.Service.service_category_id == category_id)
    return query.order_by(models.Service.created_at.desc(), models.Service.id.desc()).limit(limit).all()


def book_event(db: Session, user: models.User, event_id: int) -> models.Booking:
    event = db.get(models.Event, event_id)
    if not event:
        raise NotFound("event_not_found")
    if event.status != "approved":
        raise DomainError("event_not_available")
    criteria = [models.Event.id == event_id]
    if event.max_attendees is not None:
        criteria.append(models.Event.current_attendees < models.Event.max_attendees)
    result = db.execute(
        update(models.Event)
        .where(*criteria)
        .values(current_attendees=models.Event.current_attendees + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise DomainError("event_full")
    booking = models.Booking(user_id=user.id, event_id=event_id, status="confirmed", total_amount=event.price or 0.0)
    db.add(booking)
    db.commit()
    db.refresh(booking)
    invalidate_caches()
    log_event("event_booked", event_id=event_id, user_id=user.id, booking_id=booking.id)
    return booking


def book_service(db: Session, user: models.User, service_id: int) -> models.ServiceBooking:
    service = db.get(models.Service, service_id)
    if not service:
        raise NotFound("service_not_found")
    if service.status != "approved":
        raise DomainError("service_not_available")
    booking = models.ServiceBooking(
        user_id=user.id, service_id=service_id, status="confirmed", total_amount=service.price or 0.0
    )
    db.add(booking)
    db.commit()
    db.refresh(booking)
    log_event("service_booked", service_id=service_id, user_id=user.id, booking_id=booking.id)
    return booking


def submit_provider_application(
    db: Session, user: models.User, payload: schemas.ProviderApplicationCreate
) -> models.ProviderApplication:
    pending = (
        db.query(models.ProviderApplication.id)
        .filter(
            models.ProviderApplication.user_id == user.id,
            models.ProviderApplication.verification_status == "pending",
        )
        .first()
    )
    if pending:
        raise DomainError("application_exists")
    application = models.ProviderApplication(user_id=user.id, **payload.model_dump(), verification_status="pending")
    db.add(application)
    db.commit()
    db.refresh(application)
    invalidate_caches()
    log_event("provider_application_submitted", application_id=application.id, user_id=user.id)
    return application


def share_event(db: Session, actor: models.User, event_id: int, payload: schemas.EventShareRequest) -> int:
    """Share an approved event with accepted friends; returns the number of shares."""
    event = db.get(models.Event, event_id)
    if not event or event.status != "approved":
        raise NotFound("event_not_found")
    recipients = list(dict.fromkeys(payload.friend_ids))
    friends = social.friend_ids(db, actor.id)
    if any(friend_id not in friends for friend_id in recipients):
        raise DomainError("share_requires_friends")

    name = accounts.display_name(db, actor.id)
    for friend_id in recipients:
        db.add(models.EventShare(event_id=event_id, shared_by=actor.id, shared_with=friend_id, message=payload.message))
        create_notification(
            db,
            user_id=friend_id,
            type="event_shared",
            data={"event_id": event_id, "shared_by": actor.id, "message": payload.message},
            name=name,
            title=event.title,
        )
    db.commit()
    log_event("event_shared", event_id=event_id, shared_by=actor.id, recipients=len(recipients))
    return len(recipients)
