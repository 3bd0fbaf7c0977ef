from datetime import datetime, timedelta, timezone
from typing import List, Optional
from contextlib import asynccontextmanager, suppress
import time
import logging
import asyncio
from pathlib import Path

from fastapi import Depends, FastAPI, HTTPException, status, Request, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlalchemy import text
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from . import (
    accounts,
    auth,
    backup,
    catalogue,
    gamification,
    models,
    moderation,
    notification_actions,
    reports,
    schemas,
    social,
    wallet,
)
from .config import settings
from .database import engine, get_db
from .errors import ActionInProgress, DomainError
from .i18n import language_from_header, normalize_language, translate
from .logging_utils import configure_logging, RequestIdMiddleware, log_event, log_warning
from .notifications import NotificationFeed, NotificationService
from .realtime import change_feed

configure_logging()


def _run_migrations():
    """Run Alembic migrations to latest head. Controlled via settings.auto_run_migrations."""
    try:
        from alembic import command
        from alembic.config import Config
        base_dir = Path(__file__).resolve().parent.parent
        alembic_ini = base_dir / 'alembic.ini'
        if not alembic_ini.exists():
            logging.warning('alembic.ini not found; skipping migrations')
            return
        cfg = Config(str(alembic_ini))
        cfg.set_main_option('script_location', str(base_dir / 'alembic'))
        command.upgrade(cfg, 'head')
        logging.info('Migrations applied to head')
    except Exception:
        logging.exception('Failed to run migrations on startup')


def _check_configuration():
    if not settings.database_url:
        raise RuntimeError('DATABASE_URL is required')
    if not settings.secret_key:
        raise RuntimeError('SECRET_KEY is required')
    storage_root = Path(settings.storage_root)
    if storage_root.exists() and not storage_root.is_dir():
        raise RuntimeError('STORAGE_ROOT must be a directory')


@asynccontextmanager
async def lifespan(_app: FastAPI):
    _check_configuration()
    if getattr(settings, "auto_run_migrations", False):
        _run_migrations()
    elif settings.auto_create_tables:
        models.Base.metadata.create_all(bind=engine)
    try:
        yield
    finally:
        change_feed.clear()


app = FastAPI(title="Eventsouq API", version="1.0.0", lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins or [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _lang(request: Optional[Request]) -> str:
    if request is None:
        return settings.default_language
    return language_from_header(request.headers.get("accept-language"))


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    message = translate(exc.key, _lang(request), **exc.params)
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": exc.key, "message": message}, "detail": message},
        headers=headers,
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    code = f"http_{exc.status_code}"
    message = exc.detail if isinstance(exc.detail, str) else translate("internal_error", _lang(request))
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": code, "message": message}, "detail": message},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logging.getLogger("eventsouq").exception("unhandled_exception", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": {"code": "internal_error", "message": translate("internal_error", _lang(request))}},
    )


_RATE_LIMIT_STORE: dict[str, list[float]] = {}


def _enforce_rate_limit(
    action: str,
    request: Request | None = None,
    limit: int = 20,
    window_seconds: int = 60,
    identifier: str | None = None,
) -> None:
    now = time.time()
    identity = identifier or (request.client.host if request and request.client else "unknown")
    key = f"{action}:{identity}"
    entries = _RATE_LIMIT_STORE.get(key, [])
    entries = [ts for ts in entries if now - ts < window_seconds]
    if len(entries) >= limit:
        raise DomainError("rate_limited", status.HTTP_429_TOO_MANY_REQUESTS)
    entries.append(now)
    _RATE_LIMIT_STORE[key] = entries


def _token_response(user: models.User) -> dict:
    token_payload = {"sub": str(user.id), "email": user.email, "role": user.role.value}
    access_token = auth.create_access_token(
        data=token_payload, expires_delta=timedelta(minutes=settings.access_token_expire_minutes)
    )
    refresh_token = auth.create_refresh_token(
        data=token_payload, expires_delta=timedelta(minutes=settings.refresh_token_expire_minutes)
    )
    return {
        "access_token": access_token,
        "refresh_token": refresh_token,
        "token_type": "bearer",
        "role": user.role,
        "user_id": user.id,
    }


def _user_response(user: models.User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "role": user.role,
        "is_admin": auth.is_admin(user),
        "profile": schemas.ProfileResponse.model_validate(user.profile) if user.profile else None,
    }


def _moderation_response(outcome: moderation.ModerationOutcome, message_key: str, request: Request) -> dict:
    if outcome.ignored:
        raise ActionInProgress()
    return {
        "outcome": outcome.outcome,
        "kind": outcome.kind,
        "id": outcome.id,
        "status": outcome.status,
        "message": translate(message_key, _lang(request)),
    }


@app.get("/api/health")
def health_check(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok", "database": "ok"}
    except Exception:
        raise HTTPException(status_code=503, detail="Database unavailable")


# --- accounts ------------------------------------------------------------


@app.post("/register", response_model=schemas.Token)
def register(payload: schemas.UserRegister, request: Request, db: Session = Depends(get_db)):
    _enforce_rate_limit("register", request=request, identifier=payload.email.lower())
    user = accounts.register_user(db, payload)
    moderation.invalidate_caches()
    return _token_response(user)


@app.post("/login", response_model=schemas.Token)
def login(user_credentials: schemas.UserLogin, request: Request, db: Session = Depends(get_db)):
    _enforce_rate_limit("login", request=request, identifier=user_credentials.email.lower())
    user = db.query(models.User).filter(models.User.email == user_credentials.email.lower()).first()
    if not user or not auth.verify_password(user_credentials.password, user.password_hash):
        log_warning("login_failed", email=user_credentials.email)
        raise DomainError("invalid_credentials", status.HTTP_401_UNAUTHORIZED)
    if getattr(user, "is_active", True) is False:
        raise DomainError("forbidden", status.HTTP_403_FORBIDDEN)

    user.last_seen_at = datetime.now(timezone.utc)
    db.commit()
    log_event("login_success", user_id=user.id, role=user.role.value)
    return _token_response(user)


@app.post("/refresh", response_model=schemas.Token)
def refresh_token(payload: schemas.RefreshRequest, db: Session = Depends(get_db)):
    token_data = auth.decode_token(payload.refresh_token, expected_type="refresh")
    user = db.get(models.User, token_data.user_id)
    if user is None or not user.is_active:
        raise DomainError("not_authenticated", status.HTTP_401_UNAUTHORIZED)
    return _token_response(user)


@app.get("/me", response_model=schemas.UserResponse)
def get_me(current_user: models.User = Depends(auth.get_current_user)):
    return _user_response(current_user)


@app.put("/api/me/profile", response_model=schemas.UserResponse)
def update_profile(
    payload: schemas.ProfileUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    accounts.update_profile(db, current_user, payload)
    log_event("profile_updated", user_id=current_user.id)
    return _user_response(current_user)


# --- catalogue -----------------------------------------------------------


@app.get("/api/categories", response_model=List[schemas.CategoryResponse])
def list_categories(db: Session = Depends(get_db)):
    return db.query(models.Category).order_by(models.Category.name).all()


@app.get("/api/service-categories", response_model=List[schemas.CategoryResponse])
def list_service_categories(db: Session = Depends(get_db)):
    return db.query(models.ServiceCategory).order_by(models.ServiceCategory.name).all()


@app.get("/api/events", response_model=List[schemas.EventResponse])
def list_events(
    category_id: Optional[int] = None,
    search: Optional[str] = None,
    limit: int = Query(50, ge=1, le=100),
    db: Session = Depends(get_db),
):
    return catalogue.list_events(db, category_id=category_id, search=search, limit=limit)


@app.post("/api/events", response_model=schemas.EventResponse, status_code=status.HTTP_201_CREATED)
def create_event(
    payload: schemas.EventCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_organizer),
):
    return catalogue.create_event(db, current_user, payload)


@app.get("/api/services", response_model=List[schemas.ServiceResponse])
def list_services(
    category_id: Optional[int] = None,
    limit: int = Query(50, ge=1, le=100),
    db: Session = Depends(get_db),
):
    return catalogue.list_services(db, category_id=category_id, limit=limit)


@app.post("/api/services", response_model=schemas.ServiceResponse, status_code=status.HTTP_201_CREATED)
def create_service(
    payload: schemas.ServiceCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_provider),
):
    return catalogue.create_service(db, current_user, payload)


@app.post("/api/events/{event_id}/bookings", response_model=schemas.BookingResponse, status_code=status.HTTP_201_CREATED)
def book_event(
    event_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    return catalogue.book_event(db, current_user, event_id)


@app.post(
    "/api/services/{service_id}/bookings", response_model=schemas.BookingResponse, status_code=status.HTTP_201_CREATED
)
def book_service(
    service_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    return catalogue.book_service(db, current_user, service_id)


@app.post(
    "/api/provider-applications",
    response_model=schemas.ProviderApplicationResponse,
    status_code=status.HTTP_201_CREATED,
)
def submit_provider_application(
    payload: schemas.ProviderApplicationCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    return catalogue.submit_provider_application(db, current_user, payload)


@app.post("/api/events/{event_id}/share")
def share_event(
    event_id: int,
    payload: schemas.EventShareRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    shared = catalogue.share_event(db, current_user, event_id, payload)
    return {"shared": shared, "message": translate("event_shared", _lang(request))}


# --- moderation ----------------------------------------------------------


@app.get("/api/admin/moderation/pending", response_model=schemas.PendingItemsResponse)
def admin_pending_items(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    return moderation.pending_items(db)


@app.post("/api/admin/moderation/{kind}/{entity_id}/approve", response_model=schemas.ModerationResult)
def admin_approve_item(
    kind: schemas.ModerationKind,
    entity_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    outcome = moderation.approve(db, current_user, kind, entity_id)
    return _moderation_response(outcome, f"{kind}_approved", request)


@app.post("/api/admin/moderation/{kind}/{entity_id}/reject", response_model=schemas.ModerationResult)
def admin_reject_item(
    kind: schemas.ModerationKind,
    entity_id: int,
    payload: schemas.RejectRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    comment = (payload.comment or "").strip()
    if not comment:
        raise DomainError("rejection_reason_required")
    outcome = moderation.reject(db, current_user, kind, entity_id, comment)
    return _moderation_response(outcome, f"{kind}_rejected", request)


@app.post("/api/admin/moderation/bulk-approve", response_model=schemas.BulkApproveResponse)
def admin_bulk_approve(
    payload: schemas.BulkApproveRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    results = moderation.bulk_approve(db, current_user, [(item.kind, item.id) for item in payload.items])
    success_count = sum(1 for result in results if result["success"])
    return {
        "success_count": success_count,
        "results": results,
        "message": translate("bulk_approved", _lang(request), count=success_count),
    }


@app.delete("/api/admin/events/{event_id}", response_model=schemas.ModerationResult)
def admin_delete_event(
    event_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    outcome = moderation.delete(db, current_user, "event", event_id)
    return _moderation_response(outcome, "event_deleted", request)


@app.delete("/api/admin/services/{service_id}", response_model=schemas.ModerationResult)
def admin_delete_service(
    service_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    outcome = moderation.delete(db, current_user, "service", service_id)
    return _moderation_response(outcome, "service_deleted", request)


@app.get("/api/admin/stats", response_model=schemas.AdminStatsResponse)
def admin_stats(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    return moderation.admin_stats(db)


@app.get("/api/admin/activity-logs", response_model=List[schemas.ActivityLogResponse])
def admin_activity_logs(
    admin_id: Optional[int] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    return moderation.list_activity_logs(
        db, admin_id=admin_id, entity_type=entity_type, entity_id=entity_id, limit=limit
    )


@app.get("/api/admin/performance", response_model=List[schemas.AdminPerformance])
def admin_performance(
    days: int = Query(30, ge=1, le=365),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    return moderation.admin_performance(db, days=days)


# --- reports -------------------------------------------------------------


@app.post("/api/reports", response_model=schemas.ReportResponse, status_code=status.HTTP_201_CREATED)
def submit_report(
    payload: schemas.ReportCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    return reports.submit_report(db, current_user, payload)


@app.get("/api/admin/reports", response_model=List[schemas.ReportResponse])
def admin_list_reports(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    limit: int = Query(100, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    return reports.list_reports(db, status=status_filter, limit=limit)


@app.patch("/api/admin/reports/{report_id}", response_model=schemas.ReportResponse)
def admin_review_report(
    report_id: int,
    payload: schemas.ReportUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    outcome, report = reports.review_report(db, current_user, report_id, payload)
    if outcome.ignored:
        raise ActionInProgress()
    return report


# --- system settings -----------------------------------------------------


@app.get("/api/admin/settings", response_model=List[schemas.SettingResponse])
def admin_list_settings(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    return db.query(models.SystemSetting).order_by(models.SystemSetting.key).all()


@app.put("/api/admin/settings/{key}", response_model=schemas.SettingResponse)
def admin_update_setting(
    key: str,
    payload: schemas.SettingUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    setting = db.query(models.SystemSetting).filter(models.SystemSetting.key == key).first()
    if setting is None:
        setting = models.SystemSetting(key=key)
        db.add(setting)
    setting.value = payload.value
    setting.updated_by = current_user.id
    setting.updated_at = datetime.now(timezone.utc)
    db.flush()
    moderation.record_activity(
        db,
        admin_id=current_user.id,
        action="update_setting",
        entity_type="setting",
        entity_id=setting.id,
        details={"key": key, "value": payload.value},
    )
    db.commit()
    db.refresh(setting)
    log_event("setting_updated", admin_id=current_user.id, key=key)
    return setting


# --- social graph --------------------------------------------------------


@app.get("/api/users/suggestions", response_model=List[schemas.SuggestionResponse])
def user_suggestions(
    limit: int = Query(10, ge=1, le=50),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    return social.suggest_users(db, current_user, limit=limit)


@app.post("/api/users/{user_id}/follow")
def follow_user(
    user_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    result = social.follow_user(db, current_user, user_id)
    return {"status": result, "message": translate("followed" if result == "followed" else "follow_requested", _lang(request))}


@app.delete("/api/users/{user_id}/follow", response_model=schemas.MessageResponse)
def unfollow_user(
    user_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    social.unfollow_user(db, current_user, user_id)
    return {"message": translate("unfollowed", _lang(request))}


@app.delete("/api/users/{user_id}/follow-request", response_model=schemas.MessageResponse)
def cancel_follow_request(
    user_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    social.cancel_follow_request(db, current_user, user_id)
    return {"message": translate("follow_request_cancelled", _lang(request))}


@app.get("/api/me/follow-requests", response_model=List[schemas.FollowRequestResponse])
def my_follow_requests(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    requests = social.pending_follow_requests(db, current_user.id)
    names = accounts.display_names(db, [req.requester_id for req in requests])
    return [
        {
            "id": req.id,
            "requester_id": req.requester_id,
            "requester_name": names.get(req.requester_id),
            "status": req.status,
            "created_at": req.created_at,
        }
        for req in requests
    ]


@app.post("/api/follow-requests/{request_id}/{action}", response_model=schemas.MessageResponse)
def respond_follow_request(
    request_id: int,
    action: str,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    follow_request = social.respond_follow_request(db, current_user, request_id, action)
    return {"message": translate(f"follow_request_{follow_request.status}", _lang(request))}


@app.get("/api/users/{user_id}/followers", response_model=List[schemas.UserSummary])
def user_followers(user_id: int, db: Session = Depends(get_db), current_user: models.User = Depends(auth.get_current_user)):
    return social.list_followers(db, user_id)


@app.get("/api/users/{user_id}/following", response_model=List[schemas.UserSummary])
def user_following(user_id: int, db: Session = Depends(get_db), current_user: models.User = Depends(auth.get_current_user)):
    return social.list_following(db, user_id)


@app.post("/api/users/{user_id}/friend-request", status_code=status.HTTP_201_CREATED)
def send_friend_request(
    user_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    friend_request = social.send_friend_request(db, current_user, user_id)
    return {"request_id": friend_request.id, "message": translate("friend_request_sent", _lang(request))}


@app.post("/api/friend-requests/{request_id}", response_model=schemas.MessageResponse)
def manage_friend_request(
    request_id: int,
    payload: schemas.FriendRequestAction,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    friend_request = social.manage_friend_request(db, current_user, request_id, payload.action)
    return {"message": translate(f"friend_request_{friend_request.status}", _lang(request))}


@app.get("/api/me/friends", response_model=List[schemas.UserSummary])
def my_friends(db: Session = Depends(get_db), current_user: models.User = Depends(auth.get_current_user)):
    return social.list_friends(db, current_user.id)


@app.post("/api/groups", response_model=schemas.GroupResponse, status_code=status.HTTP_201_CREATED)
def create_group(
    payload: schemas.GroupCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    return social.create_group(db, current_user, payload)


@app.post("/api/groups/{group_id}/invitations", response_model=schemas.MessageResponse)
def invite_to_group(
    group_id: int,
    payload: schemas.GroupInvite,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    social.invite_to_group(db, current_user, group_id, payload.user_id)
    return {"message": translate("invitation_sent", _lang(request))}


# --- notifications -------------------------------------------------------


@app.get("/api/notifications", response_model=List[schemas.NotificationResponse])
def list_notifications(
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    return NotificationService(db, current_user.id).list_recent(limit)


@app.get("/api/notifications/unread-count", response_model=schemas.UnreadCountResponse)
def unread_notifications(db: Session = Depends(get_db), current_user: models.User = Depends(auth.get_current_user)):
    return {"unread": NotificationService(db, current_user.id).unread_count()}


@app.post("/api/notifications/read-all", response_model=schemas.MessageResponse)
def mark_all_notifications_read(
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    NotificationService(db, current_user.id).mark_all_read()
    return {"message": translate("notifications_read", _lang(request))}


@app.post("/api/notifications/{notification_id}/read", response_model=schemas.NotificationResponse)
def mark_notification_read(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    return NotificationService(db, current_user.id).mark_read(notification_id)


@app.delete("/api/notifications/{notification_id}", response_model=schemas.MessageResponse)
def delete_notification(
    notification_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    NotificationService(db, current_user.id).delete(notification_id)
    return {"message": translate("notification_deleted", _lang(request))}


@app.post("/api/notifications/{notification_id}/accept", response_model=schemas.MessageResponse)
def accept_notification(
    notification_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    outcome = notification_actions.respond(db, current_user, notification_id, accept=True)
    return {"message": translate(outcome, _lang(request))}


@app.post("/api/notifications/{notification_id}/decline", response_model=schemas.MessageResponse)
def decline_notification(
    notification_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    outcome = notification_actions.respond(db, current_user, notification_id, accept=False)
    return {"message": translate(outcome, _lang(request))}


@app.websocket("/ws/notifications")
async def notifications_socket(
    websocket: WebSocket,
    token: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
):
    try:
        user = await run_in_threadpool(auth.user_from_token, db, token)
    except DomainError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    lang = normalize_language(user.profile.language_preference if user.profile else None)
    service = NotificationService(db, user.id)
    feed = NotificationFeed(service, settings.notification_feed_limit)
    subscription = change_feed.subscribe("notifications", user.id)
    log_event("notification_feed_opened", user_id=user.id)

    async def send_snapshot() -> None:
        items = await run_in_threadpool(feed.load)
        unread = await run_in_threadpool(service.unread_count)
        await websocket.send_json({"type": "snapshot", "items": items, "unread": unread})

    async def forward_changes() -> None:
        while True:
            change = await subscription.get()
            feed.apply(change)
            await websocket.send_json(change)

    forwarder: Optional[asyncio.Task] = None
    try:
        await send_snapshot()
        forwarder = asyncio.create_task(forward_changes())
        while True:
            message = await websocket.receive_json()
            action = message.get("action") if isinstance(message, dict) else None
            try:
                if action == "delete":
                    if not await run_in_threadpool(feed.delete, int(message["id"])):
                        if isinstance(feed.last_error, DomainError):
                            raise feed.last_error
                        raise DomainError("notification_delete_failed")
                elif action == "mark_read":
                    await run_in_threadpool(service.mark_read, int(message["id"]))
                elif action == "mark_all_read":
                    await run_in_threadpool(service.mark_all_read)
                elif action == "refresh":
                    await send_snapshot()
                else:
                    raise DomainError("invalid_action")
            except DomainError as exc:
                await websocket.send_json(
                    {"type": "error", "code": exc.key, "message": translate(exc.key, lang, **exc.params)}
                )
            except (KeyError, TypeError, ValueError):
                await websocket.send_json(
                    {"type": "error", "code": "invalid_action", "message": translate("invalid_action", lang)}
                )
    except WebSocketDisconnect:
        pass
    finally:
        subscription.close()
        if forwarder is not None:
            forwarder.cancel()
            with suppress(asyncio.CancelledError):
                await forwarder
        log_event("notification_feed_closed", user_id=user.id)


# --- gamification --------------------------------------------------------


@app.get("/api/badges", response_model=List[schemas.BadgeResponse])
def list_badges(db: Session = Depends(get_db)):
    return (
        db.query(models.Badge)
        .filter(models.Badge.is_active.is_(True))
        .order_by(models.Badge.requirement_value.asc(), models.Badge.id.asc())
        .all()
    )


@app.get("/api/me/achievements", response_model=schemas.AchievementsResponse)
def my_achievements(db: Session = Depends(get_db), current_user: models.User = Depends(auth.get_current_user)):
    return gamification.achievements(db, current_user.id)


@app.get("/api/me/referral", response_model=schemas.ReferralResponse)
def my_referral(db: Session = Depends(get_db), current_user: models.User = Depends(auth.get_current_user)):
    return gamification.referral_summary(db, current_user.id)


# --- wallet --------------------------------------------------------------


@app.get("/api/me/wallet", response_model=schemas.WalletResponse)
def my_wallet(
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    return wallet.wallet_overview(db, current_user.id, limit=limit)


@app.post("/api/me/wallet/withdrawals", response_model=schemas.WithdrawalResponse, status_code=status.HTTP_201_CREATED)
def request_withdrawal(
    payload: schemas.WithdrawalRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    _enforce_rate_limit("withdrawal", request=request, limit=5, identifier=str(current_user.id))
    transaction = wallet.request_withdrawal(db, current_user, payload)
    return {
        "success": True,
        "message": translate("withdrawal_requested", _lang(request)),
        "transaction_id": transaction.id,
        "reference_id": transaction.reference_id,
    }


@app.get("/api/admin/withdrawals", response_model=List[schemas.WalletTransactionResponse])
def admin_list_withdrawals(
    status_filter: Optional[str] = Query(default="pending", alias="status"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    return wallet.list_withdrawals(db, status=status_filter)


@app.post("/api/admin/withdrawals/{transaction_id}/{action}", response_model=schemas.ModerationResult)
def admin_process_withdrawal(
    transaction_id: int,
    action: str,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    outcome = wallet.process_withdrawal(db, current_user, transaction_id, action)
    if outcome.ignored:
        raise ActionInProgress()
    message_key = "withdrawal_completed" if outcome.status == "completed" else "withdrawal_rejected"
    return {
        "outcome": outcome.outcome,
        "kind": "withdrawal",
        "id": outcome.id,
        "status": outcome.status,
        "message": translate(message_key, _lang(request)),
    }


# --- backup --------------------------------------------------------------


@app.options("/functions/v1/backup-database")
def backup_preflight():
    return Response(status_code=status.HTTP_200_OK, headers=backup.CORS_HEADERS)


@app.post("/functions/v1/backup-database")
def backup_database(request: Request, db: Session = Depends(get_db)):
    status_code, body = backup.handle_backup_request(db, request.headers.get("Authorization"))
    return JSONResponse(status_code=status_code, content=body, headers=backup.CORS_HEADERS)
