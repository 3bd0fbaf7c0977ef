"""JSON snapshot of the core tables, uploaded to the object store by an admin."""

import json
import re
from datetime import datetime, timezone
from typing import Optional

from fastapi.encoders import jsonable_encoder
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import auth, models
from .config import settings
from .database import Base
from .errors import DomainError
from .logging_utils import log_event, log_warning
from .storage import ObjectStorage, StorageError, get_storage

BACKUP_VERSION = "1.0"
BACKUP_TABLES = (
    "profiles",
    "events",
    "services",
    "bookings",
    "service_bookings",
    "categories",
    "service_categories",
    "notifications",
    "user_wallets",
    "wallet_transactions",
    "system_logs",
    "system_settings",
)
CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}


class BackupError(Exception):
    pass


def iso_timestamp(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def backup_file_name(moment: datetime) -> str:
    return f"backup_{re.sub(r'[:.]', '-', iso_timestamp(moment))}.json"


def authenticate_admin(db: Session, authorization: Optional[str]) -> models.User:
    if not settings.database_url or not settings.secret_key:
        raise BackupError("Server configuration error")
    if not authorization:
        raise BackupError("Unauthorized: No authorization header")
    token = authorization.replace("Bearer ", "", 1).strip()
    try:
        user = auth.user_from_token(db, token)
    except DomainError as exc:
        raise BackupError(f"Unauthorized: {exc.key}") from exc
    if user.role != models.UserRole.admin:
        raise BackupError("Only admins can create backups")
    return user


def dump_tables(db: Session, tables=BACKUP_TABLES) -> dict[str, list]:
    """Fetch every row of each table. Tables that fail are logged and left out."""
    dumped: dict[str, list] = {}
    for name in tables:
        table = Base.metadata.tables.get(name)
        if table is None:
            log_warning("backup_table_failed", table=name, error="unknown table")
            continue
        try:
            rows = db.execute(select(table)).mappings().all()
        except SQLAlchemyError as exc:
            db.rollback()
            log_warning("backup_table_failed", table=name, error=str(exc))
            continue
        dumped[name] = jsonable_encoder([dict(row) for row in rows])
    return dumped


def _record_backup(db: Session, file_name: str, tables_count: int, admin_id: int) -> None:
    try:
        db.add(
            models.SystemLog(
                level="info",
                message="Database backup created",
                details={"backup_file": file_name, "tables_count": tables_count, "admin_id": admin_id},
            )
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        log_warning("backup_log_failed", file_name=file_name, error=str(exc))


def create_backup(db: Session, user: models.User, storage: Optional[ObjectStorage] = None) -> dict:
    now = datetime.now(timezone.utc)
    document = {"timestamp": iso_timestamp(now), "version": BACKUP_VERSION, "tables": dump_tables(db)}
    file_name = backup_file_name(now)
    payload = json.dumps(document, ensure_ascii=False, indent=2).encode("utf-8")

    storage = storage or get_storage()
    try:
        storage.upload(settings.backup_bucket, f"backups/{file_name}", payload, upsert=False)
    except StorageError as exc:
        raise BackupError(f"Failed to upload backup: {exc}") from exc

    tables_count = len(document["tables"])
    _record_backup(db, file_name, tables_count, user.id)
    log_event("backup_created", admin_id=user.id, file_name=file_name, tables=tables_count)
    return {
        "success": True,
        "message": "Backup created successfully",
        "fileName": file_name,
        "tablesBackedUp": tables_count,
    }


def handle_backup_request(
    db: Session, authorization: Optional[str], storage: Optional[ObjectStorage] = None
) -> tuple[int, dict]:
    try:
        user = authenticate_admin(db, authorization)
        return 200, create_backup(db, user, storage)
    except Exception as exc:
        log_warning("backup_failed", error=str(exc), error_type=type(exc).__name__)
        return 500, {"error": str(exc) or "Unknown error occurred", "details": f"{type(exc).__name__}: {exc}"}
