from datetime import datetime, timedelta, timezone
from typing import Optional
import bcrypt
from jose import JWTError, jwt
from jose.exceptions import ExpiredSignatureError
from fastapi import Depends, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session
from . import schemas, models, database
from .config import settings
from .errors import DomainError, Forbidden

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="login", auto_error=False)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        return False


def get_password_hash(password: str) -> str:
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt())
    return hashed.decode("utf-8")


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    to_encode["type"] = "access"
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=15))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def create_refresh_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    to_encode["type"] = "refresh"
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(days=30))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def _unauthorized(key: str = "not_authenticated") -> DomainError:
    return DomainError(key, status.HTTP_401_UNAUTHORIZED)


def decode_token(token: str, expected_type: str = "access") -> schemas.TokenData:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except ExpiredSignatureError:
        raise _unauthorized("token_expired")
    except JWTError:
        raise _unauthorized()
    if payload.get("type", "access") != expected_type:
        raise _unauthorized()
    user_id = payload.get("sub")
    role = payload.get("role")
    if user_id is None or role is None:
        raise _unauthorized()
    try:
        return schemas.TokenData(email=payload.get("email"), user_id=int(user_id), role=role)
    except ValueError:
        raise _unauthorized()


def user_from_token(db: Session, token: Optional[str]) -> models.User:
    """Resolve a bearer token to an active user or raise a 401 DomainError."""
    if not token:
        raise _unauthorized()
    token_data = decode_token(token)
    user = db.query(models.User).filter(models.User.id == token_data.user_id).first()
    if user is None or not user.is_active:
        raise _unauthorized()
    return user


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(database.get_db)):
    return user_from_token(db, token)


def get_optional_user(token: str = Depends(oauth2_scheme), db: Session = Depends(database.get_db)):
    if not token:
        return None
    try:
        return user_from_token(db, token)
    except DomainError:
        return None


def is_admin(user: Optional[models.User]) -> bool:
    if not user:
        return False
    if getattr(user, "role", None) == models.UserRole.admin:
        return True
    if user.email and settings.admin_emails:
        return user.email.strip().lower() in set(settings.admin_emails)
    return False


def require_admin(user: models.User = Depends(get_current_user)):
    if not is_admin(user):
        raise Forbidden("admin_only")
    return user


def require_organizer(user: models.User = Depends(get_current_user)):
    if user.role != models.UserRole.organizer and not is_admin(user):
        raise Forbidden("organizer_only")
    return user


def require_provider(user: models.User = Depends(get_current_user)):
    if user.role != models.UserRole.provider and not is_admin(user):
        raise Forbidden("provider_only")
    return user
