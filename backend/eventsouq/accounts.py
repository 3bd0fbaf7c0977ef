import secrets
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from . import auth, models, schemas
from .errors import DomainError
from .logging_utils import log_event

REFERRAL_REWARD_AMOUNT = 10.0


def _generate_referral_code(db: Session) -> str:
    while True:
        code = secrets.token_hex(4).upper()
        exists = db.query(models.Profile.id).filter(models.Profile.referral_code == code).first()
        if not exists:
            return code


def register_user(db: Session, payload: schemas.UserRegister) -> models.User:
    email = payload.email.lower()
    if db.query(models.User).filter(models.User.email == email).first():
        raise DomainError("email_taken")

    user = models.User(
        email=email,
        password_hash=auth.get_password_hash(payload.password),
        role=models.UserRole(payload.account_type),
    )
    user.profile = models.Profile(full_name=payload.full_name, referral_code=_generate_referral_code(db))
    user.wallet = models.UserWallet()
    db.add(user)
    db.flush()

    if payload.referral_code:
        referrer = (
            db.query(models.Profile)
            .filter(models.Profile.referral_code == payload.referral_code.strip().upper())
            .first()
        )
        if referrer and referrer.user_id != user.id:
            referrer.referral_count = (referrer.referral_count or 0) + 1
            db.add(
                models.ReferralReward(
                    referrer_id=referrer.user_id,
                    referred_id=user.id,
                    reward_amount=REFERRAL_REWARD_AMOUNT,
                    reward_status="pending",
                )
            )

    db.commit()
    db.refresh(user)
    log_event("user_registered", user_id=user.id, role=user.role.value)
    return user


def ensure_profile(db: Session, user: models.User) -> models.Profile:
    if user.profile is None:
        user.profile = models.Profile(referral_code=_generate_referral_code(db))
        db.flush()
    return user.profile


def update_profile(db: Session, user: models.User, payload: schemas.ProfileUpdate) -> models.Profile:
    profile = ensure_profile(db, user)
    for field, value in payload.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(profile, field, value)
    db.commit()
    db.refresh(profile)
    return profile


def display_names(db: Session, user_ids: Iterable[Optional[int]]) -> dict[int, str]:
    ids = {int(uid) for uid in user_ids if uid is not None}
    if not ids:
        return {}
    rows = (
        db.query(models.User.id, models.User.email, models.Profile.full_name)
        .outerjoin(models.Profile, models.Profile.user_id == models.User.id)
        .filter(models.User.id.in_(ids))
        .all()
    )
    return {row.id: row.full_name or row.email.split("@")[0] for row in rows}


def display_name(db: Session, user_id: int) -> str:
    return display_names(db, [user_id]).get(user_id, "")
