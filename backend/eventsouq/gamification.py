from typing import Any, Mapping

from sqlalchemy import func
from sqlalchemy.orm import Session

from . import models
from .logging_utils import log_event
from .notifications import create_notification


def collect_user_stats(db: Session, user_id: int) -> dict[str, Any]:
    def count(model, *criteria) -> int:
        return db.query(func.count(model.id)).filter(*criteria).scalar() or 0

    profile = db.query(models.Profile).filter(models.Profile.user_id == user_id).first()
    return {
        "booking_count": count(models.Booking, models.Booking.user_id == user_id, models.Booking.status == "confirmed"),
        "training_count": count(
            models.ServiceBooking,
            models.ServiceBooking.user_id == user_id,
            models.ServiceBooking.status == "confirmed",
        ),
        "group_count": count(models.GroupMember, models.GroupMember.user_id == user_id),
        "group_created": count(models.EventGroup, models.EventGroup.created_by == user_id),
        "referral_count": int(profile.referral_count or 0) if profile else 0,
        "points_balance": int(profile.points_balance or 0) if profile else 0,
        "is_shield_member": bool(profile.is_shield_member) if profile else False,
    }


def stat_value(stats: Mapping[str, Any], requirement_type: str | None) -> int:
    if not requirement_type:
        return 0
    value = stats.get(requirement_type, 0)
    if isinstance(value, bool):
        return int(value)
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def badge_progress(stats: Mapping[str, Any], badge: models.Badge) -> float:
    """Percentage towards the badge requirement, clamped to 100."""
    requirement = badge.requirement_value or 0
    if not badge.requirement_type or requirement <= 0:
        return 0.0
    return min(stat_value(stats, badge.requirement_type) / requirement, 1.0) * 100


def awarded_badges(db: Session, user_id: int) -> dict[int, models.UserBadge]:
    rows = db.query(models.UserBadge).filter(models.UserBadge.user_id == user_id).all()
    return {row.badge_id: row for row in rows}


def check_and_award(db: Session, user_id: int) -> list[models.Badge]:
    """Award every active badge whose requirement is met and credit its points."""
    stats = collect_user_stats(db, user_id)
    already = awarded_badges(db, user_id)
    candidates = (
        db.query(models.Badge)
        .filter(models.Badge.is_active.is_(True), models.Badge.requirement_type.isnot(None))
        .order_by(models.Badge.id)
        .all()
    )
    awarded = []
    for badge in candidates:
        if badge.id in already or not badge.requirement_value:
            continue
        if stat_value(stats, badge.requirement_type) < badge.requirement_value:
            continue
        db.add(models.UserBadge(user_id=user_id, badge_id=badge.id))
        points = int(badge.points_reward or 0)
        if points:
            db.add(
                models.LoyaltyLedger(
                    user_id=user_id,
                    type="earned",
                    points=points,
                    description=f"Badge: {badge.name}",
                )
            )
            profile = db.query(models.Profile).filter(models.Profile.user_id == user_id).first()
            if profile is not None:
                profile.points_balance = (profile.points_balance or 0) + points
        create_notification(
            db,
            user_id=user_id,
            type="badge_earned",
            data={"badge_id": badge.id},
            badge=badge.name,
            points=points,
        )
        awarded.append(badge)
    if awarded:
        db.commit()
        log_event("badges_awarded", user_id=user_id, badge_ids=[badge.id for badge in awarded])
    return awarded


def achievements(db: Session, user_id: int) -> dict[str, Any]:
    newly_awarded = check_and_award(db, user_id)
    stats = collect_user_stats(db, user_id)
    earned = awarded_badges(db, user_id)
    badges = (
        db.query(models.Badge)
        .filter(models.Badge.is_active.is_(True))
        .order_by(models.Badge.requirement_value.asc(), models.Badge.id.asc())
        .all()
    )
    items = []
    for badge in badges:
        user_badge = earned.get(badge.id)
        items.append(
            {
                "id": badge.id,
                "name": badge.name,
                "name_ar": badge.name_ar,
                "description": badge.description,
                "icon": badge.icon,
                "rarity": badge.rarity,
                "requirement_type": badge.requirement_type,
                "requirement_value": badge.requirement_value,
                "points_reward": badge.points_reward or 0,
                "progress": badge_progress(stats, badge),
                "current_value": stat_value(stats, badge.requirement_type),
                "earned": user_badge is not None,
                "awarded_at": user_badge.awarded_at if user_badge else None,
            }
        )
    return {
        "stats": stats,
        "badges": items,
        "earned_count": sum(1 for item in items if item["earned"]),
        "total_points": stats["points_balance"],
        "newly_awarded": [badge.id for badge in newly_awarded],
    }


def referral_summary(db: Session, user_id: int) -> dict[str, Any]:
    profile = db.query(models.Profile).filter(models.Profile.user_id == user_id).first()
    total = (
        db.query(func.coalesce(func.sum(models.ReferralReward.reward_amount), 0.0))
        .filter(models.ReferralReward.referrer_id == user_id, models.ReferralReward.reward_status == "credited")
        .scalar()
    )
    return {
        "referral_code": profile.referral_code if profile else None,
        "referral_count": int(profile.referral_count or 0) if profile else 0,
        "total_rewards": float(total or 0.0),
    }
