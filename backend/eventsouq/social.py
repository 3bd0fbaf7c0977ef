from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy import and_, desc, func, or_, select, update
from sqlalchemy.orm import Session

from . import accounts, auth, models, schemas
from .config import settings
from .errors import DomainError, Forbidden, NotFound
from .logging_utils import log_event
from .notifications import create_notification

SUGGESTION_REASONS = ("mutual_group", "mutual_connection", "popular")


def _get_user(db: Session, user_id: int) -> models.User:
    user = db.get(models.User, user_id)
    if not user or not user.is_active:
        raise NotFound("user_not_found")
    return user


def follower_counts(db: Session, user_ids: Iterable[int]) -> dict[int, int]:
    ids = list({int(uid) for uid in user_ids})
    if not ids:
        return {}
    rows = (
        db.query(models.UserFollow.following_id, func.count(models.UserFollow.id))
        .filter(models.UserFollow.following_id.in_(ids))
        .group_by(models.UserFollow.following_id)
        .all()
    )
    counts = {uid: 0 for uid in ids}
    counts.update({int(uid): int(count) for uid, count in rows})
    return counts


def following_ids(db: Session, user_id: int) -> set[int]:
    rows = db.query(models.UserFollow.following_id).filter(models.UserFollow.follower_id == user_id).all()
    return {int(row[0]) for row in rows}


def follower_ids(db: Session, user_id: int) -> set[int]:
    rows = db.query(models.UserFollow.follower_id).filter(models.UserFollow.following_id == user_id).all()
    return {int(row[0]) for row in rows}


# --- suggestions ---------------------------------------------------------


def rank_suggestions(
    candidates: list[dict],
    *,
    group_peer_ids: set[int],
    mutual_connection_ids: set[int],
    popular_threshold: Optional[int] = None,
    limit: int = 10,
) -> list[dict]:
    """Tag each candidate with its highest-priority reason and order by bucket.

    Candidates are expected in descending follower-count order; the sort is
    stable so ties keep that order. Untagged candidates go last.
    """
    threshold = settings.suggestion_popular_threshold if popular_threshold is None else popular_threshold
    tagged = []
    for candidate in candidates:
        uid = candidate["id"]
        if uid in group_peer_ids:
            reason = "mutual_group"
        elif uid in mutual_connection_ids:
            reason = "mutual_connection"
        elif candidate.get("follower_count", 0) > threshold:
            reason = "popular"
        else:
            reason = None
        tagged.append({**candidate, "suggestion_reason": reason})

    def _bucket(item: dict) -> int:
        reason = item["suggestion_reason"]
        return SUGGESTION_REASONS.index(reason) if reason else len(SUGGESTION_REASONS)

    tagged.sort(key=lambda item: (_bucket(item), -item.get("follower_count", 0)))
    return tagged[: max(limit, 0)]


def suggest_users(db: Session, user: models.User, limit: int = 10) -> list[dict]:
    exclude = following_ids(db, user.id) | {user.id}

    my_groups = select(models.GroupMember.group_id).where(models.GroupMember.user_id == user.id)
    group_peer_ids = {
        int(row[0])
        for row in db.query(models.GroupMember.user_id)
        .filter(models.GroupMember.group_id.in_(my_groups), models.GroupMember.user_id != user.id)
        .all()
    }

    my_followers = follower_ids(db, user.id)
    mutual_connection_ids: set[int] = set()
    if my_followers:
        mutual_connection_ids = {
            int(row[0])
            for row in db.query(models.UserFollow.following_id)
            .filter(models.UserFollow.follower_id.in_(my_followers))
            .all()
        }

    counts = (
        db.query(models.UserFollow.following_id.label("uid"), func.count(models.UserFollow.id).label("cnt"))
        .group_by(models.UserFollow.following_id)
        .subquery()
    )
    follower_count = func.coalesce(counts.c.cnt, 0).label("follower_count")
    query = (
        db.query(models.User.id, models.Profile.full_name, models.Profile.avatar_url, follower_count)
        .outerjoin(counts, counts.c.uid == models.User.id)
        .outerjoin(models.Profile, models.Profile.user_id == models.User.id)
        .filter(models.User.id.notin_(exclude), models.User.is_active.is_(True))
    )
    if not auth.is_admin(user):
        query = query.filter(models.User.role != models.UserRole.admin)
    page_size = max(limit * 5, 50)
    rows = query.order_by(desc("follower_count"), models.User.id).limit(page_size).all()

    candidates = [
        {
            "id": int(row.id),
            "full_name": row.full_name,
            "avatar_url": row.avatar_url,
            "follower_count": int(row.follower_count or 0),
        }
        for row in rows
    ]
    return rank_suggestions(
        candidates,
        group_peer_ids=group_peer_ids,
        mutual_connection_ids=mutual_connection_ids,
        limit=limit,
    )


# --- follows -------------------------------------------------------------


def follow_user(db: Session, actor: models.User, target_id: int) -> str:
    if target_id == actor.id:
        raise DomainError("cannot_follow_self")
    target = _get_user(db, target_id)
    if auth.is_admin(target) and not auth.is_admin(actor):
        raise Forbidden("cannot_follow_admin")

    existing = (
        db.query(models.UserFollow)
        .filter(models.UserFollow.follower_id == actor.id, models.UserFollow.following_id == target_id)
        .first()
    )
    if existing:
        raise DomainError("already_following")

    name = accounts.display_name(db, actor.id)
    visibility = target.profile.profile_visibility if target.profile else "public"
    if visibility == "private":
        pending = (
            db.query(models.FollowRequest)
            .filter(
                models.FollowRequest.requester_id == actor.id,
                models.FollowRequest.target_id == target_id,
                models.FollowRequest.status == "pending",
            )
            .first()
        )
        if pending:
            raise DomainError("follow_request_pending")
        request = models.FollowRequest(requester_id=actor.id, target_id=target_id)
        db.add(request)
        db.flush()
        create_notification(
            db,
            user_id=target_id,
            type="follow_request",
            data={"request_id": request.id, "requester_id": actor.id},
            name=name,
        )
        db.commit()
        log_event("follow_requested", follower_id=actor.id, target_id=target_id)
        return "requested"

    db.add(models.UserFollow(follower_id=actor.id, following_id=target_id))
    create_notification(db, user_id=target_id, type="follow", data={"follower_id": actor.id}, name=name)
    db.commit()
    log_event("user_followed", follower_id=actor.id, target_id=target_id)
    return "followed"


def unfollow_user(db: Session, actor: models.User, target_id: int) -> None:
    edge = (
        db.query(models.UserFollow)
        .filter(models.UserFollow.follower_id == actor.id, models.UserFollow.following_id == target_id)
        .first()
    )
    if not edge:
        raise DomainError("not_following")
    db.delete(edge)
    db.commit()
    log_event("user_unfollowed", follower_id=actor.id, target_id=target_id)


def cancel_follow_request(db: Session, actor: models.User, target_id: int) -> None:
    request = (
        db.query(models.FollowRequest)
        .filter(
            models.FollowRequest.requester_id == actor.id,
            models.FollowRequest.target_id == target_id,
            models.FollowRequest.status == "pending",
        )
        .first()
    )
    if not request:
        raise NotFound("request_not_found")
    db.delete(request)
    db.commit()


def pending_follow_requests(db: Session, user_id: int) -> list[models.FollowRequest]:
    return (
        db.query(models.FollowRequest)
        .filter(models.FollowRequest.target_id == user_id, models.FollowRequest.status == "pending")
        .order_by(models.FollowRequest.created_at.desc())
        .all()
    )


def respond_follow_request(db: Session, actor: models.User, request_id: int, action: str) -> models.FollowRequest:
    if action not in ("accept", "reject"):
        raise DomainError("invalid_action")
    request = db.get(models.FollowRequest, request_id)
    if not request or request.target_id != actor.id:
        raise NotFound("request_not_found")
    if request.status != "pending":
        raise DomainError("request_already_handled")

    request.status = "accepted" if action == "accept" else "rejected"
    request.responded_at = datetime.now(timezone.utc)
    if action == "accept":
        exists = (
            db.query(models.UserFollow.id)
            .filter(
                models.UserFollow.follower_id == request.requester_id,
                models.UserFollow.following_id == actor.id,
            )
            .first()
        )
        if not exists:
            db.add(models.UserFollow(follower_id=request.requester_id, following_id=actor.id))
    db.commit()
    log_event("follow_request_handled", request_id=request_id, status=request.status)
    return request


def list_followers(db: Session, user_id: int) -> list[dict]:
    return _summaries(db, follower_ids(db, user_id))


def list_following(db: Session, user_id: int) -> list[dict]:
    return _summaries(db, following_ids(db, user_id))


def _summaries(db: Session, user_ids: set[int]) -> list[dict]:
    if not user_ids:
        return []
    counts = follower_counts(db, user_ids)
    rows = (
        db.query(models.User.id, models.Profile.full_name, models.Profile.avatar_url)
        .outerjoin(models.Profile, models.Profile.user_id == models.User.id)
        .filter(models.User.id.in_(user_ids))
        .order_by(models.User.id)
        .all()
    )
    return [
        {"id": row.id, "full_name": row.full_name, "avatar_url": row.avatar_url, "follower_count": counts.get(row.id, 0)}
        for row in rows
    ]


# --- friends -------------------------------------------------------------


def friend_ids(db: Session, user_id: int) -> set[int]:
    rows = (
        db.query(models.Friendship.friend_id)
        .filter(models.Friendship.user_id == user_id, models.Friendship.status == "accepted")
        .all()
    )
    return {int(row[0]) for row in rows}


def list_friends(db: Session, user_id: int) -> list[dict]:
    return _summaries(db, friend_ids(db, user_id))


def send_friend_request(db: Session, actor: models.User, target_id: int) -> models.FriendRequest:
    if target_id == actor.id:
        raise DomainError("cannot_friend_self")
    _get_user(db, target_id)
    if target_id in friend_ids(db, actor.id):
        raise DomainError("already_friends")
    pending = (
        db.query(models.FriendRequest.id)
        .filter(
            models.FriendRequest.status == "pending",
            or_(
                and_(models.FriendRequest.sender_id == actor.id, models.FriendRequest.receiver_id == target_id),
                and_(models.FriendRequest.sender_id == target_id, models.FriendRequest.receiver_id == actor.id),
            ),
        )
        .first()
    )
    if pending:
        raise DomainError("friend_request_exists")

    request = models.FriendRequest(sender_id=actor.id, receiver_id=target_id)
    db.add(request)
    db.flush()
    create_notification(
        db,
        user_id=target_id,
        type="friend_request",
        data={"request_id": request.id, "sender_id": actor.id},
        name=accounts.display_name(db, actor.id),
    )
    db.commit()
    log_event("friend_request_sent", sender_id=actor.id, receiver_id=target_id, request_id=request.id)
    return request


def manage_friend_request(
    db: Session, actor: models.User, request_id: int, action: str, *, commit: bool = True
) -> models.FriendRequest:
    """Accept/reject (receiver) or cancel (sender) a pending friend request."""
    if action not in ("accept", "reject", "cancel"):
        raise DomainError("invalid_action")
    request = db.get(models.FriendRequest, request_id)
    if not request or actor.id not in (request.sender_id, request.receiver_id):
        raise NotFound("request_not_found")
    if request.status != "pending":
        raise DomainError("request_already_handled")
    if action in ("accept", "reject") and request.receiver_id != actor.id:
        raise Forbidden()
    if action == "cancel" and request.sender_id != actor.id:
        raise Forbidden()

    now = datetime.now(timezone.utc)
    request.updated_at = now
    if action == "accept":
        request.status = "accepted"
        for user_id, friend_id in ((request.sender_id, request.receiver_id), (request.receiver_id, request.sender_id)):
            db.add(
                models.Friendship(
                    user_id=user_id,
                    friend_id=friend_id,
                    status="accepted",
                    requested_by=request.sender_id,
                    requested_at=request.created_at,
                    accepted_at=now,
                )
            )
        create_notification(
            db,
            user_id=request.sender_id,
            type="friend_accepted",
            data={"friend_id": request.receiver_id},
            name=accounts.display_name(db, request.receiver_id),
        )
    elif action == "reject":
        request.status = "rejected"
    else:
        request.status = "cancelled"

    if commit:
        db.commit()
    log_event("friend_request_handled", request_id=request_id, action=action, actor_id=actor.id)
    return request


# --- groups --------------------------------------------------------------


def create_group(db: Session, actor: models.User, payload: schemas.GroupCreate) -> models.EventGroup:
    group = models.EventGroup(
        group_name=payload.group_name,
        description=payload.description,
        event_id=payload.event_id,
        created_by=actor.id,
        max_members=payload.max_members,
        current_members=1,
    )
    db.add(group)
    db.flush()
    db.add(models.GroupMember(group_id=group.id, user_id=actor.id, role="admin"))
    db.commit()
    db.refresh(group)
    log_event("group_created", group_id=group.id, created_by=actor.id)
    return group


def _is_member(db: Session, group_id: int, user_id: int) -> bool:
    return (
        db.query(models.GroupMember.id)
        .filter(models.GroupMember.group_id == group_id, models.GroupMember.user_id == user_id)
        .first()
        is not None
    )


def invite_to_group(db: Session, actor: models.User, group_id: int, user_id: int) -> models.Notification:
    group = db.get(models.EventGroup, group_id)
    if not group:
        raise NotFound("group_not_found")
    if not _is_member(db, group_id, actor.id):
        raise Forbidden("not_group_member")
    _get_user(db, user_id)
    if _is_member(db, group_id, user_id):
        raise DomainError("already_member")
    notification = create_notification(
        db,
        user_id=user_id,
        type="group_invitation",
        data={"group_id": group_id, "invited_by": actor.id},
        name=accounts.display_name(db, actor.id),
        group=group.group_name,
    )
    db.commit()
    log_event("group_invitation_sent", group_id=group_id, invited_by=actor.id, user_id=user_id)
    return notification


def join_group(db: Session, group_id: int, user_id: int) -> None:
    """Add a member with a single conditional increment. The caller commits."""
    if not db.get(models.EventGroup, group_id):
        raise NotFound("group_not_found")
    if _is_member(db, group_id, user_id):
        raise DomainError("already_member")
    result = db.execute(
        update(models.EventGroup)
        .where(
            models.EventGroup.id == group_id,
            models.EventGroup.current_members < models.EventGroup.max_members,
        )
        .values(current_members=models.EventGroup.current_members + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise DomainError("group_full")
    db.add(models.GroupMember(group_id=group_id, user_id=user_id, role="member"))
