import time
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import case, update
from sqlalchemy.orm import Session

from . import models, schemas
from .config import settings
from .errors import DomainError, NotFound
from .guard import action_guard, action_key
from .logging_utils import log_event, log_warning
from .moderation import ModerationOutcome, invalidate_caches, record_activity
from .notifications import create_notification


def get_wallet(db: Session, user_id: int) -> models.UserWallet:
    wallet = db.query(models.UserWallet).filter(models.UserWallet.user_id == user_id).first()
    if wallet is None:
        wallet = models.UserWallet(user_id=user_id, balance=0.0, pending_earnings=0.0, total_earned=0.0)
        db.add(wallet)
        db.commit()
        db.refresh(wallet)
    return wallet


def wallet_overview(db: Session, user_id: int, limit: int = 20) -> dict:
    wallet = get_wallet(db, user_id)
    transactions = (
        db.query(models.WalletTransaction)
        .filter(models.WalletTransaction.user_id == user_id)
        .order_by(models.WalletTransaction.created_at.desc(), models.WalletTransaction.id.desc())
        .limit(limit)
        .all()
    )
    return {
        "balance": float(wallet.balance or 0.0),
        "pending_earnings": float(wallet.pending_earnings or 0.0),
        "total_earned": float(wallet.total_earned or 0.0),
        "transactions": transactions,
    }


def _mask(account_number: str) -> str:
    return f"****{account_number[-4:]}"


def request_withdrawal(db: Session, user: models.User, payload: schemas.WithdrawalRequest) -> models.WalletTransaction:
    amount = round(float(payload.amount), 2)
    if amount < settings.withdrawal_min_amount:
        raise DomainError("withdrawal_minimum", minimum=int(settings.withdrawal_min_amount))
    bank_name = payload.bank_name.strip()
    account_number = payload.account_number.strip()
    holder = payload.account_holder_name.strip()
    if not bank_name or not account_number or not holder:
        raise DomainError("bank_details_required")

    wallet = get_wallet(db, user.id)
    # Balance check and hold in a single statement.
    result = db.execute(
        update(models.UserWallet)
        .where(
            models.UserWallet.user_id == user.id,
            models.UserWallet.balance - settings.wallet_reserve_amount >= amount,
        )
        .values(
            balance=models.UserWallet.balance - amount,
            pending_earnings=models.UserWallet.pending_earnings + amount,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        db.refresh(wallet)
        available = float(wallet.balance or 0.0) - settings.wallet_reserve_amount
        raise DomainError("insufficient_balance", available=max(round(available, 2), 0))

    reference = f"WD-{int(time.time() * 1000)}-{user.id}"
    transaction = models.WalletTransaction(
        user_id=user.id,
        type="withdraw",
        amount=-amount,
        description=f"{bank_name} - {_mask(account_number)}",
        status="pending",
        reference_id=reference,
        reference_type="withdrawal",
    )
    db.add(transaction)
    db.flush()
    create_notification(
        db,
        user_id=user.id,
        type="withdrawal_requested",
        data={
            "amount": amount,
            "bank_name": bank_name,
            "withdrawal_ref": reference,
            "transaction_id": transaction.id,
        },
        amount=amount,
    )
    db.commit()
    db.refresh(transaction)
    invalidate_caches()
    log_event("withdrawal_requested", user_id=user.id, amount=amount, reference=reference)
    return transaction


def list_withdrawals(db: Session, status: Optional[str] = "pending", limit: int = 100):
    query = db.query(models.WalletTransaction).filter(models.WalletTransaction.type == "withdraw")
    if status:
        query = query.filter(models.WalletTransaction.status == status)
    return query.order_by(models.WalletTransaction.created_at.asc(), models.WalletTransaction.id.asc()).limit(limit).all()


def process_withdrawal(db: Session, actor: models.User, transaction_id: int, action: str) -> ModerationOutcome:
    """Complete or reject a pending withdrawal. Rejection refunds the balance.

    The pending -> processed transition is a conditional UPDATE, so when two
    admins race on the same withdrawal only one of them moves the money.
    """
    if action not in ("complete", "reject"):
        raise DomainError("invalid_action")
    with action_guard.hold(action_key(actor.id, "withdrawal", transaction_id)) as acquired:
        if not acquired:
            log_warning("moderation_action_ignored", admin_id=actor.id, kind="withdrawal", entity_id=transaction_id)
            return ModerationOutcome("ignored", "withdrawal", transaction_id)
        transaction = db.get(models.WalletTransaction, transaction_id)
        if transaction is None or transaction.type != "withdraw":
            raise NotFound("withdrawal_not_found")
        if transaction.status != "pending":
            raise DomainError("withdrawal_not_pending")

        amount = abs(float(transaction.amount))
        user_id = transaction.user_id
        reference_id = transaction.reference_id
        get_wallet(db, user_id)

        status = "completed" if action == "complete" else "rejected"
        now = datetime.now(timezone.utc)
        try:
            result = db.execute(
                update(models.WalletTransaction)
                .where(
                    models.WalletTransaction.id == transaction_id,
                    models.WalletTransaction.status == "pending",
                )
                .values(status=status, processed_at=now, processed_by=actor.id)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise DomainError("withdrawal_not_pending")

            remaining = case(
                (models.UserWallet.pending_earnings > amount, models.UserWallet.pending_earnings - amount),
                else_=0.0,
            )
            values = {"pending_earnings": remaining, "updated_at": now}
            if action == "reject":
                values["balance"] = models.UserWallet.balance + amount
            db.execute(
                update(models.UserWallet)
                .where(models.UserWallet.user_id == user_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            record_activity(
                db,
                admin_id=actor.id,
                action=f"{action}_withdrawal",
                entity_type="withdrawal",
                entity_id=transaction_id,
                details={"amount": amount, "reference_id": reference_id},
            )
            create_notification(
                db,
                user_id=user_id,
                type=f"withdrawal_{status}",
                data={"amount": amount, "withdrawal_ref": reference_id, "transaction_id": transaction_id},
                amount=amount,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
    invalidate_caches()
    log_event("withdrawal_processed", admin_id=actor.id, transaction_id=transaction_id, status=status)
    return ModerationOutcome("done", "withdrawal", transaction_id, status)
