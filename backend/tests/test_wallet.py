import pytest

from eventsouq import models, schemas, wallet
from eventsouq.database import SessionLocal
from eventsouq.errors import DomainError


def _fund(helpers, email: str, amount: float) -> None:
    account = helpers["user_by_email"](email).wallet
    account.balance = amount
    helpers["db"].commit()


def _withdraw(client, helpers, token, amount, **fields):
    payload = {
        "amount": amount,
        "bank_name": "Al Rajhi",
        "account_number": "SA0380000000608010167519",
        "account_holder_name": "Sara",
        **fields,
    }
    return client.post("/api/me/wallet/withdrawals", json=payload, headers=helpers["auth_header"](token, lang="en"))


def test_withdrawal_request_holds_funds_and_masks_account(client, helpers):
    token = helpers["register"]("sara@test.sa")
    _fund(helpers, "sara@test.sa", 500.0)

    resp = _withdraw(client, helpers, token, 200)
    assert resp.status_code == 201
    body = resp.json()
    assert body["success"] is True
    assert body["message"] == "Withdrawal request submitted."
    assert body["reference_id"].startswith("WD-")
    assert body["reference_id"].endswith(f"-{helpers['user_by_email']('sara@test.sa').id}")

    overview = client.get("/api/me/wallet", headers=helpers["auth_header"](token)).json()
    assert overview["balance"] == 300.0
    assert overview["pending_earnings"] == 200.0
    transaction = overview["transactions"][0]
    assert transaction["amount"] == -200.0
    assert transaction["status"] == "pending"
    assert transaction["description"] == "Al Rajhi - ****7519"

    notification = helpers["db"].query(models.Notification).one()
    assert notification.type == "withdrawal_requested"


def test_withdrawal_validation(client, helpers):
    token = helpers["register"]("sara@test.sa")
    _fund(helpers, "sara@test.sa", 200.0)

    resp = _withdraw(client, helpers, token, 50)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "The minimum withdrawal is 100 SAR."

    resp = _withdraw(client, helpers, token, 160)
    assert resp.json()["error"]["code"] == "insufficient_balance"
    assert resp.json()["detail"] == "Insufficient balance. Available to withdraw: 150.0 SAR."

    resp = _withdraw(client, helpers, token, 120, bank_name=" ")
    assert resp.json()["error"]["code"] == "bank_details_required"


def test_admin_completes_and_rejects_withdrawals(client, helpers):
    admin = helpers["make_admin"]()
    token = helpers["register"]("sara@test.sa")
    _fund(helpers, "sara@test.sa", 1000.0)
    first = _withdraw(client, helpers, token, 300).json()["transaction_id"]
    second = _withdraw(client, helpers, token, 200).json()["transaction_id"]
    headers = helpers["auth_header"](admin, lang="en")

    pending = client.get("/api/admin/withdrawals", headers=headers).json()
    assert [item["id"] for item in pending] == [first, second]

    resp = client.post(f"/api/admin/withdrawals/{first}/complete", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["status"] == "completed"
    assert resp.json()["message"] == "Withdrawal completed."

    resp = client.post(f"/api/admin/withdrawals/{second}/reject", headers=headers)
    assert resp.json()["status"] == "rejected"

    again = client.post(f"/api/admin/withdrawals/{second}/reject", headers=headers)
    assert again.status_code == 400
    assert again.json()["error"]["code"] == "withdrawal_not_pending"

    overview = client.get("/api/me/wallet", headers=helpers["auth_header"](token)).json()
    assert overview["balance"] == 700.0
    assert overview["pending_earnings"] == 0.0

    actions = [log.action for log in helpers["db"].query(models.ActivityLog).order_by(models.ActivityLog.id)]
    assert actions == ["complete_withdrawal", "reject_withdrawal"]
    types = [n.type for n in helpers["db"].query(models.Notification).order_by(models.Notification.id)]
    assert types == ["withdrawal_requested", "withdrawal_requested", "withdrawal_completed", "withdrawal_rejected"]


def _withdrawal_payload(amount: float) -> schemas.WithdrawalRequest:
    return schemas.WithdrawalRequest(
        amount=amount,
        bank_name="Al Rajhi",
        account_number="SA0380000000608010167519",
        account_holder_name="Sara",
    )


def _interleave(monkeypatch, run_other):
    """Run ``run_other`` in a second session right after the first wallet read."""
    original = wallet.get_wallet
    state = {"ran": False}

    def get_wallet_then_interleave(db, user_id):
        found = original(db, user_id)
        if not state["ran"]:
            state["ran"] = True
            session = SessionLocal()
            try:
                run_other(session)
            finally:
                session.close()
        return found

    monkeypatch.setattr(wallet, "get_wallet", get_wallet_then_interleave)
    return state


def test_overlapping_withdrawals_cannot_overdraw(client, helpers, monkeypatch):
    helpers["register"]("sara@test.sa")
    _fund(helpers, "sara@test.sa", 300.0)
    user_id = helpers["user_by_email"]("sara@test.sa").id

    def other_request(session):
        wallet.request_withdrawal(session, session.get(models.User, user_id), _withdrawal_payload(200))

    state = _interleave(monkeypatch, other_request)
    db = helpers["db"]
    with pytest.raises(DomainError) as excinfo:
        wallet.request_withdrawal(db, db.get(models.User, user_id), _withdrawal_payload(200))
    assert state["ran"]
    assert excinfo.value.key == "insufficient_balance"

    db.expire_all()
    account = db.query(models.UserWallet).filter(models.UserWallet.user_id == user_id).one()
    assert account.balance == 100.0
    assert account.pending_earnings == 200.0
    pending = db.query(models.WalletTransaction).filter(models.WalletTransaction.status == "pending").all()
    assert [t.amount for t in pending] == [-200.0]


def test_racing_rejections_refund_once(client, helpers, monkeypatch):
    helpers["make_admin"]()
    helpers["make_admin"]("second-admin@test.sa")
    token = helpers["register"]("sara@test.sa")
    _fund(helpers, "sara@test.sa", 500.0)
    transaction_id = _withdraw(client, helpers, token, 200).json()["transaction_id"]
    user_id = helpers["user_by_email"]("sara@test.sa").id
    first_admin = helpers["user_by_email"]("admin@test.sa").id
    second_admin = helpers["user_by_email"]("second-admin@test.sa").id

    def other_reject(session):
        outcome = wallet.process_withdrawal(session, session.get(models.User, second_admin), transaction_id, "reject")
        assert outcome.status == "rejected"

    state = _interleave(monkeypatch, other_reject)
    db = helpers["db"]
    with pytest.raises(DomainError) as excinfo:
        wallet.process_withdrawal(db, db.get(models.User, first_admin), transaction_id, "reject")
    assert state["ran"]
    assert excinfo.value.key == "withdrawal_not_pending"

    db.expire_all()
    account = db.query(models.UserWallet).filter(models.UserWallet.user_id == user_id).one()
    assert account.balance == 500.0
    assert account.pending_earnings == 0.0
    actions = [log.action for log in db.query(models.ActivityLog)]
    assert actions == ["reject_withdrawal"]
