import threading

import pytest

from eventsouq import models, moderation
from eventsouq.database import SessionLocal
from eventsouq.errors import DomainError
from eventsouq.guard import action_guard, action_key


def _admin_id(helpers) -> int:
    return helpers["user_by_email"]("admin@test.sa").id


def test_pending_items_lists_every_kind(client, helpers):
    admin = helpers["make_admin"]()
    organizer = helpers["make_organizer"]()
    provider = helpers["make_provider"]()
    applicant = helpers["register"]("applicant@test.sa")

    event_id = helpers["create_event"](organizer)
    service_id = helpers["create_service"](provider)
    resp = client.post(
        "/api/provider-applications",
        json={"business_name": "Omar Events"},
        headers=helpers["auth_header"](applicant),
    )
    assert resp.status_code == 201
    application_id = resp.json()["id"]

    resp = client.get("/api/admin/moderation/pending", headers=helpers["auth_header"](admin))
    assert resp.status_code == 200
    body = resp.json()
    assert [item["id"] for item in body["events"]] == [event_id]
    assert [item["id"] for item in body["services"]] == [service_id]
    assert [item["id"] for item in body["providers"]] == [application_id]
    assert body["events"][0]["owner_name"] == "org"


def test_approve_event_logs_and_notifies_in_one_step(client, helpers):
    admin = helpers["make_admin"]()
    organizer = helpers["make_organizer"]()
    event_id = helpers["create_event"](organizer, title="Tech Night")

    resp = client.post(
        f"/api/admin/moderation/event/{event_id}/approve",
        headers=helpers["auth_header"](admin, lang="ar"),
    )
    assert resp.status_code == 200
    assert resp.json() == {
        "outcome": "done",
        "kind": "event",
        "id": event_id,
        "status": "approved",
        "message": "تمت الموافقة على الفعالية.",
    }

    db = helpers["db"]
    db.expire_all()
    assert db.get(models.Event, event_id).status == "approved"
    logs = db.query(models.ActivityLog).all()
    assert [(log.action, log.entity_type, log.entity_id) for log in logs] == [("approve_event", "event", event_id)]
    notifications = db.query(models.Notification).all()
    assert len(notifications) == 1
    assert notifications[0].type == "event_approved"
    assert notifications[0].user_id == helpers["user_by_email"]("org@test.sa").id
    assert "Tech Night" in notifications[0].message

    listed = client.get("/api/events").json()
    assert [item["id"] for item in listed] == [event_id]


def test_reject_requires_a_reason(client, helpers):
    admin = helpers["make_admin"]()
    organizer = helpers["make_organizer"]()
    event_id = helpers["create_event"](organizer)

    resp = client.post(
        f"/api/admin/moderation/event/{event_id}/reject",
        json={"comment": "   "},
        headers=helpers["auth_header"](admin, lang="en"),
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "rejection_reason_required"

    db = helpers["db"]
    db.expire_all()
    assert db.get(models.Event, event_id).status == "pending"
    assert db.query(models.ActivityLog).count() == 0
    assert db.query(models.Notification).count() == 0


def test_reject_event_notifies_owner_in_their_language(client, helpers):
    admin = helpers["make_admin"]()
    organizer = helpers["make_organizer"]()
    event_id = helpers["create_event"](organizer, title="Tech Night")

    resp = client.post(
        f"/api/admin/moderation/event/{event_id}/reject",
        json={"comment": "too short"},
        headers=helpers["auth_header"](admin, lang="en"),
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"
    assert resp.json()["message"] == "Event rejected."

    db = helpers["db"]
    db.expire_all()
    assert db.get(models.Event, event_id).status == "cancelled"
    log = db.query(models.ActivityLog).one()
    assert log.action == "reject_event"
    assert log.details["comment"] == "too short"
    notification = db.query(models.Notification).one()
    assert notification.type == "rejection"
    assert notification.message == 'تم رفض فعالية "Tech Night". السبب: too short'
    assert notification.data["comment"] == "too short"


def test_reject_provider_records_reason_and_reviewer(client, helpers):
    admin = helpers["make_admin"]()
    applicant = helpers["register"]("applicant@test.sa")
    helpers["set_language"]("applicant@test.sa", "en")
    application_id = client.post(
        "/api/provider-applications",
        json={"business_name": "Omar Events"},
        headers=helpers["auth_header"](applicant),
    ).json()["id"]

    resp = client.post(
        f"/api/admin/moderation/provider/{application_id}/reject",
        json={"comment": "Missing documents"},
        headers=helpers["auth_header"](admin),
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "rejected"

    db = helpers["db"]
    db.expire_all()
    application = db.get(models.ProviderApplication, application_id)
    assert application.verification_status == "rejected"
    assert application.rejection_reason == "Missing documents"
    assert application.reviewed_by == _admin_id(helpers)
    assert application.reviewed_at is not None
    notification = db.query(models.Notification).one()
    assert notification.message == 'Your application "Omar Events" was rejected. Reason: Missing documents'


def test_approve_provider_promotes_applicant(client, helpers):
    admin = helpers["make_admin"]()
    applicant = helpers["register"]("applicant@test.sa")
    application_id = client.post(
        "/api/provider-applications",
        json={"business_name": "Omar Events"},
        headers=helpers["auth_header"](applicant),
    ).json()["id"]

    resp = client.post(
        f"/api/admin/moderation/provider/{application_id}/approve",
        headers=helpers["auth_header"](admin),
    )
    assert resp.status_code == 200

    db = helpers["db"]
    db.expire_all()
    assert helpers["user_by_email"]("applicant@test.sa").role == models.UserRole.provider
    service = client.post(
        "/api/services", json={"name": "Coffee Catering"}, headers=helpers["auth_header"](applicant)
    )
    assert service.status_code == 201


def test_moderating_reviewed_or_missing_items(client, helpers):
    admin = helpers["make_admin"]()
    organizer = helpers["make_organizer"]()
    event_id = helpers["create_event"](organizer)
    headers = helpers["auth_header"](admin)

    assert client.post(f"/api/admin/moderation/event/{event_id}/approve", headers=headers).status_code == 200
    again = client.post(f"/api/admin/moderation/event/{event_id}/approve", headers=headers)
    assert again.status_code == 400
    assert again.json()["error"]["code"] == "item_not_pending"

    missing = client.post("/api/admin/moderation/service/999/approve", headers=headers)
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "service_not_found"

    unknown = client.post("/api/admin/moderation/booking/1/approve", headers=headers)
    assert unknown.status_code == 422


def test_action_in_flight_is_refused_without_side_effects(client, helpers):
    admin = helpers["make_admin"]()
    organizer = helpers["make_organizer"]()
    event_id = helpers["create_event"](organizer)
    key = action_key(_admin_id(helpers), "event", event_id)

    assert action_guard.acquire(key)
    try:
        resp = client.post(
            f"/api/admin/moderation/event/{event_id}/approve",
            headers=helpers["auth_header"](admin, lang="en"),
        )
    finally:
        action_guard.release(key)

    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "action_in_progress"
    db = helpers["db"]
    db.expire_all()
    assert db.get(models.Event, event_id).status == "pending"
    assert db.query(models.ActivityLog).count() == 0

    # Another admin is not blocked by the first admin's key.
    other = helpers["make_admin"]("second@test.sa")
    assert action_guard.acquire(key)
    try:
        resp = client.post(f"/api/admin/moderation/event/{event_id}/approve", headers=helpers["auth_header"](other))
    finally:
        action_guard.release(key)
    assert resp.status_code == 200


def test_concurrent_duplicate_approve_runs_once(client, helpers, monkeypatch):
    helpers["make_admin"]()
    organizer = helpers["make_organizer"]()
    event_id = helpers["create_event"](organizer)
    admin_id = _admin_id(helpers)

    entered = threading.Event()
    release = threading.Event()
    calls = []
    original = moderation._apply_status

    def slow_apply(item, spec, status):
        calls.append(status)
        entered.set()
        assert release.wait(timeout=5)
        original(item, spec, status)

    monkeypatch.setattr(moderation, "_apply_status", slow_apply)

    results = {}

    def run_first():
        session = SessionLocal()
        try:
            actor = session.get(models.User, admin_id)
            results["first"] = moderation.approve(session, actor, "event", event_id)
        finally:
            session.close()

    worker = threading.Thread(target=run_first)
    worker.start()
    assert entered.wait(timeout=5)

    actor = helpers["db"].get(models.User, admin_id)
    second = moderation.approve(helpers["db"], actor, "event", event_id)
    assert second.ignored

    release.set()
    worker.join(timeout=5)
    assert results["first"].outcome == "done"
    assert calls == ["approved"]
    assert not action_guard.is_held(action_key(admin_id, "event", event_id))

    db = helpers["db"]
    db.expire_all()
    assert db.query(models.ActivityLog).count() == 1
    assert db.query(models.Notification).count() == 1


def test_two_admins_deciding_same_item_only_one_wins(client, helpers, monkeypatch):
    helpers["make_admin"]()
    helpers["make_admin"]("second-admin@test.sa")
    organizer = helpers["make_organizer"]()
    event_id = helpers["create_event"](organizer)
    first_admin = _admin_id(helpers)
    second_admin = helpers["user_by_email"]("second-admin@test.sa").id

    original = moderation._apply_status
    state = {"ran": False}

    def reject_elsewhere_first(item, spec, status):
        if not state["ran"]:
            state["ran"] = True
            session = SessionLocal()
            try:
                actor = session.get(models.User, second_admin)
                moderation.reject(session, actor, "event", event_id, "duplicate listing")
            finally:
                session.close()
        original(item, spec, status)

    monkeypatch.setattr(moderation, "_apply_status", reject_elsewhere_first)

    db = helpers["db"]
    with pytest.raises(DomainError) as excinfo:
        moderation.approve(db, db.get(models.User, first_admin), "event", event_id)
    assert excinfo.value.key == "item_not_pending"

    db.expire_all()
    assert db.get(models.Event, event_id).status == "cancelled"
    assert [log.action for log in db.query(models.ActivityLog)] == ["reject_event"]
    assert [n.type for n in db.query(models.Notification)] == ["rejection"]


def test_failed_notification_rolls_back_status_and_log(client, helpers, monkeypatch):
    helpers["make_admin"]()
    organizer = helpers["make_organizer"]()
    event_id = helpers["create_event"](organizer)
    db = helpers["db"]
    actor = helpers["user_by_email"]("admin@test.sa")

    def broken_notification(*args, **kwargs):
        raise RuntimeError("notification store unavailable")

    monkeypatch.setattr(moderation, "create_notification", broken_notification)
    with pytest.raises(RuntimeError):
        moderation.reject(db, actor, "event", event_id, "duplicate listing")

    db.expire_all()
    assert db.get(models.Event, event_id).status == "pending"
    assert db.query(models.ActivityLog).count() == 0
    assert not action_guard.is_held(action_key(actor.id, "event", event_id))


def test_bulk_approve_reports_each_item(client, helpers):
    admin = helpers["make_admin"]()
    organizer = helpers["make_organizer"]()
    provider = helpers["make_provider"]()
    first = helpers["create_event"](organizer, title="First")
    second = helpers["create_event"](organizer, title="Second")
    service_id = helpers["create_service"](provider)
    headers = helpers["auth_header"](admin, lang="en")

    client.post(f"/api/admin/moderation/event/{second}/approve", headers=headers)

    resp = client.post(
        "/api/admin/moderation/bulk-approve",
        json={
            "items": [
                {"kind": "event", "id": first},
                {"kind": "event", "id": second},
                {"kind": "service", "id": service_id},
                {"kind": "provider", "id": 12345},
            ]
        },
        headers=headers,
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["success_count"] == 2
    assert body["message"] == "2 items approved."
    assert [(r["id"], r["success"], r["error"]) for r in body["results"]] == [
        (first, True, None),
        (second, False, "item_not_pending"),
        (service_id, True, None),
        (12345, False, "provider_not_found"),
    ]


def test_admin_delete_event_removes_bookings(client, helpers):
    admin = helpers["make_admin"]()
    organizer = helpers["make_organizer"]()
    attendee = helpers["register"]("guest@test.sa")
    event_id = helpers["create_event"](organizer)
    client.post(f"/api/admin/moderation/event/{event_id}/approve", headers=helpers["auth_header"](admin))
    assert client.post(f"/api/events/{event_id}/bookings", headers=helpers["auth_header"](attendee)).status_code == 201

    resp = client.delete(f"/api/admin/events/{event_id}", headers=helpers["auth_header"](admin, lang="en"))
    assert resp.status_code == 200
    assert resp.json()["message"] == "Event deleted."

    db = helpers["db"]
    db.expire_all()
    assert db.get(models.Event, event_id) is None
    assert db.query(models.Booking).count() == 0
    assert [log.action for log in db.query(models.ActivityLog).order_by(models.ActivityLog.id)] == [
        "approve_event",
        "delete_event",
    ]


def test_stats_are_cached_until_a_moderation_change(client, helpers):
    admin = helpers["make_admin"]()
    organizer = helpers["make_organizer"]()
    event_id = helpers["create_event"](organizer)
    headers = helpers["auth_header"](admin)

    stats = client.get("/api/admin/stats", headers=headers).json()
    assert stats["pending_events"] == 1
    assert stats["total_events"] == 0

    # Direct writes bypass invalidation, so the cached snapshot is served.
    db = helpers["db"]
    db.add(models.Event(title="Hidden", organizer_id=helpers["user_by_email"]("org@test.sa").id,
                        start_time=db.get(models.Event, event_id).start_time))
    db.commit()
    assert client.get("/api/admin/stats", headers=headers).json()["pending_events"] == 1

    client.post(f"/api/admin/moderation/event/{event_id}/approve", headers=headers)
    stats = client.get("/api/admin/stats", headers=headers).json()
    assert stats["pending_events"] == 1
    assert stats["total_events"] == 1


def test_stats_follow_registrations_and_bookings(client, helpers):
    admin = helpers["make_admin"]()
    organizer = helpers["make_organizer"]()
    event_id = helpers["create_event"](organizer)
    headers = helpers["auth_header"](admin)
    client.post(f"/api/admin/moderation/event/{event_id}/approve", headers=headers)

    stats = client.get("/api/admin/stats", headers=headers).json()
    assert stats["total_users"] == 2
    assert stats["total_bookings"] == 0

    attendee = helpers["register"]("sara@test.sa")
    resp = client.post(f"/api/events/{event_id}/bookings", headers=helpers["auth_header"](attendee))
    assert resp.status_code == 201

    stats = client.get("/api/admin/stats", headers=headers).json()
    assert stats["total_users"] == 3
    assert stats["total_bookings"] == 1


def test_activity_logs_and_performance(client, helpers):
    admin = helpers["make_admin"]()
    organizer = helpers["make_organizer"]()
    headers = helpers["auth_header"](admin)
    approved = helpers["create_event"](organizer, title="Approved")
    rejected = helpers["create_event"](organizer, title="Rejected")

    client.post(f"/api/admin/moderation/event/{approved}/approve", headers=headers)
    client.post(f"/api/admin/moderation/event/{rejected}/reject", json={"comment": "spam"}, headers=headers)

    logs = client.get("/api/admin/activity-logs", params={"entity_id": rejected}, headers=headers).json()
    assert [log["action"] for log in logs] == ["reject_event"]
    assert logs[0]["admin_name"] == "Admin"

    performance = client.get("/api/admin/performance", headers=headers).json()
    assert len(performance) == 1
    assert performance[0]["events_approved"] == 1
    assert performance[0]["events_rejected"] == 1
    assert performance[0]["total_actions"] == 2


def test_settings_update_is_logged(client, helpers):
    admin = helpers["make_admin"]()
    headers = helpers["auth_header"](admin)

    resp = client.put("/api/admin/settings/maintenance_mode", json={"value": True}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["value"] is True

    listed = client.get("/api/admin/settings", headers=headers).json()
    assert [(item["key"], item["value"]) for item in listed] == [("maintenance_mode", True)]
    log = helpers["db"].query(models.ActivityLog).one()
    assert log.action == "update_setting"
    assert log.details == {"key": "maintenance_mode", "value": True}
