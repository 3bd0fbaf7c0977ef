from eventsouq import models
from eventsouq.guard import action_guard, action_key


def test_submit_and_review_report(client, helpers):
    admin = helpers["make_admin"]()
    reporter = helpers["register"]("reporter@test.sa")
    organizer = helpers["make_organizer"]()
    event_id = helpers["create_event"](organizer)

    resp = client.post(
        "/api/reports",
        json={"entity_type": "event", "entity_id": event_id, "reason": "spam", "details": "  Fake listing  "},
        headers=helpers["auth_header"](reporter),
    )
    assert resp.status_code == 201
    report_id = resp.json()["id"]
    assert resp.json()["status"] == "pending"
    assert resp.json()["details"] == "Fake listing"

    headers = helpers["auth_header"](admin)
    assert client.get("/api/admin/stats", headers=headers).json()["pending_reports"] == 1
    pending = client.get("/api/admin/reports", params={"status": "pending"}, headers=headers).json()
    assert [item["id"] for item in pending] == [report_id]

    resp = client.patch(
        f"/api/admin/reports/{report_id}",
        json={"status": "resolved", "admin_notes": "Removed"},
        headers=headers,
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "resolved"
    assert resp.json()["reviewed_by"] == helpers["user_by_email"]("admin@test.sa").id

    log = helpers["db"].query(models.ActivityLog).one()
    assert log.action == "resolved_report"
    assert log.details["reported_entity_id"] == event_id
    assert client.get("/api/admin/stats", headers=headers).json()["pending_reports"] == 0


def test_report_validation(client, helpers):
    reporter = helpers["register"]("reporter@test.sa")
    resp = client.post(
        "/api/reports",
        json={"entity_type": "event", "entity_id": 1, "reason": "boring"},
        headers=helpers["auth_header"](reporter),
    )
    assert resp.status_code == 422

    admin = helpers["make_admin"]()
    resp = client.get("/api/admin/reports", params={"status": "archived"}, headers=helpers["auth_header"](admin))
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "invalid_report_status"


def test_review_in_flight_is_refused(client, helpers):
    admin = helpers["make_admin"]()
    reporter = helpers["register"]("reporter@test.sa")
    report_id = client.post(
        "/api/reports",
        json={"entity_type": "user", "entity_id": 1, "reason": "impersonation"},
        headers=helpers["auth_header"](reporter),
    ).json()["id"]
    key = action_key(helpers["user_by_email"]("admin@test.sa").id, "report", report_id)

    assert action_guard.acquire(key)
    try:
        resp = client.patch(
            f"/api/admin/reports/{report_id}", json={"status": "dismissed"}, headers=helpers["auth_header"](admin)
        )
    finally:
        action_guard.release(key)
    assert resp.status_code == 409
    helpers["db"].expire_all()
    assert helpers["db"].get(models.EntityReport, report_id).status == "pending"
