from datetime import datetime, timedelta, timezone


def test_postgres_moderation_flow(helpers):
    client = helpers["client"]

    organizer_token = helpers["register"]("org@test.sa", account_type="organizer")
    helpers["make_admin"]()
    admin_token = helpers["login"]("admin@test.sa", "admin12345")

    created = client.post(
        "/api/events",
        json={
            "title": "Integration Event",
            "title_ar": "فعالية تجريبية",
            "start_time": (datetime.now(timezone.utc) + timedelta(days=2)).isoformat(),
            "location": "الرياض",
            "max_attendees": 1,
        },
        headers=helpers["auth_header"](organizer_token),
    )
    assert created.status_code == 201
    event_id = created.json()["id"]

    approved = client.post(
        f"/api/admin/moderation/event/{event_id}/approve",
        headers=helpers["auth_header"](admin_token),
    )
    assert approved.status_code == 200
    assert approved.json()["status"] == "approved"

    attendee_token = helpers["register"]("attendee@test.sa")
    booked = client.post(f"/api/events/{event_id}/bookings", headers=helpers["auth_header"](attendee_token))
    assert booked.status_code == 201

    second_token = helpers["register"]("second@test.sa")
    full = client.post(f"/api/events/{event_id}/bookings", headers=helpers["auth_header"](second_token))
    assert full.status_code == 400
    assert full.json()["error"]["code"] == "event_full"

    notifications = client.get("/api/notifications", headers=helpers["auth_header"](organizer_token))
    assert notifications.status_code == 200
    assert [item["type"] for item in notifications.json()] == ["event_approved"]
