from eventsouq import models


def _approve(client, helpers, admin, kind, entity_id):
    resp = client.post(f"/api/admin/moderation/{kind}/{entity_id}/approve", headers=helpers["auth_header"](admin))
    assert resp.status_code == 200


def test_only_approved_items_are_listed(client, helpers):
    admin = helpers["make_admin"]()
    organizer = helpers["make_organizer"]()
    provider = helpers["make_provider"]()
    visible = helpers["create_event"](organizer, title="Visible", title_ar="مرئية")
    helpers["create_event"](organizer, title="Pending")
    service_id = helpers["create_service"](provider)
    _approve(client, helpers, admin, "event", visible)
    _approve(client, helpers, admin, "service", service_id)

    assert [item["id"] for item in client.get("/api/events").json()] == [visible]
    assert [item["id"] for item in client.get("/api/events", params={"search": "مرئية"}).json()] == [visible]
    assert [item["id"] for item in client.get("/api/services").json()] == [service_id]


def test_categories_are_listed(client, helpers):
    db = helpers["db"]
    db.add_all([models.Category(name="Sports", name_ar="رياضة"), models.ServiceCategory(name="Catering")])
    db.commit()

    assert [c["name_ar"] for c in client.get("/api/categories").json()] == ["رياضة"]
    assert [c["name"] for c in client.get("/api/service-categories").json()] == ["Catering"]


def test_event_booking_respects_capacity(client, helpers):
    admin = helpers["make_admin"]()
    organizer = helpers["make_organizer"]()
    first = helpers["register"]("first@test.sa")
    second = helpers["register"]("second@test.sa")
    event_id = helpers["create_event"](organizer, max_attendees=1, price=25)

    pending = client.post(f"/api/events/{event_id}/bookings", headers=helpers["auth_header"](first))
    assert pending.status_code == 400
    assert pending.json()["error"]["code"] == "event_not_available"

    _approve(client, helpers, admin, "event", event_id)
    booked = client.post(f"/api/events/{event_id}/bookings", headers=helpers["auth_header"](first))
    assert booked.status_code == 201
    assert booked.json()["total_amount"] == 25.0

    full = client.post(f"/api/events/{event_id}/bookings", headers=helpers["auth_header"](second, lang="en"))
    assert full.status_code == 400
    assert full.json()["detail"] == "This event is fully booked."

    db = helpers["db"]
    db.expire_all()
    assert db.get(models.Event, event_id).current_attendees == 1


def test_service_booking(client, helpers):
    admin = helpers["make_admin"]()
    provider = helpers["make_provider"]()
    customer = helpers["register"]("customer@test.sa")
    service_id = helpers["create_service"](provider, price=750)
    _approve(client, helpers, admin, "service", service_id)

    resp = client.post(f"/api/services/{service_id}/bookings", headers=helpers["auth_header"](customer))
    assert resp.status_code == 201
    assert resp.json()["total_amount"] == 750.0


def test_provider_application_cannot_be_duplicated(client, helpers):
    token = helpers["register"]("applicant@test.sa")
    headers = helpers["auth_header"](token)
    assert client.post("/api/provider-applications", json={"business_name": "Shop"}, headers=headers).status_code == 201
    resp = client.post("/api/provider-applications", json={"business_name": "Shop"}, headers=headers)
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "application_exists"


def test_share_event_with_friends_only(client, helpers):
    admin = helpers["make_admin"]()
    organizer = helpers["make_organizer"]()
    sara = helpers["register"]("sara@test.sa")
    omar = helpers["register"]("omar@test.sa")
    helpers["register"]("stranger@test.sa")
    omar_id = helpers["user_by_email"]("omar@test.sa").id
    stranger_id = helpers["user_by_email"]("stranger@test.sa").id
    event_id = helpers["create_event"](organizer, title="Tech Night")
    _approve(client, helpers, admin, "event", event_id)

    request_id = client.post(f"/api/users/{omar_id}/friend-request", headers=helpers["auth_header"](sara)).json()[
        "request_id"
    ]
    client.post(f"/api/friend-requests/{request_id}", json={"action": "accept"}, headers=helpers["auth_header"](omar))

    resp = client.post(
        f"/api/events/{event_id}/share",
        json={"friend_ids": [omar_id, stranger_id]},
        headers=helpers["auth_header"](sara),
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "share_requires_friends"

    resp = client.post(
        f"/api/events/{event_id}/share",
        json={"friend_ids": [omar_id], "message": "Join me"},
        headers=helpers["auth_header"](sara),
    )
    assert resp.status_code == 200
    assert resp.json()["shared"] == 1

    shared = helpers["db"].query(models.Notification).filter(
        models.Notification.user_id == omar_id, models.Notification.type == "event_shared"
    ).one()
    assert "Tech Night" in shared.message
