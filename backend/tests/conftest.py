import os
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("SECRET_KEY", "test-secret")

from eventsouq import auth, models, moderation
from eventsouq import api as api_module
from eventsouq.api import app
from eventsouq.database import Base, engine, get_db, SessionLocal
from eventsouq.guard import action_guard
from eventsouq.realtime import change_feed


@pytest.fixture(scope="session", autouse=True)
def _ensure_schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session():
    db = SessionLocal()
    try:
        for table in reversed(Base.metadata.sorted_tables):
            db.execute(table.delete())
        db.commit()
        moderation.invalidate_caches()
        action_guard.clear()
        yield db
    finally:
        db.close()


@pytest.fixture()
def storage_root(tmp_path, monkeypatch):
    root = tmp_path / "storage"
    monkeypatch.setattr(api_module.settings, "storage_root", str(root))
    return root


@pytest.fixture()
def client(db_session, storage_root):
    def _override_get_db():
        yield db_session

    api_module._RATE_LIMIT_STORE.clear()
    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    change_feed.clear()


@pytest.fixture()
def helpers(client, db_session):
    def register(email: str, account_type: str = "attendee", **extra) -> str:
        resp = client.post(
            "/register",
            json={
                "email": email,
                "password": "password123",
                "confirm_password": "password123",
                "account_type": account_type,
                **extra,
            },
        )
        assert resp.status_code == 200, resp.text
        return resp.json()["access_token"]

    def login(email: str, password: str) -> str:
        resp = client.post("/login", json={"email": email, "password": password})
        assert resp.status_code == 200
        return resp.json()["access_token"]

    def user_by_email(email: str) -> models.User:
        return db_session.query(models.User).filter(models.User.email == email).one()

    def make_admin(email: str = "admin@test.sa", password: str = "admin12345") -> str:
        admin = models.User(
            email=email,
            password_hash=auth.get_password_hash(password),
            role=models.UserRole.admin,
        )
        admin.profile = models.Profile(full_name="Admin", language_preference="en")
        db_session.add(admin)
        db_session.commit()
        return login(email, password)

    def make_organizer(email: str = "org@test.sa") -> str:
        return register(email, account_type="organizer")

    def make_provider(email: str = "provider@test.sa") -> str:
        return register(email, account_type="provider")

    def set_language(email: str, language: str) -> None:
        user = user_by_email(email)
        user.profile.language_preference = language
        db_session.commit()

    def create_event(token: str, title: str = "Tech Night", **fields) -> int:
        payload = {"title": title, "start_time": future_time(days=3), "location": "Riyadh", **fields}
        resp = client.post("/api/events", json=payload, headers=auth_header(token))
        assert resp.status_code == 201, resp.text
        return resp.json()["id"]

    def create_service(token: str, name: str = "Coffee Catering", **fields) -> int:
        resp = client.post("/api/services", json={"name": name, "price": 500, **fields}, headers=auth_header(token))
        assert resp.status_code == 201, resp.text
        return resp.json()["id"]

    def future_time(days: int = 1) -> str:
        return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()

    def auth_header(token: str, lang: str | None = None) -> dict:
        headers = {"Authorization": f"Bearer {token}"}
        if lang:
            headers["Accept-Language"] = lang
        return headers

    return {
        "client": client,
        "db": db_session,
        "register": register,
        "login": login,
        "user_by_email": user_by_email,
        "make_admin": make_admin,
        "make_organizer": make_organizer,
        "make_provider": make_provider,
        "set_language": set_language,
        "create_event": create_event,
        "create_service": create_service,
        "future_time": future_time,
        "auth_header": auth_header,
    }
