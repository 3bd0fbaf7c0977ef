import json
from datetime import datetime, timezone

import pytest

from eventsouq import backup, models
from eventsouq.storage import ObjectExistsError, ObjectStorage, StorageError


def _stored_files(storage_root):
    return sorted(p for p in storage_root.rglob("*") if p.is_file()) if storage_root.exists() else []


def test_backup_file_name_is_filesystem_safe():
    moment = datetime(2026, 10, 19, 8, 30, 15, 123000, tzinfo=timezone.utc)
    assert backup.iso_timestamp(moment) == "2026-10-19T08:30:15.123Z"
    assert backup.backup_file_name(moment) == "backup_2026-10-19T08-30-15-123Z.json"


def test_admin_backup_uploads_every_table(client, helpers, storage_root):
    admin = helpers["make_admin"]()
    helpers["register"]("sara@test.sa")
    helpers["db"].add(models.SystemSetting(key="maintenance_mode", value=False))
    helpers["db"].commit()

    resp = client.post("/functions/v1/backup-database", headers=helpers["auth_header"](admin))
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["message"] == "Backup created successfully"
    assert body["tablesBackedUp"] == 12
    assert resp.headers["access-control-allow-origin"] == "*"

    files = _stored_files(storage_root)
    assert [f.name for f in files] == [body["fileName"]]
    assert files[0].parent == storage_root / "documents" / "backups"

    document = json.loads(files[0].read_text(encoding="utf-8"))
    assert document["version"] == "1.0"
    assert document["timestamp"].endswith("Z")
    assert set(document["tables"]) == set(backup.BACKUP_TABLES)
    assert len(document["tables"]["profiles"]) == 2
    assert document["tables"]["system_settings"][0]["key"] == "maintenance_mode"
    assert "password_hash" not in files[0].read_text(encoding="utf-8")

    log = helpers["db"].query(models.SystemLog).one()
    assert log.message == "Database backup created"
    assert log.details["backup_file"] == body["fileName"]
    assert log.details["tables_count"] == 12


def test_non_admin_backup_fails_without_upload(client, helpers, storage_root):
    token = helpers["register"]("sara@test.sa")

    resp = client.post("/functions/v1/backup-database", headers=helpers["auth_header"](token))
    assert resp.status_code == 500
    assert resp.json()["error"] == "Only admins can create backups"
    assert resp.json()["details"] == "BackupError: Only admins can create backups"
    assert _stored_files(storage_root) == []
    assert helpers["db"].query(models.SystemLog).count() == 0


def test_backup_requires_authorization_header(client, storage_root):
    resp = client.post("/functions/v1/backup-database")
    assert resp.status_code == 500
    assert resp.json()["error"] == "Unauthorized: No authorization header"

    resp = client.post("/functions/v1/backup-database", headers={"Authorization": "Bearer garbage"})
    assert resp.status_code == 500
    assert resp.json()["error"].startswith("Unauthorized")
    assert _stored_files(storage_root) == []


def test_backup_preflight(client):
    resp = client.options("/functions/v1/backup-database")
    assert resp.status_code == 200
    assert resp.headers["access-control-allow-headers"] == backup.CORS_HEADERS["Access-Control-Allow-Headers"]


def test_upload_does_not_overwrite(tmp_path):
    storage = ObjectStorage(str(tmp_path))
    storage.upload("documents", "backups/a.json", b"{}")
    with pytest.raises(ObjectExistsError):
        storage.upload("documents", "backups/a.json", b"{}")
    storage.upload("documents", "backups/a.json", b"[]", upsert=True)
    assert (tmp_path / "documents" / "backups" / "a.json").read_bytes() == b"[]"


def test_upload_rejects_paths_outside_bucket(tmp_path):
    storage = ObjectStorage(str(tmp_path))
    with pytest.raises(StorageError):
        storage.upload("documents", "../escape.json", b"{}")
