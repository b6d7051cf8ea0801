"""HTTP integration tests: device check-in endpoint and the operator API."""

import pytest
from fastapi.testclient import TestClient

from dosi.config import settings

API = "/api/v1"


@pytest.fixture(scope="module")
def client():
    from dosi.main import app

    with TestClient(app) as c:
        yield c


@pytest.fixture
def headers(client):
    r = client.post(f"{API}/login", json={"username": "operator", "password": "test-password"})
    assert r.status_code == 200, r.text
    # use the Bearer token explicitly; keep the cookie jar clean between tests
    client.cookies.clear()
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


def check_in(client, serial):
    r = client.get("/operator", params={"cpuSerial": serial})
    assert r.status_code == 200, r.text
    return r.text


# --- Server / auth ---

def test_root_info(client):
    r = client.get("/")
    assert r.status_code == 200
    assert r.json()["status"] == "running"
    assert r.json()["store_backend"] == "filesystem"


def test_ping(client):
    assert client.get(f"{API}/system/ping").json() == {"status": "ok"}


def test_operator_routes_require_login(client):
    client.cookies.clear()
    assert client.get(f"{API}/devices/pending").status_code == 401
    assert client.post(f"{API}/groups", json={"name": "x"}).status_code == 401
    assert client.get(f"{API}/logs").status_code == 401


def test_invalid_token_is_rejected(client):
    r = client.get(f"{API}/devices", headers={"Authorization": "Bearer not-a-token"})
    assert r.status_code == 401


def test_login_with_wrong_password(client):
    r = client.post(f"{API}/login", data={"username": "operator", "password": "nope"})
    assert r.status_code == 401
    assert r.json()["detail"] == "Invalid credentials."


def test_login_with_non_ascii_username(client):
    r = client.post(f"{API}/login", data={"username": "opérateur", "password": "test-password"})
    assert r.status_code == 401
    assert r.json()["detail"] == "Invalid credentials."


def test_form_login_sets_session_cookie(client):
    r = client.post(f"{API}/login", data={"username": "operator", "password": "test-password"})
    assert r.status_code == 200
    assert settings.session_cookie_name in r.cookies

    try:
        assert client.get(f"{API}/devices/pending").status_code == 200
        assert client.post(f"{API}/logout").status_code == 204
    finally:
        client.cookies.clear()
    assert client.get(f"{API}/devices/pending").status_code == 401


# --- Device check-in ---

def test_check_in_requires_serial(client):
    r = client.get("/operator")
    assert r.status_code == 400
    assert r.text == "Device identifier not provided."


def test_check_in_rejects_control_characters(client, headers):
    r = client.get("/operator", params={"cpuSerial": "api-evil\n[2020-01-01T00:00:00.000Z] [IP: 1.2.3.4] forged"})
    assert r.status_code == 400
    assert r.text == "Device identifier contains invalid characters."

    pending = client.get(f"{API}/devices/pending", headers=headers).json()
    assert not any(p["device_id"].startswith("API-EVIL") for p in pending)


def test_check_in_lifecycle(client, headers):
    assert check_in(client, "api-x1") == "NEW"
    assert check_in(client, "API-X1") == "PENDING"

    pending = client.get(f"{API}/devices/pending", headers=headers).json()
    assert "API-X1" in [p["device_id"] for p in pending]

    r = client.post(f"{API}/devices/adopt", data={"cpuSerial": "api-x1", "groupName": "api-fleet-a"}, headers=headers)
    assert r.status_code == 201, r.text
    assert r.json()["group"] == "api-fleet-a"
    assert r.json()["reboot_pending"] is False

    assert check_in(client, "api-x1") == ""

    r = client.put(f"{API}/groups/api-fleet-a/script", json={"content": "echo hi"}, headers=headers)
    assert r.status_code == 200
    assert check_in(client, "api-x1") == "echo hi"

    r = client.post(f"{API}/groups/api-fleet-a/devices/API-X1/reboot", headers=headers)
    assert r.json()["reboot_pending"] is True
    assert check_in(client, "api-x1") == "REBOOT"
    assert check_in(client, "api-x1") == "echo hi"

    r = client.get(f"{API}/checkin", params={"device_id": "api-x1"})
    assert r.text == "echo hi"


def test_adopt_unknown_device_is_404(client, headers):
    r = client.post(f"{API}/devices/adopt", json={"device_id": "never-seen", "group": "g"}, headers=headers)
    assert r.status_code == 404
    assert "not pending adoption" in r.json()["detail"]


def test_adopt_without_serial_is_400(client, headers):
    r = client.post(f"{API}/devices/adopt", json={"group": "g"}, headers=headers)
    assert r.status_code == 400
    assert r.json()["detail"] == "Device identifier not provided."


def test_delete_pending(client, headers):
    check_in(client, "api-del-1")
    assert client.delete(f"{API}/devices/pending/api-del-1", headers=headers).status_code == 204
    assert client.delete(f"{API}/devices/pending/api-del-1", headers=headers).status_code == 404


# --- Adopted devices and groups ---

def _adopt(client, headers, serial, group):
    check_in(client, serial)
    r = client.post(f"{API}/devices/adopt", json={"device_id": serial, "group": group}, headers=headers)
    assert r.status_code == 201, r.text


def test_alias_and_move(client, headers):
    _adopt(client, headers, "api-m1", "api-move-src")

    r = client.put(f"{API}/groups/api-move-src/devices/api-m1/alias", data={"alias": "Lobby"}, headers=headers)
    assert r.json()["alias"] == "Lobby"

    r = client.post(f"{API}/groups/api-move-src/devices/API-M1/move", json={"target_group": "api-move-dst"}, headers=headers)
    assert r.status_code == 200
    assert (r.json()["group"], r.json()["alias"]) == ("api-move-dst", "Lobby")

    r = client.delete(f"{API}/groups/api-move-dst/devices/API-M1/alias", headers=headers)
    assert r.json()["alias"] is None

    r = client.get(f"{API}/devices/api-m1", headers=headers)
    assert r.json()["group"] == "api-move-dst"

    listed = client.get(f"{API}/devices", params={"group": "api-move-dst"}, headers=headers).json()
    assert [d["device_id"] for d in listed] == ["API-M1"]


def test_group_lifecycle(client, headers):
    r = client.post(f"{API}/groups", data={"groupName": "api-empty"}, headers=headers)
    assert r.status_code == 201
    assert client.post(f"{API}/groups", json={"name": "api-empty"}, headers=headers).status_code == 409

    assert client.get(f"{API}/groups/api-empty/script", headers=headers).json()["content"] == ""
    assert client.delete(f"{API}/groups/api-empty", headers=headers).status_code == 204
    assert client.delete(f"{API}/groups/api-empty", headers=headers).status_code == 404


def test_delete_non_empty_group_conflicts(client, headers):
    _adopt(client, headers, "api-g1", "api-busy")

    r = client.delete(f"{API}/groups/api-busy", headers=headers)
    assert r.status_code == 409
    groups = {g["name"]: g for g in client.get(f"{API}/groups", headers=headers).json()}
    assert groups["api-busy"]["device_count"] == 1

    assert client.delete(f"{API}/groups/api-busy/devices/api-g1", headers=headers).status_code == 204
    assert client.delete(f"{API}/groups/api-busy", headers=headers).status_code == 204


def test_batch_move_and_delete(client, headers):
    _adopt(client, headers, "api-b1", "api-batch-a")
    _adopt(client, headers, "api-b2", "api-batch-a")

    r = client.post(
        f"{API}/devices/batch/move",
        data={"cpuSerials": "api-b1, api-b2 api-ghost", "targetGroup": "api-batch-b"},
        headers=headers,
    )
    assert r.status_code == 200
    body = r.json()
    assert body["succeeded"] == ["API-B1", "API-B2"]
    assert [f["device_id"] for f in body["failed"]] == ["api-ghost"]

    r = client.post(f"{API}/devices/batch/delete", json={"device_ids": ["api-b1", "api-b2"]}, headers=headers)
    assert r.json() == {"succeeded": ["API-B1", "API-B2"], "failed": []}
    assert client.get(f"{API}/devices", params={"group": "api-batch-b"}, headers=headers).json() == []


def test_batch_with_non_string_items_is_best_effort(client, headers):
    _adopt(client, headers, "api-n1", "api-batch-n")

    r = client.post(f"{API}/devices/batch/delete", json={"device_ids": [None, 5, "api-n1"]}, headers=headers)
    assert r.status_code == 200
    body = r.json()
    assert body["succeeded"] == ["API-N1"]
    assert [f["device_id"] for f in body["failed"]] == ["None", "5"]


# --- Activity log ---

def test_activity_log(client, headers):
    check_in(client, "api-log-1")

    r = client.get(f"{API}/logs", params={"lines": 50}, headers=headers)
    assert r.status_code == 200
    body = r.json()
    assert body["count"] == len(body["lines"]) <= 50
    assert any("New client detected: API-LOG-1" in line for line in body["lines"])
    assert all(line.startswith("[") and "[IP: " in line for line in body["lines"])
