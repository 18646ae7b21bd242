"""Tests for the Flask HTTP bridge (health, auth, lifecycle endpoints)."""
import pytest

from conftest import TEST_TOKEN, TEST_URL
from whmcs_authentik.flask_app import create_app

BRIDGE_TOKEN = "bridge-secret-token"


@pytest.fixture()
def app(monkeypatch):
    monkeypatch.setenv("BRIDGE_TOKEN", BRIDGE_TOKEN)
    monkeypatch.delenv("AUTHENTIK_URL", raising=False)
    monkeypatch.delenv("AUTHENTIK_API_TOKEN", raising=False)
    flask_app = create_app()
    flask_app.config.update(TESTING=True)
    return flask_app


@pytest.fixture()
def client(app):
    with app.test_client() as client:
        yield client


@pytest.fixture()
def auth_headers():
    return {"Authorization": f"Bearer {BRIDGE_TOKEN}"}


@pytest.fixture()
def params():
    return {
        "configoption1": TEST_URL,
        "configoption2": TEST_TOKEN,
        "configoption3": "stash",
        "serviceid": 5,
        "clientsdetails": {"userid": 9, "email": "bob@example.com", "firstname": "Bob", "lastname": "Ross"},
    }


def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.data == b"ok"
    assert response.content_type.startswith("text/plain")


def test_ready_with_token(client):
    response = client.get("/ready")
    assert response.status_code == 200
    assert response.data == b"ready"


def test_ready_without_token(monkeypatch):
    monkeypatch.delenv("BRIDGE_TOKEN", raising=False)
    app = create_app()
    with app.test_client() as client:
        assert client.get("/ready").status_code == 503


def test_missing_authorization(client, params):
    response = client.post("/module/create", json=params)
    assert response.status_code == 401
    assert response.get_json()["error"] == "Unauthorized"


@pytest.mark.parametrize("header", ["Basic abc", "Bearer ", "Bearer wrong-token"])
def test_invalid_authorization(client, params, header):
    response = client.post("/module/create", json=params, headers={"Authorization": header})
    assert response.status_code == 401


def test_unknown_action(client, auth_headers, params):
    response = client.post("/module/reboot", json=params, headers=auth_headers)
    assert response.status_code == 404
    assert response.get_json()["error"] == "Not Found"


def test_non_json_body(client, auth_headers):
    response = client.post("/module/create", data="not json", headers=auth_headers)
    assert response.status_code == 400
    assert response.get_json()["error"] == "Bad Request"


def test_get_not_allowed(client, auth_headers):
    response = client.get("/module/create", headers=auth_headers)
    assert response.status_code == 405


def test_create_via_bridge(fake_authentik, client, auth_headers, params):
    fake_authentik.add("GET", "/core/users/", {"results": []})
    fake_authentik.add("POST", "/core/users/", {"pk": 8}, status=201)
    fake_authentik.add("GET", "/core/groups/", {"results": [{"pk": "g1", "name": "stash"}]})
    fake_authentik.add("POST", "/core/groups/g1/add_user/", None, status=204)

    response = client.post("/module/create", json=params, headers=auth_headers)

    assert response.status_code == 200
    body = response.get_json()
    assert body["result"] == "success"
    assert body["username"] == fake_authentik.calls_for("POST", "/core/users/")[0][2]["json"]["username"]
    assert body["notifications"][0]["vars"]["client_name"] == "Bob Ross"


def test_suspend_failure_still_200(fake_authentik, client, auth_headers, params):
    response = client.post("/module/suspend", json=params, headers=auth_headers)

    assert response.status_code == 200
    assert response.get_json()["result"] == "No Authentik username on record for service 5"
    assert fake_authentik.calls == []


def test_terminate_via_bridge(fake_authentik, client, auth_headers, params):
    params["username"] = "bluebyte1234"
    fake_authentik.add("GET", "/core/users/", {"results": [{"pk": 8, "username": "bluebyte1234"}]})
    fake_authentik.add("DELETE", "/core/users/8/", None, status=204)

    response = client.post("/module/terminate", json=params, headers=auth_headers)

    assert response.get_json()["result"] == "success"


def test_test_connection_endpoint(fake_authentik, client, auth_headers, params):
    fake_authentik.add("GET", "/core/groups/", {"results": []})

    response = client.post("/module/test-connection", json=params, headers=auth_headers)

    assert response.status_code == 200
    assert response.get_json() == {"success": False, "error": "Group 'stash' not found"}
