"""
Integration tests: Flask routes over the Api facade.

Verifies:
- login stores the session in the cookie and the proxy reuses it
- only allow-listed methods are reachable; protected ones need a login
"""

import pytest

from backend import Api
from main import create_app

from conftest import FakeExtractor, FakeGeocoder


@pytest.fixture
def client(settings, local_backend):
    api = Api(settings=settings, backend=local_backend, geocoder=FakeGeocoder(),
              extractor=FakeExtractor(), repair_delay=0)
    app = create_app(api)
    app.config["TESTING"] = True
    return app.test_client()


def login(client):
    response = client.post("/api/login", json={"email": "demo@example.com"})
    assert response.get_json()["success"] is True
    return response


class TestAuthRoutes:
    def test_login_sets_session(self, client):
        body = login(client).get_json()
        assert "session" not in body
        me = client.get("/api/current_user").get_json()
        assert me["logged_in"] is True
        assert me["user"]["id"] == "user_1"

    def test_bad_login(self, client):
        body = client.post("/api/login", json={"email": "nobody@example.com"}).get_json()
        assert body["success"] is False

    def test_logout(self, client):
        login(client)
        assert client.post("/api/logout").get_json()["success"] is True
        assert client.get("/api/current_user").get_json()["logged_in"] is False

    def test_register(self, client):
        body = client.post("/api/register", json={"name": "Sara", "email": "sara@example.com"}).get_json()
        assert body["success"] is True
        assert body["user"]["name"] == "Sara"
        assert client.get("/api/current_user").get_json()["user"]["email"] == "sara@example.com"


class TestProxy:
    def test_requires_login(self, client):
        response = client.get("/api/get_cards")
        assert response.status_code == 401

    def test_public_method(self, client):
        body = client.get("/api/get_options").get_json()
        assert body["success"] is True
        assert body["types"][0] == "All"

    def test_unknown_method(self, client):
        login(client)
        assert client.get("/api/__init__").status_code == 404
        assert client.get("/api/_view").status_code == 404

    def test_save_and_list(self, client):
        login(client)
        saved = client.post("/api/save_card", json={"card": {"name": "Enoteca Italiana", "tags": ["vino"]}})
        assert saved.get_json()["success"] is True
        listed = client.get("/api/get_cards?scope=mine&search=VINO").get_json()
        assert [c["name"] for c in listed["cards"]] == ["Enoteca Italiana"]

    def test_bad_parameters(self, client):
        login(client)
        response = client.post("/api/get_cards", json={"colour": "red"})
        assert response.status_code == 400
