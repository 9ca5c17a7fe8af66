"""
Shared test fixtures for the card store test suite.

Provides:
- settings pointing at a throwaway SQLite file, simulated latency off
- a local backend and ready-made sessions for two users
- an in-memory fake of the remote REST + auth endpoints (httpx.MockTransport)
- fake geocoder, extractor and language-model collaborators
"""

import json
import uuid
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import httpx
import pytest

from tasca.config import Settings
from tasca.geocode import Coordinates, Geocoder
from tasca.image_utils import ExtractedCard
from tasca.local_backend import LocalBackend
from tasca.models import Card, PlaceType, Session, User, to_ms
from tasca.remote_backend import RemoteBackend


# ---------------------------------------------------------------------------
# Sessions and cards
# ---------------------------------------------------------------------------

@pytest.fixture
def settings(tmp_path):
    return Settings(
        local_db_path=str(tmp_path / "tasca_test.db"),
        local_latency_scale=0,
        geocode_delay=0,
    )


@pytest.fixture
def local_backend(settings):
    return LocalBackend(settings)


@pytest.fixture
def demo_session():
    return Session(user=User(id="user_1", name="Mario Rossi", email="demo@example.com"))


@pytest.fixture
def other_session():
    return Session(user=User(id="user_2", name="Giulia Bianchi", email="giulia@example.com"))


@pytest.fixture
def make_card():
    """Factory for valid cards; every field can be overridden."""
    def _make(user_id: str = "user_1", **fields) -> Card:
        fields.setdefault("name", "Trattoria da Gino")
        fields.setdefault("type", PlaceType.RESTAURANT)
        fields.setdefault("address", "Via Roma 1, Bologna")
        return Card.new(user_id, **fields)
    return _make


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------

class FakeGeocoder(Geocoder):
    name = "fake"

    def __init__(self, known: Optional[Dict[str, tuple]] = None):
        self.known = dict(known or {})
        self.calls: List[str] = []

    async def geocode(self, address: str) -> Optional[Coordinates]:
        self.calls.append(address)
        hit = self.known.get(address)
        return Coordinates(*hit) if hit else None


class FakeExtractor:
    def __init__(self, result: Optional[ExtractedCard] = None, error: Optional[Exception] = None):
        self.result = result or ExtractedCard()
        self.error = error
        self.calls = 0

    async def extract(self, image_b64: str, mime_type: str = "image/jpeg") -> ExtractedCard:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.result


class FakeAnthropic:
    """Stands in for anthropic.AsyncAnthropic; records every messages.create call."""

    def __init__(self, reply: str = "", error: Optional[Exception] = None):
        self.reply = reply
        self.error = error
        self.calls: List[Dict[str, Any]] = []
        self.messages = self

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(content=[SimpleNamespace(type="text", text=self.reply)])


# ---------------------------------------------------------------------------
# Remote store fake: PostgREST table + GoTrue auth
# ---------------------------------------------------------------------------

GOOD_PASSWORD = "secret-pass"
ACCESS_TOKEN = "token-123"
REMOTE_USER = {"id": "u-remote-1", "email": "anna@example.com", "user_metadata": {"name": "Anna"}}


def _json(status: int, payload: Any) -> httpx.Response:
    return httpx.Response(status, json=payload)


class FakeSupabase:
    """In-memory stand-in for the remote endpoints, recording every request."""

    def __init__(self):
        self.rows: List[Dict[str, Any]] = []
        self.missing_columns = set()
        self.requests: List[httpx.Request] = []

    # --- helpers for tests ---
    def add_row(self, **row) -> Dict[str, Any]:
        row.setdefault("id", str(uuid.uuid4()))
        row.setdefault("name", "Card")
        row.setdefault("type", "Ristorante")
        row.setdefault("created_at", "2025-01-01T00:00:01+00:00")
        row.setdefault("liked_by", [])
        self.rows.append(row)
        return row

    def calls(self, method: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path.startswith("/rest/")]

    @staticmethod
    def body(request: httpx.Request) -> Any:
        return json.loads(request.content) if request.content else None

    # --- transport ---
    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.startswith("/auth/v1/"):
            return self._auth(request, path[len("/auth/v1/"):])
        if path == "/rest/v1/business_cards":
            return self._table(request)
        return _json(404, {"message": "not found"})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def _auth(self, request: httpx.Request, op: str) -> httpx.Response:
        body = self.body(request) or {}
        if op == "token":
            if body.get("password") != GOOD_PASSWORD:
                return _json(400, {"error": "invalid_grant", "error_description": "Invalid login credentials"})
            return _json(200, {"access_token": ACCESS_TOKEN, "refresh_token": "refresh-1", "user": REMOTE_USER})
        if op == "signup":
            if body.get("email", "").startswith("pending"):
                return _json(200, {"id": "u-new", "email": body["email"]})
            user = {"id": "u-new", "email": body.get("email"), "user_metadata": body.get("data") or {}}
            return _json(200, {"access_token": ACCESS_TOKEN, "refresh_token": "r", "user": user})
        if op == "user":
            if request.headers.get("authorization") != f"Bearer {ACCESS_TOKEN}":
                return _json(401, {"message": "invalid JWT"})
            return _json(200, REMOTE_USER)
        if op in ("logout", "recover"):
            return httpx.Response(204)
        return _json(404, {"message": "unknown auth endpoint"})

    def _drift(self, payload: Dict[str, Any]) -> Optional[httpx.Response]:
        for col in payload:
            if col in self.missing_columns:
                return _json(400, {
                    "code": "PGRST204",
                    "message": f"Could not find the '{col}' column of 'business_cards' in the schema cache",
                })
        return None

    def _match(self, params: httpx.QueryParams) -> List[Dict[str, Any]]:
        rows = list(self.rows)
        user_filter = params.get("user_id")
        if user_filter:
            op, _, value = user_filter.partition(".")
            rows = [r for r in rows if (r.get("user_id") == value) == (op == "eq")]
        id_filter = params.get("id")
        if id_filter:
            value = id_filter.partition(".")[2]
            rows = [r for r in rows if r["id"] == value]
        return rows

    def _bad_id(self, params: httpx.QueryParams) -> Optional[httpx.Response]:
        id_filter = params.get("id") or ""
        value = id_filter.partition(".")[2]
        if value.startswith("card_"):
            return _json(400, {"code": "22P02", "message": f'invalid input syntax for type uuid: "{value}"'})
        return None

    def _table(self, request: httpx.Request) -> httpx.Response:
        params = request.url.params
        if request.method in ("GET", "PATCH", "DELETE"):
            bad = self._bad_id(params)
            if bad is not None:
                return bad
        if request.method == "GET":
            rows = sorted(self._match(params), key=lambda r: to_ms(r.get("created_at")), reverse=True)
            if params.get("limit"):
                rows = rows[:int(params["limit"])]
            if params.get("select") == "liked_by":
                rows = [{"liked_by": r.get("liked_by")} for r in rows]
            return _json(200, rows)
        if request.method == "POST":
            payload = self.body(request)
            drift = self._drift(payload)
            if drift is not None:
                return drift
            row = dict(payload, id=str(uuid.uuid4()))
            self.rows.append(row)
            return _json(201, [row])
        if request.method == "PATCH":
            payload = self.body(request)
            drift = self._drift(payload)
            if drift is not None:
                return drift
            matched = self._match(params)
            for row in matched:
                row.update(payload)
            return _json(200, matched)
        if request.method == "DELETE":
            doomed = {r["id"] for r in self._match(params)}
            self.rows = [r for r in self.rows if r["id"] not in doomed]
            return httpx.Response(204)
        return _json(405, {"message": "method not allowed"})


@pytest.fixture
def fake_supabase():
    return FakeSupabase()


@pytest.fixture
def remote_settings():
    return Settings(supabase_url="https://demo.supabase.co", supabase_key="anon-key", community_limit=50)


@pytest.fixture
def remote_backend(remote_settings, fake_supabase):
    return RemoteBackend(remote_settings, transport=fake_supabase.transport())


@pytest.fixture
def remote_session():
    return Session(
        user=User(id=REMOTE_USER["id"], name="Anna", email=REMOTE_USER["email"]),
        access_token=ACCESS_TOKEN,
    )
