# tasca/remote_backend.py
"""Remote-authoritative backend: Supabase REST (PostgREST) + GoTrue auth over httpx."""
import logging
from typing import Any, Dict, List, Optional

import httpx

from .backends import CardBackend
from .config import Settings
from .errors import (
    AuthenticationError,
    BackendError,
    ConnectionError,
    NoSessionError,
    NotFoundError,
    TascaError,
)
from .models import Card, RecordStatus, Session, User, avatar_url
from .reconcile import Scope, parse_scope, select_scope
from .rows import TABLE, card_to_row, row_to_card
from .write_path import write_with_schema_fallback

logger = logging.getLogger(__name__)

REST_PATH = f"/rest/v1/{TABLE}"
# Postgres "invalid_text_representation": an id that is not a remote uuid
INVALID_ID_CODE = '22P02'


def user_from_auth(data: Dict[str, Any]) -> User:
    meta = data.get('user_metadata') or {}
    email = data.get('email') or ''
    name = meta.get('name') or (email.split('@')[0] if email else '') or 'User'
    return User(id=str(data.get('id') or ''), name=name, email=email, avatar=avatar_url(email))


def _error_message(data: Any, fallback: str) -> str:
    if isinstance(data, dict):
        for key in ('message', 'msg', 'error_description', 'error'):
            if data.get(key):
                return str(data[key])
    return fallback


class RemoteBackend(CardBackend):
    cloud = True

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._base_url = settings.supabase_url.rstrip('/')
        self._key = settings.supabase_key
        self._timeout = settings.http_timeout
        self._community_limit = settings.community_limit
        self._reset_redirect = settings.password_reset_redirect
        self._transport = transport

    def _client(self, session: Optional[Session] = None) -> httpx.AsyncClient:
        token = session.access_token if session and session.access_token else self._key
        return httpx.AsyncClient(
            base_url=self._base_url,
            headers={'apikey': self._key, 'Authorization': f"Bearer {token}"},
            timeout=self._timeout,
            transport=self._transport,
        )

    async def _request(
        self,
        method: str,
        path: str,
        session: Optional[Session] = None,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        try:
            async with self._client(session) as client:
                response = await client.request(method, path, params=params, json=json, headers=headers)
        except httpx.TimeoutException:
            raise ConnectionError("Request timeout", status_code=408)
        except httpx.HTTPError as e:
            raise ConnectionError(f"Connection failed: {e}", status_code=503)

        if response.status_code >= 400:
            self._handle_error(response)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    def _handle_error(self, response: httpx.Response) -> None:
        try:
            data = response.json()
        except ValueError:
            data = None
        message = _error_message(data, response.text or f"HTTP {response.status_code}")
        if response.status_code == 401:
            raise AuthenticationError(message, status_code=401)
        if response.status_code == 404:
            raise NotFoundError(message, status_code=404)
        raise BackendError(message, status_code=response.status_code, details=data)

    # --- Authentication ---
    def _session_from_token(self, data: Dict[str, Any]) -> Session:
        return Session(
            user=user_from_auth(data.get('user') or {}),
            access_token=data.get('access_token'),
            refresh_token=data.get('refresh_token'),
        )

    async def login(self, email: str, password: Optional[str] = None) -> Session:
        if not password:
            raise AuthenticationError('Password is required to sign in to the cloud account')
        try:
            data = await self._request(
                'POST', '/auth/v1/token',
                params={'grant_type': 'password'},
                json={'email': (email or '').strip(), 'password': password},
            )
        except BackendError as e:
            if e.status_code in (400, 422):
                raise AuthenticationError(e.message, status_code=e.status_code)
            raise
        return self._session_from_token(data or {})

    async def register(self, name: str, email: str, password: Optional[str] = None) -> Session:
        if not password:
            raise AuthenticationError('Password is required to create a cloud account')
        try:
            data = await self._request(
                'POST', '/auth/v1/signup',
                json={'email': (email or '').strip(), 'password': password, 'data': {'name': name}},
            ) or {}
        except BackendError as e:
            if e.status_code in (400, 422):
                raise AuthenticationError(e.message, status_code=e.status_code)
            raise
        if data.get('access_token'):
            return self._session_from_token(data)
        # Email confirmation pending: no session yet
        logger.info("Sign-up for %s is waiting for email confirmation", email)
        return Session(user=User(id='pending', name=name, email=(email or '').strip()))

    async def logout(self, session: Optional[Session] = None) -> None:
        if not session or not session.access_token:
            return
        try:
            await self._request('POST', '/auth/v1/logout', session=session)
        except TascaError as e:
            logger.warning("Remote sign-out failed, dropping local session anyway: %s", e.message)

    async def reset_password(self, email: str) -> None:
        params = {'redirect_to': self._reset_redirect} if self._reset_redirect else None
        await self._request('POST', '/auth/v1/recover', params=params, json={'email': email})

    async def update_password(self, new_password: str, session: Optional[Session] = None) -> None:
        if not session or not session.access_token:
            raise NoSessionError()
        await self._request('PUT', '/auth/v1/user', session=session, json={'password': new_password})

    async def get_current_user(self, session: Optional[Session] = None) -> Optional[User]:
        if not session or not session.access_token:
            return None
        try:
            data = await self._request('GET', '/auth/v1/user', session=session)
        except TascaError as e:
            logger.info("No valid remote session: %s", e.message)
            return None
        if not isinstance(data, dict) or not data.get('id'):
            return None
        return user_from_auth(data)

    # --- Cards ---
    async def get_cards(self, owner_id: str, scope: Scope = Scope.MINE,
                        session: Optional[Session] = None) -> List[Card]:
        scope = parse_scope(scope)
        params = {'select': '*', 'order': 'created_at.desc'}
        limit = None
        if scope == Scope.MINE:
            params['user_id'] = f"eq.{owner_id}"
        else:
            params['user_id'] = f"neq.{owner_id}"
            limit = self._community_limit
            params['limit'] = str(limit)
        rows = await self._request('GET', REST_PATH, session=session, params=params) or []
        return select_scope((row_to_card(r) for r in rows), owner_id, scope, limit=limit)

    async def get_card(self, card_id: str, session: Optional[Session] = None) -> Optional[Card]:
        try:
            rows = await self._request('GET', REST_PATH, session=session,
                                       params={'select': '*', 'id': f"eq.{card_id}"})
        except NotFoundError:
            return None
        except BackendError as e:
            if isinstance(e.details, dict) and e.details.get('code') == INVALID_ID_CODE:
                return None
            raise
        if not rows:
            return None
        return row_to_card(rows[0])

    async def _write_card(self, card: Card, session: Optional[Session] = None) -> Card:
        represent = {'Prefer': 'return=representation'}
        if card.status == RecordStatus.REMOTE:
            async def write(payload):
                return await self._request('PATCH', REST_PATH, session=session,
                                           params={'id': f"eq.{card.id}"}, json=payload, headers=represent)
        else:
            async def write(payload):
                return await self._request('POST', REST_PATH, session=session,
                                           json=payload, headers=represent)

        rows = await write_with_schema_fallback(write, card_to_row(card))
        if isinstance(rows, list) and rows:
            return row_to_card(rows[0])
        if card.status == RecordStatus.REMOTE:
            raise NotFoundError(f"Card {card.id} not found", status_code=404)
        return card.copy(status=RecordStatus.REMOTE)

    async def delete_card(self, card_id: str, session: Optional[Session] = None) -> None:
        try:
            await self._request('DELETE', REST_PATH, session=session, params={'id': f"eq.{card_id}"})
        except BackendError as e:
            if isinstance(e.details, dict) and e.details.get('code') == INVALID_ID_CODE:
                return
            raise

    async def toggle_like(self, card_id: str, user_id: str,
                          session: Optional[Session] = None) -> None:
        """Flip membership with a read-modify-write.

        Not atomic: two users toggling the same card at once can lose one
        update (last write wins on the whole liked_by column).
        """
        if not user_id:
            raise NoSessionError()
        rows = await self._request('GET', REST_PATH, session=session,
                                   params={'select': 'liked_by', 'id': f"eq.{card_id}"})
        if not rows:
            raise NotFoundError(f"Card {card_id} not found", status_code=404)
        liked_by = [u for u in (rows[0].get('liked_by') or [])]
        if user_id in liked_by:
            liked_by = [u for u in liked_by if u != user_id]
        else:
            liked_by.append(user_id)
        await self._request('PATCH', REST_PATH, session=session,
                            params={'id': f"eq.{card_id}"}, json={'liked_by': liked_by})
