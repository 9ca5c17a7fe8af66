# tasca/local_backend.py
"""Local-only backend: on-device key-value storage is the source of truth.

Used when no remote credentials are configured. Authentication degrades to
an email lookup without password checks.
"""
import asyncio
import logging
import threading
from pathlib import Path
from typing import List, Optional

from . import db
from .backends import CardBackend
from .config import Settings
from .errors import AuthenticationError, NoSessionError, NotFoundError, ValidationError
from .models import Card, RecordStatus, Session, User, avatar_url, now_ms
from .reconcile import Scope, cards_from_records, parse_scope, select_scope

logger = logging.getLogger(__name__)

DEMO_USER = User(
    id='user_1',
    name='Mario Rossi',
    email='demo@example.com',
    avatar=avatar_url('Mario Rossi'),
)

# Simulated round-trip times (ms) so callers never rely on instant completion
LATENCY_MS = {
    'login': 600,
    'register': 800,
    'logout': 200,
    'reset_password': 1000,
    'update_password': 1000,
    'current_user': 300,
    'get_cards': 700,
    'get_card': 400,
    'save_card': 800,
    'delete_card': 500,
    'toggle_like': 200,
}


class LocalBackend(CardBackend):
    cloud = False

    def __init__(self, settings: Optional[Settings] = None, db_path: Optional[str] = None,
                 latency_scale: Optional[float] = None):
        settings = settings or Settings()
        self._db_path = Path(db_path or settings.local_db_path)
        self._latency_scale = settings.local_latency_scale if latency_scale is None else latency_scale
        # Guards read-modify-write of a whole key against other threads of the web server
        self._lock = threading.Lock()
        db.ensure_db(self._db_path)
        self.seed()

    async def _delay(self, op: str) -> None:
        ms = LATENCY_MS.get(op, 0) * self._latency_scale
        await asyncio.sleep(ms / 1000.0 if ms > 0 else 0)

    def seed(self) -> None:
        """Make sure the demo account exists."""
        with self._lock:
            users = db.load_records(self._db_path, db.USERS_KEY)
            if not any(str(u.get('email', '')).lower() == DEMO_USER.email for u in users):
                users.append(DEMO_USER.to_dict())
                db.save_records(self._db_path, db.USERS_KEY, users)

    def _find_user(self, email: str) -> Optional[User]:
        normalized = (email or '').strip().lower()
        for u in db.load_records(self._db_path, db.USERS_KEY):
            if str(u.get('email', '')).strip().lower() == normalized:
                return User.from_dict(u)
        return None

    # --- Authentication ---
    async def login(self, email: str, password: Optional[str] = None) -> Session:
        await self._delay('login')
        user = self._find_user(email)
        if user is None:
            raise AuthenticationError('No account found for this email', status_code=401)
        db.save_json(self._db_path, db.CURRENT_USER_KEY, user.to_dict())
        return Session(user=user)

    async def register(self, name: str, email: str, password: Optional[str] = None) -> Session:
        await self._delay('register')
        email = (email or '').strip()
        if not email or '@' not in email:
            raise ValidationError('Invalid email address')
        with self._lock:
            existing = self._find_user(email)
            if existing:
                user = existing
            else:
                name = (name or '').strip() or email.split('@')[0]
                user = User(id=f"user_{now_ms()}", name=name, email=email, avatar=avatar_url(name))
                users = db.load_records(self._db_path, db.USERS_KEY)
                users.append(user.to_dict())
                db.save_records(self._db_path, db.USERS_KEY, users)
        db.save_json(self._db_path, db.CURRENT_USER_KEY, user.to_dict())
        return Session(user=user)

    async def logout(self, session: Optional[Session] = None) -> None:
        await self._delay('logout')
        db.remove_item(self._db_path, db.CURRENT_USER_KEY)

    async def reset_password(self, email: str) -> None:
        await self._delay('reset_password')
        logger.info("Local mode: password reset requested for %s (no email sent)", email)

    async def update_password(self, new_password: str, session: Optional[Session] = None) -> None:
        await self._delay('update_password')
        logger.info("Local mode: password update accepted without storage")

    async def get_current_user(self, session: Optional[Session] = None) -> Optional[User]:
        await self._delay('current_user')
        if session is not None and session.user is not None:
            return self._find_user(session.user.email)
        data = db.load_json(self._db_path, db.CURRENT_USER_KEY)
        if not isinstance(data, dict) or not data.get('id'):
            return None
        return User.from_dict(data)

    # --- Cards ---
    def _load_cards(self) -> List[Card]:
        return cards_from_records(db.load_records(self._db_path, db.CARDS_KEY), RecordStatus.LOCAL)

    async def get_cards(self, owner_id: str, scope: Scope = Scope.MINE,
                        session: Optional[Session] = None) -> List[Card]:
        await self._delay('get_cards')
        return select_scope(self._load_cards(), owner_id, parse_scope(scope))

    async def get_card(self, card_id: str, session: Optional[Session] = None) -> Optional[Card]:
        await self._delay('get_card')
        for card in self._load_cards():
            if card.id == card_id:
                return card
        return None

    async def _write_card(self, card: Card, session: Optional[Session] = None) -> Card:
        await self._delay('save_card')
        stored = card.copy(status=RecordStatus.LOCAL)
        with self._lock:
            items = db.load_records(self._db_path, db.CARDS_KEY)
            for i, it in enumerate(items):
                if it.get('id') == stored.id:
                    items[i] = stored.to_dict()
                    break
            else:
                items.append(stored.to_dict())
            db.save_records(self._db_path, db.CARDS_KEY, items)
        return stored

    async def delete_card(self, card_id: str, session: Optional[Session] = None) -> None:
        await self._delay('delete_card')
        with self._lock:
            items = db.load_records(self._db_path, db.CARDS_KEY)
            kept = [it for it in items if it.get('id') != card_id]
            if len(kept) != len(items):
                db.save_records(self._db_path, db.CARDS_KEY, kept)

    async def toggle_like(self, card_id: str, user_id: str,
                          session: Optional[Session] = None) -> None:
        if not user_id:
            raise NoSessionError()
        await self._delay('toggle_like')
        with self._lock:
            items = db.load_records(self._db_path, db.CARDS_KEY)
            for it in items:
                if it.get('id') != card_id:
                    continue
                liked = Card.from_dict(it).liked_by
                if user_id in liked:
                    liked = [u for u in liked if u != user_id]
                else:
                    liked.append(user_id)
                it['likedBy'] = liked
                db.save_records(self._db_path, db.CARDS_KEY, items)
                return
        raise NotFoundError(f"Card {card_id} not found", status_code=404)
