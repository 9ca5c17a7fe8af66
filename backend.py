# backend.py
"""UI boundary over the card store.

Every public method is a coroutine returning a plain dict with a `success`
flag; store errors come back as `{'success': False, 'error': message}`.
"""
import asyncio
import functools
import logging
import threading
from typing import Any, Dict, List, Optional, Tuple

from tasca import compose
from tasca.backends import CardBackend, create_backend
from tasca.concierge import Concierge, default_concierge
from tasca.config import Settings
from tasca.errors import PermissionDeniedError, TascaError, ValidationError
from tasca.geocode import Geocoder, default_geocoder
from tasca.image_utils import TesseractExtractor
from tasca.models import HOTEL_AMENITIES, Card, RecordStatus, Session, require_user
from tasca.mutations import CardListView
from tasca.reconcile import Scope, parse_scope, type_labels
from tasca.repair import GeocodeRepair
from tasca.stats import collection_stats

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


def api_call(fn):
    """Turn TascaError into a failure dict and merge results into a success dict."""
    @functools.wraps(fn)
    async def wrapper(*args, **kwargs):
        try:
            result = await fn(*args, **kwargs)
        except TascaError as e:
            logger.info("%s failed: %s", fn.__name__, e.message)
            return {'success': False, 'error': e.message}
        out = {'success': True}
        out.update(result or {})
        return out
    return wrapper


def _as_session(session: Any) -> Session:
    if isinstance(session, Session):
        return session
    return Session.from_dict(session if isinstance(session, dict) else None)


class Api:
    # Methods the web layer may call through its generic proxy
    EXPOSED = (
        'reset_password', 'update_password', 'get_cards', 'get_map_cards', 'get_card',
        'save_card', 'delete_card', 'toggle_like', 'import_card', 'draft_from_image',
        'geocode_address', 'fix_coordinates', 'start_repair', 'get_repair_progress',
        'cancel_repair', 'get_stats', 'get_options', 'ask_concierge',
    )

    def __init__(self, settings: Optional[Settings] = None, backend: Optional[CardBackend] = None,
                 geocoder: Optional[Geocoder] = None, extractor=None,
                 repair_delay: Optional[float] = None, concierge: Optional[Concierge] = None):
        self._settings = settings or Settings.from_env()
        self._backend = backend or create_backend(self._settings)
        self._geocoder = geocoder or default_geocoder(self._settings)
        self._extractor = extractor or TesseractExtractor()
        self._concierge = concierge or default_concierge(self._settings)
        delay = self._settings.geocode_delay if repair_delay is None else repair_delay
        self._repair = GeocodeRepair(self._backend, self._geocoder, delay=delay)
        # One cached collection per (user, scope)
        self._views: Dict[Tuple[str, str], CardListView] = {}
        self._views_lock = threading.Lock()
        # Background repair state
        self._repair_lock = threading.Lock()
        self._repair_thread: Optional[threading.Thread] = None
        self._repair_cancel = False
        self._repair_error: Optional[str] = None

    @property
    def backend(self) -> CardBackend:
        return self._backend

    def _view(self, session: Session, scope: Any = Scope.MINE) -> CardListView:
        user = require_user(session)
        scope = parse_scope(scope)
        key = (user.id, scope.value)
        with self._views_lock:
            view = self._views.get(key)
            if view is None:
                view = self._views[key] = CardListView(self._backend, session, scope)
        view.session = session
        return view

    async def _view_with(self, session: Session, scope: Any, card_id: str) -> CardListView:
        view = self._view(session, scope)
        if not view.has(card_id):
            await view.refresh()
        return view

    def _forget_views(self, user_id: str) -> None:
        with self._views_lock:
            for key in [k for k in self._views if k[0] == user_id]:
                del self._views[key]

    # --- Authentication ---
    @api_call
    async def login(self, email: str = '', password: Optional[str] = None):
        session = await self._backend.login(email, password)
        return {'user': session.user.to_dict(), 'session': session.to_dict()}

    @api_call
    async def register(self, name: str = '', email: str = '', password: Optional[str] = None):
        session = await self._backend.register(name, email, password)
        return {
            'user': session.user.to_dict(),
            'session': session.to_dict(),
            'pending': session.user.id == 'pending',
        }

    @api_call
    async def logout(self, session=None):
        session = _as_session(session)
        await self._backend.logout(session)
        if session.user:
            self._forget_views(session.user.id)
        return {}

    @api_call
    async def reset_password(self, email: str = '', session=None):
        if not (email or '').strip():
            raise ValidationError('Email is required')
        await self._backend.reset_password(email.strip())
        return {}

    @api_call
    async def update_password(self, new_password: str = '', confirm_password: Optional[str] = None,
                              session=None):
        session = _as_session(session)
        require_user(session)
        if len(new_password or '') < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        if confirm_password is not None and confirm_password != new_password:
            raise ValidationError('Passwords do not match')
        await self._backend.update_password(new_password, session=session)
        return {}

    @api_call
    async def current_user(self, session=None):
        user = await self._backend.get_current_user(_as_session(session))
        if user is None:
            return {'logged_in': False}
        return {'logged_in': True, 'user': user.to_dict()}

    # --- Collections ---
    @api_call
    async def get_cards(self, scope: str = 'mine', type_filter: str = 'All', search: str = '',
                        refresh: bool = True, session=None):
        view = self._view(_as_session(session), scope)
        if str(refresh).lower() not in ('false', '0', 'no') or not view.cards:
            await view.refresh()
        visible = view.set_filter(type_filter, search)
        return {'cards': [c.to_dict() for c in visible], 'count': len(visible)}

    @api_call
    async def get_map_cards(self, scope: str = 'mine', types: Optional[List[str]] = None, session=None):
        if isinstance(types, str):
            types = [t for t in types.split(',') if t.strip()]
        view = self._view(_as_session(session), scope)
        if not view.cards:
            await view.refresh()
        located = view.located(types)
        return {'cards': [c.to_dict() for c in located], 'count': len(located)}

    @api_call
    async def get_card(self, card_id: str = '', session=None):
        card = await self._backend.get_card(card_id, session=_as_session(session))
        return {'card': card.to_dict() if card else None}

    @api_call
    async def get_stats(self, session=None):
        session = _as_session(session)
        user = require_user(session)
        cards = await self._backend.get_cards(user.id, Scope.MINE, session=session)
        return {'stats': collection_stats(cards)}

    @api_call
    async def get_options(self, session=None):
        return {
            'types': type_labels(),
            'amenities': list(HOTEL_AMENITIES),
            'cloud': self._backend.cloud,
        }

    @api_call
    async def ask_concierge(self, query: str = '', session=None):
        """Answer a free-text question about the caller's own saved places."""
        view = self._view(_as_session(session), Scope.MINE)
        if not view.cards:
            await view.refresh()
        answer = await self._concierge.ask(query, view.cards)
        return {'answer': answer, 'configured': self._concierge.configured}

    # --- Mutations ---
    @api_call
    async def save_card(self, card: Optional[Dict[str, Any]] = None, session=None):
        """Create or edit a card owned by the signed-in user.

        Whether this is an insert or an update is decided by looking the id
        up in the active store, never by the shape of the id.
        """
        session = _as_session(session)
        user = require_user(session)
        incoming = Card.from_dict(card or {})
        existing = await self._backend.get_card(incoming.id, session=session) if incoming.id else None
        if existing is not None:
            if existing.user_id != user.id:
                raise PermissionDeniedError()
            edited = incoming.copy(
                user_id=existing.user_id,
                created_at=existing.created_at,
                liked_by=list(existing.liked_by),
                status=existing.status,
            )
            if (edited.address.strip() != existing.address.strip()
                    and (edited.lat, edited.lng) == (existing.lat, existing.lng)):
                # Address changed but the form kept the old pin
                edited = edited.with_coordinates(None, None)
        else:
            fresh = Card.new(user.id)
            edited = incoming.copy(
                id=incoming.id or fresh.id,
                user_id=user.id,
                created_at=incoming.created_at or fresh.created_at,
                status=RecordStatus.NEW,
            )
        saved = await self._backend.save_card(edited, session=session)
        self._forget_views(user.id)
        return {'card': saved.to_dict(), 'status': saved.status.value}

    @api_call
    async def toggle_like(self, card_id: str = '', scope: str = 'community', session=None):
        session = _as_session(session)
        view = await self._view_with(session, scope, card_id)
        liked = await view.toggle_like(card_id)
        likes = view.find(card_id).like_count if view.has(card_id) else 0
        return {'liked': liked, 'likes': likes}

    @api_call
    async def delete_card(self, card_id: str = '', session=None):
        """Two-step delete: call once to arm, again within the window to delete."""
        session = _as_session(session)
        view = await self._view_with(session, Scope.MINE, card_id)
        state = await view.request_delete(card_id)
        return {'state': state}

    @api_call
    async def import_card(self, card_id: str = '', session=None):
        session = _as_session(session)
        view = await self._view_with(session, Scope.COMMUNITY, card_id)
        copy = await view.import_card(card_id)
        with self._views_lock:
            mine = self._views.get((copy.user_id, Scope.MINE.value))
        if mine is not None:
            mine.cards = [copy] + mine.cards
        return {'card': copy.to_dict()}

    # --- Composition ---
    @api_call
    async def draft_from_image(self, image: str = '', mime_type: str = 'image/jpeg', session=None):
        user = require_user(_as_session(session))
        draft = await compose.draft_from_image(user.id, image, mime_type,
                                               extractor=self._extractor, geocoder=self._geocoder)
        return {'card': draft.to_dict()}

    @api_call
    async def geocode_address(self, address: str = '', session=None):
        found = await self._geocoder.geocode(address)
        if found is None:
            return {'found': False, 'lat': None, 'lng': None}
        return {'found': True, 'lat': found.lat, 'lng': found.lng}

    # --- Coordinate repair ---
    @api_call
    async def fix_coordinates(self, session=None):
        session = _as_session(session)
        report = await self._repair.run(session)
        self._forget_views(require_user(session).id)
        return report.to_dict()

    @api_call
    async def start_repair(self, session=None):
        """Start coordinate repair in a background thread and track progress."""
        session = _as_session(session)
        require_user(session)
        with self._repair_lock:
            if self._repair_running():
                return {'started': False, 'reason': 'already_running'}
            self._repair_cancel = False
            self._repair_error = None

            def run():
                try:
                    asyncio.run(self._repair.run(session, should_cancel=lambda: self._repair_cancel))
                except TascaError as e:
                    logger.warning("Background coordinate repair failed: %s", e.message)
                    with self._repair_lock:
                        self._repair_error = e.message
                finally:
                    self._forget_views(session.user.id)

            t = threading.Thread(target=run, daemon=True)
            self._repair_thread = t
            t.start()
        return {'started': True}

    def _repair_running(self) -> bool:
        return self._repair.running or (self._repair_thread is not None and self._repair_thread.is_alive())

    @api_call
    async def get_repair_progress(self, session=None):
        progress = self._repair.progress()
        with self._repair_lock:
            progress['running'] = self._repair_running()
            progress['error'] = self._repair_error
        return progress

    @api_call
    async def cancel_repair(self, session=None):
        with self._repair_lock:
            self._repair_cancel = True
        return {}
