# tasca/mutations.py
"""Per-view cached collection with optimistic like/delete/import.

Each mutation changes the in-memory list first, then awaits the durable
write; only a failed write triggers reconciliation, which replaces the
tentative list with a fresh read instead of undoing the change by hand.
Separate views hold separate copies and are not kept in lockstep.
"""
import logging
import time
from typing import Any, Awaitable, Callable, List, Optional

from .backends import CardBackend
from .errors import NotFoundError, PermissionDeniedError, TascaError
from .models import Card, Session, require_user
from .reconcile import ALL_TYPES, Scope, filter_cards, located_cards, parse_scope

logger = logging.getLogger(__name__)

DELETE_CONFIRM_SECONDS = 3.0

ARMED = 'armed'
DELETED = 'deleted'


class DeleteConfirmation:
    """Two-step delete: the first request arms, a second one in time confirms."""

    def __init__(self, timeout: float = DELETE_CONFIRM_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.timeout = timeout
        self._clock = clock
        self._armed_id: Optional[str] = None
        self._armed_at = 0.0

    @property
    def armed_id(self) -> Optional[str]:
        if self._armed_id is not None and self._clock() - self._armed_at >= self.timeout:
            self._armed_id = None
        return self._armed_id

    def is_armed(self, card_id: str) -> bool:
        return card_id is not None and self.armed_id == card_id

    def arm(self, card_id: str) -> None:
        self._armed_id = card_id
        self._armed_at = self._clock()

    def disarm(self) -> None:
        self._armed_id = None


class CardListView:
    def __init__(self, backend: CardBackend, session: Session, scope: Any = Scope.MINE,
                 confirm_timeout: float = DELETE_CONFIRM_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.backend = backend
        self.session = session
        self.scope = parse_scope(scope)
        self.cards: List[Card] = []
        self.type_filter: Any = ALL_TYPES
        self.search = ''
        self.error: Optional[str] = None
        self.deletes = DeleteConfirmation(confirm_timeout, clock)

    # --- Reads ---
    async def refresh(self) -> List[Card]:
        user = require_user(self.session)
        try:
            self.cards = await self.backend.get_cards(user.id, self.scope, session=self.session)
        except TascaError as e:
            self.error = e.message
            raise
        self.error = None
        return self.cards

    def set_filter(self, type_filter: Any = None, search: Optional[str] = None) -> List[Card]:
        if type_filter is not None:
            self.type_filter = type_filter
        if search is not None:
            self.search = search
        return self.visible

    @property
    def visible(self) -> List[Card]:
        return filter_cards(self.cards, self.type_filter, self.search)

    def located(self, types=None) -> List[Card]:
        return located_cards(self.cards, types)

    def find(self, card_id: str) -> Card:
        for card in self.cards:
            if card.id == card_id:
                return card
        raise NotFoundError(f"Card {card_id} is not in this view", status_code=404)

    def _replace(self, updated: Card) -> None:
        self.cards = [updated if c.id == updated.id else c for c in self.cards]

    # --- Optimistic helper ---
    async def _optimistic(self, apply: Callable[[], None], write: Callable[[], Awaitable[Any]],
                          reraise: bool = False) -> bool:
        apply()
        try:
            await write()
            return True
        except TascaError as e:
            logger.warning("Write failed (%s); reloading %s view", e.message, self.scope.value)
            try:
                await self.refresh()
            except TascaError as refresh_err:
                logger.warning("Resync after failed write also failed: %s", refresh_err.message)
            if reraise:
                raise
            return False

    # --- Mutations ---
    async def toggle_like(self, card_id: str) -> bool:
        """Flip the current user's like; returns the like state now shown."""
        user = require_user(self.session)
        card = self.find(card_id)
        toggled = card.with_like_toggled(user.id)
        await self._optimistic(
            lambda: self._replace(toggled),
            lambda: self.backend.toggle_like(card_id, user.id, session=self.session),
        )
        return self.has(card_id) and self.find(card_id).is_liked_by(user.id)

    def has(self, card_id: str) -> bool:
        return any(c.id == card_id for c in self.cards)

    def is_delete_armed(self, card_id: str) -> bool:
        return self.deletes.is_armed(card_id)

    async def request_delete(self, card_id: str) -> str:
        """First call arms the confirmation, a second call within the window deletes."""
        user = require_user(self.session)
        card = self.find(card_id)
        if card.user_id != user.id:
            raise PermissionDeniedError()
        if not self.deletes.is_armed(card_id):
            self.deletes.arm(card_id)
            return ARMED
        self.deletes.disarm()
        await self._optimistic(
            lambda: setattr(self, 'cards', [c for c in self.cards if c.id != card_id]),
            lambda: self.backend.delete_card(card_id, session=self.session),
            reraise=True,
        )
        return DELETED

    async def import_card(self, card_id: str) -> Card:
        """Copy someone else's card into the current user's collection."""
        user = require_user(self.session)
        card = self.find(card_id)
        return await self.backend.duplicate_card(card, user.id, session=self.session)
