# tasca/backends.py
"""The capability set every storage backend offers, and the one-time selection."""
import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from .config import Settings
from .errors import NoSessionError
from .models import Card, Session, User, prepare_for_save
from .reconcile import Scope

logger = logging.getLogger(__name__)


class CardBackend(ABC):
    """Uniform auth + card storage contract.

    Every method is a coroutine so call sites tolerate completion-order
    variance whichever backend is active. Card operations take an optional
    explicit `session`; backends that need credentials read them from it.
    """

    cloud = False

    # --- Authentication ---
    @abstractmethod
    async def login(self, email: str, password: Optional[str] = None) -> Session:
        ...

    @abstractmethod
    async def register(self, name: str, email: str, password: Optional[str] = None) -> Session:
        ...

    @abstractmethod
    async def logout(self, session: Optional[Session] = None) -> None:
        ...

    @abstractmethod
    async def reset_password(self, email: str) -> None:
        ...

    @abstractmethod
    async def update_password(self, new_password: str, session: Optional[Session] = None) -> None:
        ...

    @abstractmethod
    async def get_current_user(self, session: Optional[Session] = None) -> Optional[User]:
        """Return the signed-in user or None; never raises for a missing session."""

    # --- Cards ---
    @abstractmethod
    async def get_cards(self, owner_id: str, scope: Scope = Scope.MINE,
                        session: Optional[Session] = None) -> List[Card]:
        ...

    @abstractmethod
    async def get_card(self, card_id: str, session: Optional[Session] = None) -> Optional[Card]:
        ...

    @abstractmethod
    async def _write_card(self, card: Card, session: Optional[Session] = None) -> Card:
        """Persist an already validated card (insert or update by status)."""

    @abstractmethod
    async def delete_card(self, card_id: str, session: Optional[Session] = None) -> None:
        """Remove a card; deleting an unknown id is not an error."""

    @abstractmethod
    async def toggle_like(self, card_id: str, user_id: str,
                          session: Optional[Session] = None) -> None:
        ...

    async def save_card(self, card: Card, session: Optional[Session] = None) -> Card:
        """Validate, strip transient data, then persist.

        Validation failures raise before the backend is touched.
        """
        clean = prepare_for_save(card)
        return await self._write_card(clean, session=session)

    async def duplicate_card(self, card: Card, new_owner_id: str,
                             session: Optional[Session] = None) -> Card:
        if not new_owner_id:
            raise NoSessionError()
        return await self.save_card(card.duplicate_for(new_owner_id), session=session)


def create_backend(settings: Settings) -> CardBackend:
    """Pick the backend for the whole process from the cloud-active flag."""
    if settings.cloud_active:
        from .remote_backend import RemoteBackend
        logger.info("Connected to the remote card store at %s", settings.supabase_url)
        return RemoteBackend(settings)
    from .local_backend import LocalBackend
    logger.warning("Remote keys missing: running in local demo mode (%s)", settings.local_db_path)
    return LocalBackend(settings)
