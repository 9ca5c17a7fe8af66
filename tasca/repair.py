# tasca/repair.py
"""Batch repair of cards that have an address but no coordinates."""
import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from .backends import CardBackend
from .errors import TascaError
from .geocode import Geocoder
from .models import Session, require_user
from .reconcile import Scope, needs_geocoding

logger = logging.getLogger(__name__)

MAX_ERRORS_KEPT = 500


@dataclass
class RepairReport:
    started: bool = True
    reason: str = ''
    total: int = 0
    fixed: int = 0
    failed: int = 0
    cancelled: bool = False
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'started': self.started,
            'reason': self.reason,
            'total': self.total,
            'fixed': self.fixed,
            'failed': self.failed,
            'cancelled': self.cancelled,
            'errors': self.errors[-50:],
        }


class GeocodeRepair:
    """Sequential, rate-limited coordinate repair over the caller's own cards.

    One external call at a time with a fixed pause between calls; only one
    run may be in flight per instance.
    """

    def __init__(self, backend: CardBackend, geocoder: Geocoder, delay: float = 0.6,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self._backend = backend
        self._geocoder = geocoder
        self._delay = delay
        self._sleep = sleep
        self._lock = threading.Lock()
        self._running = False
        self._current: Optional[RepairReport] = None

    @property
    def running(self) -> bool:
        with self._lock:
            return self._running

    def progress(self) -> dict:
        with self._lock:
            report = self._current or RepairReport(started=False)
            return dict(report.to_dict(), running=self._running)

    async def run(self, session: Session,
                  should_cancel: Optional[Callable[[], bool]] = None) -> RepairReport:
        user = require_user(session)
        with self._lock:
            if self._running:
                return RepairReport(started=False, reason='already_running')
            self._running = True
            self._current = report = RepairReport()
        try:
            cards = await self._backend.get_cards(user.id, Scope.MINE, session=session)
            todo = [c for c in cards if needs_geocoding(c)]
            report.total = len(todo)
            for i, card in enumerate(todo):
                if i > 0 and self._delay > 0:
                    await self._sleep(self._delay)
                if should_cancel and should_cancel():
                    report.cancelled = True
                    break
                try:
                    coords = await self._geocoder.geocode(card.address)
                except Exception as e:
                    # A broken lookup is one unresolved card, never the end of the batch
                    logger.warning("Geocoder error for %s: %s", card.name, e)
                    coords = None
                if coords is None:
                    report.failed += 1
                    continue
                try:
                    await self._backend.save_card(card.with_coordinates(coords.lat, coords.lng),
                                                  session=session)
                except TascaError as e:
                    report.failed += 1
                    if len(report.errors) < MAX_ERRORS_KEPT:
                        report.errors.append(f"{card.name}: {e.message}")
                    continue
                report.fixed += 1
            logger.info("Coordinate repair for %s: %d fixed, %d unresolved",
                        user.id, report.fixed, report.failed)
            return report
        finally:
            with self._lock:
                self._running = False
