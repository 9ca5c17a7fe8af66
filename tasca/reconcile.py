# tasca/reconcile.py
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from .errors import ValidationError
from .models import Card, PlaceType, RecordStatus, normalize_type

ALL_TYPES = 'All'


class Scope(str, Enum):
    MINE = 'mine'
    COMMUNITY = 'community'


def parse_scope(value: Any) -> Scope:
    if isinstance(value, Scope):
        return value
    s = str(value or Scope.MINE.value).strip().lower()
    try:
        return Scope(s)
    except ValueError:
        raise ValidationError(f"Unknown scope '{value}': expected 'mine' or 'community'")


def in_scope(card: Card, owner_id: str, scope: Scope) -> bool:
    if scope == Scope.MINE:
        return card.user_id == owner_id
    return card.user_id != owner_id


def sort_newest_first(cards: Iterable[Card]) -> List[Card]:
    return sorted(cards, key=lambda c: c.created_at, reverse=True)


def cards_from_records(items: Iterable[Dict[str, Any]], status: RecordStatus) -> List[Card]:
    """Normalize raw stored records. Normalization happens on read only."""
    return [Card.from_dict(it, status=status) for it in items]


def select_scope(cards: Iterable[Card], owner_id: str, scope: Scope,
                 limit: Optional[int] = None) -> List[Card]:
    """Scope filter + newest-first ordering.

    `limit` is a payload ceiling for community listings, not a product limit.
    """
    picked = sort_newest_first(c for c in cards if in_scope(c, owner_id, scope))
    if limit is not None and limit > 0:
        picked = picked[:limit]
    return picked


def _matches_type(card: Card, type_filter: Any) -> bool:
    if type_filter in (None, '', ALL_TYPES):
        return True
    return card.type == normalize_type(type_filter)


def _matches_search(card: Card, term: str) -> bool:
    if not term:
        return True
    t = term.lower()
    if t in card.name.lower() or t in card.address.lower():
        return True
    return any(t in tag.lower() for tag in card.tags)


def filter_cards(cards: Iterable[Card], type_filter: Any = ALL_TYPES, search: str = '') -> List[Card]:
    """Client-side list filter over an already fetched collection. Never fetches."""
    term = (search or '').strip()
    return [c for c in cards if _matches_type(c, type_filter) and _matches_search(c, term)]


def located_cards(cards: Iterable[Card], types: Optional[Iterable[Any]] = None) -> List[Card]:
    """Cards that can be placed on the map, optionally limited to some types."""
    wanted = None
    if types is not None:
        wanted = {normalize_type(t) for t in types}
    out = []
    for c in cards:
        if not c.has_valid_location():
            continue
        if wanted is not None and c.type not in wanted:
            continue
        out.append(c)
    return out


def needs_geocoding(card: Card) -> bool:
    # Zero coordinates come from failed lookups and count as missing
    return bool((card.address or '').strip()) and not card.has_valid_location()


def type_labels() -> List[str]:
    return [ALL_TYPES] + [t.value for t in PlaceType]
