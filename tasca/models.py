# tasca/models.py
"""Card and User records shared by both storage backends."""
from __future__ import annotations

import random
import re
import string
import time
import urllib.parse
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from .errors import NoSessionError, ValidationError

CARD_ID_PREFIX = 'card_'


class PlaceType(str, Enum):
    RESTAURANT = 'Ristorante'
    HOTEL = 'Hotel'
    EXPERIENCE = 'Esperienze'


# Old records were saved with 'Altro' before the category was renamed
LEGACY_TYPES = {
    'Altro': PlaceType.EXPERIENCE,
}

HOTEL_AMENITIES = [
    "Parcheggio Gratis",
    "Parcheggio a Pagamento",
    "WiFi",
    "Palestra",
    "Piscina",
    "Spa",
    "Ristorante Interno",
    "Colazione Inclusa",
    "Meeting Room",
    "Pet Friendly",
    "Bar / Lounge",
    "Navetta Aeroporto",
    "Servizio in Camera",
    "Reception 24h",
]


class RecordStatus(str, Enum):
    """Where a record currently lives; decides insert vs update."""
    NEW = 'new'
    LOCAL = 'local'
    REMOTE = 'remote'


def now_ms() -> int:
    return int(time.time() * 1000)


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def to_ms(v) -> int:
    """Epoch milliseconds from an int, a digit string or an ISO-8601 timestamp; 0 when unreadable."""
    if v is None or v == '' or isinstance(v, bool):
        return 0
    if isinstance(v, (int, float)):
        return int(v)
    s = str(v).strip()
    if s.isdigit():
        return int(s)
    s = s.replace('Z', '+00:00')
    # Postgres trims trailing zeros from fractional seconds
    s = re.sub(r'\.(\d+)', lambda m: '.' + (m.group(1) + '000000')[:6], s, count=1)
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return 0
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return (dt - EPOCH) // timedelta(milliseconds=1)


def ms_to_iso(ms: int) -> str:
    return (EPOCH + timedelta(milliseconds=int(ms))).isoformat(timespec='milliseconds')


def new_card_id() -> str:
    suffix = ''.join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"{CARD_ID_PREFIX}{now_ms()}_{suffix}"


def normalize_type(value: Any) -> PlaceType:
    """Map stored type strings (including legacy synonyms) onto PlaceType.

    Unknown or blank values read back as a restaurant, the form default.
    """
    if isinstance(value, PlaceType):
        return value
    raw = str(value or '').strip()
    if raw in LEGACY_TYPES:
        return LEGACY_TYPES[raw]
    try:
        return PlaceType(raw)
    except ValueError:
        return PlaceType.RESTAURANT


def unique(values: Optional[Iterable[Any]]) -> List[str]:
    """De-duplicate keeping first-seen order; drops blanks."""
    out: List[str] = []
    seen = set()
    for v in values or []:
        s = str(v).strip() if v is not None else ''
        if not s or s in seen:
            continue
        seen.add(s)
        out.append(s)
    return out


def _to_float(v) -> Optional[float]:
    if v is None or v == '':
        return None
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


def _to_bool(v) -> Optional[bool]:
    if v is None or v == '':
        return None
    if isinstance(v, str):
        return v.strip().lower() in ('true', '1', 'yes', 'si', 'sì')
    return bool(v)


def _to_rating(v) -> int:
    try:
        r = int(v or 0)
    except (TypeError, ValueError):
        return 0
    return max(0, min(5, r))


@dataclass
class User:
    id: str
    name: str
    email: str
    avatar: Optional[str] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'User':
        return cls(
            id=str(d.get('id') or ''),
            name=str(d.get('name') or ''),
            email=str(d.get('email') or ''),
            avatar=d.get('avatar') or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        d = {'id': self.id, 'name': self.name, 'email': self.email}
        if self.avatar:
            d['avatar'] = self.avatar
        return d


def avatar_url(name: str) -> str:
    q = urllib.parse.quote(name or '')
    return f"https://ui-avatars.com/api/?name={q}&background=10b981&color=fff"


@dataclass
class Session:
    """Explicit session context handed to every core operation."""
    user: Optional[User] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'user': self.user.to_dict() if self.user else None,
            'access_token': self.access_token,
            'refresh_token': self.refresh_token,
        }

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]]) -> 'Session':
        d = d or {}
        user = d.get('user')
        return cls(
            user=User.from_dict(user) if isinstance(user, dict) else None,
            access_token=d.get('access_token'),
            refresh_token=d.get('refresh_token'),
        )


def require_user(session: Optional[Session]) -> User:
    if session is None or session.user is None or not session.user.id:
        raise NoSessionError()
    return session.user


@dataclass
class Card:
    id: str
    user_id: str
    name: str = ''
    type: PlaceType = PlaceType.RESTAURANT
    address: str = ''
    phone: str = ''
    website: str = ''
    email: str = ''
    notes: str = ''
    tags: List[str] = field(default_factory=list)
    services: List[str] = field(default_factory=list)
    bip_convention: Optional[bool] = None
    rating: int = 0
    average_cost: Optional[float] = None
    image_front: str = ''
    lat: Optional[float] = None
    lng: Optional[float] = None
    created_at: int = 0
    liked_by: List[str] = field(default_factory=list)
    status: RecordStatus = RecordStatus.NEW

    @classmethod
    def new(cls, user_id: str, **fields) -> 'Card':
        fields.setdefault('created_at', now_ms())
        return cls(id=new_card_id(), user_id=user_id, status=RecordStatus.NEW, **fields)

    @classmethod
    def from_dict(cls, d: Dict[str, Any], status: RecordStatus = RecordStatus.NEW) -> 'Card':
        """Build a card from its camelCase dictionary form, normalizing on the way in."""
        d = dict(d or {})
        liked_by = d.get('likedBy')
        if liked_by is None:
            # Pre-likedBy records only kept an anonymous counter
            liked_by = ['legacy_likes'] if d.get('likes') else []
        return cls(
            id=str(d.get('id') or ''),
            user_id=str(d.get('userId') or ''),
            name=str(d.get('name') or ''),
            type=normalize_type(d.get('type')),
            address=str(d.get('address') or ''),
            phone=str(d.get('phone') or ''),
            website=str(d.get('website') or ''),
            email=str(d.get('email') or ''),
            notes=str(d.get('notes') or ''),
            tags=unique(d.get('tags')),
            services=unique(d.get('services')),
            bip_convention=_to_bool(d.get('bipConvention')),
            rating=_to_rating(d.get('rating')),
            average_cost=_to_float(d.get('averageCost')),
            image_front=str(d.get('imageFront') or ''),
            lat=_to_float(d.get('lat')),
            lng=_to_float(d.get('lng')),
            created_at=to_ms(d.get('createdAt')),
            liked_by=unique(liked_by),
            status=status,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'userId': self.user_id,
            'name': self.name,
            'type': self.type.value,
            'address': self.address,
            'phone': self.phone,
            'website': self.website,
            'email': self.email,
            'notes': self.notes,
            'tags': list(self.tags),
            'services': list(self.services),
            'bipConvention': self.bip_convention,
            'rating': self.rating,
            'averageCost': self.average_cost,
            'imageFront': self.image_front,
            'lat': self.lat,
            'lng': self.lng,
            'createdAt': self.created_at,
            'likedBy': list(self.liked_by),
        }

    def copy(self, **changes) -> 'Card':
        changes.setdefault('tags', list(self.tags))
        changes.setdefault('services', list(self.services))
        changes.setdefault('liked_by', list(self.liked_by))
        return replace(self, **changes)

    def has_valid_location(self) -> bool:
        for v in (self.lat, self.lng):
            if v is None or isinstance(v, bool) or not isinstance(v, (int, float)) or v == 0:
                return False
        return True

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lng is not None

    @property
    def like_count(self) -> int:
        return len(self.liked_by)

    def is_liked_by(self, user_id: str) -> bool:
        return user_id in self.liked_by

    def with_like_toggled(self, user_id: str) -> 'Card':
        if user_id in self.liked_by:
            liked = [u for u in self.liked_by if u != user_id]
        else:
            liked = list(self.liked_by) + [user_id]
        return self.copy(liked_by=liked)

    def with_address(self, address: str) -> 'Card':
        """Change the address; stale coordinates are dropped with it."""
        address = address or ''
        if address.strip() == self.address.strip():
            return self.copy(address=address)
        return self.copy(address=address, lat=None, lng=None)

    def with_coordinates(self, lat: Optional[float], lng: Optional[float]) -> 'Card':
        if lat is None or lng is None:
            return self.copy(lat=None, lng=None)
        return self.copy(lat=float(lat), lng=float(lng))

    def duplicate_for(self, new_owner_id: str) -> 'Card':
        """Derive an imported copy owned by someone else."""
        created = max(now_ms(), self.created_at + 1)
        return self.copy(
            id=new_card_id(),
            user_id=new_owner_id,
            created_at=created,
            liked_by=[],
            status=RecordStatus.NEW,
        )


def prepare_for_save(card: Card) -> Card:
    """Validate and sanitize a card right before it is written anywhere.

    The returned copy never carries the photo and never has a lone
    coordinate.
    """
    if not (card.name or '').strip():
        raise ValidationError('Card name is required')
    if not card.user_id:
        raise ValidationError('Card owner is required')
    if card.rating < 0 or card.rating > 5:
        raise ValidationError('Rating must be between 0 and 5')
    if card.average_cost is not None and card.average_cost < 0:
        raise ValidationError('Average cost cannot be negative')
    out = card.copy(image_front='', tags=unique(card.tags), services=unique(card.services),
                    liked_by=unique(card.liked_by))
    if out.lat is None or out.lng is None:
        out.lat = None
        out.lng = None
    return out
