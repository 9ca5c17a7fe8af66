# tasca/rows.py
"""Translation between in-memory cards and remote `business_cards` rows."""
from typing import Any, Dict

from .models import Card, RecordStatus, ms_to_iso, normalize_type, now_ms, to_ms, unique

TABLE = 'business_cards'

# Columns added after the first release; a lagging remote schema may miss any of them.
# Each entry: (name looked for in the error text, columns dropped together)
OPTIONAL_COLUMNS = (
    ('lat', ('lat', 'lng')),
    ('average_cost', ('average_cost',)),
    ('services', ('services',)),
    ('bip_convention', ('bip_convention',)),
    ('liked_by', ('liked_by',)),
)


def card_to_row(card: Card) -> Dict[str, Any]:
    """Build the write payload. The id travels in the URL, never in the body.

    `created_at` is a timestamptz column: it is sent as ISO-8601 on insert
    and left out of updates, so an existing row keeps its creation time.
    """
    row = {
        'user_id': card.user_id,
        'name': card.name,
        'type': card.type.value,
        'address': card.address,
        'phone': card.phone,
        'website': card.website,
        'email': card.email,
        'tags': list(card.tags),
        'services': list(card.services),
        'bip_convention': card.bip_convention,
        'notes': card.notes,
        'rating': card.rating,
        'average_cost': card.average_cost,
        'image_front': card.image_front,
        'lat': card.lat,
        'lng': card.lng,
        'liked_by': list(card.liked_by),
    }
    if card.status != RecordStatus.REMOTE:
        row['created_at'] = ms_to_iso(card.created_at or now_ms())
    return row


def row_to_card(row: Dict[str, Any]) -> Card:
    """Read a remote row; columns the schema lacks simply read as unset."""
    r = dict(row or {})
    return Card(
        id=str(r.get('id') or ''),
        user_id=str(r.get('user_id') or ''),
        name=str(r.get('name') or ''),
        type=normalize_type(r.get('type')),
        address=str(r.get('address') or ''),
        phone=str(r.get('phone') or ''),
        website=str(r.get('website') or ''),
        email=str(r.get('email') or ''),
        notes=str(r.get('notes') or ''),
        tags=unique(r.get('tags')),
        services=unique(r.get('services')),
        bip_convention=r.get('bip_convention'),
        rating=max(0, min(5, int(r.get('rating') or 0))),
        average_cost=r.get('average_cost'),
        image_front=str(r.get('image_front') or ''),
        lat=r.get('lat') if r.get('lng') is not None else None,
        lng=r.get('lng') if r.get('lat') is not None else None,
        created_at=to_ms(r.get('created_at')),
        liked_by=unique(r.get('liked_by')),
        status=RecordStatus.REMOTE,
    )
