# tasca/stats.py
from collections import Counter
from typing import Any, Dict, Iterable

from .models import Card


def collection_stats(cards: Iterable[Card]) -> Dict[str, Any]:
    """Profile summary: count, estimated spend, favourite type and top tag."""
    cards = list(cards)
    types = Counter(c.type.value for c in cards)
    tags = Counter(t.strip().lower() for c in cards for t in c.tags if t.strip())
    return {
        'total_cards': len(cards),
        'total_spent': sum(c.average_cost or 0 for c in cards),
        'fav_type': types.most_common(1)[0][0] if types else '-',
        'top_tag': tags.most_common(1)[0][0] if tags else '-',
    }
