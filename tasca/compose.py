# tasca/compose.py
"""Building a new card draft from a photo of a business card."""
import logging
from typing import Optional

from .errors import TascaError
from .geocode import Geocoder
from .image_utils import ExtractedCard, TesseractExtractor
from .models import Card, PlaceType, unique

logger = logging.getLogger(__name__)


async def resolve_coordinates(extracted: ExtractedCard, geocoder: Optional[Geocoder]):
    """Fallback chain: coordinates read off the card, then the geocoded address."""
    if extracted.lat and extracted.lng:
        return extracted.lat, extracted.lng
    if geocoder is not None and extracted.address:
        found = await geocoder.geocode(extracted.address)
        if found is not None:
            return found.lat, found.lng
    return None, None


async def draft_from_image(owner_id: str, image_b64: str, mime_type: str = 'image/jpeg',
                           extractor=None, geocoder: Optional[Geocoder] = None) -> Card:
    """Prefill a new card from a photo.

    Extraction failures leave an empty draft for manual entry. The photo is
    kept on the draft for preview only; saving always drops it.
    """
    extractor = extractor or TesseractExtractor()
    try:
        extracted = await extractor.extract(image_b64, mime_type)
    except TascaError as e:
        logger.warning("Could not read the card, falling back to manual entry: %s", e.message)
        return Card.new(owner_id, image_front=image_b64 or '')

    lat, lng = await resolve_coordinates(extracted, geocoder)
    return Card.new(
        owner_id,
        name=extracted.name or '',
        type=extracted.type or PlaceType.RESTAURANT,
        address=extracted.address or '',
        phone=extracted.phone or '',
        website=extracted.website or '',
        email=extracted.email or '',
        tags=unique(extracted.suggested_tags),
        image_front=image_b64 or '',
        lat=lat,
        lng=lng,
    )
