# tasca/image_utils.py
"""Business-card photo -> best-effort form prefill via local OCR.

Nothing here is validated truth: every extracted field is a guess for the
user to correct before saving.
"""
import asyncio
import base64
import binascii
import io
import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import pytesseract
from PIL import Image, ImageOps

from .errors import ValidationError
from .models import PlaceType

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r'[\w.+-]+@[\w-]+(?:\.[\w-]+)+')
URL_RE = re.compile(r'(?:https?://|www\.)[^\s,;]+|\b[\w-]+(?:\.[\w-]+)*\.(?:it|com|net|org|eu|info|biz)(?:/[^\s,;]*)?\b',
                    re.IGNORECASE)
PHONE_RE = re.compile(r'(?:\+|00)?\d[\d\s./()-]{5,}\d')
POSTCODE_RE = re.compile(r'\b\d{5}\b')
STREET_WORDS = (
    'via', 'viale', 'v.le', 'piazza', 'p.za', 'p.zza', 'corso', 'c.so', 'largo', 'vicolo',
    'strada', 'str.', 'località', 'loc.', 'borgo', 'street', 'st.', 'road', 'avenue',
)

TYPE_KEYWORDS: List[Tuple[PlaceType, Tuple[str, ...]]] = [
    (PlaceType.HOTEL, ('hotel', 'albergo', 'b&b', 'bed & breakfast', 'bed and breakfast', 'resort',
                       'agriturismo', 'residence', 'locanda')),
    (PlaceType.RESTAURANT, ('ristorante', 'trattoria', 'osteria', 'pizzeria', 'bistrot', 'restaurant',
                            'enoteca', 'braceria', 'sushi', 'cucina', 'bar')),
    (PlaceType.EXPERIENCE, ('cantina', 'tour', 'museo', 'escursioni', 'degustazioni', 'experience',
                            'winery', 'spa')),
]


@dataclass
class ExtractedCard:
    name: str = ''
    type: Optional[PlaceType] = None
    address: str = ''
    phone: str = ''
    website: str = ''
    email: str = ''
    suggested_tags: List[str] = field(default_factory=list)
    lat: Optional[float] = None
    lng: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'type': self.type.value if self.type else None,
            'address': self.address,
            'phone': self.phone,
            'website': self.website,
            'email': self.email,
            'suggestedTags': list(self.suggested_tags),
            'lat': self.lat,
            'lng': self.lng,
        }


def decode_image(payload: str) -> bytes:
    """Accept raw base64 or a data: URL."""
    s = (payload or '').strip()
    if s.startswith('data:') and ',' in s:
        s = s.split(',', 1)[1]
    if not s:
        raise ValidationError('Image payload is empty')
    try:
        return base64.b64decode(s, validate=False)
    except (binascii.Error, ValueError):
        raise ValidationError('Image payload is not valid base64')


def _preprocess_for_ocr(data: bytes) -> Image.Image:
    """Grayscale, autocontrast and upscale 1.5x for better character shapes."""
    im = Image.open(io.BytesIO(data)).convert('L')
    im = ImageOps.autocontrast(im)
    w, h = im.size
    return im.resize((int(w * 1.5), int(h * 1.5)))


def try_ocr(data: bytes) -> str:
    """Run tesseract on the image bytes; empty string when OCR is unavailable or fails."""
    try:
        im = _preprocess_for_ocr(data)
        if im.mode != 'RGB':
            im = im.convert('RGB')
        # General layout mode suitable for blocks of text
        return pytesseract.image_to_string(im, config='--oem 3 --psm 6') or ''
    except (OSError, pytesseract.TesseractError) as e:
        logger.warning("OCR failed: %s", e)
        return ''


def _guess_type(text: str) -> Tuple[Optional[PlaceType], List[str]]:
    low = text.lower()
    found: Optional[PlaceType] = None
    tags: List[str] = []
    for place_type, words in TYPE_KEYWORDS:
        for w in words:
            if re.search(r'(?<!\w)' + re.escape(w) + r'(?!\w)', low):
                if found is None:
                    found = place_type
                if w not in tags:
                    tags.append(w)
    return found, tags[:5]


def _is_address(line: str) -> bool:
    low = line.lower()
    first = low.split()[0] if low.split() else ''
    return first in STREET_WORDS or bool(POSTCODE_RE.search(line) and re.search(r'[a-zA-Z]', line))


def parse_card_text(text: str) -> ExtractedCard:
    """Heuristic field extraction from OCR text."""
    out = ExtractedCard()
    lines = [ln.strip(' \t|') for ln in (text or '').splitlines()]
    lines = [ln for ln in lines if ln]
    for line in lines:
        m = EMAIL_RE.search(line)
        if m and not out.email:
            out.email = m.group(0)
            continue
        if not out.website and '@' not in line:
            u = URL_RE.search(line)
            if u:
                out.website = u.group(0).rstrip('.')
                continue
        p = PHONE_RE.search(line)
        if p and not out.phone and sum(ch.isdigit() for ch in p.group(0)) >= 7 and not _is_address(line):
            out.phone = re.sub(r'\s+', ' ', p.group(0)).strip()
            continue
        if not out.address and _is_address(line):
            out.address = line
            continue
        if not out.name and re.search(r'[A-Za-zÀ-ÿ]', line) and len(line) <= 80:
            out.name = line
    out.type, out.suggested_tags = _guess_type(text or '')
    return out


class TesseractExtractor:
    """Extraction collaborator backed by a local tesseract install."""

    async def extract(self, image_b64: str, mime_type: str = 'image/jpeg') -> ExtractedCard:
        data = decode_image(image_b64)
        text = await asyncio.to_thread(try_ocr, data)
        if not text.strip():
            return ExtractedCard()
        return parse_card_text(text)
