# tasca/geocode.py
"""Address -> coordinate lookup.

A miss is a normal outcome: every provider returns None instead of raising,
and provider failures are logged and treated as misses.
"""
import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional

import httpx

from .config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Coordinates:
    lat: float
    lng: float


def _coords(lat: Any, lng: Any) -> Optional[Coordinates]:
    try:
        lat_f, lng_f = float(lat), float(lng)
    except (TypeError, ValueError):
        return None
    if lat_f == 0 or lng_f == 0:
        return None
    return Coordinates(lat=lat_f, lng=lng_f)


class Geocoder:
    name = 'geocoder'

    async def geocode(self, address: str) -> Optional[Coordinates]:
        raise NotImplementedError


class HttpGeocoder(Geocoder):
    def __init__(self, url: str, timeout: float = 15.0, user_agent: str = 'GustoInTasca/1.0',
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url
        self._timeout = timeout
        self._user_agent = user_agent
        self._transport = transport

    def _params(self, address: str) -> dict:
        raise NotImplementedError

    def _parse(self, data: Any) -> Optional[Coordinates]:
        raise NotImplementedError

    async def geocode(self, address: str) -> Optional[Coordinates]:
        q = (address or '').strip()
        if not q:
            return None
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport,
                                         headers={'User-Agent': self._user_agent}) as client:
                response = await client.get(self.url, params=self._params(q))
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("%s geocoding failed for %r: %s", self.name, q, e)
            return None
        try:
            return self._parse(data)
        except (KeyError, IndexError, TypeError, ValueError, AttributeError) as e:
            logger.warning("%s returned an unexpected payload for %r: %s", self.name, q, e)
            return None


class PhotonGeocoder(HttpGeocoder):
    """komoot Photon; GeoJSON points are [lng, lat]."""
    name = 'photon'

    def _params(self, address: str) -> dict:
        return {'q': address, 'limit': 1}

    def _parse(self, data: Any) -> Optional[Coordinates]:
        features = (data or {}).get('features') or []
        if not features:
            return None
        lng, lat = features[0]['geometry']['coordinates'][:2]
        return _coords(lat, lng)


class NominatimGeocoder(HttpGeocoder):
    name = 'nominatim'

    def _params(self, address: str) -> dict:
        return {'q': address, 'format': 'json', 'limit': 1}

    def _parse(self, data: Any) -> Optional[Coordinates]:
        if not data:
            return None
        return _coords(data[0].get('lat'), data[0].get('lon'))


class GeocoderChain(Geocoder):
    """Ask each provider in turn and keep the first hit."""
    name = 'chain'

    def __init__(self, providers: Iterable[Geocoder]):
        self.providers: List[Geocoder] = list(providers)

    async def geocode(self, address: str) -> Optional[Coordinates]:
        for provider in self.providers:
            found = await provider.geocode(address)
            if found is not None:
                return found
        return None


def default_geocoder(settings: Settings,
                     transport: Optional[httpx.AsyncBaseTransport] = None) -> GeocoderChain:
    return GeocoderChain([
        PhotonGeocoder(settings.photon_url, settings.http_timeout, settings.user_agent, transport),
        NominatimGeocoder(settings.nominatim_url, settings.http_timeout, settings.user_agent, transport),
    ])
