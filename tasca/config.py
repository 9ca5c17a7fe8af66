# tasca/config.py
"""Runtime settings, read once from the environment at startup."""
import os
from dataclasses import dataclass
from typing import Mapping, Optional


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    try:
        return float(env.get(key, default))
    except (TypeError, ValueError):
        return default


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    try:
        return int(env.get(key, default))
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class Settings:
    supabase_url: str = ''
    supabase_key: str = ''
    local_db_path: str = 'tasca_local.db'
    # Multiplier on the simulated local latency; 0 turns it off
    local_latency_scale: float = 1.0
    geocode_delay: float = 0.6
    community_limit: int = 50
    photon_url: str = 'https://photon.komoot.io/api/'
    nominatim_url: str = 'https://nominatim.openstreetmap.org/search'
    http_timeout: float = 15.0
    password_reset_redirect: str = ''
    user_agent: str = 'GustoInTasca/1.0'
    anthropic_api_key: str = ''
    concierge_model: str = 'claude-haiku-4-5-20251001'

    @property
    def cloud_active(self) -> bool:
        url = (self.supabase_url or '').strip()
        return bool(url and (self.supabase_key or '').strip() and url.startswith('http'))

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> 'Settings':
        env = os.environ if env is None else env
        return cls(
            supabase_url=env.get('SUPABASE_URL', '').strip(),
            supabase_key=env.get('SUPABASE_KEY', '').strip(),
            local_db_path=env.get('TASCA_LOCAL_DB', 'tasca_local.db'),
            local_latency_scale=_float(env, 'TASCA_LOCAL_LATENCY', 1.0),
            geocode_delay=_float(env, 'TASCA_GEOCODE_DELAY', 0.6),
            community_limit=_int(env, 'TASCA_COMMUNITY_LIMIT', 50),
            photon_url=env.get('TASCA_PHOTON_URL', 'https://photon.komoot.io/api/'),
            nominatim_url=env.get('TASCA_NOMINATIM_URL', 'https://nominatim.openstreetmap.org/search'),
            http_timeout=_float(env, 'TASCA_HTTP_TIMEOUT', 15.0),
            password_reset_redirect=env.get('TASCA_RESET_REDIRECT', ''),
            anthropic_api_key=env.get('ANTHROPIC_API_KEY', '').strip(),
            concierge_model=env.get('TASCA_CONCIERGE_MODEL', 'claude-haiku-4-5-20251001'),
        )
