# tasca/concierge.py
"""Question answering over the signed-in user's own cards.

The assistant only sees name, type and notes of each card. An unconfigured
or failing model yields a fixed reply, never an exception.
"""
import asyncio
import json
import logging
from typing import Any, Dict, Iterable, List, Optional

import anthropic

from .config import Settings
from .errors import ValidationError
from .models import Card

logger = logging.getLogger(__name__)

CONCIERGE_TIMEOUT_S = 30
MAX_TOKENS = 600

NOT_CONFIGURED = "The concierge is not configured (missing API key)."
UNAVAILABLE = "Sorry, I can't answer right now. Please try again shortly."

_SYSTEM_PROMPT = (
    "You are the concierge of Gusto in Tasca, an expert hospitality assistant. "
    "Answer kindly and briefly, using only the saved places you are given."
)


def build_context(cards: Iterable[Card]) -> List[Dict[str, Any]]:
    return [{'name': c.name, 'type': c.type.value, 'notes': c.notes or ''} for c in cards]


def build_prompt(query: str, cards: Iterable[Card]) -> str:
    context = json.dumps(build_context(cards), ensure_ascii=False)
    return f"Saved places: {context}\n\nQuestion: {query}"


class Concierge:
    def __init__(self, client: Optional[Any] = None, model: str = 'claude-haiku-4-5-20251001',
                 timeout: float = CONCIERGE_TIMEOUT_S):
        self._client = client
        self.model = model
        self._timeout = timeout

    @property
    def configured(self) -> bool:
        return self._client is not None

    async def ask(self, query: str, cards: Iterable[Card]) -> str:
        query = (query or '').strip()
        if not query:
            raise ValidationError('Please type a question')
        if self._client is None:
            return NOT_CONFIGURED
        try:
            response = await asyncio.wait_for(
                self._client.messages.create(
                    model=self.model,
                    max_tokens=MAX_TOKENS,
                    system=_SYSTEM_PROMPT,
                    messages=[{'role': 'user', 'content': build_prompt(query, cards)}],
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Concierge timed out after %ss", self._timeout)
            return UNAVAILABLE
        except anthropic.APIError as exc:
            logger.error("Anthropic API error in concierge: %s", exc, exc_info=True)
            return UNAVAILABLE
        if not response.content:
            return UNAVAILABLE
        return response.content[0].text.strip()


def default_concierge(settings: Settings) -> Concierge:
    if not settings.anthropic_api_key:
        logger.info("No ANTHROPIC_API_KEY: concierge disabled")
        return Concierge(None, settings.concierge_model)
    client = anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)
    return Concierge(client, settings.concierge_model)
