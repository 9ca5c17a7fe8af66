"""
Unit tests: the concierge that answers questions over the user's own cards.

Verifies:
- the model only ever sees name, type and notes of each card
- without an API key the concierge answers with a fixed message
- timeouts and API errors degrade to a message instead of raising
- the Api facade answers from the cached "mine" collection
"""

import asyncio
import json

import anthropic
import httpx
import pytest

from backend import Api
from tasca.concierge import (NOT_CONFIGURED, UNAVAILABLE, Concierge, build_context,
                             default_concierge)
from tasca.config import Settings
from tasca.errors import ValidationError
from tasca.models import PlaceType

from conftest import FakeAnthropic

pytestmark = pytest.mark.asyncio


class SlowAnthropic(FakeAnthropic):
    async def create(self, **kwargs):
        await asyncio.sleep(1)
        return await super().create(**kwargs)


class TestContext:
    async def test_only_name_type_notes(self, make_card):
        card = make_card("user_1", name="Da Vito", type=PlaceType.RESTAURANT, notes="Tortellini",
                         phone="051 123", tags=["Pasta"])
        assert build_context([card]) == [{"name": "Da Vito", "type": "Ristorante", "notes": "Tortellini"}]

    async def test_prompt_carries_question_and_cards(self, make_card):
        client = FakeAnthropic(reply="  Prova Da Vito.  ")
        concierge = Concierge(client, model="test-model")
        answer = await concierge.ask("Dove mangio pasta?", [make_card("user_1", name="Da Vito")])
        assert answer == "Prova Da Vito."
        call = client.calls[0]
        assert call["model"] == "test-model"
        content = call["messages"][0]["content"]
        assert "Dove mangio pasta?" in content
        context = json.loads(content.split("Saved places: ", 1)[1].split("\n\n", 1)[0])
        assert context[0]["name"] == "Da Vito"
        assert "address" not in context[0]


class TestDegradation:
    async def test_unconfigured(self):
        concierge = default_concierge(Settings())
        assert concierge.configured is False
        assert await concierge.ask("Hotel con piscina?", []) == NOT_CONFIGURED

    async def test_empty_question_rejected(self):
        with pytest.raises(ValidationError):
            await Concierge(FakeAnthropic()).ask("   ", [])

    async def test_api_error_becomes_message(self):
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        client = FakeAnthropic(error=anthropic.APIConnectionError(request=request))
        assert await Concierge(client).ask("Ciao?", []) == UNAVAILABLE
        assert len(client.calls) == 1

    async def test_timeout_becomes_message(self):
        concierge = Concierge(SlowAnthropic(reply="late"), timeout=0.01)
        assert await concierge.ask("Ciao?", []) == UNAVAILABLE


class TestApiConcierge:
    async def test_answers_from_own_cards(self, settings, local_backend, demo_session, other_session,
                                          make_card):
        await local_backend.save_card(make_card("user_1", name="Mine"), session=demo_session)
        await local_backend.save_card(make_card("user_2", name="Theirs"), session=other_session)
        client = FakeAnthropic(reply="Mine")
        api = Api(settings=settings, backend=local_backend, concierge=Concierge(client))
        result = await api.ask_concierge("Cosa ho salvato?", session=demo_session)
        assert result == {"success": True, "answer": "Mine", "configured": True}
        content = client.calls[0]["messages"][0]["content"]
        assert "Mine" in content and "Theirs" not in content

    async def test_requires_login(self, settings, local_backend):
        api = Api(settings=settings, backend=local_backend, concierge=Concierge(FakeAnthropic()))
        result = await api.ask_concierge("Ciao?")
        assert result["success"] is False

    async def test_unconfigured_reports_message(self, settings, local_backend, demo_session):
        api = Api(settings=settings, backend=local_backend)
        result = await api.ask_concierge("Ciao?", session=demo_session)
        assert result["success"] is True
        assert result["configured"] is False
        assert result["answer"] == NOT_CONFIGURED
