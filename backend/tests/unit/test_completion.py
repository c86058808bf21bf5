"""
Unit Tests — Completion Client
═══════════════════════════════
Uses langchain's FakeListChatModel; no OpenAI calls are made.
"""

from __future__ import annotations

import httpx
import openai
import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel
from langchain_core.runnables import RunnableLambda

from app.core.errors import ProviderError
from app.llm.completion import _PROMPT, SYSTEM_PROMPT, CompletionClient, Source, format_sources

pytestmark = [pytest.mark.unit, pytest.mark.assistant]

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def test_format_sources_numbers_from_one_and_separates():
    text = format_sources([Source("Handbook", "PTO is 25 days."), Source("FAQ", "Ask HR.")])
    assert text == "SOURCE 1: Handbook\nPTO is 25 days.\n\n---\n\nSOURCE 2: FAQ\nAsk HR."


def test_prompt_has_grounding_system_message_and_question():
    messages = _PROMPT.format_messages(question="How much PTO?", sources="SOURCE 1: H\nx")
    assert messages[0].content == SYSTEM_PROMPT
    assert "ONLY using the provided sources" in messages[0].content
    assert messages[1].content == "Question:\nHow much PTO?\n\nSources:\nSOURCE 1: H\nx"


async def test_answer_returns_trimmed_model_text():
    client = CompletionClient(FakeListChatModel(responses=["  You get 25 days [SOURCE 1].\n"]))
    text = await client.answer("How much PTO?", [Source("Handbook", "PTO is 25 days.")])
    assert text == "You get 25 days [SOURCE 1]."


async def test_status_error_maps_to_provider_error():
    def _boom(_):
        raise openai.APIStatusError(
            "server error",
            response=httpx.Response(503, text="unavailable", request=_REQUEST),
            body=None,
        )

    client = CompletionClient(RunnableLambda(_boom))
    with pytest.raises(ProviderError) as exc_info:
        await client.answer("q", [Source("t", "c")])

    assert exc_info.value.status == 503
    assert str(exc_info.value) == "OpenAI chat error 503: unavailable"


async def test_timeout_maps_to_provider_error():
    def _timeout(_):
        raise openai.APITimeoutError(request=_REQUEST)

    client = CompletionClient(RunnableLambda(_timeout))
    with pytest.raises(ProviderError, match="OpenAI chat error"):
        await client.answer("q", [Source("t", "c")])
