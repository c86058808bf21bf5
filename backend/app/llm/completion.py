"""
Completion Client  —  Source-Grounded Answer Synthesis
══════════════════════════════════════════════════════

LCEL chain:  ChatPromptTemplate | ChatOpenAI | StrOutputParser

Prompt layout
─────────────
  system:  answer ONLY from the provided sources, otherwise say the
           sources are insufficient
  human:   Question:
           <question>

           Sources:
           SOURCE 1: <title>
           <content>

           ---

           SOURCE 2: ...

The caller never invokes this with zero sources; an empty retrieval
result is answered without an LLM call (see AssistantService).

Provider failures surface as ProviderError with no automatic retry: chat is
synchronous request/response, the user can simply ask again.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Sequence

import openai
from langchain_core.language_models import BaseChatModel
from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from langchain_openai import ChatOpenAI

from app.core.config import Settings
from app.core.errors import ProviderError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a company knowledge assistant. Answer ONLY using the provided sources. "
    "If the sources do not contain the answer, say you don't have sufficient sources."
)

SOURCE_SEPARATOR = "\n\n---\n\n"

_PROMPT = ChatPromptTemplate.from_messages([
    ("system", SYSTEM_PROMPT),
    ("human",  "Question:\n{question}\n\nSources:\n{sources}"),
])


@dataclass(frozen=True)
class Source:
    title:   str
    content: str


def format_sources(sources: Sequence[Source]) -> str:
    return SOURCE_SEPARATOR.join(
        f"SOURCE {i + 1}: {s.title}\n{s.content}" for i, s in enumerate(sources)
    )


def build_chat_model(settings: Settings) -> ChatOpenAI:
    return ChatOpenAI(
        model=settings.llm_model,
        api_key=settings.openai_api_key,
        temperature=settings.llm_temperature,
        max_tokens=settings.llm_max_tokens,
        max_retries=0,
    )


class CompletionClient:
    """
    Usage:
        client = CompletionClient(build_chat_model(settings))
        text   = await client.answer("What is the PTO policy?", [Source(...), ...])

    Any BaseChatModel works; tests pass a langchain fake chat model.
    """

    def __init__(self, llm: BaseChatModel) -> None:
        self._chain = _PROMPT | llm | StrOutputParser()

    async def answer(self, question: str, sources: Sequence[Source]) -> str:
        t0 = time.monotonic()
        try:
            text = await self._chain.ainvoke({
                "question": question,
                "sources":  format_sources(sources),
            })
        except openai.APIStatusError as exc:
            body = exc.response.text
            raise ProviderError(
                "openai",
                f"OpenAI chat error {exc.status_code}: {body}",
                status=exc.status_code,
                body=body,
            ) from exc
        except openai.APIError as exc:
            raise ProviderError("openai", f"OpenAI chat error: {exc}") from exc

        logger.info(
            "Completion ok | sources=%d chars=%d llm_ms=%.0f",
            len(sources), len(text), (time.monotonic() - t0) * 1000,
        )
        return text.strip()
