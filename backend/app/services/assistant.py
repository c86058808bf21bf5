"""
Assistant Service — one chat turn + feedback

Chat turn
─────────
  1. Resolve the conversation (must be visible to the caller) or create one
  2. Persist the user message verbatim                 ┘ transaction 1
  3. Degraded mode (no OpenAI key): fixed notice, no_sufficient_sources=true,
     no citations; persisted like any other answer
  4. Embed the question (single-item batch)
  5. match_chunks(embedding, 6) under the caller's RLS scope   transaction 2
  6. Zero matches → fixed "insufficient sources" answer; the LLM is NOT called
  7. Otherwise → CompletionClient.answer(question, [(title, content), ...])
  8. One citation per match; excerpt = first 240 characters of the chunk
  9. Persist the assistant message                             transaction 3
     (confidence=None, needs_admin_review=False; both reserved)
 10. Return conversation id, assistant message, flags

The user message is committed before any provider call, so a provider
failure in steps 4–7 surfaces as an error but the question is kept.

Feedback
────────
  Validated FeedbackRequest → one assistant_feedback row for the caller.
"""

from __future__ import annotations

import logging
from typing import Callable
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.token import TokenPayload
from app.core.errors import NotFoundError
from app.db.session import RequestScope
from app.llm.completion import CompletionClient, Source
from app.models.conversations import AssistantFeedback, Message
from app.processing.embeddings import EmbeddingClient
from app.rag.retriever import DEFAULT_TOP_K, RetrievalIndex
from app.repositories.conversations import ConversationRepository
from app.repositories.documents import ChunkMatch, DocumentRepository
from app.schemas.assistant import (
    EXCERPT_CHARS,
    AssistantMessage,
    ChatRequest,
    ChatResponse,
    Citation,
    FeedbackRequest,
    TurnFlags,
)

logger = logging.getLogger(__name__)

DEGRADED_MODE_TEXT = (
    "Assistant retrieval is available, but this server is missing OPENAI_API_KEY. "
    "Set OPENAI_API_KEY to enable answers with citations."
)
INSUFFICIENT_SOURCES_TEXT = (
    "I don’t have sufficient sources in your company docs to answer that."
)


def build_citations(matches: list[ChunkMatch]) -> list[Citation]:
    return [
        Citation(
            document_id=m.document_id,
            chunk_id=m.chunk_id,
            title=m.title,
            similarity=m.similarity,
            excerpt=m.content[:EXCERPT_CHARS],
        )
        for m in matches
    ]


class AssistantService:
    """
    One instance per request.

    completion is None in degraded mode (no OpenAI key configured).
    """

    def __init__(
        self,
        scope:      RequestScope,
        user:       TokenPayload,
        embeddings: EmbeddingClient,
        completion: CompletionClient | None,
        top_k:      int = DEFAULT_TOP_K,
        conversation_repository: Callable[[AsyncSession], ConversationRepository] = ConversationRepository,
        document_repository:     Callable[[AsyncSession], DocumentRepository] = DocumentRepository,
    ) -> None:
        self._scope = scope
        self._user = user
        self._embeddings = embeddings
        self._completion = completion
        self._top_k = top_k
        self._conversations = conversation_repository
        self._documents = document_repository

    @property
    def degraded(self) -> bool:
        return self._completion is None or not self._embeddings.enabled

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    async def chat(self, request: ChatRequest) -> ChatResponse:
        conversation_id = await self._open_turn(request)

        if self.degraded:
            logger.warning(
                "Assistant degraded mode | tenant=%s conversation=%s",
                self._user.company_id, conversation_id,
            )
            message = await self._save_answer(conversation_id, DEGRADED_MODE_TEXT, no_sufficient_sources=True)
            return self._response(conversation_id, message, citations=[])

        async with self._scope() as session:
            retriever = RetrievalIndex(self._embeddings, self._documents(session), top_k=self._top_k)
            matches = await retriever.retrieve(request.message)

        if not matches:
            text = INSUFFICIENT_SOURCES_TEXT
        else:
            text = await self._completion.answer(
                request.message,
                [Source(title=m.title, content=m.content) for m in matches],
            )

        message = await self._save_answer(conversation_id, text, no_sufficient_sources=not matches)

        logger.info(
            "Assistant turn | tenant=%s conversation=%s matches=%d insufficient=%s",
            self._user.company_id, conversation_id, len(matches), not matches,
        )
        return self._response(conversation_id, message, citations=build_citations(matches))

    async def _open_turn(self, request: ChatRequest) -> UUID:
        async with self._scope() as session:
            repo = self._conversations(session)

            if request.conversation_id is not None:
                conversation = await repo.get_conversation(request.conversation_id)
                if conversation is None:
                    raise NotFoundError(
                        f"Conversation {request.conversation_id} not found",
                        {"conversation_id": str(request.conversation_id)},
                    )
            else:
                conversation = await repo.create_conversation(
                    company_id=self._user.company_id,
                    created_by=self._user.user_id,
                    title=None,
                )

            await repo.add_message(
                company_id=self._user.company_id,
                conversation_id=conversation.id,
                sender="user",
                content=request.message,
                no_sufficient_sources=False,
            )
            return conversation.id

    async def _save_answer(self, conversation_id: UUID, text: str, *, no_sufficient_sources: bool) -> Message:
        async with self._scope() as session:
            return await self._conversations(session).add_message(
                company_id=self._user.company_id,
                conversation_id=conversation_id,
                sender="assistant",
                content=text,
                confidence=None,
                no_sufficient_sources=no_sufficient_sources,
                needs_admin_review=False,
            )

    @staticmethod
    def _response(conversation_id: UUID, message: Message, citations: list[Citation]) -> ChatResponse:
        return ChatResponse(
            conversation_id=conversation_id,
            assistant_message=AssistantMessage(
                id=message.id,
                text=message.content,
                confidence=message.confidence,
                citations=citations,
            ),
            flags=TurnFlags(
                needs_admin_review=bool(message.needs_admin_review),
                no_sufficient_sources=bool(message.no_sufficient_sources),
            ),
        )

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------

    async def submit_feedback(self, request: FeedbackRequest) -> AssistantFeedback:
        try:
            async with self._scope() as session:
                feedback = await self._conversations(session).add_feedback(
                    company_id=self._user.company_id,
                    message_id=request.message_id,
                    user_id=self._user.user_id,
                    rating=request.rating.value,
                    comment=request.comment,
                )
        except IntegrityError as exc:
            # FK violation: message does not exist (or is not visible)
            raise NotFoundError(
                f"Message {request.message_id} not found",
                {"message_id": str(request.message_id)},
            ) from exc

        logger.info(
            "Feedback recorded | tenant=%s message=%s rating=%s",
            self._user.company_id, request.message_id, request.rating.value,
        )
        return feedback
