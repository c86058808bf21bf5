"""
Conversation, Message & Feedback Repository

Every insert uses RETURNING; an insert that comes back empty (e.g. filtered
by an RLS WITH CHECK policy) raises PersistenceError instead of being
defaulted.
"""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from sqlalchemy import insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import PersistenceError
from app.models.conversations import AssistantFeedback, Conversation, Message


class ConversationRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_conversation(self, conversation_id: UUID) -> Conversation | None:
        return await self._session.scalar(
            select(Conversation).where(Conversation.id == conversation_id)
        )

    async def create_conversation(
        self,
        *,
        company_id: UUID,
        created_by: UUID,
        title: Optional[str] = None,
    ) -> Conversation:
        conversation = await self._session.scalar(
            insert(Conversation)
            .values(company_id=company_id, created_by=created_by, title=title)
            .returning(Conversation)
        )
        if conversation is None:
            raise PersistenceError("Conversation insert returned no row")
        return conversation

    async def add_message(
        self,
        *,
        company_id: UUID,
        conversation_id: UUID,
        sender: str,
        content: str,
        no_sufficient_sources: bool,
        confidence: Optional[float] = None,
        needs_admin_review: bool = False,
    ) -> Message:
        message = await self._session.scalar(
            insert(Message)
            .values(
                company_id=company_id,
                conversation_id=conversation_id,
                sender=sender,
                content=content,
                confidence=confidence,
                no_sufficient_sources=no_sufficient_sources,
                needs_admin_review=needs_admin_review,
            )
            .returning(Message)
        )
        if message is None:
            raise PersistenceError(
                "Message insert returned no row",
                {"conversation_id": str(conversation_id), "sender": sender},
            )
        return message

    async def add_feedback(
        self,
        *,
        company_id: UUID,
        message_id: UUID,
        user_id: UUID,
        rating: str,
        comment: Optional[str],
    ) -> AssistantFeedback:
        feedback = await self._session.scalar(
            insert(AssistantFeedback)
            .values(
                company_id=company_id,
                message_id=message_id,
                user_id=user_id,
                rating=rating,
                comment=comment,
            )
            .returning(AssistantFeedback)
        )
        if feedback is None:
            raise PersistenceError(
                "Feedback insert returned no row",
                {"message_id": str(message_id)},
            )
        return feedback
