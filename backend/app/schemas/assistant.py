"""
Assistant — Pydantic Request/Response Schemas

POST /api/v1/assistant/chat
    request:  {conversation_id?, message, context?}
    response: {conversation_id, assistant_message{id, text, confidence,
               citations[]}, flags{needs_admin_review, no_sufficient_sources}}

POST /api/v1/assistant/feedback
    request:  {message_id, rating: "up" | "down", comment?}
    response: {feedback{...}}
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

MAX_MESSAGE_CHARS  = 10_000
MAX_COMMENT_CHARS  = 2_000
EXCERPT_CHARS      = 240


class ChatRequest(BaseModel):
    conversation_id: Optional[UUID] = None
    message:         str            = Field(min_length=1, max_length=MAX_MESSAGE_CHARS)
    # Client-side context (current page etc.); accepted, not used for retrieval
    context:         Optional[dict[str, Any]] = None


class Citation(BaseModel):
    document_id: UUID
    chunk_id:    UUID
    title:       str
    similarity:  float
    excerpt:     str


class AssistantMessage(BaseModel):
    id:         UUID
    text:       str
    confidence: Optional[float] = None
    citations:  list[Citation]  = Field(default_factory=list)


class TurnFlags(BaseModel):
    needs_admin_review:    bool = False
    no_sufficient_sources: bool


class ChatResponse(BaseModel):
    conversation_id:   UUID
    assistant_message: AssistantMessage
    flags:             TurnFlags


class Rating(str, Enum):
    UP   = "up"
    DOWN = "down"


class FeedbackRequest(BaseModel):
    message_id: UUID
    rating:     Rating
    comment:    Optional[str] = Field(None, max_length=MAX_COMMENT_CHARS)


class FeedbackResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id:         UUID
    company_id: UUID
    message_id: UUID
    user_id:    UUID
    rating:     Rating
    comment:    Optional[str] = None
    created_at: Optional[datetime] = None


class FeedbackEnvelope(BaseModel):
    feedback: FeedbackResponse
