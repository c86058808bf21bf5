"""
Assistant API Router

  POST /api/v1/assistant/chat       one grounded chat turn   (any role)
  POST /api/v1/assistant/feedback   thumbs up/down + comment (any role)

Retrieval is scoped by RLS to the caller's company and role; see
app.services.assistant for the turn protocol.
"""

from __future__ import annotations

from fastapi import APIRouter

from app.auth.dependencies import Assistant
from app.schemas.assistant import (
    ChatRequest,
    ChatResponse,
    FeedbackEnvelope,
    FeedbackRequest,
    FeedbackResponse,
)
from app.schemas.documents import ErrorResponse

router = APIRouter(
    prefix="/assistant",
    tags=["Assistant"],
)


@router.post(
    "/chat",
    response_model=ChatResponse,
    summary="Ask a question against company documents",
    responses={
        404: {"model": ErrorResponse, "description": "Conversation not found"},
        502: {"model": ErrorResponse, "description": "LLM / embedding provider error"},
    },
)
async def chat(body: ChatRequest, service: Assistant) -> ChatResponse:
    return await service.chat(body)


@router.post(
    "/feedback",
    response_model=FeedbackEnvelope,
    summary="Rate an assistant answer",
    responses={404: {"model": ErrorResponse, "description": "Message not found"}},
)
async def feedback(body: FeedbackRequest, service: Assistant) -> FeedbackEnvelope:
    row = await service.submit_feedback(body)
    return FeedbackEnvelope(feedback=FeedbackResponse.model_validate(row))
