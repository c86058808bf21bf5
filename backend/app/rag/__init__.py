"""
RAG package — retrieval for the assistant.

Answer synthesis lives in app.llm.completion; orchestration of a whole chat
turn lives in app.services.assistant.
"""

from app.rag.retriever import DEFAULT_TOP_K, RetrievalIndex

__all__ = ["DEFAULT_TOP_K", "RetrievalIndex"]
