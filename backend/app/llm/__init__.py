"""
LLM Package

A single grounded-answer client over a LangChain chat model:

    from app.llm import CompletionClient, Source, build_chat_model

    client = CompletionClient(build_chat_model(get_settings()))
    text = await client.answer(question, [Source(title, content), ...])
"""

from app.llm.completion import CompletionClient, Source, build_chat_model, format_sources

__all__ = [
    "CompletionClient",
    "Source",
    "build_chat_model",
    "format_sources",
]
