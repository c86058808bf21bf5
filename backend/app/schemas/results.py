"""
Tagged parse results for boundary validation.

Queue payloads and provider responses are untrusted input.  Instead of
letting pydantic raise deep inside a pipeline, callers parse first and
branch on the outcome before any side effect happens:

    result = parse_model(IngestJobPayload, raw)
    if isinstance(result, Rejected):
        ...               # nothing has been touched yet
    payload = result.value
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass(frozen=True)
class Parsed(Generic[ModelT]):
    value: ModelT
    ok: bool = field(default=True, init=False)


@dataclass(frozen=True)
class Rejected:
    errors: list[dict[str, Any]]
    ok: bool = field(default=False, init=False)

    def summary(self) -> str:
        parts = []
        for err in self.errors:
            loc = ".".join(str(p) for p in err.get("loc", ())) or "<root>"
            parts.append(f"{loc}: {err.get('msg', 'invalid')}")
        return "; ".join(parts)


ParseResult = Union[Parsed[ModelT], Rejected]


def parse_model(
    model_cls: type[ModelT],
    data: Any,
    *,
    from_attributes: bool = False,
) -> ParseResult:
    try:
        value = model_cls.model_validate(data, from_attributes=from_attributes)
    except PydanticValidationError as exc:
        return Rejected(
            errors=[
                {"loc": list(e["loc"]), "msg": e["msg"], "type": e["type"]}
                for e in exc.errors()
            ]
        )
    return Parsed(value=value)
