"""Parse untrusted payloads into typed models.

``parse`` never raises for bad input: it returns ``Valid`` with the
normalized model or ``Invalid`` with the list of field errors. ``require``
is the fail-fast form used at the HTTP boundary.
"""

from dataclasses import dataclass, field
from typing import Any, Generic, Iterable, List, Mapping, Type, TypeVar, Union

import pydantic

from .errors import ValidationError

M = TypeVar("M", bound=pydantic.BaseModel)

# location prefixes FastAPI adds in front of the field name
_SOURCES = {"body", "query", "path", "header", "cookie"}


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str

    def as_dict(self) -> dict:
        return {"field": self.field, "message": self.message}


@dataclass(frozen=True)
class Valid(Generic[M]):
    value: M
    ok: bool = field(default=True, init=False)


@dataclass(frozen=True)
class Invalid:
    errors: List[FieldError]
    ok: bool = field(default=False, init=False)


Result = Union[Valid[M], Invalid]


def _field_name(loc: Iterable[Any]) -> str:
    parts = [str(p) for p in loc]
    if parts and parts[0] in _SOURCES:
        parts = parts[1:]
    return ".".join(parts) or "body"


def _message(error: Mapping[str, Any]) -> str:
    msg = str(error.get("msg", "Invalid value"))
    # pydantic prefixes messages raised from our own validators
    if msg.startswith("Value error, "):
        msg = msg[len("Value error, "):]
    return msg


def field_errors(errors: Iterable[Mapping[str, Any]]) -> List[FieldError]:
    """Flatten pydantic/FastAPI error dicts into FieldError entries."""
    return [FieldError(_field_name(e.get("loc", ())), _message(e)) for e in errors]


def parse(model: Type[M], payload: Any) -> Result:
    try:
        return Valid(model.model_validate(payload))
    except pydantic.ValidationError as exc:
        return Invalid(field_errors(exc.errors()))


def require(result: Result, message: str = "Validation error") -> M:
    """Return the parsed value or raise ValidationError carrying the field list."""
    if isinstance(result, Invalid):
        raise ValidationError(message, details=[e.as_dict() for e in result.errors])
    return result.value
