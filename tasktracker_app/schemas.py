"""Pydantic schemas for users, authentication, tasks and response envelopes.

Request models double as the validation rules for each operation:
- UserRegister / UserLogin
- TaskCreate / TaskUpdate / TaskQuery
Response models:
- UserOut / AuthOut / IdentityOut
- TaskOut / TaskStats
- PaginationMeta / Envelope / PaginatedEnvelope / ErrorEnvelope

JSON is camelCase on the wire; inputs accept camelCase or snake_case.
"""

import math
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generic, List, Literal, Optional, TypeVar

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .models import Priority

T = TypeVar("T")

_PASSWORD_RULE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ApiModel(BaseModel):
    """Base model: camelCase aliases, populate by field name too."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


def _blank_to_none(v):
    if isinstance(v, str) and not v.strip():
        return None
    return v


def parse_iso_datetime(v) -> Optional[datetime]:
    """Parse an ISO-8601 date-time string (time part required) into UTC."""
    if v is None or isinstance(v, datetime):
        parsed = v
    elif isinstance(v, str):
        s = v.strip()
        if "T" not in s and " " not in s:
            raise ValueError("Due date must be a valid ISO datetime string")
        try:
            parsed = datetime.fromisoformat(s)
        except ValueError:
            raise ValueError("Due date must be a valid ISO datetime string")
    else:
        raise ValueError("Due date must be a valid ISO datetime string")
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _normalize_priority(v):
    if isinstance(v, str):
        return v.strip().upper()
    return v


# ---------- Users / Auth ----------
class UserRegister(ApiModel):
    """Payload for registering a new user."""
    email: EmailStr
    password: str = Field(min_length=6, max_length=128)
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)

    @field_validator("email", mode="before")
    @classmethod
    def _normalize_email(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("name", mode="before")
    @classmethod
    def _blank_name(cls, v):
        return _blank_to_none(v)

    @field_validator("password")
    @classmethod
    def _password_strength(cls, v: str) -> str:
        if not _PASSWORD_RULE.match(v):
            raise ValueError(
                "Password must contain at least one lowercase letter, one uppercase letter, and one number"
            )
        return v


class UserLogin(ApiModel):
    """Credentials for logging in."""
    email: EmailStr
    password: str = Field(min_length=1)

    @field_validator("email", mode="before")
    @classmethod
    def _normalize_email(cls, v):
        return v.strip().lower() if isinstance(v, str) else v


class UserOut(ApiModel):
    """Public representation of a user."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    name: Optional[str] = None
    created_at: datetime


class AuthOut(ApiModel):
    """User plus the bearer token issued for them."""
    user: UserOut
    token: str


class IdentityOut(ApiModel):
    """Identity attached to an authenticated request."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    name: Optional[str] = None


class VerifyOut(ApiModel):
    user: IdentityOut


# ---------- Tasks ----------
class TaskCreate(ApiModel):
    """Payload for creating a task."""
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    priority: Priority = Priority.MEDIUM
    due_date: Optional[datetime] = None

    @field_validator("description", mode="before")
    @classmethod
    def _blank_description(cls, v):
        return _blank_to_none(v)

    @field_validator("priority", mode="before")
    @classmethod
    def _priority(cls, v):
        return Priority.MEDIUM if v is None else _normalize_priority(v)

    @field_validator("due_date", mode="before")
    @classmethod
    def _due_date(cls, v):
        return parse_iso_datetime(_blank_to_none(v))


class TaskUpdate(ApiModel):
    """Partial update: only the fields present in the payload are applied."""
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    completed: Optional[bool] = None
    priority: Optional[Priority] = None
    due_date: Optional[datetime] = None

    @field_validator("description", mode="before")
    @classmethod
    def _blank_description(cls, v):
        return _blank_to_none(v)

    @field_validator("priority", mode="before")
    @classmethod
    def _priority(cls, v):
        return _normalize_priority(v)

    @field_validator("due_date", mode="before")
    @classmethod
    def _due_date(cls, v):
        return parse_iso_datetime(_blank_to_none(v))

    @model_validator(mode="after")
    def _reject_nulls(self) -> "TaskUpdate":
        for name in ("title", "completed", "priority"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def changes(self) -> dict[str, Any]:
        """Fields explicitly supplied by the caller, keyed by attribute name."""
        return self.model_dump(exclude_unset=True)


class TaskOut(ApiModel):
    """Representation of a task returned by the API."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: Optional[str] = None
    completed: bool
    priority: Priority
    due_date: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @field_validator("due_date", "created_at", "updated_at")
    @classmethod
    def _as_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        # SQLite hands back naive values; everything is stored in UTC
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class SortField(str, Enum):
    CREATED_AT = "createdAt"
    UPDATED_AT = "updatedAt"
    DUE_DATE = "dueDate"
    PRIORITY = "priority"
    TITLE = "title"


_SORT_ALIASES = {
    "created_at": "createdAt",
    "updated_at": "updatedAt",
    "due_date": "dueDate",
}

SortOrder = Literal["asc", "desc"]


class TaskQuery(ApiModel):
    """Filter, sort and pagination options for listing tasks."""
    completed: Optional[bool] = None
    priority: Optional[Priority] = None
    search: Optional[str] = Field(default=None, max_length=200)
    sort_by: Optional[SortField] = None
    sort_order: Optional[SortOrder] = None
    page: int = Field(default=1, ge=1)
    # bounds are applied by the query engine, which clamps instead of rejecting
    limit: Optional[int] = None

    @field_validator("completed", "search", "limit", mode="before")
    @classmethod
    def _blank(cls, v):
        return _blank_to_none(v)

    @field_validator("priority", mode="before")
    @classmethod
    def _priority(cls, v):
        return _normalize_priority(_blank_to_none(v))

    @field_validator("sort_by", mode="before")
    @classmethod
    def _sort_alias(cls, v):
        v = _blank_to_none(v)
        if isinstance(v, str):
            return _SORT_ALIASES.get(v, v)
        return v

    @field_validator("sort_order", mode="before")
    @classmethod
    def _sort_order(cls, v):
        v = _blank_to_none(v)
        return v.lower() if isinstance(v, str) else v


class PriorityBreakdown(BaseModel):
    LOW: int = 0
    MEDIUM: int = 0
    HIGH: int = 0


class TaskStats(ApiModel):
    total: int
    completed: int
    pending: int
    overdue: int
    by_priority: PriorityBreakdown


# ---------- Pagination / envelopes ----------
class PaginationMeta(ApiModel):
    """Pagination metadata."""
    page: int
    limit: int
    total: int
    total_pages: int
    has_next_page: bool
    has_prev_page: bool

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "PaginationMeta":
        total_pages = math.ceil(total / limit)
        return cls(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next_page=page < total_pages,
            has_prev_page=page > 1,
        )


class Envelope(ApiModel, Generic[T]):
    success: bool = True
    data: Optional[T] = None
    message: Optional[str] = None
    timestamp: datetime = Field(default_factory=_now)


class PaginatedEnvelope(ApiModel, Generic[T]):
    success: bool = True
    data: List[T]
    pagination: PaginationMeta
    message: Optional[str] = None
    timestamp: datetime = Field(default_factory=_now)


class FieldErrorOut(BaseModel):
    field: str
    message: str


class ErrorEnvelope(ApiModel):
    success: bool = False
    error: str
    code: str
    details: Optional[Any] = None
    path: Optional[str] = None
    method: Optional[str] = None
    stack: Optional[str] = None
    timestamp: datetime = Field(default_factory=_now)
