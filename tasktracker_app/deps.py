"""FastAPI dependencies for DB sessions, authentication and query parsing.

Provides:
- get_db: request-scoped SQLAlchemy session, closed on every exit path.
- get_current_identity / get_optional_identity: bearer-token resolvers that
  attach the caller's Identity to ``request.state.identity``.
- require_roles: authorization hook (no policy yet; authenticated callers pass).
- task_query / page_query: query-string parsing through the validation gate.
"""

import logging
from typing import Iterator, Optional

from fastapi import Depends, Header, Query, Request
from sqlalchemy.orm import Session

from . import schemas
from .errors import AuthenticationError
from .services import Identity, Services
from .settings import Settings
from .validation import parse, require

logger = logging.getLogger(__name__)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_db(request: Request) -> Iterator[Session]:
    """Yield a SQLAlchemy session and ensure it is closed afterwards."""
    db = request.app.state.session_factory()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token from an ``Authorization: Bearer <token>`` header value."""
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def get_current_identity(
    request: Request,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
    authorization: Optional[str] = Header(None),
) -> Identity:
    """Require a valid token and return the caller's identity; raise 401 otherwise."""
    token = extract_bearer_token(authorization)
    if not token:
        raise AuthenticationError("Access token required")
    identity = services.auth.verify_token(db, token)
    request.state.identity = identity
    return identity


def get_optional_identity(
    request: Request,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
    authorization: Optional[str] = Header(None),
) -> Optional[Identity]:
    """Return the caller's identity if a valid token is present; otherwise None."""
    identity = None
    token = extract_bearer_token(authorization)
    if token:
        try:
            identity = services.auth.verify_token(db, token)
        except AuthenticationError as exc:
            logger.debug("ignoring bad optional token: %s", exc.code)
    request.state.identity = identity
    return identity


def require_roles(*roles: str):
    """Dependency factory for role-gated routes.

    Authentication is enforced; the role check itself is an extension point
    and currently lets every authenticated identity through.
    """

    def _authorize(identity: Identity = Depends(get_current_identity)) -> Identity:
        if roles:
            logger.debug("role policy not enforced (requested %s)", ",".join(roles))
        return identity

    return _authorize


def task_query(
    completed: Optional[str] = Query(None),
    priority: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="case-insensitive match on title or description"),
    sort_by: Optional[str] = Query(None, alias="sortBy", description="createdAt | updatedAt | dueDate | priority | title"),
    sort_order: Optional[str] = Query(None, alias="sortOrder", description="asc | desc"),
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
) -> schemas.TaskQuery:
    raw = {
        "completed": completed,
        "priority": priority,
        "search": search,
        "sortBy": sort_by,
        "sortOrder": sort_order,
        "page": page,
        "limit": limit,
    }
    payload = {k: v for k, v in raw.items() if v is not None}
    return require(parse(schemas.TaskQuery, payload), "Invalid query parameters")


def page_query(
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
) -> schemas.TaskQuery:
    payload = {k: v for k, v in {"page": page, "limit": limit}.items() if v is not None}
    return require(parse(schemas.TaskQuery, payload), "Invalid query parameters")
