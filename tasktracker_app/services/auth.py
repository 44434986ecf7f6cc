"""Registration, login and token verification."""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from .. import models, schemas
from ..errors import AuthenticationError
from ..tokens import TokenService
from .users import UserService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """Who is making the request. Attached to ``request.state.identity``."""
    id: int
    email: str
    name: Optional[str] = None

    @classmethod
    def from_user(cls, user: models.User) -> "Identity":
        return cls(id=user.id, email=user.email, name=user.name)


@dataclass(frozen=True)
class AuthResult:
    user: models.User
    token: str


class AuthService:
    def __init__(self, users: UserService, tokens: TokenService) -> None:
        self.users = users
        self.tokens = tokens

    def register(self, db: Session, data: schemas.UserRegister) -> AuthResult:
        user = self.users.create(db, data)
        return AuthResult(user=user, token=self.tokens.issue(user))

    def login(self, db: Session, data: schemas.UserLogin) -> AuthResult:
        # unknown email and wrong password are indistinguishable to the caller
        user = self.users.authenticate(db, data.email, data.password)
        if user is None:
            logger.info("failed login attempt")
            raise AuthenticationError("Invalid credentials")
        return AuthResult(user=user, token=self.tokens.issue(user))

    def verify_token(self, db: Session, token: str) -> Identity:
        """Verify ``token`` and resolve the identity it names.

        Token problems propagate as InvalidTokenError / TokenExpiredError; a
        token for a user that no longer exists is an AuthenticationError.
        """
        claims = self.tokens.verify(token)
        user = self.users.get_by_id(db, claims.user_id)
        if user is None:
            raise AuthenticationError("User not found")
        return Identity.from_user(user)
