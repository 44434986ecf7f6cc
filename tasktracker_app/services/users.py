"""User persistence helpers used by registration, login and token checks."""

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import models, schemas
from ..errors import ConflictError
from ..security import PasswordHasher

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class UserService:
    def __init__(self, hasher: PasswordHasher) -> None:
        self.hasher = hasher

    def get_by_email(self, db: Session, email: str) -> models.User | None:
        """Return a user by normalized email or None if not found."""
        norm = normalize_email(email)
        if not norm:
            return None
        return db.query(models.User).filter(models.User.email == norm).first()

    def get_by_id(self, db: Session, user_id: int) -> models.User | None:
        return db.get(models.User, user_id)

    def exists(self, db: Session, email: str) -> bool:
        return self.get_by_email(db, email) is not None

    def create(self, db: Session, user_in: schemas.UserRegister) -> models.User:
        """Create a new user hashing the provided password.

        A duplicate email raises ConflictError, whether it is caught by the
        lookup or by the unique index when two registrations race.
        """
        email = normalize_email(user_in.email)
        if self.exists(db, email):
            raise ConflictError("User with this email already exists")

        user = models.User(
            email=email,
            password_hash=self.hasher.hash(user_in.password),
            name=user_in.name,
        )
        db.add(user)
        try:
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise ConflictError("User with this email already exists") from exc
        db.refresh(user)
        logger.info("registered user id=%s", user.id)
        return user

    def authenticate(self, db: Session, email: str, password: str) -> models.User | None:
        """Return the user when the credentials match, else None."""
        user = self.get_by_email(db, email)
        if user is None:
            self.hasher.dummy_verify()
            return None
        if not self.hasher.verify(password, user.password_hash):
            return None
        return user
