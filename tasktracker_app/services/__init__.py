"""Business services. Each one is built once by the application factory."""

from dataclasses import dataclass

from ..security import PasswordHasher
from ..settings import Settings
from ..tokens import TokenService
from .auth import AuthResult, AuthService, Identity
from .queries import TaskPage, TaskQueryEngine
from .tasks import TaskService
from .users import UserService


@dataclass(frozen=True)
class Services:
    tokens: TokenService
    passwords: PasswordHasher
    users: UserService
    auth: AuthService
    queries: TaskQueryEngine
    tasks: TaskService


def build_services(settings: Settings) -> Services:
    tokens = TokenService.from_settings(settings)
    passwords = PasswordHasher(rounds=settings.BCRYPT_ROUNDS)
    users = UserService(passwords)
    queries = TaskQueryEngine(
        default_limit=settings.DEFAULT_PAGE_SIZE,
        max_limit=settings.MAX_PAGE_SIZE,
    )
    return Services(
        tokens=tokens,
        passwords=passwords,
        users=users,
        auth=AuthService(users, tokens),
        queries=queries,
        tasks=TaskService(queries),
    )


__all__ = [
    "AuthResult",
    "AuthService",
    "Identity",
    "Services",
    "TaskPage",
    "TaskQueryEngine",
    "TaskService",
    "UserService",
    "build_services",
]
