"""JWT issuance and verification.

Tokens are signed with a shared secret and carry the claims
``sub`` (user id as a string), ``email``, ``iat``, ``exp``, ``iss`` and ``aud``.
Issuer and audience are checked on every verification.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from jose import ExpiredSignatureError, JWTError, jwt

from .errors import InvalidTokenError, TokenExpiredError


@dataclass(frozen=True)
class TokenClaims:
    user_id: int
    email: str
    issued_at: datetime
    expires_at: datetime
    issuer: str
    audience: str


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class TokenService:
    def __init__(
        self,
        secret_key: str,
        *,
        algorithm: str = "HS256",
        lifetime: timedelta = timedelta(days=7),
        issuer: str,
        audience: str,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._secret_key = secret_key
        self._algorithm = algorithm
        self._lifetime = lifetime
        self._issuer = issuer
        self._audience = audience
        self._clock = clock

    @classmethod
    def from_settings(cls, settings, clock: Optional[Callable[[], datetime]] = None) -> "TokenService":
        return cls(
            settings.SECRET_KEY,
            algorithm=settings.ALGORITHM,
            lifetime=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
            issuer=settings.TOKEN_ISSUER,
            audience=settings.TOKEN_AUDIENCE,
            clock=clock or _utcnow,
        )

    def issue(self, user) -> str:
        """Create a signed access token for ``user`` (anything with ``id`` and ``email``)."""
        now = self._clock()
        claims = {
            "sub": str(user.id),
            "email": user.email,
            "iat": now,
            "exp": now + self._lifetime,
            "iss": self._issuer,
            "aud": self._audience,
        }
        return jwt.encode(claims, self._secret_key, algorithm=self._algorithm)

    def verify(self, token: str) -> TokenClaims:
        """Decode ``token`` and return its claims.

        Raises TokenExpiredError once ``exp`` has passed and InvalidTokenError
        for anything else that fails (signature, issuer, audience, shape).
        """
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
                audience=self._audience,
                issuer=self._issuer,
            )
        except ExpiredSignatureError as exc:
            raise TokenExpiredError() from exc
        except JWTError as exc:
            raise InvalidTokenError() from exc

        try:
            return TokenClaims(
                user_id=int(payload["sub"]),
                email=payload["email"],
                issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
                expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
                issuer=payload["iss"],
                audience=payload["aud"],
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidTokenError("Token is missing required claims") from exc
