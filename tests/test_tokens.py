from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from jose import jwt

from tasktracker_app.errors import InvalidTokenError, TokenExpiredError
from tasktracker_app.tokens import TokenService

SECRET = "unit-secret"


def _service(**kwargs) -> TokenService:
    opts = {"issuer": "tasktracker-api", "audience": "tasktracker-app"}
    opts.update(kwargs)
    return TokenService(SECRET, **opts)


def _user(user_id=7, email="ada@example.com"):
    return SimpleNamespace(id=user_id, email=email)


def test_issue_and_verify_round_trip():
    svc = _service()
    claims = svc.verify(svc.issue(_user()))
    assert claims.user_id == 7
    assert claims.email == "ada@example.com"
    assert claims.issuer == "tasktracker-api"
    assert claims.audience == "tasktracker-app"
    assert claims.expires_at - claims.issued_at == timedelta(days=7)


def test_subject_is_a_string_claim():
    token = _service().issue(_user(42))
    payload = jwt.get_unverified_claims(token)
    assert payload["sub"] == "42"


def test_expired_token():
    past = datetime.now(timezone.utc) - timedelta(days=30)
    stale = _service(clock=lambda: past).issue(_user())
    with pytest.raises(TokenExpiredError) as exc:
        _service().verify(stale)
    assert exc.value.code == "TOKEN_EXPIRED"
    assert exc.value.status_code == 401


def test_tampered_and_foreign_tokens_are_invalid():
    token = _service().issue(_user())
    header, payload, signature = token.split(".")
    forged = _service().issue(_user(user_id=1))
    with pytest.raises(InvalidTokenError):
        _service().verify(".".join([header, forged.split(".")[1], signature]))
    with pytest.raises(InvalidTokenError):
        TokenService("other-secret", issuer="tasktracker-api", audience="tasktracker-app").verify(token)
    with pytest.raises(InvalidTokenError):
        _service(audience="someone-else").verify(token)
    with pytest.raises(InvalidTokenError):
        _service(issuer="someone-else").verify(token)


def test_missing_claims_are_invalid():
    now = datetime.now(timezone.utc)
    token = jwt.encode(
        {"sub": "1", "iat": now, "exp": now + timedelta(hours=1), "iss": "tasktracker-api", "aud": "tasktracker-app"},
        SECRET,
        algorithm="HS256",
    )
    with pytest.raises(InvalidTokenError) as exc:
        _service().verify(token)
    assert exc.value.message == "Token is missing required claims"


def test_from_settings_uses_configured_lifetime():
    from conftest import make_settings

    svc = TokenService.from_settings(make_settings(ACCESS_TOKEN_EXPIRE_MINUTES=5))
    claims = svc.verify(svc.issue(_user()))
    assert claims.expires_at - claims.issued_at == timedelta(minutes=5)
