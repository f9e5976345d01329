import time

import jwt
import pytest

from base_authz.core.config import get_settings
from base_authz.core.security import PLACEHOLDER_DETAILS, JwtAuthenticator, decode_jwt, extract_bearer_token
from base_authz.errors import AuthenticationRequired


def _token(claims: dict, secret: str | None = None) -> str:
    return jwt.encode(claims, secret or get_settings().auth_jwt_secret, algorithm="HS256")


def test_authenticate_parses_identity():
    token = _token({"sub": "user-1", "base_id": 42, "roles": ["ANCHOR", " CLERK "]})

    identity = JwtAuthenticator().authenticate(f"Bearer {token}")

    assert identity.user_id == "user-1"
    assert identity.base_id == "42"
    assert identity.roles == ("ANCHOR", "CLERK")
    assert identity.claims["sub"] == "user-1"


def test_authenticate_without_base_claim():
    identity = JwtAuthenticator().authenticate(f"Bearer {_token({'sub': 'user-2', 'roles': 'A,B'})}")
    assert identity.base_id is None
    assert identity.roles == ("A", "B")


def test_authenticate_rejects_inactive_user():
    with pytest.raises(AuthenticationRequired) as exc:
        JwtAuthenticator().authenticate(f"Bearer {_token({'sub': 'user-1', 'active': False})}")
    assert exc.value.details == {"reason": "inactive_user"}


def test_authenticate_requires_subject():
    with pytest.raises(AuthenticationRequired) as exc:
        JwtAuthenticator().authenticate(f"Bearer {_token({'name': 'nobody'})}")
    assert exc.value.details == {"reason": "missing_subject"}


def test_decode_rejects_bad_signature_and_expired_token():
    with pytest.raises(AuthenticationRequired) as exc:
        decode_jwt(_token({"sub": "user-1"}, secret="another-secret-key-also-32-bytes-long"))
    assert exc.value.details == {"reason": "invalid_token"}

    expired = _token({"sub": "user-1", "exp": int(time.time()) - 3600})
    with pytest.raises(AuthenticationRequired):
        decode_jwt(expired)


def test_extract_prefers_real_token_when_placeholder_exists():
    token = _token({"sub": "user-3"})
    assert extract_bearer_token(f"Bearer {{{{bearerToken}}}}, Bearer {token}") == token
    assert extract_bearer_token(f"Bearer {token}, Bearer ${{TOKEN}}") == token


def test_extract_rejects_placeholder_and_missing_header():
    with pytest.raises(AuthenticationRequired) as exc:
        extract_bearer_token("Bearer {{bearerToken}}")
    assert exc.value.details == PLACEHOLDER_DETAILS
    assert "占位符" in exc.value.message

    with pytest.raises(AuthenticationRequired) as exc:
        extract_bearer_token(None)
    assert exc.value.details == {"reason": "missing_authorization"}

    with pytest.raises(AuthenticationRequired) as exc:
        extract_bearer_token("Basic dXNlcjpwYXNz")
    assert exc.value.details == {"reason": "missing_bearer_token"}
