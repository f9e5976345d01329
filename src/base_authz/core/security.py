"""认证解析与令牌校验工具。

令牌签发不在本服务职责内，这里只负责把 Bearer 令牌解析为 Identity。
"""

from dataclasses import dataclass, field
from functools import lru_cache
import re
from typing import Any, Protocol

import jwt
from jwt import InvalidTokenError, PyJWKClient

from base_authz.core.config import Settings, get_settings
from base_authz.errors import AuthenticationRequired

PLACEHOLDER_DETAILS = {
    "reason": "authorization_placeholder_not_resolved",
    "suggestion": "请先调用登录接口获取 access_token，再在请求头中传入 Bearer 真实令牌。",
}


@dataclass(frozen=True)
class Identity:
    """认证后的调用方身份。"""

    # 外部用户标识（sub）。
    user_id: str
    # 账号是否启用，停用账号视同未认证。
    is_active: bool = True
    # 令牌中直接携带的角色名，仅供参考，实际角色以分配关系为准。
    roles: tuple[str, ...] = ()
    # 令牌中携带的默认基地。
    base_id: str | None = None
    claims: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


class Authenticator(Protocol):
    """认证协作方：从 Authorization 头解析身份。"""

    def authenticate(self, authorization: str | None) -> Identity: ...


@lru_cache
def _get_jwks_client(jwks_url: str) -> PyJWKClient:
    """缓存密钥集合客户端，减少重复网络开销。"""
    return PyJWKClient(jwks_url)


def decode_jwt(token: str, settings: Settings | None = None) -> dict[str, Any]:
    """按配置解码并校验令牌。"""
    settings = settings or get_settings()
    options = {"verify_signature": True, "verify_aud": bool(settings.auth_jwt_audience)}

    try:
        if settings.auth_jwks_url:
            # 生产建议使用 JWKS，支持密钥轮换。
            key = _get_jwks_client(settings.auth_jwks_url).get_signing_key_from_jwt(token).key
        else:
            key = settings.auth_jwt_secret
        return jwt.decode(
            token,
            key=key,
            algorithms=settings.auth_algorithms,
            issuer=settings.auth_jwt_issuer,
            audience=settings.auth_jwt_audience,
            leeway=settings.auth_jwt_leeway_seconds,
            options=options,
        )
    except InvalidTokenError as exc:
        raise AuthenticationRequired(details={"reason": "invalid_token"}) from exc


def _is_placeholder_token(token: str) -> bool:
    return ("{{" in token and "}}" in token) or ("${" in token and "}" in token)


def extract_bearer_token(authorization: str | None) -> str:
    """从 Authorization 头中提取 Bearer token，兼容重复头被逗号拼接的场景。"""
    if not authorization:
        raise AuthenticationRequired(details={"reason": "missing_authorization"})
    tokens = re.findall(r"Bearer\s+([^,\s]+)", authorization, flags=re.IGNORECASE)
    if not tokens:
        raise AuthenticationRequired(details={"reason": "missing_bearer_token"})
    placeholder_seen = False
    for candidate in reversed(tokens):
        token = candidate.strip()
        if not token:
            continue
        if _is_placeholder_token(token):
            placeholder_seen = True
            continue
        return token
    if placeholder_seen:
        raise AuthenticationRequired(
            "认证失败：Authorization 仍为变量占位符，未替换为真实访问令牌。",
            details=PLACEHOLDER_DETAILS,
        )
    raise AuthenticationRequired(details={"reason": "missing_bearer_token"})


def _claim_roles(claims: dict[str, Any]) -> tuple[str, ...]:
    raw = claims.get("roles")
    if isinstance(raw, str):
        raw = raw.split(",")
    if not isinstance(raw, (list, tuple)):
        return ()
    return tuple(str(item).strip() for item in raw if str(item).strip())


class JwtAuthenticator:
    """基于 PyJWT 的默认认证实现。"""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings

    def authenticate(self, authorization: str | None) -> Identity:
        token = extract_bearer_token(authorization)
        claims = decode_jwt(token, self._settings)

        subject = str(claims.get("sub") or "").strip()
        if not subject:
            raise AuthenticationRequired(details={"reason": "missing_subject"})
        if claims.get("active", True) is False:
            raise AuthenticationRequired("账号已停用。", details={"reason": "inactive_user"})

        base_id = claims.get("base_id")
        return Identity(
            user_id=subject,
            is_active=True,
            roles=_claim_roles(claims),
            base_id=str(base_id) if base_id not in (None, "") else None,
            claims=claims,
        )
