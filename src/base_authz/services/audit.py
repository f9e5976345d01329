"""权限配置变更审计。

审计记录与业务变更在同一事务内写入，调用方提交时一并落库。
"""

from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session

from base_authz.models.audit import AuditLog
from base_authz.models.base import GLOBAL_DOMAIN
from base_authz.pipeline import AccessContext


def _client_ip(request: Request) -> str | None:
    # 网关透传的第一跳地址即真实客户端。
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def _snapshot(value: dict[str, Any] | None) -> dict[str, Any] | None:
    return None if value is None else jsonable_encoder(value)


def audit_log(
    db: Session,
    request: Request,
    ctx: AccessContext,
    action: str,
    resource_type: str,
    resource_id: str,
    *,
    before: dict[str, Any] | None = None,
    after: dict[str, Any] | None = None,
    domain: str = GLOBAL_DOMAIN,
) -> AuditLog:
    """记录一次配置变更；快照中的 UUID 等值转换为 JSON 可序列化形式。"""
    entry = AuditLog(
        domain=domain,
        actor_user_id=ctx.user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        before_json=_snapshot(before),
        after_json=_snapshot(after),
        ip=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    db.add(entry)
    return entry
