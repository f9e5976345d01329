"""FastAPI 鉴权依赖。

路由通过 `require_access(resource, action)` 声明所需权限，
返回前通过 `respond(request, ctx, data)` 统一应用字段掩码与响应包装。
"""

from typing import Any

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from base_authz.core.config import get_settings
from base_authz.core.security import Identity
from base_authz.db.session import get_db
from base_authz.pipeline import AccessContext, RequestPipeline
from base_authz.services.data_scope import SqlScopeLookups
from base_authz.services.enforcer import MANAGE_ACTION
from base_authz.utils.response import success

bearer_scheme = HTTPBearer(auto_error=False)


def get_pipeline(request: Request) -> RequestPipeline:
    """返回启动流程挂载在应用上的流水线实例。"""
    return request.app.state.pipeline


def _authorization_header(request: Request, credentials: HTTPAuthorizationCredentials | None) -> str | None:
    if credentials is not None and credentials.credentials:
        return f"{credentials.scheme} {credentials.credentials}"
    # 保留原始头，交给认证方识别占位符等情况。
    return request.headers.get("Authorization")


def get_identity(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    pipeline: RequestPipeline = Depends(get_pipeline),
) -> Identity:
    """仅做认证，不做功能权限校验。"""
    return pipeline.authenticate(_authorization_header(request, credentials))


def require_access(resource: str, action: str, *, tenant_scoped: bool = True, allow_manage: bool = True):
    """声明路由所需权限，返回注入后的 AccessContext。"""

    def _dep(
        request: Request,
        credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
        db: Session = Depends(get_db),
        pipeline: RequestPipeline = Depends(get_pipeline),
    ) -> AccessContext:
        settings = get_settings()
        ctx = pipeline.authorize(
            _authorization_header(request, credentials),
            request.headers.get(settings.tenant_header),
            resource,
            action,
            tenant_scoped=tenant_scoped,
            allow_manage=allow_manage,
            lookups=SqlScopeLookups(db, settings),
        )
        request.state.access = ctx
        return ctx

    return _dep


def respond(request: Request, ctx: AccessContext, data: Any, meta: dict[str, Any] | None = None) -> dict[str, Any]:
    """应用字段掩码后构造统一成功响应。"""
    return success(request, ctx.filter(data), meta)


# 权限配置管理接口统一按系统级 `permission` 资源校验。
PERMISSION_RESOURCE = "permission"
require_permission_read = require_access(PERMISSION_RESOURCE, "read", tenant_scoped=False)
require_permission_manage = require_access(PERMISSION_RESOURCE, MANAGE_ACTION, tenant_scoped=False)
