"""运行时权限查询接口（供前端鉴权使用，无副作用）。"""

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from base_authz.core.config import get_settings
from base_authz.core.security import Identity
from base_authz.db.session import get_db
from base_authz.dependencies import get_identity, get_pipeline, require_permission_read
from base_authz.models.base import GLOBAL_DOMAIN
from base_authz.pipeline import AccessContext, RequestPipeline
from base_authz.schemas.common import ADMIN_ERROR_RESPONSES, SuccessResponse
from base_authz.schemas.permission import PermissionCheckRequest
from base_authz.schemas.responses import PermissionCheckData, PermissionSnapshotData
from base_authz.services.data_scope import SqlScopeLookups
from base_authz.services.enforcer import MANAGE_ACTION
from base_authz.utils.response import success

router = APIRouter(prefix="/permissions", tags=["permissions-runtime"])


@router.get(
    "/me",
    summary="查询当前用户权限快照",
    description=(
        "返回当前用户在当前基地下的有效角色与可用 (resource, action)。"
        "指定 resource 时附带数据范围谓词与字段访问范围。"
    ),
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[PermissionSnapshotData],
    responses=ADMIN_ERROR_RESPONSES,
)
def get_my_permissions(
    request: Request,
    resource: str | None = Query(default=None, description="需要附带数据范围与字段权限的资源。"),
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
    pipeline: RequestPipeline = Depends(get_pipeline),
):
    """未携带基地上下文时按全局分配计算。"""
    settings = get_settings()
    enforcer = pipeline.enforcer
    domain = pipeline.resolve_domain(identity, request.headers.get(settings.tenant_header)) or GLOBAL_DOMAIN
    roles = enforcer.effective_roles(identity.user_id, domain)

    granted = sorted(
        {
            (policy_resource, action, policy_domain)
            for role, policy_domain, policy_resource, action in enforcer.graph.policies
            if role in roles and policy_domain in (domain, GLOBAL_DOMAIN)
        }
    )
    data = {
        "user_id": identity.user_id,
        "domain": domain,
        "roles": sorted(roles),
        "domains": enforcer.get_domains_for_user(identity.user_id),
        "policies": [{"resource": res, "action": act, "domain": dom} for res, act, dom in granted],
        "resource": resource,
    }
    if resource:
        ctx = pipeline.inject(identity, domain, resource, "read", SqlScopeLookups(db, settings))
        data["predicate"] = ctx.predicate.to_dict()
        data["fields"] = ctx.fields.to_dict()
    return success(request, data)


@router.post(
    "/check",
    summary="校验指定用户权限",
    description="管理员排查用：按内存策略图校验用户在某域下是否具备 (resource, action)，含 manage 兜底。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[PermissionCheckData],
    responses=ADMIN_ERROR_RESPONSES,
)
def check_permission(
    payload: PermissionCheckRequest,
    request: Request,
    _: AccessContext = Depends(require_permission_read),
    pipeline: RequestPipeline = Depends(get_pipeline),
):
    enforcer = pipeline.enforcer
    allowed = enforcer.enforce(payload.user_id, payload.domain, payload.resource, payload.action)
    via_manage = False
    if not allowed and payload.action != MANAGE_ACTION:
        via_manage = enforcer.enforce(payload.user_id, payload.domain, payload.resource, MANAGE_ACTION)
    return success(
        request,
        {
            "user_id": payload.user_id,
            "domain": payload.domain,
            "resource": payload.resource,
            "action": payload.action,
            "allowed": allowed or via_manage,
            "via_manage": via_manage,
            "roles": sorted(enforcer.effective_roles(payload.user_id, payload.domain)),
        },
    )
