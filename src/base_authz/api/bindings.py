"""用户角色分配管理接口。"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Request, status
from sqlalchemy.orm import Session

from base_authz.db.session import get_db
from base_authz.dependencies import get_pipeline, require_permission_manage, require_permission_read
from base_authz.models.role import Role, UserRoleBinding
from base_authz.pipeline import AccessContext, RequestPipeline
from base_authz.schemas.common import ADMIN_ERROR_RESPONSES, SuccessResponse
from base_authz.schemas.permission import BindingCreateRequest
from base_authz.schemas.responses import BindingData, MutationData
from base_authz.services.audit import audit_log
from base_authz.services.roles import list_bindings
from base_authz.utils.response import mutation_result, success

router = APIRouter(prefix="/bindings", tags=["bindings"])


@router.get(
    "",
    summary="查询用户角色分配",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[list[BindingData]],
    responses=ADMIN_ERROR_RESPONSES,
)
def get_bindings(
    request: Request,
    user_id: str | None = Query(default=None, description="按用户过滤。"),
    domain: str | None = Query(default=None, description="按基地过滤，`*` 为全局分配。"),
    include_inactive: bool = Query(default=False, description="是否包含已停用的历史分配。"),
    _: AccessContext = Depends(require_permission_read),
    db: Session = Depends(get_db),
):
    return success(request, list_bindings(db, user_id=user_id, domain=domain, include_inactive=include_inactive))


@router.post(
    "",
    summary="分配角色",
    description="同一用户、角色、基地至多一条有效分配，重复分配返回 affected=0。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[MutationData],
    responses=ADMIN_ERROR_RESPONSES,
)
def post_binding(
    payload: BindingCreateRequest,
    request: Request,
    ctx: AccessContext = Depends(require_permission_manage),
    db: Session = Depends(get_db),
    pipeline: RequestPipeline = Depends(get_pipeline),
):
    added = pipeline.enforcer.add_role_for_user(
        payload.user_id,
        payload.role,
        payload.domain,
        assigned_by=ctx.user_id,
    )
    if added:
        audit_log(
            db,
            request,
            ctx,
            action="binding.add",
            resource_type="user_role_binding",
            resource_id=f"{payload.user_id}:{payload.role}:{payload.domain}",
            after=payload.model_dump(),
            domain=payload.domain,
        )
        db.commit()
    return success(request, mutation_result(int(added)))


@router.delete(
    "/{binding_id}",
    summary="移除角色分配",
    description="软删除：仅停用分配，保留历史记录。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[MutationData],
    responses=ADMIN_ERROR_RESPONSES,
)
def delete_binding(
    request: Request,
    binding_id: UUID = Path(..., description="分配 ID。"),
    ctx: AccessContext = Depends(require_permission_manage),
    db: Session = Depends(get_db),
    pipeline: RequestPipeline = Depends(get_pipeline),
):
    binding = db.get(UserRoleBinding, binding_id)
    role = db.get(Role, binding.role_id) if binding is not None else None
    if binding is None or role is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "code": "BINDING_NOT_FOUND",
                "message": "角色分配不存在。",
                "details": {"binding_id": str(binding_id)},
            },
        )
    if not binding.is_active:
        return success(request, mutation_result(0, id=str(binding_id)))

    before = {"user_id": binding.user_id, "role": role.name, "domain": binding.domain}
    removed = pipeline.enforcer.remove_role_for_user(binding.user_id, role.name, binding.domain)
    db.expire(binding)
    audit_log(
        db,
        request,
        ctx,
        action="binding.remove",
        resource_type="user_role_binding",
        resource_id=str(binding_id),
        before=before,
        after={"is_active": False},
        domain=before["domain"],
    )
    db.commit()
    return success(request, mutation_result(removed, id=str(binding_id)))
