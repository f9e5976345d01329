"""角色管理接口。"""

from uuid import UUID

from fastapi import APIRouter, Depends, Path, Request, status
from sqlalchemy.orm import Session

from base_authz.db.session import get_db
from base_authz.dependencies import get_pipeline, require_permission_manage, require_permission_read
from base_authz.pipeline import AccessContext, RequestPipeline
from base_authz.schemas.common import ADMIN_ERROR_RESPONSES, SuccessResponse
from base_authz.schemas.permission import RoleCreateRequest, RoleUpdateRequest
from base_authz.schemas.responses import MutationData, RoleData, RoleDetailData
from base_authz.services.audit import audit_log
from base_authz.services.roles import create_role, delete_role, get_role_or_404, list_roles, serialize_role, update_role
from base_authz.utils.response import mutation_result, success

router = APIRouter(prefix="/roles", tags=["roles"])


@router.get(
    "",
    summary="查询角色列表",
    description="按权限级别升序返回全部角色。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[list[RoleData]],
    responses=ADMIN_ERROR_RESPONSES,
)
def get_roles(
    request: Request,
    _: AccessContext = Depends(require_permission_read),
    db: Session = Depends(get_db),
):
    return success(request, [serialize_role(role) for role in list_roles(db)])


@router.get(
    "/{role_id}",
    summary="查询角色详情",
    description="返回角色信息及其在内存策略图中生效的策略与有效分配。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[RoleDetailData],
    responses=ADMIN_ERROR_RESPONSES,
)
def get_role_detail(
    request: Request,
    role_id: UUID = Path(..., description="角色 ID。"),
    _: AccessContext = Depends(require_permission_read),
    db: Session = Depends(get_db),
    pipeline: RequestPipeline = Depends(get_pipeline),
):
    role = get_role_or_404(db, role_id)
    enforcer = pipeline.enforcer
    data = serialize_role(role)
    data["policies"] = [
        {"domain": domain, "resource": resource, "action": action}
        for _name, domain, resource, action in enforcer.get_role_policies(role.name)
    ]
    data["bindings"] = [
        {"user_id": user, "domain": domain}
        for user, role_name, domain in enforcer.get_all_groupings()
        if role_name == role.name
    ]
    return success(request, data)


@router.post(
    "",
    summary="创建角色",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[MutationData],
    responses={**ADMIN_ERROR_RESPONSES, 409: ADMIN_ERROR_RESPONSES[422]},
)
def post_role(
    payload: RoleCreateRequest,
    request: Request,
    ctx: AccessContext = Depends(require_permission_manage),
    db: Session = Depends(get_db),
    pipeline: RequestPipeline = Depends(get_pipeline),
):
    """创建角色后刷新角色级别配置。"""
    role = create_role(db, name=payload.name, level=payload.level, description=payload.description)
    audit_log(
        db,
        request,
        ctx,
        action="role.create",
        resource_type="role",
        resource_id=str(role.id),
        after=serialize_role(role),
    )
    db.commit()
    pipeline.registry.reload()
    return success(request, mutation_result(1, id=str(role.id)))


@router.put(
    "/{role_id}",
    summary="更新角色",
    description="支持修改名称、级别与说明；改名会同步策略元组并重载策略。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[MutationData],
    responses={**ADMIN_ERROR_RESPONSES, 409: ADMIN_ERROR_RESPONSES[422]},
)
def put_role(
    payload: RoleUpdateRequest,
    request: Request,
    role_id: UUID = Path(..., description="角色 ID。"),
    ctx: AccessContext = Depends(require_permission_manage),
    db: Session = Depends(get_db),
    pipeline: RequestPipeline = Depends(get_pipeline),
):
    role = get_role_or_404(db, role_id)
    before = serialize_role(role)
    renamed = update_role(
        db,
        pipeline.enforcer.store,
        role,
        name=payload.name,
        level=payload.level,
        description=payload.description,
    )
    audit_log(
        db,
        request,
        ctx,
        action="role.update",
        resource_type="role",
        resource_id=str(role.id),
        before=before,
        after=serialize_role(role) | {"renamed_policies": renamed},
    )
    db.commit()
    # 改名影响分配元组中的角色名称，整体重载。
    pipeline.reload()
    return success(request, mutation_result(1 + renamed, id=str(role.id)))


@router.delete(
    "/{role_id}",
    summary="删除角色",
    description="同时删除角色的策略、数据权限与字段权限，并停用全部用户分配。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[MutationData],
    responses={**ADMIN_ERROR_RESPONSES, 409: ADMIN_ERROR_RESPONSES[422]},
)
def remove_role(
    request: Request,
    role_id: UUID = Path(..., description="角色 ID。"),
    ctx: AccessContext = Depends(require_permission_manage),
    db: Session = Depends(get_db),
    pipeline: RequestPipeline = Depends(get_pipeline),
):
    role = get_role_or_404(db, role_id)
    before = serialize_role(role)
    affected = delete_role(db, pipeline.enforcer.store, role)
    audit_log(
        db,
        request,
        ctx,
        action="role.delete",
        resource_type="role",
        resource_id=str(role_id),
        before=before,
        after={"affected": affected},
    )
    db.commit()
    # 策略与分配已在同一事务内删除，整体重载执行器与范围配置。
    pipeline.reload()
    return success(request, mutation_result(affected, id=str(role_id)))
