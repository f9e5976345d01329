"""字段权限管理接口。"""

from uuid import UUID

from fastapi import APIRouter, Depends, Path, Query, Request, status
from sqlalchemy.orm import Session

from base_authz.db.session import get_db
from base_authz.dependencies import get_pipeline, require_permission_manage, require_permission_read
from base_authz.pipeline import AccessContext, RequestPipeline
from base_authz.schemas.common import ADMIN_ERROR_RESPONSES, SuccessResponse
from base_authz.schemas.permission import FieldPermissionUpdateRequest
from base_authz.schemas.responses import FieldPermissionData, MutationData
from base_authz.services.audit import audit_log
from base_authz.services.roles import get_role_or_404
from base_authz.services.rules import (
    list_field_permissions,
    reset_field_permissions,
    serialize_field_permission,
    upsert_field_permissions,
)
from base_authz.utils.response import mutation_result, success

router = APIRouter(prefix="/roles/{role_id}/field-permissions", tags=["field-permissions"])


def _field_snapshot(db: Session, role_id: UUID, resource: str) -> dict[str, dict[str, bool]]:
    return {
        perm.field: {"can_read": perm.can_read, "can_write": perm.can_write}
        for perm in list_field_permissions(db, role_id, resource=resource)
    }


@router.get(
    "",
    summary="查询角色字段权限",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[list[FieldPermissionData]],
    responses=ADMIN_ERROR_RESPONSES,
)
def get_field_permissions(
    request: Request,
    role_id: UUID = Path(..., description="角色 ID。"),
    resource: str | None = Query(default=None, description="按资源过滤。"),
    _: AccessContext = Depends(require_permission_read),
    db: Session = Depends(get_db),
):
    get_role_or_404(db, role_id)
    perms = list_field_permissions(db, role_id, resource=resource)
    return success(request, [serialize_field_permission(perm) for perm in perms])


@router.put(
    "",
    summary="设置角色字段权限",
    description="按字段覆盖写入；不可读字段自动设为不可写。未列出的字段保持原配置。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[MutationData],
    responses=ADMIN_ERROR_RESPONSES,
)
def put_field_permissions(
    payload: FieldPermissionUpdateRequest,
    request: Request,
    role_id: UUID = Path(..., description="角色 ID。"),
    ctx: AccessContext = Depends(require_permission_manage),
    db: Session = Depends(get_db),
    pipeline: RequestPipeline = Depends(get_pipeline),
):
    get_role_or_404(db, role_id)
    before = _field_snapshot(db, role_id, payload.resource)
    changed = upsert_field_permissions(db, role_id, payload.resource, payload.fields)
    audit_log(
        db,
        request,
        ctx,
        action="field_permission.update",
        resource_type="field_permission",
        resource_id=f"{role_id}:{payload.resource}",
        before=before,
        after=_field_snapshot(db, role_id, payload.resource),
    )
    db.commit()
    pipeline.registry.reload()
    return success(request, mutation_result(len(changed)))


@router.delete(
    "/{resource}",
    summary="重置角色字段权限",
    description="删除角色在该资源上的全部字段权限，恢复为全部可读写。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[MutationData],
    responses=ADMIN_ERROR_RESPONSES,
)
def delete_field_permissions(
    request: Request,
    role_id: UUID = Path(..., description="角色 ID。"),
    resource: str = Path(..., description="资源标识。"),
    ctx: AccessContext = Depends(require_permission_manage),
    db: Session = Depends(get_db),
    pipeline: RequestPipeline = Depends(get_pipeline),
):
    get_role_or_404(db, role_id)
    before = _field_snapshot(db, role_id, resource)
    removed = reset_field_permissions(db, role_id, resource)
    audit_log(
        db,
        request,
        ctx,
        action="field_permission.reset",
        resource_type="field_permission",
        resource_id=f"{role_id}:{resource}",
        before=before,
    )
    db.commit()
    pipeline.registry.reload()
    return success(request, mutation_result(removed))
