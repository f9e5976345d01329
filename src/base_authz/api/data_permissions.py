"""数据权限规则管理接口。"""

from uuid import UUID

from fastapi import APIRouter, Depends, Path, Query, Request, status
from sqlalchemy.orm import Session

from base_authz.db.session import get_db
from base_authz.dependencies import get_pipeline, require_permission_manage, require_permission_read
from base_authz.pipeline import AccessContext, RequestPipeline
from base_authz.schemas.common import ADMIN_ERROR_RESPONSES, SuccessResponse
from base_authz.schemas.permission import DataPermissionRuleCreateRequest, DataPermissionRuleUpdateRequest
from base_authz.schemas.responses import DataPermissionMetadata, DataPermissionRuleData, MutationData
from base_authz.services.audit import audit_log
from base_authz.services.catalog import metadata
from base_authz.services.roles import get_role_or_404
from base_authz.services.rules import (
    create_data_rule,
    get_data_rule_or_404,
    list_data_rules,
    serialize_data_rule,
    update_data_rule,
)
from base_authz.utils.response import mutation_result, success

router = APIRouter(tags=["data-permissions"])


@router.get(
    "/data-permissions/metadata",
    summary="查询数据权限配置元数据",
    description="返回可配置资源（含可过滤字段）、操作符与取值来源，静态内容，与运行时策略无关。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[DataPermissionMetadata],
    responses=ADMIN_ERROR_RESPONSES,
)
def get_metadata(
    request: Request,
    _: AccessContext = Depends(require_permission_read),
):
    return success(request, metadata())


@router.get(
    "/roles/{role_id}/data-permissions",
    summary="查询角色数据权限规则",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[list[DataPermissionRuleData]],
    responses=ADMIN_ERROR_RESPONSES,
)
def get_role_data_rules(
    request: Request,
    role_id: UUID = Path(..., description="角色 ID。"),
    resource: str | None = Query(default=None, description="按资源过滤。"),
    _: AccessContext = Depends(require_permission_read),
    db: Session = Depends(get_db),
):
    get_role_or_404(db, role_id)
    return success(request, [serialize_data_rule(rule) for rule in list_data_rules(db, role_id, resource=resource)])


@router.post(
    "/roles/{role_id}/data-permissions",
    summary="新增数据权限规则",
    description="操作符与取值来源不匹配、资源或字段不在目录中时返回 CONFIGURATION_INVALID。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[MutationData],
    responses=ADMIN_ERROR_RESPONSES,
)
def post_role_data_rule(
    payload: DataPermissionRuleCreateRequest,
    request: Request,
    role_id: UUID = Path(..., description="角色 ID。"),
    ctx: AccessContext = Depends(require_permission_manage),
    db: Session = Depends(get_db),
    pipeline: RequestPipeline = Depends(get_pipeline),
):
    get_role_or_404(db, role_id)
    rule = create_data_rule(db, role_id, **payload.model_dump())
    audit_log(
        db,
        request,
        ctx,
        action="data_rule.create",
        resource_type="data_permission_rule",
        resource_id=str(rule.id),
        after=serialize_data_rule(rule),
    )
    db.commit()
    pipeline.registry.reload()
    return success(request, mutation_result(1, id=str(rule.id)))


@router.put(
    "/data-permissions/{rule_id}",
    summary="更新数据权限规则",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[MutationData],
    responses=ADMIN_ERROR_RESPONSES,
)
def put_data_rule(
    payload: DataPermissionRuleUpdateRequest,
    request: Request,
    rule_id: UUID = Path(..., description="规则 ID。"),
    ctx: AccessContext = Depends(require_permission_manage),
    db: Session = Depends(get_db),
    pipeline: RequestPipeline = Depends(get_pipeline),
):
    rule = get_data_rule_or_404(db, rule_id)
    before = serialize_data_rule(rule)
    update_data_rule(db, rule, payload.model_dump(exclude_unset=True))
    audit_log(
        db,
        request,
        ctx,
        action="data_rule.update",
        resource_type="data_permission_rule",
        resource_id=str(rule.id),
        before=before,
        after=serialize_data_rule(rule),
    )
    db.commit()
    pipeline.registry.reload()
    return success(request, mutation_result(1, id=str(rule_id)))


@router.delete(
    "/data-permissions/{rule_id}",
    summary="删除数据权限规则",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[MutationData],
    responses=ADMIN_ERROR_RESPONSES,
)
def delete_data_rule(
    request: Request,
    rule_id: UUID = Path(..., description="规则 ID。"),
    ctx: AccessContext = Depends(require_permission_manage),
    db: Session = Depends(get_db),
    pipeline: RequestPipeline = Depends(get_pipeline),
):
    rule = get_data_rule_or_404(db, rule_id)
    before = serialize_data_rule(rule)
    db.delete(rule)
    audit_log(
        db,
        request,
        ctx,
        action="data_rule.delete",
        resource_type="data_permission_rule",
        resource_id=str(rule_id),
        before=before,
    )
    db.commit()
    pipeline.registry.reload()
    return success(request, mutation_result(1, id=str(rule_id)))
