"""功能权限策略管理接口。"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Request, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from base_authz.db.session import get_db
from base_authz.dependencies import get_pipeline, require_permission_manage, require_permission_read
from base_authz.models.permission import PolicyRule
from base_authz.models.role import Role
from base_authz.pipeline import AccessContext, RequestPipeline
from base_authz.schemas.common import ADMIN_ERROR_RESPONSES, SuccessResponse
from base_authz.schemas.permission import PolicyCreateRequest
from base_authz.schemas.responses import MutationData, PolicyData, ReloadData
from base_authz.services.audit import audit_log
from base_authz.utils.response import mutation_result, success

router = APIRouter(prefix="/policies", tags=["policies"])


def _serialize_policy(rule: PolicyRule) -> dict:
    return {
        "id": rule.id,
        "role": rule.role,
        "domain": rule.domain,
        "resource": rule.resource,
        "action": rule.action,
    }


@router.get(
    "",
    summary="查询功能权限策略",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[list[PolicyData]],
    responses=ADMIN_ERROR_RESPONSES,
)
def get_policies(
    request: Request,
    role: str | None = Query(default=None, description="按角色名称过滤。"),
    domain: str | None = Query(default=None, description="按基地过滤。"),
    resource: str | None = Query(default=None, description="按资源过滤。"),
    _: AccessContext = Depends(require_permission_read),
    db: Session = Depends(get_db),
):
    stmt = select(PolicyRule)
    if role:
        stmt = stmt.where(PolicyRule.role == role)
    if domain:
        stmt = stmt.where(PolicyRule.domain == domain)
    if resource:
        stmt = stmt.where(PolicyRule.resource == resource)
    rules = db.execute(
        stmt.order_by(PolicyRule.role, PolicyRule.domain, PolicyRule.resource, PolicyRule.action)
    ).scalars()
    return success(request, [_serialize_policy(rule) for rule in rules])


@router.post(
    "",
    summary="新增功能权限策略",
    description="写入存储后立即更新内存策略图，重复策略返回 affected=0。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[MutationData],
    responses=ADMIN_ERROR_RESPONSES,
)
def post_policy(
    payload: PolicyCreateRequest,
    request: Request,
    ctx: AccessContext = Depends(require_permission_manage),
    db: Session = Depends(get_db),
    pipeline: RequestPipeline = Depends(get_pipeline),
):
    if db.execute(select(Role.id).where(Role.name == payload.role)).first() is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "ROLE_NOT_FOUND", "message": "角色不存在。", "details": {"role": payload.role}},
        )
    added = pipeline.enforcer.add_policy(payload.role, payload.domain, payload.resource, payload.action)
    if added:
        audit_log(
            db,
            request,
            ctx,
            action="policy.add",
            resource_type="policy_rule",
            resource_id=f"{payload.role}:{payload.domain}:{payload.resource}:{payload.action}",
            after=payload.model_dump(),
            domain=payload.domain,
        )
        db.commit()
    return success(request, mutation_result(int(added)))


@router.delete(
    "/{policy_id}",
    summary="删除功能权限策略",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[MutationData],
    responses=ADMIN_ERROR_RESPONSES,
)
def delete_policy(
    request: Request,
    policy_id: UUID = Path(..., description="策略 ID。"),
    ctx: AccessContext = Depends(require_permission_manage),
    db: Session = Depends(get_db),
    pipeline: RequestPipeline = Depends(get_pipeline),
):
    rule = db.get(PolicyRule, policy_id)
    if rule is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "POLICY_NOT_FOUND", "message": "策略不存在。", "details": {"policy_id": str(policy_id)}},
        )
    before = _serialize_policy(rule) | {"id": str(rule.id)}
    removed = pipeline.enforcer.remove_policy(rule.role, rule.domain, rule.resource, rule.action)
    db.expunge(rule)
    audit_log(
        db,
        request,
        ctx,
        action="policy.remove",
        resource_type="policy_rule",
        resource_id=before["id"],
        before=before,
        domain=before["domain"],
    )
    db.commit()
    return success(request, mutation_result(removed, id=before["id"]))


@router.post(
    "/reload",
    summary="重载策略",
    description="从存储重新加载功能权限图与数据范围配置；失败时保留旧快照。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[ReloadData],
    responses=ADMIN_ERROR_RESPONSES,
)
def reload_policies(
    request: Request,
    _: AccessContext = Depends(require_permission_manage),
    pipeline: RequestPipeline = Depends(get_pipeline),
):
    reloaded = pipeline.reload()
    graph = pipeline.enforcer.graph
    return success(
        request,
        {"reloaded": reloaded, "policies": len(graph.policies), "groupings": len(graph.groupings)},
    )
