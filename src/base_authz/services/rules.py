"""数据权限规则与字段权限的配置服务。

所有写入在配置阶段完成校验，运行时只读取已校验的规则。
"""

from collections.abc import Iterable
from typing import Any
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from base_authz.models.permission import DataPermissionRule, FieldPermission
from base_authz.schemas.permission import FieldPermissionItem
from base_authz.services.data_scope import validate_data_rule
from base_authz.services.field_mask import validate_field_permission

_DATA_RULE_FIELDS = ("resource", "field", "operator", "value_type", "fixed_value")


def serialize_data_rule(rule: DataPermissionRule) -> dict[str, Any]:
    return {
        "id": rule.id,
        "role_id": rule.role_id,
        "resource": rule.resource,
        "field": rule.field,
        "operator": rule.operator,
        "value_type": rule.value_type,
        "fixed_value": rule.fixed_value,
        "description": rule.description,
        "is_active": rule.is_active,
    }


def serialize_field_permission(perm: FieldPermission) -> dict[str, Any]:
    return {
        "id": perm.id,
        "role_id": perm.role_id,
        "resource": perm.resource,
        "field": perm.field,
        "can_read": perm.can_read,
        "can_write": perm.can_write,
    }


def get_data_rule_or_404(db: Session, rule_id: UUID) -> DataPermissionRule:
    rule = db.get(DataPermissionRule, rule_id)
    if rule is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "code": "DATA_RULE_NOT_FOUND",
                "message": "数据权限规则不存在。",
                "details": {"rule_id": str(rule_id)},
            },
        )
    return rule


def list_data_rules(db: Session, role_id: UUID, *, resource: str | None = None) -> list[DataPermissionRule]:
    stmt = select(DataPermissionRule).where(DataPermissionRule.role_id == role_id)
    if resource:
        stmt = stmt.where(DataPermissionRule.resource == resource)
    return list(db.execute(stmt.order_by(DataPermissionRule.resource, DataPermissionRule.field)).scalars().all())


def create_data_rule(
    db: Session,
    role_id: UUID,
    *,
    resource: str,
    field: str,
    operator: str,
    value_type: str,
    fixed_value: str | None = None,
    description: str | None = None,
    is_active: bool = True,
) -> DataPermissionRule:
    normalized = validate_data_rule(
        resource=resource,
        field=field,
        operator=operator,
        value_type=value_type,
        fixed_value=fixed_value,
    )
    rule = DataPermissionRule(
        role_id=role_id,
        resource=resource,
        field=field,
        operator=operator,
        value_type=value_type,
        fixed_value=normalized,
        description=description,
        is_active=is_active,
    )
    db.add(rule)
    db.flush()
    return rule


def update_data_rule(db: Session, rule: DataPermissionRule, changes: dict[str, Any]) -> DataPermissionRule:
    """合并变更后整体重新校验。"""
    merged = {name: changes.get(name, getattr(rule, name)) for name in _DATA_RULE_FIELDS}
    # 取值类型改为非固定值时自动清空固定值。
    if "value_type" in changes and "fixed_value" not in changes:
        merged["fixed_value"] = rule.fixed_value if changes["value_type"] == "fixed" else None
    merged["fixed_value"] = validate_data_rule(**merged)
    for name, value in merged.items():
        setattr(rule, name, value)
    if "description" in changes:
        rule.description = changes["description"]
    if changes.get("is_active") is not None:
        rule.is_active = changes["is_active"]
    db.flush()
    return rule


def list_field_permissions(db: Session, role_id: UUID, *, resource: str | None = None) -> list[FieldPermission]:
    stmt = select(FieldPermission).where(FieldPermission.role_id == role_id)
    if resource:
        stmt = stmt.where(FieldPermission.resource == resource)
    return list(db.execute(stmt.order_by(FieldPermission.resource, FieldPermission.field)).scalars().all())


def upsert_field_permissions(
    db: Session,
    role_id: UUID,
    resource: str,
    items: Iterable[FieldPermissionItem],
) -> list[FieldPermission]:
    """按 (角色, 资源, 字段) 覆盖写入；不可读字段强制不可写。"""
    validated: dict[str, FieldPermissionItem] = {}
    for item in items:
        validated[validate_field_permission(resource=resource, field=item.field)] = item

    existing = {perm.field: perm for perm in list_field_permissions(db, role_id, resource=resource)}
    changed: list[FieldPermission] = []
    for field_name, item in validated.items():
        can_write = item.can_read and item.can_write
        perm = existing.get(field_name)
        if perm is None:
            perm = FieldPermission(role_id=role_id, resource=resource, field=field_name)
            db.add(perm)
        perm.can_read = item.can_read
        perm.can_write = can_write
        changed.append(perm)
    db.flush()
    return changed


def reset_field_permissions(db: Session, role_id: UUID, resource: str) -> int:
    """清空角色在资源上的字段权限，恢复为全部可读写。"""
    result = db.execute(
        delete(FieldPermission).where(FieldPermission.role_id == role_id).where(FieldPermission.resource == resource)
    )
    return result.rowcount or 0
