"""角色管理服务。

角色名称被策略元组直接引用，因此改名与删除需要在同一事务内同步策略存储，提交后重载执行器。
"""

from typing import Any
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from base_authz.models.enums import PolicyType
from base_authz.models.permission import DataPermissionRule, FieldPermission
from base_authz.models.role import Role, UserRoleBinding
from base_authz.services.policy_store import PolicyStore


def _not_found(role_id: UUID) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={"code": "ROLE_NOT_FOUND", "message": "角色不存在。", "details": {"role_id": str(role_id)}},
    )


def _system_role_protected(role: Role) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={
            "code": "SYSTEM_ROLE_PROTECTED",
            "message": "系统内置角色不允许改名或删除。",
            "details": {"role": role.name},
        },
    )


def serialize_role(role: Role) -> dict[str, Any]:
    return {
        "id": role.id,
        "name": role.name,
        "level": role.level,
        "is_system": role.is_system,
        "description": role.description,
    }


def get_role_or_404(db: Session, role_id: UUID) -> Role:
    role = db.get(Role, role_id)
    if role is None:
        raise _not_found(role_id)
    return role


def list_roles(db: Session) -> list[Role]:
    return list(db.execute(select(Role).order_by(Role.level, Role.name)).scalars().all())


def _ensure_name_available(db: Session, name: str) -> None:
    if db.execute(select(Role.id).where(Role.name == name)).first() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "ROLE_NAME_CONFLICT", "message": "角色名称已存在。", "details": {"name": name}},
        )


def create_role(db: Session, *, name: str, level: int, description: str | None) -> Role:
    _ensure_name_available(db, name)
    role = Role(name=name, level=level, is_system=False, description=description)
    db.add(role)
    db.flush()
    return role


def update_role(
    db: Session,
    store: PolicyStore,
    role: Role,
    *,
    name: str | None = None,
    level: int | None = None,
    description: str | None = None,
) -> int:
    """更新角色，改名时在同一事务内同步策略元组中的角色名称，返回受影响的策略条数。

    不提交事务，由调用方连同审计记录一并提交。
    """
    renamed = 0
    old_name = role.name
    if name is not None and name != old_name:
        if role.is_system:
            raise _system_role_protected(role)
        _ensure_name_available(db, name)
        role.name = name
    if level is not None:
        role.level = level
    if description is not None:
        role.description = description
    db.flush()
    if role.name != old_name:
        renamed = store.rename_subject(old_name, role.name, db=db)
    return renamed


def delete_role(db: Session, store: PolicyStore, role: Role) -> int:
    """删除角色及其策略、分配、数据与字段权限，返回受影响行数合计。

    全部变更在调用方会话内完成，提交后由调用方整体重载执行器。
    """
    if role.is_system:
        raise _system_role_protected(role)
    affected = store.remove_matching(PolicyType.POLICY, 0, role.name, db=db)
    affected += store.remove_matching(PolicyType.GROUPING, 1, role.name, db=db)
    affected += db.execute(delete(DataPermissionRule).where(DataPermissionRule.role_id == role.id)).rowcount or 0
    affected += db.execute(delete(FieldPermission).where(FieldPermission.role_id == role.id)).rowcount or 0
    db.delete(role)
    db.flush()
    return affected + 1


def list_bindings(
    db: Session,
    *,
    user_id: str | None = None,
    domain: str | None = None,
    include_inactive: bool = False,
) -> list[dict[str, Any]]:
    """查询用户角色分配，附带角色名称。"""
    stmt = select(UserRoleBinding, Role.name).join(Role, Role.id == UserRoleBinding.role_id)
    if user_id:
        stmt = stmt.where(UserRoleBinding.user_id == user_id)
    if domain:
        stmt = stmt.where(UserRoleBinding.domain == domain)
    if not include_inactive:
        stmt = stmt.where(UserRoleBinding.is_active.is_(True))
    rows = db.execute(stmt.order_by(UserRoleBinding.user_id, UserRoleBinding.domain, Role.name)).all()
    return [serialize_binding(binding, role_name) for binding, role_name in rows]


def serialize_binding(binding: UserRoleBinding, role_name: str | None) -> dict[str, Any]:
    return {
        "id": binding.id,
        "user_id": binding.user_id,
        "role_id": binding.role_id,
        "role": role_name,
        "domain": binding.domain,
        "is_active": binding.is_active,
        "assigned_by": binding.assigned_by,
    }
