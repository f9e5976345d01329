"""角色与用户角色分配模型。"""

from uuid import UUID

from sqlalchemy import Boolean, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from base_authz.models.base import GLOBAL_DOMAIN, Base, TimestampMixin, UUIDPrimaryKeyMixin


class Role(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """角色定义。"""

    __tablename__ = "roles"

    # 角色名称，策略元组通过名称引用角色，全局唯一。
    name: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    # 权限级别，数值越小权限越高（0=超级管理员）。
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    # 系统内置角色禁止改名与删除。
    is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    description: Mapped[str | None] = mapped_column(Text)


class UserRoleBinding(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """用户在某个基地（或全局 `*`）下的角色分配。

    说明：
    1. 移除分配只做软删除（is_active=false），保留审计历史。
    2. 同一 (user_id, role_id, domain) 至多存在一条有效分配。
    """

    __tablename__ = "user_role_bindings"

    # 用户 ID，由外部身份系统提供。
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    # 角色 ID。
    role_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    # 基地 ID，或 `*` 表示全局分配。
    domain: Mapped[str] = mapped_column(String(64), nullable=False, default=GLOBAL_DOMAIN)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # 操作人用户 ID。
    assigned_by: Mapped[str | None] = mapped_column(String(64))


Index(
    "uk_user_role_bindings_active",
    UserRoleBinding.user_id,
    UserRoleBinding.role_id,
    UserRoleBinding.domain,
    unique=True,
    sqlite_where=UserRoleBinding.is_active.is_(True),
    postgresql_where=UserRoleBinding.is_active.is_(True),
)
