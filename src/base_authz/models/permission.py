"""权限规则模型。"""

from uuid import UUID

from sqlalchemy import Boolean, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from base_authz.models.base import GLOBAL_DOMAIN, Base, TimestampMixin, UUIDPrimaryKeyMixin


class PolicyRule(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """功能权限策略元组 (role, domain, resource, action)。"""

    __tablename__ = "policy_rules"
    __table_args__ = (
        UniqueConstraint("role", "domain", "resource", "action", name="uk_policy_rule"),
    )

    # 授权主体角色名称。
    role: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    # 基地 ID，`*` 表示所有基地。
    domain: Mapped[str] = mapped_column(String(64), nullable=False, default=GLOBAL_DOMAIN)
    # 资源标识（如 inventory、point）。
    resource: Mapped[str] = mapped_column(String(64), nullable=False)
    # 动作标识（如 read、create、manage）。
    action: Mapped[str] = mapped_column(String(64), nullable=False)


class DataPermissionRule(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """行级数据权限规则。

    同一角色 + 资源可配置多条规则（针对不同字段），运行时按 AND 组合。
    """

    __tablename__ = "data_permission_rules"

    role_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    resource: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    # 被过滤的字段名（业务侧字段命名，如 ownerId）。
    field: Mapped[str] = mapped_column(String(64), nullable=False)
    # 比较操作符（eq/in/contains/notEq）。
    operator: Mapped[str] = mapped_column(String(16), nullable=False)
    # 取值来源（currentUser/currentBase/.../fixed）。
    value_type: Mapped[str] = mapped_column(String(32), nullable=False)
    # 仅 value_type=fixed 时有值。
    fixed_value: Mapped[str | None] = mapped_column(Text)
    description: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class FieldPermission(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """字段级读写权限。"""

    __tablename__ = "field_permissions"
    __table_args__ = (
        UniqueConstraint("role_id", "resource", "field", name="uk_field_permission"),
    )

    role_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    resource: Mapped[str] = mapped_column(String(64), nullable=False)
    # 字段名，`*` 表示该资源全部字段。
    field: Mapped[str] = mapped_column(String(64), nullable=False)
    can_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    can_write: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
