"""接口成功响应 `data` 字段结构定义。

说明：
1. 所有接口统一返回 `SuccessResponse[data=...]`。
2. 写操作统一返回受影响行数 `affected`。
"""

from typing import Any
from uuid import UUID

from pydantic import Field

from base_authz.schemas.common import BaseSchema


class HealthStatusData(BaseSchema):
    """健康检查返回结构。"""

    status: str = Field(description="健康状态值，常见为 ok 或 ready。")
    details: dict[str, Any] = Field(default_factory=dict, description="附加状态信息。")


class MutationData(BaseSchema):
    """写操作返回结构。"""

    affected: int = Field(description="受影响行数。")
    id: str | None = Field(default=None, description="新建或变更对象 ID。")


class RoleData(BaseSchema):
    """角色信息。"""

    id: UUID
    name: str
    level: int
    is_system: bool
    description: str | None = None


class RoleDetailData(RoleData):
    """角色详情，附带当前生效的策略与分配。"""

    policies: list[dict[str, str]] = Field(description="角色的 (domain, resource, action)。")
    bindings: list[dict[str, str]] = Field(description="角色的有效分配 (user_id, domain)。")


class PolicyData(BaseSchema):
    """功能权限策略。"""

    id: UUID
    role: str
    domain: str
    resource: str
    action: str


class BindingData(BaseSchema):
    """用户角色分配。"""

    id: UUID
    user_id: str
    role_id: UUID
    role: str | None = Field(default=None, description="角色名称。")
    domain: str
    is_active: bool
    assigned_by: str | None = None


class DataPermissionRuleData(BaseSchema):
    """数据权限规则。"""

    id: UUID
    role_id: UUID
    resource: str
    field: str
    operator: str
    value_type: str
    fixed_value: str | None = None
    description: str | None = None
    is_active: bool


class FieldPermissionData(BaseSchema):
    """字段权限。"""

    id: UUID
    role_id: UUID
    resource: str
    field: str
    can_read: bool
    can_write: bool


class DataPermissionMetadata(BaseSchema):
    """规则配置界面元数据。"""

    value_types: list[dict[str, Any]]
    operators: list[dict[str, Any]]
    resources: list[dict[str, Any]]


class ReloadData(BaseSchema):
    """重载结果。"""

    reloaded: bool = Field(description="功能权限图与数据范围配置是否均重载成功。")
    policies: int
    groupings: int


class PermissionSnapshotData(BaseSchema):
    """当前用户在某个域下的权限快照。"""

    user_id: str
    domain: str
    roles: list[str]
    domains: list[str] = Field(description="用户存在有效分配的全部域。")
    policies: list[dict[str, str]] = Field(description="有效角色可用的 (resource, action, domain)。")
    resource: str | None = None
    predicate: dict[str, Any] | None = Field(default=None, description="数据范围谓词树。")
    fields: dict[str, Any] | None = Field(default=None, description="可读、可写字段集合。")


class PermissionCheckData(BaseSchema):
    """单次权限校验结果。"""

    user_id: str
    domain: str
    resource: str
    action: str
    allowed: bool = Field(description="最终是否放行。")
    via_manage: bool = Field(description="是否由 manage 动作兜底放行。")
    roles: list[str] = Field(description="用户在该域下的有效角色。")
