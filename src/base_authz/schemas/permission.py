"""权限配置管理相关请求结构。"""

from pydantic import BaseModel, Field, field_validator

from base_authz.models.base import GLOBAL_DOMAIN


def _strip_required(value: str) -> str:
    normalized = value.strip()
    if not normalized:
        raise ValueError("must not be blank")
    return normalized


class RoleCreateRequest(BaseModel):
    """创建角色请求。"""

    name: str = Field(min_length=1, max_length=64, description="角色名称，全局唯一。", examples=["WAREHOUSE_KEEPER"])
    level: int = Field(default=10, ge=0, le=1000, description="权限级别，数值越小权限越高。")
    description: str | None = Field(default=None, max_length=2000, description="角色说明。")

    @field_validator("name")
    @classmethod
    def normalize_name(cls, value: str) -> str:
        return _strip_required(value)


class RoleUpdateRequest(BaseModel):
    """更新角色请求，未提供的字段保持不变。"""

    name: str | None = Field(default=None, min_length=1, max_length=64, description="新的角色名称。")
    level: int | None = Field(default=None, ge=0, le=1000, description="新的权限级别。")
    description: str | None = Field(default=None, max_length=2000, description="新的角色说明。")

    @field_validator("name")
    @classmethod
    def normalize_name(cls, value: str | None) -> str | None:
        return _strip_required(value) if value is not None else None


class PolicyCreateRequest(BaseModel):
    """新增功能权限策略请求。"""

    role: str = Field(min_length=1, max_length=64, description="角色名称。")
    domain: str = Field(default=GLOBAL_DOMAIN, min_length=1, max_length=64, description="基地 ID，`*` 表示所有基地。")
    resource: str = Field(min_length=1, max_length=64, description="资源标识。", examples=["inventory"])
    action: str = Field(min_length=1, max_length=64, description="动作标识。", examples=["read"])

    @field_validator("role", "domain", "resource", "action")
    @classmethod
    def normalize_text(cls, value: str) -> str:
        return _strip_required(value)


class BindingCreateRequest(BaseModel):
    """为用户分配角色请求。"""

    user_id: str = Field(min_length=1, max_length=64, description="用户 ID。")
    role: str = Field(min_length=1, max_length=64, description="角色名称。")
    domain: str = Field(default=GLOBAL_DOMAIN, min_length=1, max_length=64, description="基地 ID，`*` 表示全局分配。")

    @field_validator("user_id", "role", "domain")
    @classmethod
    def normalize_text(cls, value: str) -> str:
        return _strip_required(value)


class DataPermissionRuleCreateRequest(BaseModel):
    """新增数据权限规则请求。"""

    resource: str = Field(description="资源标识。", examples=["point"])
    field: str = Field(description="过滤字段。", examples=["ownerId"])
    operator: str = Field(description="操作符：eq/in/contains/notEq。", examples=["eq"])
    value_type: str = Field(description="取值来源。", examples=["currentUser"])
    fixed_value: str | None = Field(default=None, description="固定值，in 操作符时以逗号分隔。")
    description: str | None = Field(default=None, max_length=2000, description="规则说明。")
    is_active: bool = Field(default=True, description="是否启用。")


class DataPermissionRuleUpdateRequest(BaseModel):
    """更新数据权限规则请求，未提供的字段保持不变。"""

    resource: str | None = None
    field: str | None = None
    operator: str | None = None
    value_type: str | None = None
    fixed_value: str | None = None
    description: str | None = Field(default=None, max_length=2000)
    is_active: bool | None = None


class FieldPermissionItem(BaseModel):
    """单个字段的读写权限。"""

    field: str = Field(min_length=1, max_length=64, description="字段名，`*` 表示全部字段。")
    can_read: bool = Field(default=True, description="是否可读。")
    can_write: bool = Field(default=True, description="是否可写，不可读时强制不可写。")


class FieldPermissionUpdateRequest(BaseModel):
    """批量设置角色在某资源上的字段权限（按字段覆盖写入）。"""

    resource: str = Field(description="资源标识。", examples=["anchorProfit"])
    fields: list[FieldPermissionItem] = Field(default_factory=list, description="字段权限列表。")


class PermissionCheckRequest(BaseModel):
    """按用户校验单个 (resource, action) 的请求。"""

    user_id: str = Field(min_length=1, max_length=64, description="被校验的用户 ID。")
    resource: str = Field(min_length=1, max_length=64, description="资源标识。", examples=["inventory"])
    action: str = Field(min_length=1, max_length=64, description="动作标识。", examples=["read"])
    domain: str = Field(default=GLOBAL_DOMAIN, min_length=1, max_length=64, description="基地 ID，`*` 表示系统级。")

    @field_validator("user_id", "resource", "action", "domain")
    @classmethod
    def normalize_text(cls, value: str) -> str:
        return _strip_required(value)
