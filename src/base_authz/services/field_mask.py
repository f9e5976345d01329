"""字段级权限掩码。

每个角色在资源上的可读/可写字段集合：
1. `*` 行给出未列出字段的默认值；没有 `*` 行时未列出字段默认可读可写。
2. 显式字段行覆盖默认值，不可读的字段一定不可写。
3. 多个角色取并集，`id` 始终可读。
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
import logging
import re
from typing import Any

from pydantic import BaseModel

from base_authz.errors import ConfigurationInvalid
from base_authz.services.catalog import get_resource
from base_authz.services.policy_store import FieldRuleSpec
from base_authz.services.scope_config import ScopeRegistry

logger = logging.getLogger("base_authz.field_mask")

WILDCARD_FIELD = "*"
ALWAYS_READABLE = frozenset({"id"})

_FIELD_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(frozen=True)
class FieldSet:
    """字段集合：exclusive=False 为白名单，exclusive=True 为“除 fields 外全部”。"""

    exclusive: bool = False
    fields: frozenset[str] = frozenset()

    @classmethod
    def everything(cls) -> "FieldSet":
        return cls(exclusive=True)

    @classmethod
    def nothing(cls) -> "FieldSet":
        return cls(exclusive=False)

    def __contains__(self, name: object) -> bool:
        return (name not in self.fields) if self.exclusive else (name in self.fields)

    def union(self, other: "FieldSet") -> "FieldSet":
        if not self.exclusive and not other.exclusive:
            return FieldSet(False, self.fields | other.fields)
        if self.exclusive and other.exclusive:
            return FieldSet(True, self.fields & other.fields)
        allowed, denied = (self, other) if not self.exclusive else (other, self)
        return FieldSet(True, denied.fields - allowed.fields)

    def to_dict(self) -> dict[str, Any]:
        if self.exclusive:
            return {"all": True, "except": sorted(self.fields)}
        return {"all": False, "only": sorted(self.fields)}


@dataclass(frozen=True)
class FieldAccess:
    """某用户在某资源上的可读、可写字段。"""

    readable: FieldSet = FieldSet.everything()
    writable: FieldSet = FieldSet.everything()

    def can_read(self, name: str) -> bool:
        return name in ALWAYS_READABLE or name in self.readable

    def can_write(self, name: str) -> bool:
        return name in self.writable

    def to_dict(self) -> dict[str, Any]:
        return {"readable": self.readable.to_dict(), "writable": self.writable.to_dict()}


UNRESTRICTED = FieldAccess()
NO_FIELDS = FieldAccess(readable=FieldSet.nothing(), writable=FieldSet.nothing())


def _role_access(rules: Iterable[FieldRuleSpec]) -> FieldAccess:
    default_read = True
    default_write = True
    explicit: dict[str, tuple[bool, bool]] = {}
    for rule in rules:
        can_write = rule.can_read and rule.can_write
        if rule.field == WILDCARD_FIELD:
            default_read, default_write = rule.can_read, can_write
        else:
            explicit[rule.field] = (rule.can_read, can_write)
    default_write = default_write and default_read

    def build(default: bool, pick) -> FieldSet:
        if default:
            return FieldSet(True, frozenset(name for name, flags in explicit.items() if not pick(flags)))
        return FieldSet(False, frozenset(name for name, flags in explicit.items() if pick(flags)))

    return FieldAccess(
        readable=build(default_read, lambda flags: flags[0]),
        writable=build(default_write, lambda flags: flags[1]),
    )


class FieldMask:
    """基于当前配置快照计算字段访问范围并过滤载荷。"""

    def __init__(self, registry: ScopeRegistry, *, admin_max_level: int = 1) -> None:
        self._registry = registry
        self._admin_max_level = admin_max_level

    def compute(self, roles: Iterable[str], resource: str) -> FieldAccess:
        roles = sorted(set(roles))
        if not roles:
            return NO_FIELDS
        config = self._registry.config
        access: FieldAccess | None = None
        for role in roles:
            if config.is_admin(role, self._admin_max_level):
                return UNRESTRICTED
            current = _role_access(config.field_rules_for(role, resource))
            if access is None:
                access = current
            else:
                access = FieldAccess(
                    readable=access.readable.union(current.readable),
                    writable=access.writable.union(current.writable),
                )
        logger.debug("field access resolved roles=%s resource=%s access=%s", roles, resource, access.to_dict())
        return access

    def filter_response(self, payload: Any, access: FieldAccess) -> Any:
        """按字段名递归剔除不可读字段，支持字典、列表与 pydantic 模型。"""
        if access == UNRESTRICTED:
            return payload
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(mode="json")
        if isinstance(payload, Mapping):
            return {
                key: self.filter_response(value, access)
                for key, value in payload.items()
                if access.can_read(str(key))
            }
        if isinstance(payload, (list, tuple)):
            return [self.filter_response(item, access) for item in payload]
        return payload

    def filter_writable(self, payload: Mapping[str, Any], access: FieldAccess) -> dict[str, Any]:
        """剔除写入载荷中不可写的顶层字段。"""
        allowed = {key: value for key, value in payload.items() if access.can_write(str(key))}
        dropped = sorted(set(payload) - set(allowed))
        if dropped:
            logger.warning("non-writable fields dropped fields=%s", dropped)
        return allowed


def validate_field_permission(*, resource: str, field: str) -> str:
    """配置阶段校验字段权限行，返回规范化字段名。"""
    if get_resource(resource) is None:
        raise ConfigurationInvalid(f"未知资源：{resource}", details={"resource": resource})
    normalized = field.strip()
    if normalized != WILDCARD_FIELD and not _FIELD_PATTERN.match(normalized):
        raise ConfigurationInvalid(f"字段名不合法：{field}", details={"field": field})
    return normalized
