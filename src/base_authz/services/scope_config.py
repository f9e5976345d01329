"""数据范围与字段权限配置注册表。

配置来自策略存储，启动时加载、显式重载时整体替换，
运行时只读，解析器与字段掩码共用同一份快照。
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
import logging
from threading import Lock
from types import MappingProxyType

from base_authz.errors import StorageUnavailable
from base_authz.services.policy_store import DataRuleSpec, FieldRuleSpec, PolicyStore, ScopeSnapshot

logger = logging.getLogger("base_authz.scope_config")

RoleResourceKey = tuple[str, str]


def _group_by_role_resource(items) -> Mapping[RoleResourceKey, tuple]:
    grouped: dict[RoleResourceKey, list] = {}
    for item in items:
        grouped.setdefault((item.role, item.resource), []).append(item)
    return MappingProxyType({key: tuple(values) for key, values in grouped.items()})


@dataclass(frozen=True)
class ScopeConfig:
    """按 (角色, 资源) 索引的只读配置。"""

    data_rules: Mapping[RoleResourceKey, tuple[DataRuleSpec, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    field_rules: Mapping[RoleResourceKey, tuple[FieldRuleSpec, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    role_levels: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def from_snapshot(cls, snapshot: ScopeSnapshot) -> "ScopeConfig":
        return cls(
            data_rules=_group_by_role_resource(snapshot.data_rules),
            field_rules=_group_by_role_resource(snapshot.field_rules),
            role_levels=MappingProxyType(dict(snapshot.role_levels)),
        )

    def rules_for(self, role: str, resource: str) -> tuple[DataRuleSpec, ...]:
        return self.data_rules.get((role, resource), ())

    def field_rules_for(self, role: str, resource: str) -> tuple[FieldRuleSpec, ...]:
        return self.field_rules.get((role, resource), ())

    def is_admin(self, role: str, max_level: int) -> bool:
        """角色级别不高于阈值时视为管理员；阈值为负数时不存在管理员。"""
        if max_level < 0:
            return False
        level = self.role_levels.get(role)
        return level is not None and level <= max_level


class ScopeRegistry:
    """持有当前 ScopeConfig 快照，写入采用复制后整体替换。"""

    def __init__(self, store: PolicyStore) -> None:
        self._store = store
        self._config = ScopeConfig()
        self._lock = Lock()

    @property
    def config(self) -> ScopeConfig:
        return self._config

    def load(self) -> None:
        """启动加载，存储不可用直接抛出。"""
        snapshot = self._store.load_scope_config()
        with self._lock:
            self._config = ScopeConfig.from_snapshot(snapshot)
        logger.info(
            "scope config loaded data_rules=%s field_rules=%s roles=%s",
            len(snapshot.data_rules),
            len(snapshot.field_rules),
            len(snapshot.role_levels),
        )

    def reload(self) -> bool:
        """重载失败时保留旧配置。"""
        try:
            self.load()
        except StorageUnavailable:
            logger.exception("scope config reload failed, keeping previous config")
            return False
        return True
