"""功能权限执行器（RBAC + 基地域）。

回答“用户在基地 domain 下能否对 resource 执行 action”：
1. 分配关系 G(user, role, domain) 决定用户在某基地的有效角色；
   该基地没有分配时回退到全局 `*` 分配。
2. 策略关系 P(role, domain, resource, action) 对 (resource, action) 精确匹配，
   domain 既可为当前基地也可为 `*`。

内存图是不可变快照。读操作直接读取当前引用，不加锁；
写操作在锁内先持久化，再构建新快照并整体替换引用。
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
import logging
from threading import Lock
from types import MappingProxyType

from base_authz.errors import StorageUnavailable
from base_authz.models.base import GLOBAL_DOMAIN
from base_authz.models.enums import PolicyType
from base_authz.services.policy_store import GroupingTuple, PolicySnapshot, PolicyStore, PolicyTuple

logger = logging.getLogger("base_authz.enforcer")

# 调用方在细粒度动作被拒绝时可额外探测的超集动作。
MANAGE_ACTION = "manage"


@dataclass(frozen=True)
class PolicyGraph:
    """策略与角色分配的不可变内存图。"""

    policies: frozenset[PolicyTuple] = frozenset()
    groupings: frozenset[GroupingTuple] = frozenset()
    # user -> domain -> roles，由 build 生成。
    _roles_index: Mapping[str, Mapping[str, frozenset[str]]] = field(
        default_factory=lambda: MappingProxyType({}), compare=False, repr=False
    )

    @classmethod
    def build(cls, policies: Iterable[PolicyTuple], groupings: Iterable[GroupingTuple]) -> "PolicyGraph":
        """由元组集合构建图及用户角色索引。"""
        frozen_policies = frozenset(tuple(item) for item in policies)
        frozen_groupings = frozenset(tuple(item) for item in groupings)
        index: dict[str, dict[str, set[str]]] = {}
        for user, role, domain in frozen_groupings:
            index.setdefault(user, {}).setdefault(domain, set()).add(role)
        roles_index = MappingProxyType(
            {
                user: MappingProxyType({domain: frozenset(roles) for domain, roles in domains.items()})
                for user, domains in index.items()
            }
        )
        return cls(policies=frozen_policies, groupings=frozen_groupings, _roles_index=roles_index)

    @classmethod
    def from_snapshot(cls, snapshot: PolicySnapshot) -> "PolicyGraph":
        return cls.build(snapshot.policies, snapshot.groupings)

    def roles_in_domain(self, user: str, domain: str) -> frozenset[str]:
        """用户在指定域内直接分配的角色。"""
        return self._roles_index.get(user, {}).get(domain, frozenset())

    def effective_roles(self, user: str, domain: str) -> frozenset[str]:
        """基地分配优先，缺失时回退到全局分配。"""
        roles = self.roles_in_domain(user, domain)
        if roles or domain == GLOBAL_DOMAIN:
            return roles
        return self.roles_in_domain(user, GLOBAL_DOMAIN)

    def domains_for(self, user: str) -> frozenset[str]:
        """用户存在有效分配的全部域（含 `*`）。"""
        return frozenset(self._roles_index.get(user, {}).keys())

    def allows(self, user: str, domain: str, resource: str, action: str) -> bool:
        for role in self.effective_roles(user, domain):
            if (role, domain, resource, action) in self.policies:
                return True
            if (role, GLOBAL_DOMAIN, resource, action) in self.policies:
                return True
        return False

    def with_policies(self, added: Iterable[PolicyTuple] = (), removed: Iterable[PolicyTuple] = ()) -> "PolicyGraph":
        return PolicyGraph.build((self.policies - set(removed)) | set(added), self.groupings)

    def with_groupings(
        self, added: Iterable[GroupingTuple] = (), removed: Iterable[GroupingTuple] = ()
    ) -> "PolicyGraph":
        return PolicyGraph.build(self.policies, (self.groupings - set(removed)) | set(added))


class Enforcer:
    """进程级功能权限执行器，由启动流程构造后显式注入各处使用。"""

    def __init__(self, store: PolicyStore) -> None:
        self._store = store
        self._graph = PolicyGraph()
        self._write_lock = Lock()
        self._loaded = False

    @property
    def graph(self) -> PolicyGraph:
        """当前快照，调用方可在一次请求内复用以获得一致视图。"""
        return self._graph

    @property
    def store(self) -> PolicyStore:
        return self._store

    @property
    def loaded(self) -> bool:
        return self._loaded

    def load(self) -> None:
        """启动时全量加载；存储不可用直接抛出，禁止以空图对外服务。"""
        snapshot = self._store.load_all()
        with self._write_lock:
            self._graph = PolicyGraph.from_snapshot(snapshot)
            self._loaded = True
        logger.info(
            "enforcer loaded policies=%s groupings=%s",
            len(snapshot.policies),
            len(snapshot.groupings),
        )

    def reload(self) -> bool:
        """重新加载并整体替换内存图；存储不可用时保留旧图并返回 False。"""
        try:
            snapshot = self._store.load_all()
        except StorageUnavailable:
            logger.exception("enforcer reload failed, keeping previous graph")
            return False
        with self._write_lock:
            self._graph = PolicyGraph.from_snapshot(snapshot)
            self._loaded = True
        logger.info(
            "enforcer reloaded policies=%s groupings=%s",
            len(snapshot.policies),
            len(snapshot.groupings),
        )
        return True

    def enforce(self, user: str, domain: str, resource: str, action: str) -> bool:
        """判断用户在基地内是否具备 (resource, action) 权限。"""
        result = self._graph.allows(str(user), str(domain), resource, action)
        logger.debug(
            "enforce user=%s domain=%s resource=%s action=%s result=%s", user, domain, resource, action, result
        )
        return result

    def enforce_system(self, user: str, resource: str, action: str) -> bool:
        """系统级资源（用户、全局设置等）按全局域校验。"""
        return self.enforce(user, GLOBAL_DOMAIN, resource, action)

    def get_roles_for_user_in_domain(self, user: str, domain: str) -> list[str]:
        return sorted(self._graph.roles_in_domain(str(user), str(domain)))

    def effective_roles(self, user: str, domain: str) -> frozenset[str]:
        return self._graph.effective_roles(str(user), str(domain))

    def get_domains_for_user(self, user: str) -> list[str]:
        return sorted(self._graph.domains_for(str(user)))

    def get_role_policies(self, role: str) -> list[PolicyTuple]:
        return sorted(policy for policy in self._graph.policies if policy[0] == role)

    def get_all_policies(self) -> list[PolicyTuple]:
        return sorted(self._graph.policies)

    def get_all_groupings(self) -> list[GroupingTuple]:
        return sorted(self._graph.groupings)

    def snapshot(self) -> PolicySnapshot:
        """导出当前内存图，用于排查内存与存储是否一致。"""
        graph = self._graph
        return PolicySnapshot(policies=tuple(sorted(graph.policies)), groupings=tuple(sorted(graph.groupings)))

    def add_policy(self, role: str, domain: str, resource: str, action: str) -> bool:
        """新增授权元组：先落库，再更新内存图。"""
        policy = (role, str(domain), resource, action)
        with self._write_lock:
            added = self._store.add_rule(PolicyType.POLICY, *policy)
            self._graph = self._graph.with_policies(added=[policy])
        if added:
            logger.info("policy added role=%s domain=%s resource=%s action=%s", *policy)
        return added

    def remove_policy(self, role: str, domain: str, resource: str, action: str) -> int:
        policy = (role, str(domain), resource, action)
        with self._write_lock:
            removed = self._store.remove_rule(PolicyType.POLICY, *policy)
            self._graph = self._graph.with_policies(removed=[policy])
        if removed:
            logger.info("policy removed role=%s domain=%s resource=%s action=%s", *policy)
        return removed

    def remove_role_policies(self, role: str) -> int:
        """删除角色的全部授权元组。"""
        with self._write_lock:
            removed = self._store.remove_matching(PolicyType.POLICY, 0, role)
            stale = [policy for policy in self._graph.policies if policy[0] == role]
            self._graph = self._graph.with_policies(removed=stale)
        logger.info("policies removed for role=%s affected=%s", role, removed)
        return removed

    def add_role_for_user(self, user: str, role: str, domain: str, *, assigned_by: str | None = None) -> bool:
        """为用户分配基地（或全局）角色。"""
        grouping = (str(user), role, str(domain))
        with self._write_lock:
            added = self._store.add_rule(PolicyType.GROUPING, *grouping, assigned_by=assigned_by)
            self._graph = self._graph.with_groupings(added=[grouping])
        if added:
            logger.info("role assigned user=%s role=%s domain=%s", *grouping)
        return added

    def remove_role_for_user(self, user: str, role: str, domain: str) -> int:
        grouping = (str(user), role, str(domain))
        with self._write_lock:
            removed = self._store.remove_rule(PolicyType.GROUPING, *grouping)
            self._graph = self._graph.with_groupings(removed=[grouping])
        if removed:
            logger.info("role removed user=%s role=%s domain=%s", *grouping)
        return removed

    def remove_role_bindings(self, role: str) -> int:
        """停用某角色的全部用户分配。"""
        with self._write_lock:
            removed = self._store.remove_matching(PolicyType.GROUPING, 1, role)
            stale = [grouping for grouping in self._graph.groupings if grouping[1] == role]
            self._graph = self._graph.with_groupings(removed=stale)
        logger.info("bindings deactivated for role=%s affected=%s", role, removed)
        return removed
