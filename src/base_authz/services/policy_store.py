"""策略存储。

以通用元组形式对外暴露 PolicyRule 与 UserRoleBinding，使执行器与表结构解耦：
1. 策略元组 p = (role, domain, resource, action)。
2. 分配元组 g = (user, role, domain)。

所有写操作同步提交，不做批量合并；调用方必须在写入成功后再更新内存图。
批量删除与改名可传入调用方会话，与业务变更在同一事务内提交。
"""

from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
import logging

from sqlalchemy import and_, delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from base_authz.errors import ConfigurationInvalid, StorageUnavailable
from base_authz.models.audit import AuditLog
from base_authz.models.base import GLOBAL_DOMAIN, Base
from base_authz.models.enums import PolicyType, SystemRole
from base_authz.models.permission import DataPermissionRule, FieldPermission, PolicyRule
from base_authz.models.role import Role, UserRoleBinding

logger = logging.getLogger("base_authz.policy_store")

PolicyTuple = tuple[str, str, str, str]
GroupingTuple = tuple[str, str, str]

# 鉴权引擎自有表，ensure_schema 仅创建这些表。
AUTHZ_TABLES = (
    Role.__table__,
    UserRoleBinding.__table__,
    PolicyRule.__table__,
    DataPermissionRule.__table__,
    FieldPermission.__table__,
    AuditLog.__table__,
)

_POLICY_COLUMNS = (PolicyRule.role, PolicyRule.domain, PolicyRule.resource, PolicyRule.action)
_TUPLE_SIZES = {PolicyType.POLICY: 4, PolicyType.GROUPING: 3}

# 内置角色：名称 -> (级别, 说明)。
SYSTEM_ROLES = {
    SystemRole.SUPER_ADMIN: (0, "超级管理员"),
    SystemRole.ADMIN: (1, "管理员"),
}


@dataclass(frozen=True)
class PolicySnapshot:
    """一次全量加载得到的策略与分配元组。"""

    policies: tuple[PolicyTuple, ...] = ()
    groupings: tuple[GroupingTuple, ...] = ()


@dataclass(frozen=True)
class DataRuleSpec:
    """已按角色名称展开的数据权限规则。"""

    id: str
    role: str
    resource: str
    field: str
    operator: str
    value_type: str
    fixed_value: str | None = None


@dataclass(frozen=True)
class FieldRuleSpec:
    """已按角色名称展开的字段权限。"""

    role: str
    resource: str
    field: str
    can_read: bool
    can_write: bool


@dataclass(frozen=True)
class ScopeSnapshot:
    """数据范围与字段权限配置快照。"""

    data_rules: tuple[DataRuleSpec, ...] = ()
    field_rules: tuple[FieldRuleSpec, ...] = ()
    role_levels: Mapping[str, int] = field(default_factory=dict)


def _normalize_values(ptype: str, values: tuple[str, ...]) -> tuple[str, ...]:
    """校验元组类型与长度，并统一转为去空白字符串。"""
    try:
        policy_type = PolicyType(ptype)
    except ValueError as exc:
        raise ConfigurationInvalid(f"未知的策略类型：{ptype}") from exc
    normalized = tuple(str(value).strip() for value in values)
    if len(normalized) != _TUPLE_SIZES[policy_type] or not all(normalized):
        raise ConfigurationInvalid(
            "策略元组字段不完整。",
            details={"ptype": ptype, "expected": _TUPLE_SIZES[policy_type], "values": list(normalized)},
        )
    return normalized


def _role_ids_by_name(name: str):
    return select(Role.id).where(Role.name == name)


class PolicyStore:
    """基于 SQLAlchemy 的策略持久化。"""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        """短生命周期会话；数据库异常统一转换为 StorageUnavailable。"""
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("policy store operation failed error=%s", exc)
            raise StorageUnavailable(details={"reason": type(exc).__name__}) from exc
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @contextmanager
    def _joined(self, db: Session | None) -> Iterator[Session]:
        """传入调用方会话时只刷新不提交，提交与回滚由调用方负责。"""
        if db is None:
            with self._session() as own:
                yield own
            return
        try:
            yield db
            db.flush()
        except SQLAlchemyError as exc:
            logger.error("policy store operation failed error=%s", exc)
            raise StorageUnavailable(details={"reason": type(exc).__name__}) from exc

    def ensure_schema(self) -> None:
        """幂等创建鉴权相关表。"""
        with self._session() as db:
            Base.metadata.create_all(bind=db.connection(), tables=list(AUTHZ_TABLES), checkfirst=True)
        logger.info("policy store schema ensured tables=%s", len(AUTHZ_TABLES))

    def ensure_system_roles(self) -> int:
        """幂等写入内置角色及其权限配置管理授权，返回新建条数。"""
        created = 0
        with self._session() as db:
            existing = set(db.execute(select(Role.name)).scalars().all())
            for name, (level, description) in SYSTEM_ROLES.items():
                if name not in existing:
                    db.add(Role(name=str(name), level=level, is_system=True, description=description))
                    created += 1
        for name in SYSTEM_ROLES:
            if self.add_rule(PolicyType.POLICY, name, GLOBAL_DOMAIN, "permission", "manage"):
                created += 1
        if created:
            logger.info("system roles seeded created=%s", created)
        return created

    def load_all(self) -> PolicySnapshot:
        """加载全部策略元组与有效的角色分配元组。"""
        with self._session() as db:
            policies = db.execute(select(*_POLICY_COLUMNS).order_by(*_POLICY_COLUMNS)).all()
            groupings = db.execute(
                select(UserRoleBinding.user_id, Role.name, UserRoleBinding.domain)
                .join(Role, Role.id == UserRoleBinding.role_id)
                .where(UserRoleBinding.is_active.is_(True))
                .order_by(UserRoleBinding.user_id, UserRoleBinding.domain, Role.name)
            ).all()
        return PolicySnapshot(
            policies=tuple((row[0], row[1], row[2], row[3]) for row in policies),
            groupings=tuple((row[0], row[1], row[2]) for row in groupings),
        )

    def load_scope_config(self) -> ScopeSnapshot:
        """加载有效数据权限规则、字段权限与角色级别。"""
        with self._session() as db:
            roles = db.execute(select(Role.id, Role.name, Role.level)).all()
            role_names = {row.id: row.name for row in roles}
            data_rows = (
                db.execute(
                    select(DataPermissionRule)
                    .where(DataPermissionRule.is_active.is_(True))
                    .order_by(DataPermissionRule.resource, DataPermissionRule.field)
                )
                .scalars()
                .all()
            )
            field_rows = (
                db.execute(select(FieldPermission).order_by(FieldPermission.resource, FieldPermission.field))
                .scalars()
                .all()
            )
            data_rules = tuple(
                DataRuleSpec(
                    id=str(rule.id),
                    role=role_names[rule.role_id],
                    resource=rule.resource,
                    field=rule.field,
                    operator=rule.operator,
                    value_type=rule.value_type,
                    fixed_value=rule.fixed_value,
                )
                for rule in data_rows
                if rule.role_id in role_names
            )
            field_rules = tuple(
                FieldRuleSpec(
                    role=role_names[perm.role_id],
                    resource=perm.resource,
                    field=perm.field,
                    can_read=perm.can_read,
                    can_write=perm.can_write,
                )
                for perm in field_rows
                if perm.role_id in role_names
            )
        return ScopeSnapshot(
            data_rules=data_rules,
            field_rules=field_rules,
            role_levels={row.name: row.level for row in roles},
        )

    def add_rule(self, ptype: str, *values: str, assigned_by: str | None = None) -> bool:
        """写入一条策略或分配元组，已存在时返回 False。"""
        normalized = _normalize_values(ptype, values)
        with self._session() as db:
            if ptype == PolicyType.POLICY:
                return self._add_policy(db, normalized)
            return self._add_grouping(db, normalized, assigned_by=assigned_by)

    def _add_policy(self, db: Session, values: tuple[str, ...]) -> bool:
        role, domain, resource, action = values
        conditions = [column == value for column, value in zip(_POLICY_COLUMNS, values)]
        if db.execute(select(PolicyRule.id).where(and_(*conditions))).first() is not None:
            return False
        db.add(PolicyRule(role=role, domain=domain, resource=resource, action=action))
        try:
            db.flush()
        except IntegrityError:
            # 并发写入同一元组，以唯一约束为准。
            db.rollback()
            return False
        return True

    def _add_grouping(self, db: Session, values: tuple[str, ...], *, assigned_by: str | None) -> bool:
        user_id, role_name, domain = values
        role = db.execute(select(Role).where(Role.name == role_name)).scalar_one_or_none()
        if role is None:
            raise ConfigurationInvalid(f"角色不存在：{role_name}", details={"role": role_name})
        existing = db.execute(
            select(UserRoleBinding.id)
            .where(UserRoleBinding.user_id == user_id)
            .where(UserRoleBinding.role_id == role.id)
            .where(UserRoleBinding.domain == domain)
            .where(UserRoleBinding.is_active.is_(True))
        ).first()
        if existing is not None:
            return False
        db.add(
            UserRoleBinding(
                user_id=user_id,
                role_id=role.id,
                domain=domain,
                is_active=True,
                assigned_by=assigned_by,
            )
        )
        try:
            db.flush()
        except IntegrityError:
            db.rollback()
            return False
        return True

    def remove_rule(self, ptype: str, *values: str) -> int:
        """删除策略元组或停用分配元组，返回受影响行数。"""
        normalized = _normalize_values(ptype, values)
        return self.remove_matching(ptype, 0, *normalized)

    def remove_matching(self, ptype: str, field_index: int, *values: str, db: Session | None = None) -> int:
        """按位置前缀批量删除（分配元组为软删除）。

        `values` 从 `field_index` 位置开始依次匹配，空字符串表示该位置不限。
        """
        try:
            policy_type = PolicyType(ptype)
        except ValueError as exc:
            raise ConfigurationInvalid(f"未知的策略类型：{ptype}") from exc
        size = _TUPLE_SIZES[policy_type]
        if field_index < 0 or field_index + len(values) > size:
            raise ConfigurationInvalid("过滤位置超出元组范围。", details={"field_index": field_index})
        matchers = {field_index + offset: str(value) for offset, value in enumerate(values) if value != ""}
        if not matchers:
            raise ConfigurationInvalid("批量删除至少需要一个过滤条件。")

        with self._joined(db) as session:
            if policy_type == PolicyType.POLICY:
                conditions = [_POLICY_COLUMNS[index] == value for index, value in matchers.items()]
                result = session.execute(delete(PolicyRule).where(*conditions))
            else:
                conditions = [UserRoleBinding.is_active.is_(True)]
                for index, value in matchers.items():
                    if index == 0:
                        conditions.append(UserRoleBinding.user_id == value)
                    elif index == 1:
                        conditions.append(UserRoleBinding.role_id.in_(_role_ids_by_name(value)))
                    else:
                        conditions.append(UserRoleBinding.domain == value)
                result = session.execute(
                    update(UserRoleBinding)
                    .where(*conditions)
                    .values(is_active=False)
                    .execution_options(synchronize_session=False)
                )
            affected = result.rowcount or 0
        logger.info("policy store removed ptype=%s matchers=%s affected=%s", ptype, matchers, affected)
        return affected

    def rename_subject(self, old_name: str, new_name: str, *, db: Session | None = None) -> int:
        """角色改名后同步策略元组中的主体名称。"""
        with self._joined(db) as session:
            result = session.execute(
                update(PolicyRule)
                .where(PolicyRule.role == old_name)
                .values(role=new_name)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount or 0
