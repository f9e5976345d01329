"""数据范围解析（行级数据权限）。

把角色在某资源上的数据权限规则转换为抽象谓词树：
1. 同一角色的多条规则按 AND 组合（逐步收窄）。
2. 同一用户持有的不同角色按 OR 组合（任一角色授权即可）。
3. 角色在该资源上没有任何规则时视为不限制。

解析器只负责集合型取值所需的旁路查询，不执行任何业务查询。
"""

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
import logging
from typing import Any, Protocol

from sqlalchemy import and_, column, false, or_, select, table, true
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import ColumnElement

from base_authz.core.config import Settings, get_settings
from base_authz.errors import ConfigurationInvalid
from base_authz.models.base import GLOBAL_DOMAIN
from base_authz.models.enums import SCALAR_VALUE_TYPES, SET_VALUE_TYPES, DataOperator, DataValueType
from base_authz.models.role import UserRoleBinding
from base_authz.services.catalog import STRING, field_type, format_field_value, get_resource, parse_field_value
from base_authz.services.policy_store import DataRuleSpec
from base_authz.services.scope_config import ScopeRegistry

logger = logging.getLogger("base_authz.data_scope")


class Predicate:
    """谓词树节点基类。"""

    def matches(self, row: Any) -> bool:
        raise NotImplementedError

    def to_dict(self) -> dict[str, Any]:
        raise NotImplementedError


def _field_value(row: Any, field: str) -> Any:
    if isinstance(row, Mapping):
        return row.get(field)
    return getattr(row, field, None)


def _same(left: Any, right: Any) -> bool:
    """宽松相等：基地 ID 可能以整数或字符串出现。"""
    return left == right or str(left) == str(right)


@dataclass(frozen=True)
class Condition(Predicate):
    """叶子比较：field <operator> value。"""

    field: str
    operator: str
    value: Any

    def matches(self, row: Any) -> bool:
        actual = _field_value(row, self.field)
        # 与 SQL 三值逻辑保持一致：字段为空时任何比较都不成立。
        if actual is None:
            return False
        if self.operator == DataOperator.EQ:
            return _same(actual, self.value)
        if self.operator == DataOperator.NOT_EQ:
            return not _same(actual, self.value)
        if self.operator == DataOperator.IN:
            return any(_same(actual, item) for item in self.value)
        if self.operator == DataOperator.CONTAINS:
            if isinstance(actual, (list, tuple, set, frozenset)):
                return any(_same(item, self.value) for item in actual)
            return str(self.value) in str(actual)
        return False

    def to_dict(self) -> dict[str, Any]:
        value = self.value
        if isinstance(value, frozenset):
            value = sorted(value, key=str)
        return {"field": self.field, "op": self.operator, "value": value}


@dataclass(frozen=True)
class AllOf(Predicate):
    """全部子谓词成立；无子节点时恒真。"""

    children: tuple[Predicate, ...] = ()

    def matches(self, row: Any) -> bool:
        return all(child.matches(row) for child in self.children)

    def to_dict(self) -> dict[str, Any]:
        return {"and": [child.to_dict() for child in self.children]}


@dataclass(frozen=True)
class AnyOf(Predicate):
    """任一子谓词成立；无子节点时恒假。"""

    children: tuple[Predicate, ...] = ()

    def matches(self, row: Any) -> bool:
        return any(child.matches(row) for child in self.children)

    def to_dict(self) -> dict[str, Any]:
        return {"or": [child.to_dict() for child in self.children]}


MATCH_ALL = AllOf()
MATCH_NONE = AnyOf()


def all_of(predicates: Iterable[Predicate]) -> Predicate:
    """构造 AND 节点并做常量折叠。"""
    children: list[Predicate] = []
    for predicate in predicates:
        if predicate == MATCH_NONE:
            return MATCH_NONE
        if predicate != MATCH_ALL:
            children.append(predicate)
    if len(children) == 1:
        return children[0]
    return AllOf(tuple(children))


def any_of(predicates: Iterable[Predicate]) -> Predicate:
    """构造 OR 节点并做常量折叠。"""
    children: list[Predicate] = []
    for predicate in predicates:
        if predicate == MATCH_ALL:
            return MATCH_ALL
        if predicate != MATCH_NONE:
            children.append(predicate)
    if len(children) == 1:
        return children[0]
    return AnyOf(tuple(children))


def _coerce(target: ColumnElement, value: Any) -> Any:
    try:
        python_type = target.type.python_type
    except NotImplementedError:
        return value
    if python_type in (int, float) and isinstance(value, str):
        try:
            return python_type(value)
        except ValueError:
            return value
    return value


def compile_predicate(
    predicate: Predicate,
    columns: Mapping[str, ColumnElement] | Callable[[str], ColumnElement],
) -> ColumnElement[bool]:
    """把谓词树翻译为 SQLAlchemy 布尔表达式。

    `columns` 为 {字段名: 列} 映射，或按字段名返回列的函数。
    """
    lookup = columns if callable(columns) else columns.__getitem__

    if isinstance(predicate, AllOf):
        if not predicate.children:
            return true()
        return and_(*(compile_predicate(child, lookup) for child in predicate.children))
    if isinstance(predicate, AnyOf):
        if not predicate.children:
            return false()
        return or_(*(compile_predicate(child, lookup) for child in predicate.children))
    if not isinstance(predicate, Condition):
        raise TypeError(f"unsupported predicate node: {predicate!r}")

    target = lookup(predicate.field)
    if predicate.operator == DataOperator.EQ:
        return target == _coerce(target, predicate.value)
    if predicate.operator == DataOperator.NOT_EQ:
        return target != _coerce(target, predicate.value)
    if predicate.operator == DataOperator.IN:
        return target.in_(sorted((_coerce(target, item) for item in predicate.value), key=str))
    if predicate.operator == DataOperator.CONTAINS:
        # 固定值中的 % 与 _ 按字面匹配，与内存中的子串语义一致。
        return target.contains(str(predicate.value), autoescape=True)
    raise ValueError(f"unsupported operator: {predicate.operator}")


class ScopeLookups(Protocol):
    """集合型取值的旁路查询。"""

    def user_bases(self, user_id: str) -> Iterable[Any]: ...

    def user_points(self, user_id: str) -> Iterable[Any]: ...

    def user_dealer_points(self, user_id: str) -> Iterable[Any]: ...


class SqlScopeLookups:
    """基于请求会话的旁路查询实现，每次调用都实时查询。"""

    def __init__(self, db: Session, settings: Settings | None = None) -> None:
        self._db = db
        settings = settings or get_settings()
        self._owner_column = settings.scope_point_owner_column
        self._dealer_column = settings.scope_point_dealer_column
        self._points = table(
            settings.scope_point_table,
            column("id"),
            column(self._owner_column),
            column(self._dealer_column),
        )

    def user_bases(self, user_id: str) -> list[str]:
        rows = self._db.execute(
            select(UserRoleBinding.domain)
            .where(UserRoleBinding.user_id == user_id)
            .where(UserRoleBinding.is_active.is_(True))
            .where(UserRoleBinding.domain != GLOBAL_DOMAIN)
            .distinct()
        )
        return list(rows.scalars().all())

    def _point_ids(self, owner_column: str, user_id: str) -> list[Any]:
        rows = self._db.execute(select(self._points.c.id).where(self._points.c[owner_column] == user_id))
        return list(rows.scalars().all())

    def user_points(self, user_id: str) -> list[Any]:
        return self._point_ids(self._owner_column, user_id)

    def user_dealer_points(self, user_id: str) -> list[Any]:
        return self._point_ids(self._dealer_column, user_id)


@dataclass(frozen=True)
class EvaluationContext:
    """请求级鉴权上下文，请求结束即丢弃。"""

    user_id: str
    domain: str | None
    roles: frozenset[str]


class _Unresolvable(Exception):
    pass


class _ValueResolver:
    """单次解析内的取值器；集合型查询在本次解析内只执行一次。"""

    def __init__(self, ctx: EvaluationContext, lookups: ScopeLookups | None) -> None:
        self._ctx = ctx
        self._lookups = lookups
        self._sets: dict[str, frozenset[Any]] = {}

    def resolve(self, rule: DataRuleSpec) -> Any:
        value_type = rule.value_type
        if value_type == DataValueType.CURRENT_USER:
            return self._ctx.user_id
        if value_type == DataValueType.CURRENT_BASE:
            if self._ctx.domain in (None, GLOBAL_DOMAIN):
                raise _Unresolvable("current base unavailable")
            return self._ctx.domain
        if value_type == DataValueType.FIXED:
            if rule.fixed_value is None:
                raise _Unresolvable("fixed value missing")
            # 固定值按字段声明类型转换，布尔与数值字段才能与行数据比较。
            type_ = field_type(rule.resource, rule.field)
            try:
                if rule.operator == DataOperator.IN:
                    return frozenset(
                        parse_field_value(type_, item) for item in rule.fixed_value.split(",") if item.strip()
                    )
                return parse_field_value(type_, rule.fixed_value)
            except ValueError as exc:
                raise _Unresolvable(f"fixed value is not a {type_}") from exc
        if value_type in SET_VALUE_TYPES:
            if value_type not in self._sets:
                self._sets[value_type] = self._lookup(value_type)
            return self._sets[value_type]
        raise _Unresolvable(f"unknown value type {value_type}")

    def _lookup(self, value_type: str) -> frozenset[Any]:
        if self._lookups is None:
            raise _Unresolvable("no lookups available")
        user_id = self._ctx.user_id
        if value_type == DataValueType.CURRENT_USER_BASES:
            return frozenset(self._lookups.user_bases(user_id))
        if value_type == DataValueType.CURRENT_USER_POINTS:
            return frozenset(self._lookups.user_points(user_id))
        return frozenset(self._lookups.user_dealer_points(user_id))


class DataScopeResolver:
    """根据当前配置快照生成数据范围谓词。"""

    def __init__(self, registry: ScopeRegistry, *, admin_max_level: int = 1) -> None:
        self._registry = registry
        self._admin_max_level = admin_max_level

    def resolve(
        self,
        ctx: EvaluationContext,
        resource: str,
        lookups: ScopeLookups | None = None,
    ) -> Predicate:
        """返回用户在资源上的可见范围谓词。"""
        if not ctx.roles:
            return MATCH_NONE

        config = self._registry.config
        values = _ValueResolver(ctx, lookups)
        branches: list[Predicate] = []
        for role in sorted(ctx.roles):
            if config.is_admin(role, self._admin_max_level):
                return MATCH_ALL
            rules = config.rules_for(role, resource)
            if not rules:
                # 未配置规则即不限制，权限仅由功能权限校验把关。
                logger.debug("no data rules role=%s resource=%s, unrestricted", role, resource)
                return MATCH_ALL
            branches.append(self._role_predicate(ctx, role, rules, values))

        predicate = any_of(branches)
        logger.debug(
            "data scope resolved user=%s domain=%s resource=%s predicate=%s",
            ctx.user_id,
            ctx.domain,
            resource,
            predicate.to_dict(),
        )
        return predicate

    def _role_predicate(
        self,
        ctx: EvaluationContext,
        role: str,
        rules: tuple[DataRuleSpec, ...],
        values: _ValueResolver,
    ) -> Predicate:
        conditions: list[Predicate] = []
        for rule in rules:
            if rule.operator not in DataOperator.__members__.values():
                logger.warning("data rule ignored id=%s unknown operator=%s", rule.id, rule.operator)
                return MATCH_NONE
            try:
                value = values.resolve(rule)
            except _Unresolvable as exc:
                # 取值失败时该角色分支不授予任何数据。
                logger.warning(
                    "data rule unresolvable id=%s role=%s user=%s reason=%s", rule.id, role, ctx.user_id, exc
                )
                return MATCH_NONE
            if rule.operator == DataOperator.IN and not isinstance(value, frozenset):
                value = frozenset([value])
            conditions.append(Condition(rule.field, rule.operator, value))
        return all_of(conditions)


def validate_data_rule(
    *,
    resource: str,
    field: str,
    operator: str,
    value_type: str,
    fixed_value: str | None,
) -> str | None:
    """配置阶段校验数据权限规则，返回规范化后的固定值。"""
    descriptor = get_resource(resource)
    if descriptor is None:
        raise ConfigurationInvalid(f"未知资源：{resource}", details={"resource": resource})
    if field not in descriptor.field_keys():
        raise ConfigurationInvalid(
            f"资源 {resource} 不支持按字段 {field} 过滤。",
            details={"resource": resource, "field": field},
        )
    try:
        op = DataOperator(operator)
    except ValueError as exc:
        raise ConfigurationInvalid(f"未知操作符：{operator}", details={"operator": operator}) from exc
    try:
        kind = DataValueType(value_type)
    except ValueError as exc:
        raise ConfigurationInvalid(f"未知取值类型：{value_type}", details={"value_type": value_type}) from exc

    if op == DataOperator.IN:
        if kind not in SET_VALUE_TYPES and kind != DataValueType.FIXED:
            raise ConfigurationInvalid(
                "in 操作符需要集合型取值或逗号分隔的固定值。",
                details={"operator": operator, "value_type": value_type},
            )
    elif kind not in SCALAR_VALUE_TYPES:
        raise ConfigurationInvalid(
            f"{operator} 操作符需要单值取值类型。",
            details={"operator": operator, "value_type": value_type},
        )

    type_ = descriptor.field(field).type
    if op == DataOperator.CONTAINS and type_ != STRING:
        raise ConfigurationInvalid(
            "contains 操作符仅适用于字符串字段。",
            details={"operator": operator, "field": field, "field_type": type_},
        )

    normalized = fixed_value.strip() if fixed_value is not None else None
    if kind == DataValueType.FIXED:
        if op == DataOperator.IN and normalized:
            items = [item.strip() for item in normalized.split(",")]
        else:
            items = [normalized]
        items = [item for item in items if item]
        if not items:
            raise ConfigurationInvalid("固定值类型必须提供 fixed_value。", details={"value_type": value_type})
        try:
            typed = [parse_field_value(type_, item) for item in items]
        except ValueError as exc:
            raise ConfigurationInvalid(
                f"固定值与字段 {field} 的类型 {type_} 不符。",
                details={"field": field, "field_type": type_, "fixed_value": fixed_value},
            ) from exc
        return ",".join(format_field_value(item) for item in typed)
    if normalized:
        raise ConfigurationInvalid("仅固定值类型允许设置 fixed_value。", details={"value_type": value_type})
    return None
