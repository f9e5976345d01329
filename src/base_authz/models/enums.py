"""领域枚举定义。"""

from enum import StrEnum


class PolicyType(StrEnum):
    """策略元组类型。"""

    POLICY = "p"  # (role, domain, resource, action) 授权元组。
    GROUPING = "g"  # (user, role, domain) 角色分配元组。


class DataOperator(StrEnum):
    """数据权限比较操作符。"""

    EQ = "eq"  # 等于。
    IN = "in"  # 属于集合。
    CONTAINS = "contains"  # 子串或数组包含。
    NOT_EQ = "notEq"  # 不等于。


class DataValueType(StrEnum):
    """数据权限取值来源。"""

    CURRENT_USER = "currentUser"  # 当前登录用户 ID。
    CURRENT_BASE = "currentBase"  # 当前请求所在基地 ID。
    CURRENT_USER_BASES = "currentUserBases"  # 当前用户有效绑定的全部基地。
    CURRENT_USER_POINTS = "currentUserPoints"  # 当前用户作为老板的全部点位。
    CURRENT_USER_DEALER_POINTS = "currentUserDealerPoints"  # 当前用户作为经销商的全部点位。
    FIXED = "fixed"  # 规则中配置的固定值。


# 解析结果为集合的取值来源。
SET_VALUE_TYPES = frozenset(
    {
        DataValueType.CURRENT_USER_BASES,
        DataValueType.CURRENT_USER_POINTS,
        DataValueType.CURRENT_USER_DEALER_POINTS,
    }
)
# 解析结果为单值的取值来源。
SCALAR_VALUE_TYPES = frozenset(
    {
        DataValueType.CURRENT_USER,
        DataValueType.CURRENT_BASE,
        DataValueType.FIXED,
    }
)


class SystemRole(StrEnum):
    """内置系统角色。"""

    SUPER_ADMIN = "SUPER_ADMIN"  # level 0，最高权限。
    ADMIN = "ADMIN"  # level 1，管理员。
