"""路由模块导出集合。"""

from . import bindings, data_permissions, field_permissions, health, permissions, policies, roles

__all__ = [
    "bindings",
    "data_permissions",
    "field_permissions",
    "health",
    "permissions",
    "policies",
    "roles",
]
