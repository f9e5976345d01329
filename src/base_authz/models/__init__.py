"""ORM 模型导出集合。"""

from base_authz.models.audit import AuditLog
from base_authz.models.base import GLOBAL_DOMAIN, Base
from base_authz.models.permission import DataPermissionRule, FieldPermission, PolicyRule
from base_authz.models.role import Role, UserRoleBinding

__all__ = [
    "AuditLog",
    "Base",
    "DataPermissionRule",
    "FieldPermission",
    "GLOBAL_DOMAIN",
    "PolicyRule",
    "Role",
    "UserRoleBinding",
]
