"""服务层能力导出集合。"""

from base_authz.services.data_scope import (
    MATCH_ALL,
    MATCH_NONE,
    AllOf,
    AnyOf,
    Condition,
    DataScopeResolver,
    EvaluationContext,
    Predicate,
    ScopeLookups,
    SqlScopeLookups,
    compile_predicate,
    validate_data_rule,
)
from base_authz.services.enforcer import MANAGE_ACTION, Enforcer, PolicyGraph
from base_authz.services.field_mask import FieldAccess, FieldMask, FieldSet, validate_field_permission
from base_authz.services.policy_store import PolicySnapshot, PolicyStore, ScopeSnapshot
from base_authz.services.scope_config import ScopeConfig, ScopeRegistry

__all__ = [
    "MATCH_ALL",
    "MATCH_NONE",
    "AllOf",
    "AnyOf",
    "Condition",
    "DataScopeResolver",
    "EvaluationContext",
    "Predicate",
    "ScopeLookups",
    "SqlScopeLookups",
    "compile_predicate",
    "validate_data_rule",
    "MANAGE_ACTION",
    "Enforcer",
    "PolicyGraph",
    "FieldAccess",
    "FieldMask",
    "FieldSet",
    "validate_field_permission",
    "PolicySnapshot",
    "PolicyStore",
    "ScopeSnapshot",
    "ScopeConfig",
    "ScopeRegistry",
]
