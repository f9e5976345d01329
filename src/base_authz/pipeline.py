"""请求鉴权流水线。

按固定顺序执行，任一阶段失败立即终止，不回退也不重试：
1. 认证 → AuthenticationRequired (401)
2. 解析基地上下文 → TenantRequired (400，仅基地级校验)
3. 功能权限校验 → PermissionDenied (403)
4. 注入数据范围谓词与字段访问范围
5. 执行业务处理
6. 对返回体应用字段掩码

流水线本身不依赖 Web 框架，FastAPI 适配见 `dependencies.py`。
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
import logging
from typing import Any

from base_authz.core.config import Settings, get_settings
from base_authz.core.security import Authenticator, Identity, JwtAuthenticator
from base_authz.errors import PermissionDenied, TenantRequired
from base_authz.models.base import GLOBAL_DOMAIN
from base_authz.services.data_scope import DataScopeResolver, EvaluationContext, Predicate, ScopeLookups
from base_authz.services.enforcer import MANAGE_ACTION, Enforcer
from base_authz.services.field_mask import FieldAccess, FieldMask
from base_authz.services.scope_config import ScopeRegistry

logger = logging.getLogger("base_authz.pipeline")


@dataclass(frozen=True)
class AccessContext:
    """注入到业务处理的请求级鉴权结果。"""

    user_id: str
    # 校验时使用的域；系统级校验为 `*`。
    domain: str
    roles: frozenset[str]
    resource: str
    action: str
    predicate: Predicate
    fields: FieldAccess
    _mask: FieldMask = field(compare=False, repr=False)

    def matches(self, row: Any) -> bool:
        """内存中判断单行是否落在可见范围内。"""
        return self.predicate.matches(row)

    def filter(self, data: Any) -> Any:
        """按字段掩码过滤返回体。"""
        return self._mask.filter_response(data, self.fields)

    def writable(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        """剔除写入载荷中不可写字段。"""
        return self._mask.filter_writable(payload, self.fields)


class RequestPipeline:
    """组合执行器、数据范围解析与字段掩码的请求级鉴权流程。"""

    def __init__(
        self,
        enforcer: Enforcer,
        registry: ScopeRegistry,
        *,
        authenticator: Authenticator | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.enforcer = enforcer
        self.registry = registry
        self.authenticator = authenticator or JwtAuthenticator(settings)
        self.resolver = DataScopeResolver(registry, admin_max_level=settings.scope_admin_max_level)
        self.field_mask = FieldMask(registry, admin_max_level=settings.scope_admin_max_level)

    def authenticate(self, authorization: str | None) -> Identity:
        return self.authenticator.authenticate(authorization)

    def resolve_domain(self, identity: Identity, requested: str | None) -> str | None:
        """请求头优先，其次令牌中的 base_id；`*` 不是合法基地。"""
        for candidate in (requested, identity.base_id):
            value = str(candidate).strip() if candidate is not None else ""
            if value and value != GLOBAL_DOMAIN:
                return value
        return None

    def check(
        self,
        identity: Identity,
        domain: str | None,
        resource: str,
        action: str,
        *,
        tenant_scoped: bool = True,
        allow_manage: bool = True,
    ) -> str:
        """功能权限校验，返回实际使用的域。"""
        if tenant_scoped:
            if domain is None:
                raise TenantRequired(details={"resource": resource, "action": action})
            effective = domain
        else:
            effective = GLOBAL_DOMAIN

        if self.enforcer.enforce(identity.user_id, effective, resource, action):
            return effective
        if allow_manage and action != MANAGE_ACTION:
            if self.enforcer.enforce(identity.user_id, effective, resource, MANAGE_ACTION):
                return effective

        logger.warning(
            "permission denied user=%s domain=%s resource=%s action=%s",
            identity.user_id,
            effective,
            resource,
            action,
        )
        raise PermissionDenied(resource, action, domain=effective)

    def inject(
        self,
        identity: Identity,
        domain: str,
        resource: str,
        action: str,
        lookups: ScopeLookups | None = None,
    ) -> AccessContext:
        roles = self.enforcer.effective_roles(identity.user_id, domain)
        evaluation = EvaluationContext(
            user_id=identity.user_id,
            domain=None if domain == GLOBAL_DOMAIN else domain,
            roles=roles,
        )
        return AccessContext(
            user_id=identity.user_id,
            domain=domain,
            roles=roles,
            resource=resource,
            action=action,
            predicate=self.resolver.resolve(evaluation, resource, lookups),
            fields=self.field_mask.compute(roles, resource),
            _mask=self.field_mask,
        )

    def authorize(
        self,
        authorization: str | None,
        requested_domain: str | None,
        resource: str,
        action: str,
        *,
        tenant_scoped: bool = True,
        allow_manage: bool = True,
        lookups: ScopeLookups | None = None,
    ) -> AccessContext:
        """执行阶段 1-4，返回注入给业务处理的上下文。"""
        identity = self.authenticate(authorization)
        domain = self.resolve_domain(identity, requested_domain)
        effective = self.check(
            identity,
            domain,
            resource,
            action,
            tenant_scoped=tenant_scoped,
            allow_manage=allow_manage,
        )
        return self.inject(identity, effective, resource, action, lookups)

    def execute(
        self,
        handler: Callable[[AccessContext], Any],
        *,
        authorization: str | None,
        requested_domain: str | None,
        resource: str,
        action: str,
        tenant_scoped: bool = True,
        allow_manage: bool = True,
        lookups: ScopeLookups | None = None,
    ) -> Any:
        """完整执行全部阶段并返回已过滤的结果。"""
        ctx = self.authorize(
            authorization,
            requested_domain,
            resource,
            action,
            tenant_scoped=tenant_scoped,
            allow_manage=allow_manage,
            lookups=lookups,
        )
        return ctx.filter(handler(ctx))

    def reload(self) -> bool:
        """重载功能权限图与数据范围配置，任一失败均保留旧快照。"""
        graph_ok = self.enforcer.reload()
        scope_ok = self.registry.reload()
        return graph_ok and scope_ok
