"""FastAPI 应用入口点。

启动顺序（任一步失败即中止启动，禁止以空策略图对外服务）：
1. ensure_schema 幂等建表，写入内置角色
2. 执行器全量加载策略与分配
3. 加载数据范围与字段权限配置
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
import logging

from fastapi import FastAPI

from base_authz.api.router import api_router
from base_authz.core.config import Settings, get_settings
from base_authz.core.security import Authenticator
from base_authz.db.session import get_session_factory
from base_authz.exceptions import register_exception_handlers
from base_authz.middlewares import register_middlewares
from base_authz.models.base import GLOBAL_DOMAIN
from base_authz.models.enums import PolicyType, SystemRole
from base_authz.pipeline import RequestPipeline
from base_authz.services.enforcer import Enforcer
from base_authz.services.policy_store import PolicyStore
from base_authz.services.scope_config import ScopeRegistry

logger = logging.getLogger("base_authz")


def setup_logging(level: str | None = None) -> None:
    """初始化日志输出格式与级别。"""
    level = level or get_settings().log_level
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    logging.getLogger("base_authz").setLevel(level)


def bootstrap(
    store: PolicyStore,
    *,
    settings: Settings | None = None,
    authenticator: Authenticator | None = None,
) -> RequestPipeline:
    """构造并加载执行器与配置，存储不可用时直接抛出 StorageUnavailable。"""
    settings = settings or get_settings()
    store.ensure_schema()
    store.ensure_system_roles()
    if settings.bootstrap_admin_user_id:
        store.add_rule(
            PolicyType.GROUPING,
            settings.bootstrap_admin_user_id,
            SystemRole.SUPER_ADMIN,
            GLOBAL_DOMAIN,
            assigned_by="bootstrap",
        )
    enforcer = Enforcer(store)
    enforcer.load()
    registry = ScopeRegistry(store)
    registry.load()
    return RequestPipeline(enforcer, registry, authenticator=authenticator, settings=settings)


async def _reload_periodically(pipeline: RequestPipeline, interval: float) -> None:
    """定时重载，用于恢复写入存储后未同步到内存的变更。"""
    while True:
        await asyncio.sleep(interval)
        if not await asyncio.to_thread(pipeline.reload):
            logger.warning("scheduled reload kept stale snapshot")


def create_app(
    *,
    policy_store: PolicyStore | None = None,
    authenticator: Authenticator | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """创建并配置 FastAPI 应用实例。"""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        setup_logging(settings.log_level)
        store = policy_store or PolicyStore(get_session_factory())
        app.state.pipeline = bootstrap(store, settings=settings, authenticator=authenticator)
        logger.info("authorization engine started env=%s", settings.app_env)

        task = None
        if settings.policy_reload_interval_seconds > 0:
            task = asyncio.create_task(
                _reload_periodically(app.state.pipeline, settings.policy_reload_interval_seconds)
            )
        try:
            yield
        finally:
            if task is not None:
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task

    app = FastAPI(
        title=settings.app_name,
        version="1.0.0",
        debug=settings.app_debug,
        lifespan=lifespan,
        description=(
            "基地级鉴权与数据范围引擎管理接口。\n\n"
            "所有接口统一返回：`{request_id, data, meta}`。\n"
            "通过访问令牌进行认证，基地上下文来自 `X-Base-Id` 请求头或令牌中的 `base_id`。"
        ),
        openapi_tags=[
            {"name": "health", "description": "服务存活与就绪探针。"},
            {"name": "permissions-runtime", "description": "运行时权限查询（给前端鉴权使用，无副作用）。"},
            {"name": "roles", "description": "角色生命周期管理。"},
            {"name": "policies", "description": "功能权限策略维护与重载。"},
            {"name": "bindings", "description": "用户角色分配。"},
            {"name": "data-permissions", "description": "行级数据权限规则与配置元数据。"},
            {"name": "field-permissions", "description": "字段级读写权限。"},
        ],
    )

    register_middlewares(app)
    register_exception_handlers(app)
    app.include_router(api_router, prefix=settings.api_prefix)
    return app


app = create_app()
