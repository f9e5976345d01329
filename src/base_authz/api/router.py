"""顶层路由注册。"""

from fastapi import APIRouter

from . import bindings, data_permissions, field_permissions, health, permissions, policies, roles

api_router = APIRouter()

# 固定注册顺序，便于在线接口文档展示和问题定位。
api_router.include_router(health.router)
api_router.include_router(permissions.router)
api_router.include_router(roles.router)
api_router.include_router(policies.router)
api_router.include_router(bindings.router)
api_router.include_router(data_permissions.router)
api_router.include_router(field_permissions.router)
