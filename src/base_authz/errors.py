"""鉴权引擎领域异常。

所有异常都携带稳定的机器可读错误码，由 `exceptions.py` 统一转换为响应结构。
"""

from typing import Any


class AccessError(Exception):
    """鉴权链路异常基类。"""

    code = "ACCESS_ERROR"
    status_code = 500
    default_message = "鉴权处理失败。"

    def __init__(self, message: str | None = None, *, details: dict[str, Any] | None = None) -> None:
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)


class AuthenticationRequired(AccessError):
    """缺少或无效的访问凭证。"""

    code = "AUTHENTICATION_REQUIRED"
    status_code = 401
    default_message = "未登录或登录状态已失效。"


class TenantRequired(AccessError):
    """基地级校验缺少基地上下文。"""

    code = "TENANT_REQUIRED"
    status_code = 400
    default_message = "缺少基地上下文。"


class PermissionDenied(AccessError):
    """功能权限校验未通过。

    仅返回缺失的 (resource, action)，不暴露其他用户或角色的授权情况。
    """

    code = "PERMISSION_DENIED"
    status_code = 403
    default_message = "权限不足。"

    def __init__(self, resource: str, action: str, *, domain: str | None = None) -> None:
        details: dict[str, Any] = {"resource": resource, "action": action}
        if domain is not None:
            details["domain"] = domain
        super().__init__(f"缺少权限：{resource}:{action}", details=details)
        self.resource = resource
        self.action = action


class ConfigurationInvalid(AccessError):
    """权限规则配置非法（操作符/值类型不匹配、未知资源或字段等）。"""

    code = "CONFIGURATION_INVALID"
    status_code = 422
    default_message = "权限配置不合法。"


class StorageUnavailable(AccessError):
    """策略存储不可用。"""

    code = "STORAGE_UNAVAILABLE"
    status_code = 503
    default_message = "策略存储暂不可用。"
