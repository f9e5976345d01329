"""应用异常处理注册。"""

import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from base_authz.errors import AccessError
from base_authz.utils.response import DEFAULT_ERROR_MESSAGE, error_payload

logger = logging.getLogger("base_authz.exceptions")

_HTTP_ERRORS = {
    status.HTTP_400_BAD_REQUEST: ("BAD_REQUEST", "请求参数不合法。"),
    status.HTTP_401_UNAUTHORIZED: ("UNAUTHORIZED", "未登录或登录状态已失效。"),
    status.HTTP_403_FORBIDDEN: ("FORBIDDEN", "无权限访问该资源。"),
    status.HTTP_404_NOT_FOUND: ("NOT_FOUND", "请求资源不存在。"),
    status.HTTP_409_CONFLICT: ("CONFLICT", "请求与当前数据状态冲突。"),
    status.HTTP_422_UNPROCESSABLE_CONTENT: ("VALIDATION_ERROR", "请求参数校验失败。"),
}

_SUGGESTIONS = {
    status.HTTP_400_BAD_REQUEST: "请在请求头中携带当前基地 ID 后重试。",
    status.HTTP_401_UNAUTHORIZED: "请重新登录并携带有效访问令牌。",
    status.HTTP_403_FORBIDDEN: "请联系管理员为当前角色分配对应权限。",
    status.HTTP_404_NOT_FOUND: "请确认资源 ID 是否正确，或资源是否已被删除。",
    status.HTTP_409_CONFLICT: "请刷新页面获取最新数据后重试。",
    status.HTTP_422_UNPROCESSABLE_CONTENT: "请根据错误字段提示修正请求参数后重试。",
    status.HTTP_503_SERVICE_UNAVAILABLE: "策略存储暂不可用，请稍后重试。",
}


def _default_http_suggestion(status_code: int) -> str:
    return _SUGGESTIONS.get(status_code, "请稍后重试，若持续失败请联系管理员。")


def _parse_http_detail(detail: object, status_code: int) -> tuple[str, str, dict[str, object]]:
    code, message = _HTTP_ERRORS.get(status_code, ("HTTP_ERROR", "请求处理失败。"))
    details: dict[str, object] = {
        "status_code": status_code,
        "reason": code.lower(),
        "suggestion": _default_http_suggestion(status_code),
    }

    if isinstance(detail, dict):
        code = str(detail.get("code") or code)
        message = str(detail.get("message") or detail.get("detail") or message)
        raw_details = detail.get("details")
        if isinstance(raw_details, dict):
            details.update(raw_details)
        elif raw_details is not None:
            details["details"] = raw_details
        return code, message, details

    if isinstance(detail, str) and detail.strip().lower() not in {"not found", "forbidden", "unauthorized"}:
        return code, detail, details

    if detail is not None and not isinstance(detail, str):
        details["detail"] = detail
    return code, message, details


async def access_error_handler(request: Request, exc: AccessError):
    """鉴权领域异常按稳定错误码输出。"""
    details: dict[str, object] = {
        "status_code": exc.status_code,
        "reason": exc.code.lower(),
        "suggestion": _default_http_suggestion(exc.status_code),
    }
    details.update(exc.details)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(request, code=exc.code, message=exc.message, details=details),
    )


async def http_exception_handler(request: Request, exc: HTTPException):
    """将协议异常统一包装为标准错误结构。"""
    code, message, details = _parse_http_detail(exc.detail, exc.status_code)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(request, code=code, message=message, details=details),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """统一处理请求参数校验错误。"""
    normalized_errors = [
        {
            "field": ".".join(str(item) for item in err.get("loc", []) if item != "body"),
            "message": err.get("msg"),
            "type": err.get("type"),
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
        content=error_payload(
            request,
            code="VALIDATION_ERROR",
            message="请求参数校验失败。",
            details={
                "status_code": status.HTTP_422_UNPROCESSABLE_CONTENT,
                "reason": "validation_error",
                "suggestion": _default_http_suggestion(status.HTTP_422_UNPROCESSABLE_CONTENT),
                "errors": normalized_errors,
            },
        ),
    )


async def unexpected_exception_handler(request: Request, exc: Exception):
    """处理未捕获异常，避免内部细节泄露。"""
    logger.exception("unhandled exception path=%s", request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_payload(
            request,
            code="INTERNAL_ERROR",
            message=DEFAULT_ERROR_MESSAGE,
            details={
                "status_code": status.HTTP_500_INTERNAL_SERVER_ERROR,
                "reason": "unexpected_exception",
                "suggestion": "请稍后重试，若持续失败请联系管理员并提供 request_id。",
            },
        ),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """集中注册异常处理器。"""
    app.exception_handler(AccessError)(access_error_handler)
    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(RequestValidationError)(validation_exception_handler)
    app.exception_handler(Exception)(unexpected_exception_handler)
