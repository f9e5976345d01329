"""统一响应结构：成功为 `{request_id, data, meta}`，失败为 `{request_id, error}`。"""

from datetime import datetime, timezone
from time import perf_counter
from typing import Any

from fastapi import Request

DEFAULT_ERROR_MESSAGE = "internal server error"

_MESSAGES = {"GET": "查询成功。", "PUT": "更新成功。", "DELETE": "删除成功。"}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _request_meta(request: Request) -> dict[str, Any]:
    """请求维度的公共信息，成功与失败响应共用。"""
    return {
        "method": request.method.upper(),
        "path": request.url.path,
        "timestamp": _now(),
    }


def _elapsed_ms(request: Request) -> int | None:
    started_at = getattr(request.state, "request_started_at", None)
    if not isinstance(started_at, float):
        return None
    return int((perf_counter() - started_at) * 1000)


def success(request: Request, data: Any, meta: dict[str, Any] | None = None) -> dict[str, Any]:
    """构造成功响应；经过鉴权的请求在 meta 中附带实际生效的域。"""
    final_meta = {
        "message": _MESSAGES.get(request.method.upper(), "操作成功。"),
        **_request_meta(request),
        "process_ms": _elapsed_ms(request),
    }
    access = getattr(request.state, "access", None)
    if access is not None:
        final_meta["domain"] = access.domain
    if meta:
        final_meta.update(meta)
    return {"request_id": getattr(request.state, "request_id", None), "data": data, "meta": final_meta}


def mutation_result(affected: int, **extra: Any) -> dict[str, Any]:
    """写操作统一返回受影响行数。"""
    return {"affected": affected, **extra}


def error_payload(
    request: Request,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    return {
        "request_id": getattr(request.state, "request_id", None),
        "error": {
            "code": code,
            "message": message,
            "details": {**_request_meta(request), **(details or {})},
        },
    }
