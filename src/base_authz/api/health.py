"""健康检查接口。"""

from sqlalchemy import text
from sqlalchemy.orm import Session

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from base_authz.db.session import get_db
from base_authz.dependencies import get_pipeline
from base_authz.pipeline import RequestPipeline
from base_authz.utils.response import error_payload, success
from base_authz.schemas.common import ErrorResponse, SuccessResponse
from base_authz.schemas.responses import HealthStatusData

router = APIRouter(prefix="/health", tags=["health"])


@router.get(
    "/live",
    summary="存活探针",
    description="用于容器编排系统检测服务进程是否存活。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[HealthStatusData],
    responses={500: {"model": ErrorResponse}},
)
def live(request: Request):
    """仅表示进程存活，不校验外部依赖。"""
    return success(request, {"status": "ok"})


@router.get(
    "/ready",
    summary="就绪探针",
    description="校验数据库连通性以及策略图是否已加载。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[HealthStatusData],
    responses={503: {"model": ErrorResponse}},
)
def ready(
    request: Request,
    db: Session = Depends(get_db),
    pipeline: RequestPipeline = Depends(get_pipeline),
):
    """策略图未加载时不对外提供服务。"""
    db.execute(text("select 1"))
    if not pipeline.enforcer.loaded:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=error_payload(request, "POLICY_NOT_LOADED", "策略尚未加载完成。"),
        )
    graph = pipeline.enforcer.graph
    return success(
        request,
        {
            "status": "ready",
            "details": {"policies": len(graph.policies), "groupings": len(graph.groupings)},
        },
    )
