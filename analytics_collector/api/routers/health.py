"""
健康检查 API
"""

from fastapi import APIRouter, Depends

from ...collector import ZoneState
from ...emitter import MetricStore
from ...models import HealthResponse
from ...utils import format_rfc3339
from ..dependencies import get_store

router = APIRouter(prefix="/api/health", tags=["health"])


@router.get("", response_model=HealthResponse)
async def health(metric_store: MetricStore = Depends(get_store)):
    """服务状态与最近一次周期概况"""
    report = metric_store.get_report()
    if report is None:
        return HealthResponse(status="starting")

    return HealthResponse(
        status="ok" if report.error is None else "degraded",
        last_cycle_at=format_rfc3339(report.finished_at or report.started_at),
        zones_done=report.count(ZoneState.DONE),
        zones_failed=report.count(ZoneState.FAILED),
    )
