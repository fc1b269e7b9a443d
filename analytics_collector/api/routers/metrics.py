"""
指标 API

返回每个区域最近一次成功窗口的指标点。
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from ...emitter import MetricStore
from ...models import MetricPoint, MetricPointResponse
from ...utils import format_rfc3339
from ..dependencies import get_store

router = APIRouter(prefix="/api/metrics", tags=["metrics"])


def to_response(point: MetricPoint) -> MetricPointResponse:
    return MetricPointResponse(
        name=point.name,
        zone_id=point.zone_id,
        zone_name=point.zone_name,
        labels=dict(point.labels),
        value=point.value,
        timestamp=format_rfc3339(point.timestamp),
    )


@router.get("", response_model=List[MetricPointResponse])
async def list_metrics(
    zone: Optional[str] = Query(None, description="只返回该区域 ID 的指标"),
    metric_store: MetricStore = Depends(get_store)
):
    """获取最新指标点"""
    all_latest = metric_store.get_all_latest()
    if zone is not None:
        all_latest = {zone: all_latest.get(zone, [])}

    return [
        to_response(point)
        for zone_id in sorted(all_latest)
        for point in all_latest[zone_id]
    ]
