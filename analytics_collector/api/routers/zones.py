"""
区域 API

提供最近一次采集周期的区域状态和单维度 Top-N 汇总。
"""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...aggregator import top_n
from ...emitter import MetricStore
from ...models import (
    OPTIONAL_DIMENSIONS, MANDATORY_DIMENSIONS, RawGroup,
    SummaryItem, ZoneStatusResponse, ZoneSummaryResponse,
)
from ...utils import format_rfc3339
from ..dependencies import get_store

router = APIRouter(prefix="/api/zones", tags=["zones"])

KNOWN_DIMENSIONS = MANDATORY_DIMENSIONS + OPTIONAL_DIMENSIONS


@router.get("", response_model=List[ZoneStatusResponse])
async def list_zone_status(metric_store: MetricStore = Depends(get_store)):
    """
    获取区域状态

    返回最近一次采集周期中每个区域的结果。
    """
    report = metric_store.get_report()
    if report is None:
        return []

    return [
        ZoneStatusResponse(
            zone_id=r.zone.id,
            zone_name=r.zone.display_name,
            state=r.state.value,
            since=format_rfc3339(r.window.since) if r.window else None,
            until=format_rfc3339(r.window.until) if r.window else None,
            points=r.points,
            possibly_truncated=r.possibly_truncated,
            error_kind=r.error_kind.value if r.error_kind else None,
            error=r.error,
        )
        for r in report.zones
    ]


@router.get("/{zone_id}/summary", response_model=ZoneSummaryResponse)
async def get_zone_summary(
    zone_id: str,
    dimension: str = Query("action", description="维度：action, source, country"),
    limit: int = Query(10, ge=1, le=100, description="返回数量"),
    metric_store: MetricStore = Depends(get_store)
):
    """
    单维度 Top-N

    基于区域最新指标点，按计数降序汇总。
    """
    if dimension not in KNOWN_DIMENSIONS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid dimension. Must be one of: {list(KNOWN_DIMENSIONS)}"
        )

    points = metric_store.get_latest(zone_id)
    if points is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Zone {zone_id} not found"
        )

    # 关闭 country 时指标点没有该标签
    if points and dimension not in points[0].labels:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Dimension {dimension} is not collected"
        )

    # 指标点还原为分组后排名
    groups = [RawGroup(count=p.value, dimensions=p.labels) for p in points]
    return ZoneSummaryResponse(
        zone_id=zone_id,
        dimension=dimension,
        items=[SummaryItem(value=value, count=count) for value, count in top_n(groups, dimension, limit)],
    )
