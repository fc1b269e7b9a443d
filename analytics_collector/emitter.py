"""
指标生成与内存存储

把聚合结果转换为带时间戳、带标签的指标点，并写入内存存储供 API 查询。
"""

import threading
from collections import deque
from typing import Deque, Dict, Iterable, List, Optional, TYPE_CHECKING

from .models import AggregatedGroup, MetricPoint, TimeWindow, Zone

if TYPE_CHECKING:
    from .collector import CycleReport

METRIC_NAME = "firewall_events"


def emit(zone: Zone, window: TimeWindow, groups: Iterable[AggregatedGroup]) -> List[MetricPoint]:
    """
    生成指标点

    每个聚合分组一个点；标签 = 区域 + 维度键；时间戳 = window.until。

    Raises:
        ValueError: 出现重复的标签集合
    """
    points = []
    seen = set()
    for group in groups:
        labels = {"zone": zone.id, "zone_name": zone.display_name}
        labels.update(group.key.labels())

        point = MetricPoint(
            name=METRIC_NAME,
            zone_id=zone.id,
            zone_name=zone.display_name,
            labels=labels,
            value=group.count,
            timestamp=window.until,
        )
        # 同一区域同一批次内标签集合必须唯一
        label_set = point.label_set()
        if label_set in seen:
            raise ValueError(f"duplicate series for zone {zone.id}: {group.key}")
        seen.add(label_set)
        points.append(point)
    return points


class MetricStore:
    """
    指标内存存储

    管理：
    - latest: 每个区域最近一次成功窗口的指标点
    - history: 最近若干批次（所有区域）
    - report: 最近一次采集周期报告
    """

    def __init__(self, history_size: int = 100):
        self._latest: Dict[str, List[MetricPoint]] = {}
        self._history: Deque[List[MetricPoint]] = deque(maxlen=history_size)
        self._report: Optional["CycleReport"] = None
        # 同步方法 + 线程锁：发布过程中没有挂起点
        self._lock = threading.Lock()

    def publish(self, zone_id: str, points: List[MetricPoint]):
        """整批替换区域的最新指标点"""
        with self._lock:
            self._latest[zone_id] = list(points)
            self._history.append(list(points))

    def get_latest(self, zone_id: str) -> Optional[List[MetricPoint]]:
        with self._lock:
            points = self._latest.get(zone_id)
            return list(points) if points is not None else None

    def get_all_latest(self) -> Dict[str, List[MetricPoint]]:
        with self._lock:
            return {k: list(v) for k, v in self._latest.items()}

    def get_history(self) -> List[List[MetricPoint]]:
        with self._lock:
            return list(self._history)

    def set_report(self, report: "CycleReport"):
        with self._lock:
            self._report = report

    def get_report(self) -> Optional["CycleReport"]:
        with self._lock:
            return self._report


# 全局存储实例
store = MetricStore()
