"""
时间窗口追踪

为每个区域计算下一个查询窗口，保证相邻窗口首尾相接、不重叠：
窗口 n 的 until 等于窗口 n+1 的 since。
"""

import asyncio
import logging
import threading
from datetime import datetime, timedelta
from typing import Dict, Optional

from .models import TimeWindow

logger = logging.getLogger(__name__)


class CheckpointStore:
    """检查点存储接口（每个区域最后一次成功的 until）"""

    def get(self, zone_id: str) -> Optional[datetime]:
        raise NotImplementedError

    def set(self, zone_id: str, until: datetime):
        raise NotImplementedError

    def snapshot(self) -> Dict[str, datetime]:
        raise NotImplementedError


class InMemoryCheckpointStore(CheckpointStore):
    """内存检查点存储，生命周期与进程相同"""

    def __init__(self):
        self._checkpoints: Dict[str, datetime] = {}
        self._lock = threading.Lock()

    def get(self, zone_id: str) -> Optional[datetime]:
        with self._lock:
            return self._checkpoints.get(zone_id)

    def set(self, zone_id: str, until: datetime):
        with self._lock:
            self._checkpoints[zone_id] = until

    def snapshot(self) -> Dict[str, datetime]:
        with self._lock:
            return dict(self._checkpoints)


class TimeWindowTracker:
    """区域时间窗口追踪器"""

    def __init__(self, lookback: timedelta, store: Optional[CheckpointStore] = None):
        """
        Args:
            lookback: 区域首次采集时回看的时长
            store: 检查点存储，默认内存实现
        """
        if lookback <= timedelta(0):
            raise ValueError("lookback must be positive")
        self.lookback = lookback
        self.store = store or InMemoryCheckpointStore()
        self._zone_locks: Dict[str, asyncio.Lock] = {}
        # 尚未提交过的区域：首个窗口的 since
        self._anchors: Dict[str, datetime] = {}

    def lock_for(self, zone_id: str) -> asyncio.Lock:
        """区域互斥锁：读检查点 -> 查询 -> 写检查点 必须在锁内完成"""
        lock = self._zone_locks.get(zone_id)
        if lock is None:
            lock = self._zone_locks[zone_id] = asyncio.Lock()
        return lock

    def checkpoint(self, zone_id: str) -> Optional[datetime]:
        return self.store.get(zone_id)

    def next_window(self, zone_id: str, now: datetime) -> Optional[TimeWindow]:
        """
        计算下一个窗口

        区域尚无检查点时，首个窗口的 since 记为锚点；提交之前每次都从锚点开始，
        失败的首个窗口因此会被原样重试。

        Returns:
            TimeWindow；时钟回拨（now <= 起点）时返回 None，检查点不变
        """
        # 线上时间格式只有秒精度
        now = now.replace(microsecond=0)
        since = self.store.get(zone_id)

        if since is None:
            since = self._anchors.get(zone_id)
            if since is None:
                since = self._anchors[zone_id] = now - self.lookback

        if now <= since:
            logger.warning(
                f"Skipping zone {zone_id}: now {now.isoformat()} is not after window start {since.isoformat()}"
            )
            return None

        return TimeWindow(since=since, until=now)

    def commit(self, zone_id: str, window: TimeWindow):
        """窗口成功处理后推进检查点（只前进，不回退），并清除首窗口锚点"""
        current = self.store.get(zone_id)
        if current is not None and window.until <= current:
            logger.warning(
                f"Ignoring stale commit for zone {zone_id}: {window.until.isoformat()} <= {current.isoformat()}"
            )
            return
        self.store.set(zone_id, window.until)
        self._anchors.pop(zone_id, None)
