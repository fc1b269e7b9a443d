"""
采集周期编排

每个周期：列出区域 -> 筛选 -> 并发处理每个区域
（取窗口 -> 查询 -> 聚合 -> 生成指标 -> 推进检查点）。
单个区域失败只影响该区域，检查点保持不变，下个周期重试同一窗口。
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from . import aggregator, emitter, zone_filter
from .emitter import MetricStore
from .errors import CollectorError, DeadlineExceededError, ErrorKind
from .models import AnalyticsQuery, CardinalityPolicy, TimeWindow, Zone
from .query_executor import QueryExecutor
from .utils import utc_now
from .window_tracker import TimeWindowTracker
from .zones import ZoneLister

logger = logging.getLogger(__name__)


class CycleState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETE = "complete"


class ZoneState(str, Enum):
    PENDING = "pending"
    FETCHING = "fetching"
    AGGREGATING = "aggregating"
    EMITTING = "emitting"
    DONE = "done"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class ZoneResult:
    """单个区域在一个周期内的结果"""
    zone: Zone
    state: ZoneState = ZoneState.PENDING
    window: Optional[TimeWindow] = None
    points: int = 0
    possibly_truncated: bool = False
    error_kind: Optional[ErrorKind] = None
    error: Optional[str] = None

    def fail(self, kind: Optional[ErrorKind], message: str):
        self.state = ZoneState.FAILED
        self.error_kind = kind
        self.error = message


@dataclass
class CycleReport:
    """采集周期报告"""
    started_at: datetime
    finished_at: Optional[datetime] = None
    zones: List[ZoneResult] = field(default_factory=list)
    error: Optional[str] = None

    def count(self, state: ZoneState) -> int:
        return sum(1 for r in self.zones if r.state == state)


class ScrapeCycle:
    """采集周期编排器"""

    def __init__(
        self,
        lister: ZoneLister,
        executor: QueryExecutor,
        tracker: TimeWindowTracker,
        policy: CardinalityPolicy,
        store: Optional[MetricStore] = None,
        include: Iterable[str] = (),
        exclude: Iterable[str] = (),
        result_limit: int = 100,
        concurrency: int = 2,
        deadline: Optional[float] = None,
        enabled: bool = True,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Args:
            lister: 区域列表来源
            executor: 查询执行器
            tracker: 时间窗口追踪器
            policy: 基数策略
            store: 指标存储，默认全局实例
            include: 只采集这些区域
            exclude: 排除这些区域
            result_limit: 单次查询行数上限
            concurrency: 并发区域数上限
            deadline: 周期截止秒数，None 表示不限
            enabled: 防火墙事件类别开关
            clock: 时间来源（测试用）

        Raises:
            ConfigError: include 与 exclude 同时非空
        """
        self.include = list(include)
        self.exclude = list(exclude)
        zone_filter.check_zone_selection(self.include, self.exclude)

        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")

        self.lister = lister
        self.executor = executor
        self.tracker = tracker
        self.policy = policy
        self.store = store if store is not None else emitter.store
        self.result_limit = result_limit
        self.concurrency = concurrency
        self.deadline = deadline
        self.enabled = enabled
        self.clock = clock
        self.state = CycleState.IDLE

    def _remaining(self, deadline_at: Optional[float]) -> Optional[float]:
        """距周期截止还剩多少秒，None 表示不限"""
        if deadline_at is None:
            return None
        return max(deadline_at - asyncio.get_running_loop().time(), 0.0)

    async def run_once(self, now: Optional[datetime] = None) -> CycleReport:
        """
        执行一个采集周期

        截止时间从周期开始计时，同时约束区域列表和各区域任务。

        Args:
            now: 本周期的时间点，默认取 clock()

        Returns:
            CycleReport（包含每个区域的结果）
        """
        now = now or self.clock()
        report = CycleReport(started_at=now)
        self.state = CycleState.RUNNING

        loop = asyncio.get_running_loop()
        deadline_at = loop.time() + self.deadline if self.deadline is not None else None

        try:
            if not self.enabled:
                logger.debug("Firewall events collection disabled, skipping cycle")
                return report

            # 1. 列出区域（计入周期截止时间）
            try:
                all_zones = await asyncio.wait_for(self.lister.list_zones(), timeout=self._remaining(deadline_at))
            except asyncio.TimeoutError:
                error = DeadlineExceededError(f"zone listing exceeded cycle deadline of {self.deadline}s")
                logger.error(f"Failed to list zones (kind={error.kind.value}): {error}")
                report.error = str(error)
                return report
            except CollectorError as e:
                logger.error(f"Failed to list zones (kind={e.kind.value}): {e}")
                report.error = str(e)
                return report

            # 2. 筛选并并发处理
            zones = zone_filter.resolve(all_zones, self.include, self.exclude)
            report.zones = await self._scrape_zones(zones, now, self._remaining(deadline_at))
            return report
        finally:
            report.finished_at = self.clock()
            self.state = CycleState.COMPLETE
            self.store.set_report(report)
            logger.info(
                f"Cycle completed: {report.count(ZoneState.DONE)} done, "
                f"{report.count(ZoneState.FAILED)} failed, "
                f"{report.count(ZoneState.SKIPPED)} skipped"
            )
            self.state = CycleState.IDLE

    async def _scrape_zones(self, zones: List[Zone], now: datetime, timeout: Optional[float]) -> List[ZoneResult]:
        """并发处理所有区域，超过截止时间的区域被取消"""
        results = [ZoneResult(zone=zone) for zone in zones]
        if not results:
            return results

        semaphore = asyncio.Semaphore(self.concurrency)
        tasks: Dict[asyncio.Task, ZoneResult] = {
            asyncio.ensure_future(self._scrape_zone(result, now, semaphore)): result
            for result in results
        }

        try:
            done, pending = await asyncio.wait(tasks, timeout=timeout)
        except asyncio.CancelledError:
            # 外部取消（进程退出）时一并取消所有区域任务
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        # 截止时仍在运行的区域：取消，检查点不前进
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        for task in pending:
            result = tasks[task]
            error = DeadlineExceededError(f"cycle deadline of {self.deadline}s exceeded")
            result.fail(error.kind, str(error))
            logger.warning(
                f"Zone {result.zone.display_name} ({result.zone.id}) cancelled at cycle deadline, "
                f"window {result.window} will be retried"
            )

        # 非 CollectorError 的异常（程序错误）也只影响该区域
        for task in done:
            error = task.exception()
            if error is not None:
                result = tasks[task]
                result.fail(None, str(error))
                logger.error(
                    f"Unexpected error for zone {result.zone.display_name} ({result.zone.id})",
                    exc_info=error
                )

        return results

    async def _scrape_zone(self, result: ZoneResult, now: datetime, semaphore: asyncio.Semaphore) -> ZoneResult:
        """单个区域：窗口 -> 查询 -> 聚合 -> 生成 -> 提交"""
        zone = result.zone

        async with semaphore:
            async with self.tracker.lock_for(zone.id):
                # 1. 计算窗口（时钟回拨则跳过）
                window = self.tracker.next_window(zone.id, now)
                if window is None:
                    result.state = ZoneState.SKIPPED
                    return result
                result.window = window

                try:
                    # 2. 查询远端
                    result.state = ZoneState.FETCHING
                    query = AnalyticsQuery(zone_id=zone.id, window=window, limit=self.result_limit)
                    query_result = await self.executor.execute(query)

                    # 3. 按基数策略聚合
                    result.state = ZoneState.AGGREGATING
                    groups = aggregator.aggregate(query_result.groups, self.policy)

                    # 4. 生成指标点
                    result.state = ZoneState.EMITTING
                    points = emitter.emit(zone, window, groups)
                except CollectorError as e:
                    # 失败：不发布、不推进检查点，下个周期重试同一窗口
                    result.fail(e.kind, str(e))
                    logger.warning(
                        f"Zone {zone.display_name} ({zone.id}) failed for window {window}: "
                        f"kind={e.kind.value} {e}"
                    )
                    return result

                # 5. 发布指标与推进检查点之间没有挂起点
                self.store.publish(zone.id, points)
                self.tracker.commit(zone.id, window)

                result.state = ZoneState.DONE
                result.points = len(points)
                result.possibly_truncated = query_result.possibly_truncated
                logger.debug(f"Zone {zone.id}: emitted {len(points)} points for window {window}")
                return result


async def run_collector(cycle: ScrapeCycle, interval: float):
    """
    运行采集循环

    每隔 interval 秒执行一个周期。
    """
    logger.info(f"Starting collector loop (interval={interval}s, concurrency={cycle.concurrency})")
    loop = asyncio.get_running_loop()

    while True:
        started = loop.time()
        try:
            await cycle.run_once()
        except asyncio.CancelledError:
            logger.info("Collector loop cancelled")
            raise
        except Exception as e:
            logger.error(f"Collector loop error: {e}", exc_info=True)

        elapsed = loop.time() - started
        await asyncio.sleep(max(interval - elapsed, 0))
