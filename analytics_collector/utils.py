"""
工具函数模块

时间格式化与异步退避重试。
"""

import asyncio
import random
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, TypeVar

from .errors import CollectorError, RateLimitedError, RetryExhaustedError

T = TypeVar("T")


def utc_now() -> datetime:
    """当前 UTC 时间（带时区）"""
    return datetime.now(timezone.utc)


def format_rfc3339(ts: datetime) -> str:
    """
    格式化为 RFC3339（秒精度，UTC，Z 结尾）

    Args:
        ts: 带时区或 naive（视为 UTC）的时间

    Returns:
        如 "2026-01-17T10:00:00Z"
    """
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


async def retry_async(
    func: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    jitter: float = 0.1,
    on_retry: Optional[Callable[[int, CollectorError, float], None]] = None,
) -> T:
    """
    指数退避重试

    只重试 retryable 为 True 的 CollectorError，其余错误原样抛出。
    用尽次数后抛出 RetryExhaustedError（携带最后一次错误）。

    Args:
        func: 无参协程工厂
        max_attempts: 最大尝试次数（含首次）
        base_delay: 首次退避秒数
        max_delay: 退避上限
        jitter: 抖动比例
        on_retry: 回调 (attempt, error, sleep_for)
    """
    delay = base_delay
    for attempt in range(1, max_attempts + 1):
        try:
            return await func()
        except CollectorError as exc:
            if not exc.retryable:
                raise
            if attempt == max_attempts:
                raise RetryExhaustedError(attempt, exc) from exc

            sleep_for = min(delay, max_delay) + random.uniform(0, delay * jitter)
            # 429 带 Retry-After 时至少等待服务端要求的时间
            if isinstance(exc, RateLimitedError) and exc.retry_after:
                sleep_for = min(max(sleep_for, exc.retry_after), max_delay)

            if on_retry:
                on_retry(attempt, exc, sleep_for)
            await asyncio.sleep(sleep_for)
            delay = min(delay * 2, max_delay)

    raise RuntimeError("async retry exhausted")
