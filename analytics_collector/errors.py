"""
错误分类

采集链路上所有错误都带一个封闭的 ErrorKind，编排器只按 kind 分支，
不解析错误消息文本。
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """错误类别"""
    TRANSPORT = "transport"
    AUTH = "auth"
    RATE_LIMITED = "rate_limited"
    SERVER = "server"
    CLIENT = "client"
    PAYLOAD = "payload"
    DECODE = "decode"
    RETRY_EXHAUSTED = "retry_exhausted"
    AGGREGATION_OVERFLOW = "aggregation_overflow"
    DEADLINE_EXCEEDED = "deadline_exceeded"
    CONFIG = "config"


class CollectorError(Exception):
    """采集错误基类"""
    kind: ErrorKind = ErrorKind.TRANSPORT
    retryable: bool = False


class TransportError(CollectorError):
    """连接/IO 失败，尚未拿到响应"""
    kind = ErrorKind.TRANSPORT
    retryable = True


class HTTPStatusError(CollectorError):
    """非 2xx 响应"""
    kind = ErrorKind.CLIENT

    def __init__(self, status_code: int, body: str = "", retry_after: Optional[float] = None):
        self.status_code = status_code
        self.body = body
        self.retry_after = retry_after
        super().__init__(f"unexpected status code {status_code}: {body[:200]}")

    @staticmethod
    def from_status(
        status_code: int,
        body: str = "",
        retry_after: Optional[float] = None
    ) -> "HTTPStatusError":
        """按状态码选择具体子类"""
        if status_code in (401, 403):
            return AuthError(status_code, body)
        if status_code == 429:
            return RateLimitedError(status_code, body, retry_after)
        if status_code >= 500:
            return ServerError(status_code, body, retry_after)
        return ClientError(status_code, body)


class AuthError(HTTPStatusError):
    """401/403，不重试"""
    kind = ErrorKind.AUTH


class RateLimitedError(HTTPStatusError):
    """429，退避后重试"""
    kind = ErrorKind.RATE_LIMITED
    retryable = True


class ServerError(HTTPStatusError):
    """5xx，退避后重试"""
    kind = ErrorKind.SERVER
    retryable = True


class ClientError(HTTPStatusError):
    """其他 4xx"""
    kind = ErrorKind.CLIENT


class PayloadError(CollectorError):
    """响应成功但携带非空 errors 列表，数据不可信"""
    kind = ErrorKind.PAYLOAD

    def __init__(self, errors):
        self.errors = list(errors)
        messages = "; ".join(str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in self.errors)
        super().__init__(f"graphql errors: {messages}")


class DecodeError(CollectorError):
    """响应体结构不符合预期"""
    kind = ErrorKind.DECODE


class RetryExhaustedError(CollectorError):
    """可重试错误在最大尝试次数后仍失败"""
    kind = ErrorKind.RETRY_EXHAUSTED

    def __init__(self, attempts: int, last_error: CollectorError):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"gave up after {attempts} attempts: {last_error}")


class AggregationOverflowError(CollectorError):
    """计数累加超出 int64 范围"""
    kind = ErrorKind.AGGREGATION_OVERFLOW


class DeadlineExceededError(CollectorError):
    """采集周期截止时间已到，区域任务被取消"""
    kind = ErrorKind.DEADLINE_EXCEEDED


class ConfigError(CollectorError):
    """配置冲突或缺失，只在启动时抛出"""
    kind = ErrorKind.CONFIG
