"""
分析查询执行器

向 GraphQL 端点发送单次聚合查询，并对结果分类：
- 传输失败 / 429 / 5xx：指数退避重试
- 401/403、其他 4xx、响应 errors 列表、解码失败：本次调用直接失败
"""

import json
import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from .errors import (
    CollectorError, DecodeError, HTTPStatusError, PayloadError, TransportError,
)
from .models import (
    AnalyticsQuery, FirewallEventsData, GraphQLResponse, QueryResult,
)
from .utils import retry_async

logger = logging.getLogger(__name__)

DEFAULT_GRAPHQL_ENDPOINT = "https://api.cloudflare.com/client/v4/graphql"
DEBUG_BODY_LIMIT = 2000


def mask_token(token: str) -> str:
    """日志中只显示 Token 首尾各 5 位"""
    if len(token) > 10:
        return f"{token[:5]}...{token[-5:]} (length: {len(token)})"
    return f"(too short - length: {len(token)})"


def unexpected_status(response: httpx.Response) -> CollectorError:
    """
    非 200 响应的分类

    2xx 但不是 200（如 204）没有可用的响应体，按解码失败处理，不重试；
    其余按状态码映射到 Auth/RateLimited/Server/Client。
    """
    if 200 <= response.status_code < 300:
        return DecodeError(f"decode response: unexpected status code {response.status_code}")
    return HTTPStatusError.from_status(
        response.status_code,
        response.text,
        parse_retry_after(response.headers.get("Retry-After")),
    )


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """解析 Retry-After（仅支持秒数形式）"""
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def decode_json(response: httpx.Response) -> Dict[str, Any]:
    """把响应体解析为 JSON 对象"""
    try:
        body = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise DecodeError(f"decode response: {e}") from e
    if not isinstance(body, dict):
        raise DecodeError(f"decode response: expected object, got {type(body).__name__}")
    return body


class QueryExecutor:
    """
    GraphQL 查询执行器

    每次调用创建独立的 HTTP 客户端，不做跨调用缓存。
    """

    def __init__(
        self,
        api_token: str,
        endpoint: str = DEFAULT_GRAPHQL_ENDPOINT,
        timeout: float = 30.0,
        max_attempts: int = 3,
        retry_base_delay: float = 1.0,
        retry_max_delay: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            api_token: Bearer Token
            endpoint: GraphQL 端点
            timeout: 单次请求超时（秒）
            max_attempts: 可重试错误的最大尝试次数
            retry_base_delay: 首次退避秒数
            retry_max_delay: 退避上限秒数
            transport: 自定义 httpx transport（测试用）
        """
        self.api_token = api_token
        self.endpoint = endpoint
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self.transport = transport

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }

    async def execute(self, query: AnalyticsQuery) -> QueryResult:
        """
        执行查询（带重试）

        Returns:
            QueryResult；行数等于 limit 时标记 possibly_truncated

        Raises:
            CollectorError: 已分类的失败
        """
        def _on_retry(attempt: int, error: CollectorError, sleep_for: float):
            logger.info(
                f"Retrying zone {query.zone_id} window {query.window} "
                f"(attempt {attempt}/{self.max_attempts}, kind={error.kind.value}) in {sleep_for:.2f}s"
            )

        result = await retry_async(
            lambda: self._execute_once(query),
            max_attempts=self.max_attempts,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
            on_retry=_on_retry,
        )

        if len(result.groups) >= query.limit:
            result.possibly_truncated = True
            logger.warning(
                f"Zone {query.zone_id} returned {len(result.groups)} groups for window {query.window}, "
                f"result may be truncated at limit {query.limit}"
            )
        return result

    async def _execute_once(self, query: AnalyticsQuery) -> QueryResult:
        """发送一次请求并分类结果"""
        logger.debug(
            f"GraphQL request to {self.endpoint} for zone {query.zone_id} "
            f"(token: {mask_token(self.api_token)}), variables: {query.variables()}"
        )

        # 1. 发送请求
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.endpoint, headers=self.headers, json=query.payload())
        except httpx.TransportError as e:
            raise TransportError(f"execute request: {e!r}") from e

        logger.debug(
            f"GraphQL response for zone {query.zone_id}: status {response.status_code}, "
            f"body: {response.text[:DEBUG_BODY_LIMIT]}"
        )

        # 2. 按状态码分类
        if response.status_code != 200:
            raise unexpected_status(response)

        # 3. 解析响应
        body = decode_json(response)
        try:
            envelope = GraphQLResponse.model_validate(body)
        except ValidationError as e:
            raise DecodeError(f"decode response: {e}") from e

        # 4. 响应里的 errors 列表优先于 data
        if envelope.errors:
            raise PayloadError([err.model_dump() for err in envelope.errors])

        if envelope.data is None:
            raise DecodeError("decode response: missing data")

        try:
            data = FirewallEventsData.model_validate(envelope.data)
        except ValidationError as e:
            raise DecodeError(f"unmarshal firewall events: {e}") from e

        # 5. 没有区域数据视为零行
        if not data.viewer.zones:
            logger.debug(f"No zones found in response for zone {query.zone_id}")
            return QueryResult(groups=[])

        groups = [group.to_raw() for group in data.viewer.zones[0].firewallEventsAdaptiveGroups]
        return QueryResult(groups=groups)
