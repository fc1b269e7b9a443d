"""
单元测试：查询执行器

使用 httpx.MockTransport 模拟 GraphQL 端点。

测试覆盖：
- 请求格式（方法、Header、变量）
- 成功解码与截断标记
- 错误分类与重试策略
"""

import asyncio
import json
import logging
from datetime import timedelta

import httpx
import pytest

from analytics_collector.errors import (
    AuthError, ClientError, DecodeError, ErrorKind, PayloadError,
    RateLimitedError, RetryExhaustedError, ServerError, TransportError,
)
from analytics_collector.models import AnalyticsQuery, TimeWindow
from analytics_collector.query_executor import QueryExecutor, mask_token, parse_retry_after

from conftest import graphql_body, wire_group

ENDPOINT = "https://analytics.test/graphql"


class Recorder:
    """记录请求并按顺序返回响应"""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


def make_executor(recorder, max_attempts=3):
    return QueryExecutor(
        api_token="secret-token",
        endpoint=ENDPOINT,
        timeout=5,
        max_attempts=max_attempts,
        retry_base_delay=0,
        retry_max_delay=0,
        transport=httpx.MockTransport(recorder),
    )


@pytest.fixture
def query(t0):
    window = TimeWindow(since=t0 - timedelta(minutes=5), until=t0)
    return AnalyticsQuery(zone_id="zone-a", window=window, limit=100)


def run(executor, query):
    return asyncio.run(executor.execute(query))


class TestRequest:
    """请求格式测试"""

    def test_post_with_headers_and_variables(self, query):
        recorder = Recorder(httpx.Response(200, json=graphql_body([])))

        run(make_executor(recorder), query)

        request = recorder.requests[0]
        assert request.method == "POST"
        assert str(request.url) == ENDPOINT
        assert request.headers["Authorization"] == "Bearer secret-token"
        assert request.headers["Content-Type"] == "application/json"

        body = json.loads(request.content)
        assert body["variables"] == {
            "zoneTag": "zone-a",
            "since": "2026-01-17T09:55:00Z",
            "until": "2026-01-17T10:00:00Z",
        }
        assert "firewallEventsAdaptiveGroups" in body["query"]
        assert "datetime_lt: $until" in body["query"]
        assert "limit: 100" in body["query"]
        assert "count_DESC" in body["query"]
        assert "clientCountryName" in body["query"]


class TestSuccess:
    """成功响应测试"""

    def test_decodes_groups(self, query):
        recorder = Recorder(httpx.Response(200, json=graphql_body([
            wire_group("block", "waf", "US", 5),
            wire_group("allow", "waf", None, 2),
        ])))

        result = run(make_executor(recorder), query)

        assert [g.count for g in result.groups] == [5, 2]
        assert result.groups[0].dimensions == {"action": "block", "source": "waf", "country": "US"}
        assert result.groups[1].dimensions["country"] == ""
        assert result.possibly_truncated is False

    def test_flags_possible_truncation(self, t0):
        window = TimeWindow(since=t0 - timedelta(minutes=5), until=t0)
        small = AnalyticsQuery(zone_id="zone-a", window=window, limit=2)
        recorder = Recorder(httpx.Response(200, json=graphql_body([
            wire_group("block", "waf", "US", 5),
            wire_group("allow", "waf", "US", 2),
        ])))

        result = run(make_executor(recorder), small)

        assert result.possibly_truncated is True
        assert len(recorder.requests) == 1

    def test_no_zones_in_response(self, query):
        recorder = Recorder(httpx.Response(200, json={"data": {"viewer": {"zones": []}}}))

        result = run(make_executor(recorder), query)

        assert result.groups == []


class TestErrorClassification:
    """错误分类与重试"""

    def test_403_is_auth_error_without_retry(self, query):
        recorder = Recorder(httpx.Response(403, text="forbidden"))

        with pytest.raises(AuthError) as exc_info:
            run(make_executor(recorder), query)

        assert exc_info.value.kind == ErrorKind.AUTH
        assert len(recorder.requests) == 1

    def test_401_is_auth_error(self, query):
        recorder = Recorder(httpx.Response(401))

        with pytest.raises(AuthError):
            run(make_executor(recorder), query)
        assert len(recorder.requests) == 1

    def test_500_retried_then_exhausted(self, query):
        recorder = Recorder(httpx.Response(500, text="oops"))

        with pytest.raises(RetryExhaustedError) as exc_info:
            run(make_executor(recorder, max_attempts=4), query)

        assert len(recorder.requests) == 4
        assert exc_info.value.kind == ErrorKind.RETRY_EXHAUSTED
        assert isinstance(exc_info.value.last_error, ServerError)
        assert exc_info.value.last_error.status_code == 500

    def test_500_then_success(self, query):
        recorder = Recorder(
            httpx.Response(502),
            httpx.Response(200, json=graphql_body([wire_group("block", "waf", "US", 1)])),
        )

        result = run(make_executor(recorder), query)

        assert len(recorder.requests) == 2
        assert result.groups[0].count == 1

    def test_429_retried(self, query):
        recorder = Recorder(httpx.Response(429, headers={"Retry-After": "3"}))

        with pytest.raises(RetryExhaustedError) as exc_info:
            run(make_executor(recorder, max_attempts=2), query)

        assert len(recorder.requests) == 2
        last = exc_info.value.last_error
        assert isinstance(last, RateLimitedError)
        assert last.retry_after == 3.0

    def test_other_4xx_is_client_error(self, query):
        recorder = Recorder(httpx.Response(400, text="bad request"))

        with pytest.raises(ClientError) as exc_info:
            run(make_executor(recorder), query)

        assert exc_info.value.kind == ErrorKind.CLIENT
        assert len(recorder.requests) == 1

    def test_204_is_decode_error_without_retry(self, query):
        recorder = Recorder(httpx.Response(204))

        with pytest.raises(DecodeError) as exc_info:
            run(make_executor(recorder), query)

        assert exc_info.value.kind == ErrorKind.DECODE
        assert "204" in str(exc_info.value)
        assert len(recorder.requests) == 1

    def test_transport_error_retried(self, query):
        recorder = Recorder(httpx.ConnectError("connection refused"))

        with pytest.raises(RetryExhaustedError) as exc_info:
            run(make_executor(recorder), query)

        assert len(recorder.requests) == 3
        assert isinstance(exc_info.value.last_error, TransportError)

    def test_payload_errors_not_retried(self, query):
        body = graphql_body([wire_group("block", "waf", "US", 1)])
        body["errors"] = [{"message": "zone not authorized", "path": ["viewer", "zones"]}]
        recorder = Recorder(httpx.Response(200, json=body))

        with pytest.raises(PayloadError) as exc_info:
            run(make_executor(recorder), query)

        assert exc_info.value.kind == ErrorKind.PAYLOAD
        assert "zone not authorized" in str(exc_info.value)
        assert len(recorder.requests) == 1

    def test_invalid_json_is_decode_error(self, query):
        recorder = Recorder(httpx.Response(200, text="<html>not json</html>"))

        with pytest.raises(DecodeError):
            run(make_executor(recorder), query)
        assert len(recorder.requests) == 1

    def test_wrong_shape_is_decode_error(self, query):
        recorder = Recorder(httpx.Response(200, json={"data": {"viewer": {"zones": [
            {"firewallEventsAdaptiveGroups": [{"count": "many"}]}
        ]}}}))

        with pytest.raises(DecodeError):
            run(make_executor(recorder), query)

    def test_negative_count_is_decode_error(self, query):
        recorder = Recorder(httpx.Response(200, json=graphql_body([wire_group("block", "waf", "US", -1)])))

        with pytest.raises(DecodeError):
            run(make_executor(recorder), query)

    def test_missing_data_is_decode_error(self, query):
        recorder = Recorder(httpx.Response(200, json={"errors": []}))

        with pytest.raises(DecodeError):
            run(make_executor(recorder), query)


@pytest.mark.parametrize("value, expected", [
    ("5", 5.0),
    ("0.5", 0.5),
    (None, None),
    ("", None),
    ("Wed, 21 Oct 2015 07:28:00 GMT", None),
])
def test_parse_retry_after(value, expected):
    assert parse_retry_after(value) == expected


class TestDebugLogging:
    """调试日志不泄露 Token"""

    def test_request_and_response_logged_with_masked_token(self, query, caplog):
        recorder = Recorder(httpx.Response(200, json=graphql_body([wire_group("block", "waf", "US", 1)])))
        executor = make_executor(recorder)
        executor.api_token = "abcde-0123456789-vwxyz"

        with caplog.at_level(logging.DEBUG, logger="analytics_collector.query_executor"):
            run(executor, query)

        assert "abcde...vwxyz (length: 22)" in caplog.text
        assert "abcde-0123456789-vwxyz" not in caplog.text
        assert "'zoneTag': 'zone-a'" in caplog.text
        assert "status 200" in caplog.text
        assert "firewallEventsAdaptiveGroups" in caplog.text


@pytest.mark.parametrize("token, expected", [
    ("abcdefghijklmnop", "abcde...lmnop (length: 16)"),
    ("abcdefghij", "(too short - length: 10)"),
    ("", "(too short - length: 0)"),
])
def test_mask_token(token, expected):
    assert mask_token(token) == expected
