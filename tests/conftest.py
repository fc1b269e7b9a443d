"""
测试公共夹具
"""

from datetime import datetime, timezone

import pytest

from analytics_collector.config import reset_config
from analytics_collector.models import RawGroup


T0 = datetime(2026, 1, 17, 10, 0, 0, tzinfo=timezone.utc)


def graphql_body(groups):
    """构造 GraphQL 成功响应体"""
    return {
        "data": {
            "viewer": {
                "zones": [{"firewallEventsAdaptiveGroups": groups}]
            }
        },
        "errors": None,
    }


def wire_group(action, source, country, count):
    return {
        "count": count,
        "dimensions": {"action": action, "source": source, "clientCountryName": country},
    }


def raw(action, source, country, count):
    return RawGroup(count=count, dimensions={"action": action, "source": source, "country": country})


@pytest.fixture
def t0():
    return T0


@pytest.fixture
def example_groups():
    """端到端示例中的三行原始分组"""
    return [
        raw("block", "waf", "US", 5),
        raw("block", "waf", "DE", 3),
        raw("allow", "waf", "US", 2),
    ]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """隔离环境变量与全局配置"""
    for name in ("CF_API_TOKEN", "CF_ACCOUNT_ID", "CF_ZONE_ID", "ANALYTICS_COLLECTOR_CONFIG"):
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()
