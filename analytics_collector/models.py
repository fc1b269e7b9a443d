"""
数据模型定义

包括：
- 领域对象（Zone、TimeWindow、RawGroup、DimensionKey ...）
- 分析查询（GraphQL 文本与变量）
- Pydantic 响应模型（用于解码远端响应和 API 输出）
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple

from pydantic import BaseModel, Field

from .errors import ConfigError
from .utils import format_rfc3339


# =============================================================================
# 领域对象
# =============================================================================

@dataclass(frozen=True)
class Zone:
    """被监控的区域（站点）"""
    id: str
    name: str = ""

    @property
    def display_name(self) -> str:
        return self.name or self.id


@dataclass(frozen=True)
class TimeWindow:
    """查询时间窗口，半开区间 [since, until)"""
    since: datetime
    until: datetime

    def __post_init__(self):
        if self.since >= self.until:
            raise ValueError(f"empty time window: {self.since} >= {self.until}")

    @property
    def seconds(self) -> float:
        return (self.until - self.since).total_seconds()

    def __str__(self) -> str:
        return f"[{format_rfc3339(self.since)}, {format_rfc3339(self.until)})"


@dataclass(frozen=True)
class RawGroup:
    """服务端返回的一行：计数 + 维度值"""
    count: int
    dimensions: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class DimensionKey:
    """按基数策略投影后的维度键，(名称, 值) 有序对"""
    items: Tuple[Tuple[str, str], ...]

    def labels(self) -> Dict[str, str]:
        return dict(self.items)

    def __str__(self) -> str:
        return "/".join(value for _, value in self.items)


@dataclass(frozen=True)
class AggregatedGroup:
    """聚合结果：维度键 + 计数之和"""
    key: DimensionKey
    count: int

    @property
    def dimensions(self) -> Dict[str, str]:
        # 与 RawGroup 同形，便于二次聚合
        return self.key.labels()


# 必选维度（始终保留）与可选维度（由配置开启）
MANDATORY_DIMENSIONS: Tuple[str, ...] = ("action", "source")
OPTIONAL_DIMENSIONS: Tuple[str, ...] = ("country",)


@dataclass(frozen=True)
class CardinalityPolicy:
    """基数策略：启用的可选维度集合"""
    optional: FrozenSet[str] = frozenset()

    def __post_init__(self):
        unknown = set(self.optional) - set(OPTIONAL_DIMENSIONS)
        if unknown:
            raise ConfigError(f"Unknown optional dimensions: {sorted(unknown)}")

    @classmethod
    def with_country(cls, include_country: bool) -> "CardinalityPolicy":
        return cls(frozenset({"country"}) if include_country else frozenset())

    @property
    def dimensions(self) -> Tuple[str, ...]:
        """投影顺序：必选维度在前，可选维度按固定顺序"""
        return MANDATORY_DIMENSIONS + tuple(d for d in OPTIONAL_DIMENSIONS if d in self.optional)


@dataclass(frozen=True)
class MetricPoint:
    """带时间戳和标签的指标点"""
    name: str
    zone_id: str
    zone_name: str
    labels: Mapping[str, str]
    value: int
    timestamp: datetime

    def label_set(self) -> FrozenSet[Tuple[str, str]]:
        return frozenset(self.labels.items())


@dataclass
class QueryResult:
    """一次查询的结果"""
    groups: List[RawGroup]
    possibly_truncated: bool = False


# =============================================================================
# 分析查询
# =============================================================================

FIREWALL_EVENTS_DATASET = "firewallEventsAdaptiveGroups"

# 线上字段名 -> 内部维度名
WIRE_DIMENSIONS: Dict[str, str] = {
    "action": "action",
    "source": "source",
    "clientCountryName": "country",
}

QUERY_TEMPLATE = """
query FirewallEventsByAction($zoneTag: String!, $since: Time!, $until: Time!) {
  viewer {
    zones(filter: { zoneTag: $zoneTag }) {
      %(dataset)s(
        filter: { datetime_geq: $since, datetime_lt: $until },
        limit: %(limit)d,
        orderBy: [%(order_by)s]
      ) {
        count
        dimensions {
          %(dimensions)s
        }
      }
    }
  }
}
"""


@dataclass(frozen=True)
class AnalyticsQuery:
    """
    单个区域单个窗口的分析查询

    始终请求完整维度集合，基数裁剪在聚合阶段完成。
    """
    zone_id: str
    window: TimeWindow
    limit: int = 100
    dataset: str = FIREWALL_EVENTS_DATASET
    dimensions: Tuple[str, ...] = tuple(WIRE_DIMENSIONS)
    order_by: str = "count_DESC"

    def text(self) -> str:
        return QUERY_TEMPLATE % {
            "dataset": self.dataset,
            "limit": self.limit,
            "order_by": self.order_by,
            "dimensions": "\n          ".join(self.dimensions),
        }

    def variables(self) -> Dict[str, Any]:
        return {
            "zoneTag": self.zone_id,
            "since": format_rfc3339(self.window.since),
            "until": format_rfc3339(self.window.until),
        }

    def payload(self) -> Dict[str, Any]:
        return {"query": self.text(), "variables": self.variables()}


# =============================================================================
# Pydantic 响应模型（解码远端 GraphQL 响应）
# =============================================================================

class GroupDimensions(BaseModel):
    """分组维度"""
    action: str = ""
    source: str = ""
    clientCountryName: Optional[str] = None


class EventGroup(BaseModel):
    """单个分组"""
    count: int = Field(..., ge=0)
    dimensions: GroupDimensions = Field(default_factory=GroupDimensions)

    def to_raw(self) -> RawGroup:
        values = self.dimensions.model_dump()
        return RawGroup(
            count=self.count,
            dimensions={WIRE_DIMENSIONS[k]: (v or "") for k, v in values.items()},
        )


class ZoneGroups(BaseModel):
    """单个区域的分组列表"""
    firewallEventsAdaptiveGroups: List[EventGroup] = Field(default_factory=list)


class Viewer(BaseModel):
    zones: List[ZoneGroups] = Field(default_factory=list)


class FirewallEventsData(BaseModel):
    """GraphQL data 字段"""
    viewer: Viewer


class GraphQLError(BaseModel):
    message: str = ""
    path: Optional[List[Any]] = None


class GraphQLResponse(BaseModel):
    """GraphQL 响应外壳"""
    data: Optional[Dict[str, Any]] = None
    errors: Optional[List[GraphQLError]] = None


# =============================================================================
# Pydantic 响应模型（REST API）
# =============================================================================

class MetricPointResponse(BaseModel):
    """指标点"""
    name: str
    zone_id: str
    zone_name: str
    labels: Dict[str, str]
    value: int
    timestamp: str


class ZoneStatusResponse(BaseModel):
    """区域最近一次采集状态"""
    zone_id: str
    zone_name: str
    state: str
    since: Optional[str] = None
    until: Optional[str] = None
    points: int = 0
    possibly_truncated: bool = False
    error_kind: Optional[str] = None
    error: Optional[str] = None


class SummaryItem(BaseModel):
    value: str
    count: int


class ZoneSummaryResponse(BaseModel):
    """单维度 Top-N 汇总"""
    zone_id: str
    dimension: str
    items: List[SummaryItem] = Field(default_factory=list)


class HealthResponse(BaseModel):
    status: str
    last_cycle_at: Optional[str] = None
    zones_done: int = 0
    zones_failed: int = 0
