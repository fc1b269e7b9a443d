"""
维度聚合

按基数策略把服务端分组投影到维度键上并求和。
关闭高基数维度（如 country）时，多行会折叠到同一个 action/source 键。
"""

from typing import Dict, Iterable, List, Mapping, Tuple

from .errors import AggregationOverflowError
from .models import AggregatedGroup, CardinalityPolicy, DimensionKey

# 计数为非负 int64
MAX_COUNT = 2 ** 63 - 1


def project(dimensions: Mapping[str, str], policy: CardinalityPolicy) -> DimensionKey:
    """把维度值投影到策略启用的维度上，缺失的维度记为空字符串"""
    return DimensionKey(tuple((name, dimensions.get(name) or "") for name in policy.dimensions))


def _sort_key(group: AggregatedGroup) -> Tuple[int, Tuple[Tuple[str, str], ...]]:
    return (-group.count, group.key.items)


def aggregate(groups: Iterable, policy: CardinalityPolicy) -> List[AggregatedGroup]:
    """
    聚合分组

    Args:
        groups: RawGroup 或 AggregatedGroup（都有 count 与 dimensions）
        policy: 基数策略

    Returns:
        按 count 降序、维度值升序排列的聚合结果；结果与输入顺序无关

    Raises:
        AggregationOverflowError: 计数为负或累加超出 int64
    """
    totals: Dict[DimensionKey, int] = {}
    for group in groups:
        if group.count < 0 or group.count > MAX_COUNT:
            raise AggregationOverflowError(f"count out of range: {group.count}")

        # 投影到启用的维度后累加
        key = project(group.dimensions, policy)
        total = totals.get(key, 0) + group.count
        if total > MAX_COUNT:
            raise AggregationOverflowError(f"count overflow for {key}")
        totals[key] = total

    # 排序与输入顺序无关
    result = [AggregatedGroup(key=key, count=count) for key, count in totals.items()]
    result.sort(key=_sort_key)
    return result


def top_n(groups: Iterable, dimension: str, n: int = 10) -> List[Tuple[str, int]]:
    """
    单维度 Top-N 汇总

    按 count 降序，计数相同时按维度值字典序，结果确定。
    """
    totals: Dict[str, int] = {}
    for group in groups:
        value = group.dimensions.get(dimension) or ""
        totals[value] = totals.get(value, 0) + group.count

    ranked = sorted(totals.items(), key=lambda item: (-item[1], item[0]))
    return ranked[:n]
