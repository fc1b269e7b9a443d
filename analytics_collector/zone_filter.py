"""
区域筛选

include 与 exclude 互斥；include 非空时取交集（保持 all_zones 顺序），
否则从全部区域中去掉 exclude。
"""

from typing import Iterable, List

from .errors import ConfigError
from .models import Zone


def check_zone_selection(include: Iterable[str], exclude: Iterable[str]):
    """校验 include / exclude 不能同时非空"""
    if list(include) and list(exclude):
        raise ConfigError("zones and exclude_zones are mutually exclusive")


def resolve(all_zones: Iterable[Zone], include: Iterable[str], exclude: Iterable[str]) -> List[Zone]:
    """
    计算实际采集的区域列表

    Args:
        all_zones: 外部列出的全部区域
        include: 只采集这些区域 ID（不存在的 ID 静默忽略）
        exclude: 排除这些区域 ID

    Raises:
        ConfigError: include 与 exclude 同时非空
    """
    include_ids = set(include)
    exclude_ids = set(exclude)
    check_zone_selection(include_ids, exclude_ids)

    # include 优先，保持 all_zones 顺序
    if include_ids:
        return [zone for zone in all_zones if zone.id in include_ids]
    return [zone for zone in all_zones if zone.id not in exclude_ids]
