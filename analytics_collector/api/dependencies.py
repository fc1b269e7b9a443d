"""
依赖注入模块

提供 FastAPI 依赖项。
"""

from ..emitter import MetricStore, store


async def get_store() -> MetricStore:
    """获取指标存储实例"""
    return store
