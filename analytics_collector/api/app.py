"""
FastAPI 应用配置

配置 CORS、路由注册。
"""

from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..config import AppConfig, get_config
from .routers import health, metrics, zones


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    """
    创建 FastAPI 应用实例

    配置：
    - CORS 中间件
    - API 路由（只读）
    """
    if config is None:
        config = get_config()

    app = FastAPI(
        title="Analytics Collector",
        description="区域安全事件指标查询",
        version=__version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.cors_origins,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(metrics.router)
    app.include_router(zones.router)

    return app
