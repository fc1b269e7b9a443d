"""
主程序入口

启动两个并发任务：
1. 采集循环
2. REST API 服务（可关闭）
"""

import asyncio
import logging
import sys
from datetime import timedelta
from pathlib import Path
from typing import Optional

import uvicorn

from . import __version__
from .collector import ScrapeCycle, run_collector
from .config import AppConfig, get_config, validate_config
from .emitter import store
from .errors import ConfigError
from .models import CardinalityPolicy
from .query_executor import QueryExecutor
from .window_tracker import TimeWindowTracker
from .zones import AccountZoneLister, StaticZoneLister, ZoneLister


def setup_logging(config: AppConfig):
    """配置日志"""
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    level = getattr(logging, config.logging.level.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format=log_format,
        handlers=[logging.StreamHandler(sys.stdout)]
    )

    if config.logging.file:
        log_path = Path(config.logging.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(str(log_path), encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(log_format))
        logging.getLogger().addHandler(file_handler)

    # 降低第三方库日志级别
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def build_zone_lister(config: AppConfig) -> ZoneLister:
    """有账户 ID 时列出账户下全部区域，否则使用配置的区域列表"""
    cf = config.cloudflare
    if cf.account_id:
        return AccountZoneLister(
            api_token=cf.api_token,
            account_id=cf.account_id,
            api_base=cf.api_base,
            timeout=config.collector.timeout,
        )
    return StaticZoneLister(cf.zones)


def build_scrape_cycle(config: AppConfig, tracker: Optional[TimeWindowTracker] = None) -> ScrapeCycle:
    """按配置组装采集周期"""
    cf = config.cloudflare
    collector = config.collector

    executor = QueryExecutor(
        api_token=cf.api_token,
        endpoint=cf.graphql_endpoint,
        timeout=collector.timeout,
        max_attempts=collector.max_attempts,
        retry_base_delay=collector.retry_base_delay,
        retry_max_delay=collector.retry_max_delay,
    )
    # 未注入时使用新的内存检查点
    if tracker is None:
        tracker = TimeWindowTracker(lookback=timedelta(seconds=collector.lookback))

    return ScrapeCycle(
        lister=build_zone_lister(config),
        executor=executor,
        tracker=tracker,
        policy=CardinalityPolicy.with_country(config.metrics.include_country),
        store=store,
        include=cf.zones,
        exclude=cf.exclude_zones,
        result_limit=cf.result_limit,
        concurrency=collector.concurrency,
        deadline=collector.cycle_deadline,
        enabled=config.metrics.firewall_events,
    )


async def run_api_server(config: AppConfig):
    """运行 API 服务器"""
    from .api.app import create_app

    app = create_app(config)
    server_config = uvicorn.Config(
        app=app,
        host=config.api.host,
        port=config.api.port,
        log_level="info",
        access_log=False
    )
    server = uvicorn.Server(server_config)
    await server.serve()


async def main() -> int:
    """主函数：校验配置并启动所有任务"""
    logger = logging.getLogger(__name__)

    try:
        config = get_config()
        validate_config(config)
        cycle = build_scrape_cycle(config)
    except ConfigError as e:
        logging.basicConfig(level=logging.ERROR)
        logger.error(f"Configuration error: {e}")
        return 1

    setup_logging(config)
    logger.info("=" * 60)
    logger.info(f"Analytics Collector v{__version__}")
    logger.info("=" * 60)
    logger.info(
        f"Interval={config.collector.interval}s, lookback={config.collector.lookback}s, "
        f"include_country={config.metrics.include_country}"
    )

    # 采集循环与 API 服务并发运行
    tasks = [run_collector(cycle, config.collector.interval)]
    if config.api.enabled:
        logger.info(f"API listening on {config.api.host}:{config.api.port}")
        tasks.append(run_api_server(config))

    try:
        await asyncio.gather(*tasks)
    except asyncio.CancelledError:
        logger.info("Tasks cancelled, shutting down...")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        raise
    return 0


def cli():
    """命令行入口"""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nShutdown requested, exiting...")
        sys.exit(0)


if __name__ == "__main__":
    cli()
