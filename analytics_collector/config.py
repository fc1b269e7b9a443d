"""
配置加载模块

从 config.yaml 加载配置，支持 Pydantic 验证和环境变量覆盖。
"""

import os
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError


class CloudflareConfig(BaseModel):
    """远端 API 配置"""
    api_token: str = ""
    account_id: Optional[str] = None
    zones: List[str] = Field(default_factory=list)
    exclude_zones: List[str] = Field(default_factory=list)
    graphql_endpoint: str = "https://api.cloudflare.com/client/v4/graphql"
    api_base: str = "https://api.cloudflare.com/client/v4"
    result_limit: int = Field(default=100, ge=1, le=10000)

    @model_validator(mode="after")
    def check_zone_selection(self):
        if self.zones and self.exclude_zones:
            raise ValueError("zones and exclude_zones are mutually exclusive")
        return self


class CollectorConfig(BaseModel):
    """采集配置"""
    interval: int = Field(default=60, ge=1)
    timeout: int = Field(default=30, ge=1)
    max_attempts: int = Field(default=3, ge=1)
    retry_base_delay: float = Field(default=1.0, ge=0)
    retry_max_delay: float = Field(default=30.0, ge=0)
    concurrency: int = Field(default=2, ge=1)
    lookback: int = Field(default=300, ge=1)
    cycle_deadline: Optional[int] = Field(default=None, ge=1)

    @model_validator(mode="after")
    def default_cycle_deadline(self):
        # 未配置时周期截止等于采集间隔
        if self.cycle_deadline is None:
            self.cycle_deadline = self.interval
        return self


class MetricsConfig(BaseModel):
    """指标类别与基数配置"""
    firewall_events: bool = True
    include_country: bool = False


class APIConfig(BaseModel):
    """API 服务配置"""
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 9180
    cors_origins: List[str] = ["http://localhost:9180", "http://127.0.0.1:9180"]


class LoggingConfig(BaseModel):
    """日志配置"""
    level: str = "INFO"
    file: Optional[str] = None


class AppConfig(BaseModel):
    """应用配置（完整配置）"""
    cloudflare: CloudflareConfig = Field(default_factory=CloudflareConfig)
    collector: CollectorConfig = Field(default_factory=CollectorConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


class EnvOverrides(BaseSettings):
    """环境变量覆盖（CF_API_TOKEN / CF_ACCOUNT_ID / CF_ZONE_ID）"""
    model_config = SettingsConfigDict(env_prefix="CF_")

    api_token: Optional[str] = None
    account_id: Optional[str] = None
    zone_id: Optional[str] = None


def apply_env_overrides(raw_config: dict) -> dict:
    """把环境变量合并进原始配置字典"""
    env = EnvOverrides()
    section = raw_config.setdefault("cloudflare", {}) or {}
    raw_config["cloudflare"] = section

    if env.api_token:
        section["api_token"] = env.api_token
    if env.account_id:
        section["account_id"] = env.account_id
    if env.zone_id:
        zones = list(section.get("zones") or [])
        if env.zone_id not in zones:
            zones.append(env.zone_id)
        section["zones"] = zones
    return raw_config


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """
    加载配置文件

    优先级：
    1. 参数指定的路径
    2. 环境变量 ANALYTICS_COLLECTOR_CONFIG
    3. 默认路径 config.yaml

    Raises:
        ConfigError: 文件格式错误或配置校验失败
    """
    if config_path is None:
        config_path = os.environ.get("ANALYTICS_COLLECTOR_CONFIG", "config.yaml")

    raw_config: dict = {}
    config_file = Path(config_path)
    if config_file.exists():
        with open(config_file, "r", encoding="utf-8") as f:
            try:
                raw_config = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid config file {config_path}: {e}") from e
        if not isinstance(raw_config, dict):
            raise ConfigError(f"Invalid config file {config_path}: expected a mapping")

    # 环境变量优先于文件
    apply_env_overrides(raw_config)

    try:
        return AppConfig(**raw_config)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def validate_config(config: AppConfig):
    """
    启动前检查必填项

    Raises:
        ConfigError: 缺少 Token，或既没有账户 ID 也没有区域列表
    """
    cf = config.cloudflare
    if not cf.api_token:
        raise ConfigError("cloudflare.api_token (or CF_API_TOKEN) is required")
    if not cf.account_id and not cf.zones:
        raise ConfigError("either cloudflare.account_id or cloudflare.zones is required")


# 全局配置实例（延迟加载）
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """获取全局配置实例（单例模式）"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config():
    """重置配置（主要用于测试）"""
    global _config
    _config = None
