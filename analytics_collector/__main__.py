"""
Analytics Collector 主程序入口

使用方式:
    python -m analytics_collector
    或
    analytics-collector
"""

from analytics_collector.main import cli

if __name__ == "__main__":
    cli()
