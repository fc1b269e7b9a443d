"""
Analytics Collector - 区域安全事件采集服务

负责：
- 按固定间隔拉取每个区域的防火墙事件聚合计数
- 计算首尾相接的查询窗口，保证不漏不重
- 按基数策略重新聚合维度
- 生成带时间戳的指标点，提供 REST API 查询
"""

__version__ = "1.0.0"
