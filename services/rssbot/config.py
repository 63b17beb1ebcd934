"""
RSS机器人模块配置管理
统一管理轮询、网络请求和状态存储相关的配置参数
"""

import logging
from dataclasses import dataclass
from typing import Dict


@dataclass
class RSSBotSettings:
    """RSS机器人配置类"""

    # 网络请求配置（单次请求，不做内部重试）
    connect_timeout: float = 10.0
    request_timeout: float = 30.0
    # 整个抓取任务的上限（包含线程调度），防止单个Feed卡住整轮轮询
    fetch_timeout_seconds: float = 45.0
    send_timeout_seconds: float = 20.0
    max_concurrent_feeds: int = 5

    # 轮询间隔配置（秒）
    default_poll_interval_seconds: int = 300
    min_poll_interval_seconds: int = 1
    max_poll_interval_seconds: int = 86400
    # 失败退避上限（秒）
    max_backoff_seconds: int = 86400

    # 已见条目上限: clamp(factor * 单次最多条目数, min_cap, max_cap)
    seen_items_cap_factor: int = 2
    seen_items_min_cap: int = 20
    seen_items_max_cap: int = 10000

    # 条件请求缓存（ETag/Last-Modified）保留时间（秒）
    validator_cache_ttl: int = 7 * 86400

    # 请求头配置
    user_agent: str = "Mozilla/5.0 (compatible; rssbot/1.0; +https://github.com/)"

    def get_request_headers(self) -> Dict[str, str]:
        """获取标准请求头"""
        return {
            "User-Agent": self.user_agent,
            "Accept": "application/rss+xml, application/atom+xml, application/xml, text/xml, */*",
            "Accept-Language": "zh-CN,zh;q=0.9,en;q=0.8",
        }

    def seen_items_cap(self, max_item_count: int) -> int:
        """根据Feed单次返回的最多条目数计算已见条目上限"""
        cap = self.seen_items_cap_factor * max(max_item_count, 0)
        return max(self.seen_items_min_cap, min(cap, self.seen_items_max_cap))


# 全局配置实例
rssbot_settings = RSSBotSettings()


def update_config(**kwargs) -> None:
    """
    更新配置参数

    Args:
        **kwargs: 要更新的配置项
    """
    for key, value in kwargs.items():
        if hasattr(rssbot_settings, key):
            setattr(rssbot_settings, key, value)
            logging.info(f"RSS机器人配置更新: {key} = {value}")
        else:
            logging.warning(f"未知的RSS机器人配置项: {key}")


def get_config() -> RSSBotSettings:
    """获取当前配置"""
    return rssbot_settings
