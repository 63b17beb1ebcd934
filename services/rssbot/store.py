"""
RSS机器人配置持久化
以服务ID为键整体读写ServiceConfig文档
"""

import logging
from typing import Optional

from services.common.storage import DocumentStore, get_store
from .config import RSSBotSettings, get_config
from .errors import ConfigError
from .models import FeedConfig, ServiceConfig, validate_feed_url, validate_poll_interval


def repair_feed(feed: FeedConfig, settings: RSSBotSettings) -> bool:
    """
    让已保存的Feed符合当前配置的约束（配置上下限可能在保存之后被修改过）

    轮询间隔截断到允许范围，无效的房间ID丢弃。

    Returns:
        bool: 是否做了修改
    """
    changed = False
    interval = feed.poll_interval_seconds
    if validate_poll_interval(interval, settings):
        if isinstance(interval, int) and not isinstance(interval, bool):
            feed.poll_interval_seconds = min(
                max(interval, settings.min_poll_interval_seconds), settings.max_poll_interval_seconds
            )
        else:
            feed.poll_interval_seconds = None
        changed = True

    rooms = [room for room in feed.rooms if isinstance(room, str) and room.strip()]
    if len(rooms) != len(feed.rooms):
        feed.rooms = rooms
        changed = True
    return changed


class ConfigStore:
    """服务配置存储"""

    def __init__(self, store: DocumentStore, settings: Optional[RSSBotSettings] = None):
        self.store = store
        self.settings = settings or get_config()
        self.logger = logging.getLogger("rssbot_store")

    def load_config(self, service_id: str) -> Optional[ServiceConfig]:
        """
        读取服务配置

        Args:
            service_id: 服务ID

        Returns:
            Optional[ServiceConfig]: 服务配置，不存在时返回None

        Raises:
            StorageError: 存储后端读取失败
            ConfigError: 文档中有无法修复的Feed
        """
        document = self.store.load(service_id)
        if document is None:
            return None
        if not isinstance(document, dict):
            raise ConfigError([f"已保存的服务配置格式错误: {service_id}"])

        config = ServiceConfig.from_dict(service_id, document)
        problems = [problem for problem in map(validate_feed_url, config.feeds) if problem]
        if problems:
            raise ConfigError(problems)

        for url, feed in config.feeds.items():
            if repair_feed(feed, self.settings):
                self.logger.warning(
                    f"已保存的Feed配置超出当前限制，已修正: {url}, "
                    f"轮询间隔: {feed.poll_interval_seconds}, 房间: {feed.rooms}"
                )

        self.logger.debug(f"加载服务配置: {service_id}, 共 {len(config.feeds)} 个Feed")
        return config

    def store_config(self, service_id: str, config: ServiceConfig) -> bool:
        """
        整体保存服务配置

        Args:
            service_id: 服务ID
            config: 服务配置

        Returns:
            bool: 是否保存成功
        """
        success = self.store.save(service_id, config.to_dict())
        if success:
            self.logger.debug(f"保存服务配置: {service_id}, 共 {len(config.feeds)} 个Feed")
        else:
            self.logger.error(f"保存服务配置失败: {service_id}")
        return success


def create_config_store(store_type: Optional[str] = None, settings: Optional[RSSBotSettings] = None,
                        **kwargs) -> ConfigStore:
    """根据环境创建配置存储"""
    return ConfigStore(get_store("rssbot_config", store_type=store_type, **kwargs), settings)
