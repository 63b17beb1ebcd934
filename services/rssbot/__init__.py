"""
RSS机器人服务模块

提供Feed轮询、新条目去重、多房间分发和配置持久化功能
"""

from .config import RSSBotSettings, get_config, update_config, rssbot_settings
from .errors import RSSBotError, FetchError, DeliveryError, ConfigError
from .models import FeedItem, FeedConfig, ServiceConfig
from .chat_client import ChatClient, TelegramChatClient
from .fetcher import FeedFetcher, FetchResult, create_session
from .state import FeedStateStore, compute_delta, merge_seen_items
from .dispatcher import FanOutDispatcher, DispatchReport, format_notice
from .scheduler import PollScheduler, CycleReport, FeedPollResult, FeedStatus
from .store import ConfigStore, create_config_store
from .service import RSSBotService, create_service, parse_service_document

__all__ = [
    # 配置
    'RSSBotSettings',
    'get_config',
    'update_config',
    'rssbot_settings',

    # 错误
    'RSSBotError',
    'FetchError',
    'DeliveryError',
    'ConfigError',

    # 数据模型
    'FeedItem',
    'FeedConfig',
    'ServiceConfig',

    # 聊天客户端
    'ChatClient',
    'TelegramChatClient',

    # 抓取
    'FeedFetcher',
    'FetchResult',
    'create_session',

    # 状态
    'FeedStateStore',
    'compute_delta',
    'merge_seen_items',

    # 分发与调度
    'FanOutDispatcher',
    'DispatchReport',
    'format_notice',
    'PollScheduler',
    'CycleReport',
    'FeedPollResult',
    'FeedStatus',

    # 服务
    'ConfigStore',
    'create_config_store',
    'RSSBotService',
    'create_service',
    'parse_service_document',
]
