"""
RSS机器人服务

对外暴露的服务对象：配置校验和更新、注册、轮询入口，以及供持久化使用的配置读取。
宿主框架只需要定时调用 poll()。
"""

import asyncio
import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Union

from .chat_client import ChatClient
from .config import RSSBotSettings, get_config
from .dispatcher import FanOutDispatcher
from .errors import ConfigError, FetchError
from .fetcher import FeedFetcher
from .models import FeedConfig, ServiceConfig, validate_feed_url, validate_poll_interval
from .scheduler import CycleReport, PollScheduler
from .state import FeedStateStore, merge_seen_items
from .store import ConfigStore


def _string_list(value: Any, field_name: str, url: str, problems: List[str]) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) and v.strip() for v in value):
        problems.append(f"{url}: {field_name}必须是非空字符串列表")
        return []
    return [v.strip() for v in value]


def parse_service_document(service_id: str, document: Union[str, bytes, Dict[str, Any]],
                           settings: Optional[RSSBotSettings] = None, now: Optional[int] = None,
                           existing: Optional[ServiceConfig] = None, prime_new: bool = False) -> ServiceConfig:
    """
    校验配置文档并生成服务配置

    文档格式: {"feeds": {<url>: {"rooms": [...], "poll_interval_seconds": int,
    "must_include": [...], "must_not_include": [...]}}}，未知字段忽略。
    已存在的Feed保留轮询状态，新Feed使用默认状态，文档中没有的Feed被删除。

    Args:
        service_id: 服务ID
        document: 配置文档（dict或JSON文本）
        settings: 配置
        now: 当前时间（新Feed的下次轮询时间）
        existing: 当前服务配置
        prime_new: 新Feed是否在首次抓取时只记录已有条目

    Returns:
        ServiceConfig: 新的服务配置

    Raises:
        ConfigError: 有任何问题时整体拒绝
    """
    settings = settings or get_config()
    now = int(time.time()) if now is None else now

    if isinstance(document, (str, bytes)):
        try:
            document = json.loads(document)
        except ValueError as e:
            raise ConfigError([f"配置不是有效的JSON: {str(e)}"]) from e

    if not isinstance(document, dict):
        raise ConfigError(["配置必须是JSON对象"])

    feeds_doc = document.get("feeds") or {}
    if not isinstance(feeds_doc, dict):
        raise ConfigError(["feeds必须是 URL -> 配置 的映射"])

    problems: List[str] = []
    feeds: Dict[str, FeedConfig] = {}
    for url, feed_doc in feeds_doc.items():
        url_problem = validate_feed_url(url)
        if url_problem:
            problems.append(url_problem)
            continue

        feed_doc = feed_doc or {}
        if not isinstance(feed_doc, dict):
            problems.append(f"{url}: Feed配置必须是JSON对象")
            continue

        rooms = _string_list(feed_doc.get("rooms"), "rooms", url, problems)
        interval = feed_doc.get("poll_interval_seconds")
        interval_problem = validate_poll_interval(interval, settings)
        if interval_problem:
            problems.append(f"{url}: {interval_problem}")
            continue
        must_include = _string_list(feed_doc.get("must_include"), "must_include", url, problems)
        must_not_include = _string_list(feed_doc.get("must_not_include"), "must_not_include", url, problems)

        previous = existing.feeds.get(url) if existing else None
        if previous:
            feed = FeedConfig.from_dict(url, previous.to_dict())
            feed.rooms = sorted(set(rooms))
            feed.poll_interval_seconds = interval
            feed.must_include = must_include
            feed.must_not_include = must_not_include
        else:
            feed = FeedConfig.create(
                url, rooms, interval, now=now,
                must_include=must_include, must_not_include=must_not_include,
                needs_priming=prime_new,
            )
        feeds[url] = feed

    if problems:
        raise ConfigError(problems)

    return ServiceConfig(service_id=service_id, feeds=feeds)


class RSSBotService:
    """RSS机器人服务"""

    def __init__(self, service_id: str, config: ServiceConfig, fetcher: FeedFetcher, chat_client: ChatClient,
                 config_store: Optional[ConfigStore] = None, settings: Optional[RSSBotSettings] = None,
                 clock: Callable[[], float] = time.time):
        """
        Args:
            service_id: 服务ID（持久化键）
            config: 初始服务配置
            fetcher: Feed抓取器
            chat_client: 聊天客户端
            config_store: 配置存储，None表示不持久化
            settings: 配置
            clock: 当前时间函数
        """
        self.service_id = service_id
        self.settings = settings or get_config()
        self.fetcher = fetcher
        self.config_store = config_store
        self.clock = clock
        self.state = FeedStateStore(config, self.settings)
        self.dispatcher = FanOutDispatcher(chat_client, self.settings)
        self.scheduler = PollScheduler(self.state, fetcher, self.dispatcher, self.settings, clock=clock)
        self.logger = logging.getLogger("rssbot_service")

        self.logger.info(f"RSS机器人服务初始化完成: {service_id}, 共 {len(config.feeds)} 个Feed")

    @classmethod
    def from_document(cls, service_id: str, document: Union[str, bytes, Dict[str, Any]],
                      fetcher: FeedFetcher, chat_client: ChatClient, **kwargs) -> 'RSSBotService':
        """根据配置文档创建服务，配置无效时抛出ConfigError"""
        settings = kwargs.get("settings") or get_config()
        clock = kwargs.get("clock", time.time)
        config = parse_service_document(service_id, document, settings, now=int(clock()))
        return cls(service_id, config, fetcher, chat_client, **kwargs)

    @classmethod
    def load(cls, service_id: str, config_store: ConfigStore, fetcher: FeedFetcher, chat_client: ChatClient,
             default_document: Optional[Union[str, bytes, Dict[str, Any]]] = None, **kwargs) -> 'RSSBotService':
        """
        从存储恢复服务，存储中没有时使用默认配置文档

        Args:
            service_id: 服务ID
            config_store: 配置存储
            fetcher: Feed抓取器
            chat_client: 聊天客户端
            default_document: 首次启动时的配置文档

        Raises:
            StorageError: 存储读取失败，不会用默认配置覆盖已保存的配置
            ConfigError: 已保存的配置无法使用
        """
        config = config_store.load_config(service_id)
        if config is None:
            if default_document is not None:
                return cls.from_document(service_id, default_document, fetcher, chat_client,
                                         config_store=config_store, **kwargs)
            config = ServiceConfig(service_id=service_id)
        return cls(service_id, config, fetcher, chat_client, config_store=config_store, **kwargs)

    # ==================== 配置 ====================

    def get_config(self) -> ServiceConfig:
        """获取当前服务配置的快照（供持久化使用）"""
        return self.state.snapshot()

    def next_poll_timestamp(self) -> Optional[int]:
        return self.state.next_poll_timestamp()

    def update_config(self, document: Union[str, bytes, Dict[str, Any]]) -> ServiceConfig:
        """
        用新的配置文档整体替换配置，校验失败时不做任何修改

        Raises:
            ConfigError: 配置无效
        """
        config = parse_service_document(
            self.service_id, document, self.settings,
            now=int(self.clock()), existing=self.state.snapshot(), prime_new=True,
        )
        self.state.replace_all(config)
        self.logger.info(f"服务配置已更新: {self.service_id}, 共 {len(config.feeds)} 个Feed")
        self.persist()
        return config.copy()

    def add_feed(self, url: str, room: Optional[str] = None,
                 poll_interval_seconds: Optional[int] = None) -> FeedConfig:
        """
        添加Feed订阅，或为已有Feed添加房间
        新Feed首次抓取时只记录已有条目，之后的新文章才会发送

        Args:
            url: Feed URL
            room: 接收通知的房间
            poll_interval_seconds: 轮询间隔，None表示不修改/使用默认值

        Raises:
            ConfigError: URL或间隔无效
        """
        problems = [p for p in (validate_feed_url(url),
                                validate_poll_interval(poll_interval_seconds, self.settings)) if p]
        if problems:
            raise ConfigError(problems)

        config = self.state.snapshot()
        feed = config.feeds.get(url)
        if feed is None:
            feed = FeedConfig.create(url, [room] if room else [], poll_interval_seconds,
                                     now=int(self.clock()), needs_priming=True)
            config.feeds[url] = feed
            self.logger.info(f"添加Feed订阅: {url} -> {room}")
        else:
            if room:
                feed.rooms = sorted(set(feed.rooms) | {room})
            if poll_interval_seconds is not None:
                feed.poll_interval_seconds = poll_interval_seconds
            self.logger.info(f"更新Feed订阅: {url} -> {feed.rooms}")

        self.state.replace_all(config)
        self.persist()
        return self.state.get(url)

    def remove_feed(self, url: str, room: Optional[str] = None) -> bool:
        """
        删除Feed订阅

        指定房间时只移除该房间，没有房间剩下时删除整个Feed。

        Returns:
            bool: 是否有修改
        """
        config = self.state.snapshot()
        feed = config.feeds.get(url)
        if feed is None:
            self.logger.warning(f"Feed订阅不存在: {url}")
            return False

        if room is not None:
            if room not in feed.rooms:
                return False
            feed.rooms = [r for r in feed.rooms if r != room]
            if not feed.rooms:
                del config.feeds[url]
        else:
            del config.feeds[url]

        self.state.replace_all(config)
        self.logger.info(f"删除Feed订阅: {url} (房间: {room or '全部'})")
        self.persist()
        return True

    def persist(self) -> bool:
        """把当前配置写入存储"""
        if self.config_store is None:
            return True
        return self.config_store.store_config(self.service_id, self.state.snapshot())

    # ==================== 生命周期 ====================

    async def register(self, prime: bool = True) -> None:
        """
        注册服务：对从未抓取过的Feed先抓取一次，把现有条目记为已见但不发送，
        避免订阅时把历史内容全部推送出去

        每个Feed单独初始化。抓取失败的Feed标记为待初始化，
        之后第一次成功轮询时同样只记录不发送。

        Raises:
            ConfigError: 有Feed无法抓取时列出这些Feed（其他Feed已完成初始化）
        """
        if not prime:
            self.persist()
            return

        now = int(self.clock())
        config = self.state.snapshot()
        pending = [url for url, feed in config.feeds.items()
                   if feed.needs_priming or (not feed.seen_items and feed.feed_updated_timestamp is None)]

        results = await asyncio.gather(
            *(asyncio.to_thread(self.fetcher.fetch, url) for url in pending),
            return_exceptions=True,
        )

        def mark_pending(feed: FeedConfig) -> None:
            feed.needs_priming = True

        problems = []
        for url, result in zip(pending, results):
            if isinstance(result, BaseException):
                problems.append(f"无法抓取Feed: {result}" if isinstance(result, FetchError)
                                else f"无法抓取Feed: {url}: {str(result)}")
                self.logger.warning(f"Feed初始化失败，首次成功轮询时再记录已有条目: {url}")
                await self.state.update(url, mark_pending, validate=False)
                continue

            def mutate(feed: FeedConfig, result=result) -> None:
                merge_seen_items(feed, result.items, self.settings)
                feed.feed_title = result.title or feed.feed_title
                feed.feed_updated_timestamp = now
                feed.needs_priming = False
                feed.next_poll_timestamp = now + feed.effective_interval(self.settings)

            await self.state.update(url, mutate, validate=False)
            self.logger.info(f"Feed初始化完成: {url}, 记录 {len(result.items)} 个已有条目")

        self.persist()
        if problems:
            raise ConfigError(problems)

    async def poll(self) -> Optional[CycleReport]:
        """
        轮询入口，由宿主定时调用

        单个Feed或房间的失败不会抛出，所有结果通过发送的消息和持久化的状态体现。
        """
        try:
            report = await self.scheduler.run_cycle()
        except Exception as e:
            self.logger.error(f"RSS轮询执行失败: {str(e)}", exc_info=True)
            return None
        finally:
            self.persist()
        return report


def create_service(service_id: str, config_json: Union[str, bytes, Dict[str, Any]], chat_client: ChatClient,
                   fetcher: Optional[FeedFetcher] = None, **kwargs) -> RSSBotService:
    """
    创建RSS机器人服务的便捷函数

    Args:
        service_id: 服务ID
        config_json: 配置文档
        chat_client: 聊天客户端
        fetcher: Feed抓取器，None时使用默认抓取器
    """
    return RSSBotService.from_document(service_id, config_json, fetcher or FeedFetcher(), chat_client, **kwargs)
