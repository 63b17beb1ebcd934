"""
RSS状态管理模块
负责Feed轮询状态的保存和修改：去重计算、已见条目合并与淘汰、按Feed原子更新
"""

import asyncio
import copy
import logging
from typing import Callable, Dict, Iterable, List, Optional

from .config import RSSBotSettings, get_config
from .errors import ConfigError
from .models import FeedConfig, FeedItem, ServiceConfig


def compute_delta(feed: FeedConfig, items: Iterable[FeedItem]) -> List[FeedItem]:
    """
    计算新增条目

    条目ID不在已见集合中，或者在但发布时间比记录的更新，都算新条目。
    同一次抓取中重复的ID只算一次。关键词过滤在去重之后进行。

    Args:
        feed: Feed配置
        items: 本次抓取的条目（按Feed顺序）

    Returns:
        List[FeedItem]: 需要发送的条目，保持输入顺序
    """
    new_items = []
    emitted = set()
    for item in items:
        if item.id in emitted:
            continue
        if item.id in feed.seen_items:
            last_published = feed.seen_items[item.id]
            if item.published_at is None or last_published is None or item.published_at <= last_published:
                continue
        emitted.add(item.id)
        new_items.append(item)

    return [item for item in new_items if matches_filters(feed, item)]


def matches_filters(feed: FeedConfig, item: FeedItem) -> bool:
    """检查条目标题是否满足关键词过滤"""
    title = item.title.lower()
    if feed.must_include and not any(keyword.lower() in title for keyword in feed.must_include):
        return False
    if any(keyword.lower() in title for keyword in feed.must_not_include):
        return False
    return True


def merge_seen_items(feed: FeedConfig, items: List[FeedItem], settings: Optional[RSSBotSettings] = None) -> None:
    """
    把本次抓取到的所有条目记入已见集合，并按上限淘汰最久未见的条目

    本次见到的条目移到末尾（按发布时间从旧到新），淘汰从头部开始。
    上限取单次抓取最多条目数的倍数，避免Feed条目数临时变少时把还在Feed里的条目忘掉。
    """
    settings = settings or get_config()
    feed.max_item_count = max(feed.max_item_count, len({item.id for item in items}))

    ordered = sorted(
        enumerate(items),
        key=lambda pair: (pair[1].published_at is None, pair[1].published_at or 0, pair[0]),
    )
    for _, item in ordered:
        previous = feed.seen_items.pop(item.id, None)
        if item.published_at is not None and previous is not None:
            feed.seen_items[item.id] = max(previous, item.published_at)
        else:
            feed.seen_items[item.id] = item.published_at if item.published_at is not None else previous

    cap = settings.seen_items_cap(feed.max_item_count)
    overflow = len(feed.seen_items) - cap
    if overflow > 0:
        for item_id in list(feed.seen_items)[:overflow]:
            del feed.seen_items[item_id]
        logging.debug(f"已见条目超过上限 {cap}，淘汰 {overflow} 个: {feed.url}")


class FeedStateStore:
    """Feed状态存储，持有服务配置并保证单个Feed的修改是原子的"""

    def __init__(self, config: ServiceConfig, settings: Optional[RSSBotSettings] = None):
        """
        Args:
            config: 服务配置（由存储接管，外部不应再修改）
            settings: 配置
        """
        self.settings = settings or get_config()
        self._config = config.copy()
        self._locks: Dict[str, asyncio.Lock] = {}
        self.logger = logging.getLogger("rssbot_state")

    @property
    def service_id(self) -> str:
        return self._config.service_id

    def snapshot(self) -> ServiceConfig:
        """获取完整配置的副本"""
        return self._config.copy()

    def get(self, url: str) -> Optional[FeedConfig]:
        """获取单个Feed配置的副本"""
        feed = self._config.feeds.get(url)
        return copy.deepcopy(feed) if feed else None

    def urls(self) -> List[str]:
        return list(self._config.feeds)

    def due_feeds(self, now: int) -> List[str]:
        """获取到达轮询时间的Feed"""
        return [url for url, feed in self._config.feeds.items() if feed.is_due(now)]

    def next_poll_timestamp(self) -> Optional[int]:
        """最早的下次轮询时间，没有订阅时返回None"""
        timestamps = [feed.next_poll_timestamp for feed in self._config.feeds.values()]
        return min(timestamps) if timestamps else None

    def lock_for(self, url: str) -> asyncio.Lock:
        """获取Feed级别的锁，同一Feed的轮询和提交串行执行"""
        lock = self._locks.get(url)
        if lock is None:
            lock = self._locks[url] = asyncio.Lock()
        return lock

    def _commit(self, url: str, mutator: Callable[[FeedConfig], None], validate: bool) -> Optional[FeedConfig]:
        current = self._config.feeds.get(url)
        if current is None:
            # 轮询过程中被重新配置删除了，丢弃这次结果
            self.logger.info(f"Feed已被删除，放弃状态更新: {url}")
            return None

        updated = self.get(url)
        mutator(updated)
        if validate:
            problems = updated.validate(self.settings)
            if problems:
                raise ConfigError(problems)

        self._config.feeds[url] = updated
        return updated

    async def update(self, url: str, mutator: Callable[[FeedConfig], None],
                     locked: bool = False, validate: bool = True) -> Optional[FeedConfig]:
        """
        原子地修改单个Feed：复制、修改副本、校验、替换
        mutator抛出异常时不会写入任何内容

        Args:
            url: Feed URL
            mutator: 修改函数，接收Feed配置副本
            locked: 调用方是否已经持有该Feed的锁
            validate: 是否校验修改后的配置（轮询状态提交不改配置，不做校验）

        Returns:
            Optional[FeedConfig]: 更新后的配置副本，Feed不存在时返回None
        """
        if locked:
            updated = self._commit(url, mutator, validate)
        else:
            async with self.lock_for(url):
                updated = self._commit(url, mutator, validate)
        return self.get(url) if updated else None

    def replace_all(self, config: ServiceConfig) -> None:
        """整体替换配置（重新配置时使用）"""
        self._config = config.copy()
        for url in list(self._locks):
            if url not in self._config.feeds and not self._locks[url].locked():
                del self._locks[url]
