"""
RSS轮询调度模块
负责每轮检查到期的Feed：抓取、计算新增条目、分发、提交状态

每个Feed的状态流转：Idle -> Due -> Polling -> Updated/Failed -> Idle
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .config import RSSBotSettings, get_config
from .dispatcher import FanOutDispatcher
from .errors import DeliveryError, FetchError
from .fetcher import FeedFetcher, FetchResult
from .models import FeedConfig
from .state import FeedStateStore, compute_delta, merge_seen_items


class FeedStatus:
    IDLE = "idle"
    DUE = "due"
    POLLING = "polling"
    UPDATED = "updated"
    FAILED = "failed"


@dataclass
class FeedPollResult:
    """单个Feed的轮询结果"""
    url: str
    status: str
    new_items: int = 0
    delivered: int = 0
    delivery_errors: List[DeliveryError] = field(default_factory=list)
    fetch_error: Optional[FetchError] = None


@dataclass
class CycleReport:
    """一轮轮询的统计"""
    due: int = 0
    updated: int = 0
    failed: int = 0
    new_items: int = 0
    delivered: int = 0
    delivery_errors: List[DeliveryError] = field(default_factory=list)
    fetch_errors: List[FetchError] = field(default_factory=list)

    def add(self, result: FeedPollResult) -> None:
        if result.status == FeedStatus.UPDATED:
            self.updated += 1
        elif result.status == FeedStatus.FAILED:
            self.failed += 1
        self.new_items += result.new_items
        self.delivered += result.delivered
        self.delivery_errors.extend(result.delivery_errors)
        if result.fetch_error:
            self.fetch_errors.append(result.fetch_error)


class PollScheduler:
    """RSS轮询调度器"""

    def __init__(self, state: FeedStateStore, fetcher: FeedFetcher, dispatcher: FanOutDispatcher,
                 settings: Optional[RSSBotSettings] = None, clock: Callable[[], float] = time.time):
        """
        Args:
            state: Feed状态存储
            fetcher: Feed抓取器
            dispatcher: 消息分发器
            settings: 配置
            clock: 当前时间函数（测试时可替换）
        """
        self.state = state
        self.fetcher = fetcher
        self.dispatcher = dispatcher
        self.settings = settings or get_config()
        self.clock = clock
        self.logger = logging.getLogger("rssbot_scheduler")

    def backoff_interval(self, feed: FeedConfig) -> int:
        """失败后的等待时间：轮询间隔按失败次数指数增长，不超过上限"""
        interval = feed.effective_interval(self.settings)
        ceiling = max(self.settings.max_backoff_seconds, interval)
        return min(interval * (2 ** feed.backoff_count), ceiling)

    async def run_cycle(self, now: Optional[int] = None) -> CycleReport:
        """
        执行一轮轮询

        Args:
            now: 本轮的当前时间（Unix秒），None表示读取时钟

        Returns:
            CycleReport: 本轮统计
        """
        now = int(self.clock()) if now is None else now
        due_urls = self.state.due_feeds(now)
        report = CycleReport(due=len(due_urls))

        if not due_urls:
            self.logger.debug("没有到期的Feed")
            return report

        self.logger.info(f"开始轮询 {len(due_urls)} 个到期Feed")
        batch_size = max(1, self.settings.max_concurrent_feeds)

        # 分批并发处理，避免同时发出过多请求
        for i in range(0, len(due_urls), batch_size):
            batch_urls = due_urls[i:i + batch_size]
            results = await asyncio.gather(
                *(self.poll_feed(url, now) for url in batch_urls),
                return_exceptions=True,
            )
            for url, result in zip(batch_urls, results):
                if isinstance(result, BaseException):
                    report.failed += 1
                    self.logger.error(f"轮询Feed异常: {url}, 错误: {str(result)}", exc_info=result)
                else:
                    report.add(result)

        self.logger.info(
            f"📊 RSS轮询完成: 更新 {report.updated} 个，失败 {report.failed} 个，"
            f"新条目 {report.new_items} 个，发送成功 {report.delivered} 条，发送失败 {len(report.delivery_errors)} 条"
        )
        return report

    async def poll_feed(self, url: str, now: int) -> FeedPollResult:
        """
        轮询单个Feed，持有该Feed的锁直到状态提交完成

        Args:
            url: Feed URL
            now: 本轮的当前时间

        Returns:
            FeedPollResult: 轮询结果
        """
        async with self.state.lock_for(url):
            feed = self.state.get(url)
            if feed is None or not feed.is_due(now):
                # 已被删除，或者同一Feed的另一次轮询已经推进了时间
                return FeedPollResult(url=url, status=FeedStatus.IDLE)

            try:
                result = await self._fetch(url)
            except FetchError as e:
                self.logger.warning(f"Feed抓取失败: {e}")
                await self._record_failure(url, now)
                return FeedPollResult(url=url, status=FeedStatus.FAILED, fetch_error=e)

            if feed.needs_priming:
                self.logger.info(f"Feed首次抓取成功，记录 {len(result.items)} 个已有条目，不发送: {url}")
                await self._record_success(url, now, result)
                return FeedPollResult(url=url, status=FeedStatus.UPDATED)

            new_items = compute_delta(feed, result.items)
            feed_title = result.title or feed.feed_title or url
            if new_items:
                self.logger.info(f"Feed {url} 发现 {len(new_items)} 个新条目，发送到 {len(feed.rooms)} 个房间")

            dispatch_report = await self.dispatcher.dispatch(feed.rooms, new_items, feed_title)
            await self._record_success(url, now, result)

            return FeedPollResult(
                url=url,
                status=FeedStatus.UPDATED,
                new_items=len(new_items),
                delivered=dispatch_report.delivered,
                delivery_errors=dispatch_report.errors,
            )

    async def _fetch(self, url: str) -> FetchResult:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.fetcher.fetch, url),
                timeout=self.settings.fetch_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise FetchError(
                url, FetchError.TRANSPORT, f"抓取超时({self.settings.fetch_timeout_seconds}秒)"
            ) from e
        except FetchError:
            raise
        except Exception as e:
            self.logger.error(f"抓取Feed时发生未知错误: {url}, 错误: {str(e)}", exc_info=True)
            raise FetchError(url, FetchError.PARSE, str(e)) from e

    async def _record_success(self, url: str, now: int, result: FetchResult) -> None:
        def mutate(feed: FeedConfig) -> None:
            merge_seen_items(feed, result.items, self.settings)
            if result.title:
                feed.feed_title = result.title
            feed.feed_updated_timestamp = now
            feed.is_failing = False
            feed.backoff_count = 0
            feed.needs_priming = False
            feed.next_poll_timestamp = now + feed.effective_interval(self.settings)

        await self.state.update(url, mutate, locked=True, validate=False)

    async def _record_failure(self, url: str, now: int) -> None:
        def mutate(feed: FeedConfig) -> None:
            feed.is_failing = True
            feed.backoff_count += 1
            feed.next_poll_timestamp = now + self.backoff_interval(feed)

        updated = await self.state.update(url, mutate, locked=True, validate=False)
        if updated:
            self.logger.info(
                f"Feed {url} 连续失败 {updated.backoff_count} 次，"
                f"下次轮询: {updated.next_poll_timestamp}"
            )
