"""
RSS机器人数据模型

FeedConfig/ServiceConfig 是持久化的单位，FeedItem 只在一次轮询中存在。
"""

import copy
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from .config import RSSBotSettings


@dataclass
class FeedItem:
    """Feed条目（不持久化）"""
    id: str
    title: str
    link: str
    published_at: Optional[int] = None  # Unix秒


@dataclass
class FeedConfig:
    """单个Feed的订阅配置和轮询状态"""
    url: str
    rooms: List[str] = field(default_factory=list)
    poll_interval_seconds: Optional[int] = None
    next_poll_timestamp: int = 0
    # 条目ID -> 最后一次见到时的发布时间，按最近观察顺序排列（越靠后越新）
    seen_items: Dict[str, Optional[int]] = field(default_factory=dict)
    feed_title: str = ""
    feed_updated_timestamp: Optional[int] = None
    is_failing: bool = False
    backoff_count: int = 0
    max_item_count: int = 0
    must_include: List[str] = field(default_factory=list)
    must_not_include: List[str] = field(default_factory=list)
    # 首次成功抓取时只记录已有条目，不发送（订阅时不推送历史内容）
    needs_priming: bool = False

    def __post_init__(self):
        # 房间是集合语义，统一去重排序后保存
        self.rooms = sorted(set(self.rooms))

    @classmethod
    def create(cls, url: str, rooms=None, poll_interval_seconds: Optional[int] = None,
               now: Optional[int] = None, **kwargs) -> 'FeedConfig':
        """创建新订阅：下次轮询时间默认为当前时间，已见条目为空"""
        return cls(
            url=url,
            rooms=list(rooms or []),
            poll_interval_seconds=poll_interval_seconds,
            next_poll_timestamp=int(time.time()) if now is None else now,
            **kwargs,
        )

    def effective_interval(self, settings: RSSBotSettings) -> int:
        """获取实际轮询间隔（未设置时使用默认值）"""
        if self.poll_interval_seconds is None:
            return settings.default_poll_interval_seconds
        return self.poll_interval_seconds

    def is_due(self, now: int) -> bool:
        return now >= self.next_poll_timestamp

    def validate(self, settings: RSSBotSettings) -> List[str]:
        """校验配置，返回问题列表（为空表示有效）"""
        problems = []
        url_problem = validate_feed_url(self.url)
        if url_problem:
            problems.append(url_problem)
        interval_problem = validate_poll_interval(self.poll_interval_seconds, settings)
        if interval_problem:
            problems.append(f"{self.url}: {interval_problem}")
        for room in self.rooms:
            if not isinstance(room, str) or not room.strip():
                problems.append(f"{self.url}: 无效的房间ID {room!r}")
        return problems

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "rooms": list(self.rooms),
            "next_poll_timestamp": self.next_poll_timestamp,
            "seen_items": dict(self.seen_items),
            "feed_title": self.feed_title,
            "feed_updated_timestamp": self.feed_updated_timestamp,
            "is_failing": self.is_failing,
            "backoff_count": self.backoff_count,
            "max_item_count": self.max_item_count,
            "must_include": list(self.must_include),
            "must_not_include": list(self.must_not_include),
            "needs_priming": self.needs_priming,
        }
        if self.poll_interval_seconds is not None:
            data["poll_interval_seconds"] = self.poll_interval_seconds
        return data

    @classmethod
    def from_dict(cls, url: str, data: Dict[str, Any]) -> 'FeedConfig':
        return cls(
            url=url,
            rooms=[room for room in (data.get("rooms") or []) if isinstance(room, str)],
            poll_interval_seconds=data.get("poll_interval_seconds"),
            next_poll_timestamp=int(data.get("next_poll_timestamp", 0)),
            seen_items=dict(data.get("seen_items") or {}),
            feed_title=data.get("feed_title", ""),
            feed_updated_timestamp=data.get("feed_updated_timestamp"),
            is_failing=bool(data.get("is_failing", False)),
            backoff_count=int(data.get("backoff_count", 0)),
            max_item_count=int(data.get("max_item_count", 0)),
            must_include=list(data.get("must_include") or []),
            must_not_include=list(data.get("must_not_include") or []),
            needs_priming=bool(data.get("needs_priming", False)),
        )


@dataclass
class ServiceConfig:
    """一个RSS机器人服务的完整配置（持久化单位）"""
    service_id: str
    feeds: Dict[str, FeedConfig] = field(default_factory=dict)

    def copy(self) -> 'ServiceConfig':
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {"feeds": {url: feed.to_dict() for url, feed in self.feeds.items()}}

    @classmethod
    def from_dict(cls, service_id: str, data: Dict[str, Any]) -> 'ServiceConfig':
        feeds = data.get("feeds") or {}
        return cls(
            service_id=service_id,
            feeds={url: FeedConfig.from_dict(url, feed_data or {}) for url, feed_data in feeds.items()},
        )


def validate_feed_url(url: Any) -> Optional[str]:
    """校验Feed URL语法，有问题时返回错误描述"""
    if not isinstance(url, str) or not url.strip():
        return f"Feed URL不能为空: {url!r}"
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        return f"Feed URL必须使用http或https: {url}"
    if not parsed.netloc or not parsed.hostname:
        return f"Feed URL缺少主机名: {url}"
    return None


def validate_poll_interval(value: Any, settings: RSSBotSettings) -> Optional[str]:
    """校验轮询间隔，None表示使用默认值"""
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        return f"poll_interval_seconds必须是整数: {value!r}"
    if value < settings.min_poll_interval_seconds or value > settings.max_poll_interval_seconds:
        return (
            f"poll_interval_seconds必须在 {settings.min_poll_interval_seconds}"
            f"-{settings.max_poll_interval_seconds} 之间: {value}"
        )
    return None
