"""
Feed抓取模块
负责单次HTTP请求、条件请求缓存和Feed解析，不修改任何共享状态
"""

import base64
import calendar
import html
import logging
from dataclasses import dataclass, field
from typing import List, Optional

import feedparser
import requests
from bs4 import BeautifulSoup
from requests.adapters import HTTPAdapter

from services.common.storage import DocumentStore, StorageError
from .config import RSSBotSettings, get_config
from .errors import FetchError
from .models import FeedItem


@dataclass
class FetchResult:
    """一次抓取的结果"""
    url: str
    title: str = ""
    items: List[FeedItem] = field(default_factory=list)
    not_modified: bool = False


def create_session(settings: Optional[RSSBotSettings] = None) -> requests.Session:
    """
    创建不带重试策略的requests会话（重试由调度器负责）

    Returns:
        requests.Session: 配置好的会话对象
    """
    settings = settings or get_config()
    session = requests.Session()

    adapter = HTTPAdapter(max_retries=0)
    session.mount("http://", adapter)
    session.mount("https://", adapter)

    session.headers.update(settings.get_request_headers())
    return session


def clean_title(text: str) -> str:
    """
    解码标题中的HTML实体并去除标签

    feedparser已经做过一次解码，但很多Feed会二次转义（&amp;#8217;），
    这里再解码一次，保证最终得到Unicode字符。
    只去除feedparser输出里真正的标签，解码得到的 <b> 之类文字保留。
    """
    if not text:
        return ""
    if "<" in text and ">" in text:
        text = BeautifulSoup(text, "html.parser").get_text()
    text = html.unescape(text)
    return " ".join(text.split())


def _entry_timestamp(entry) -> Optional[int]:
    parsed = entry.get("published_parsed") or entry.get("updated_parsed")
    if not parsed:
        return None
    try:
        return calendar.timegm(parsed)
    except (TypeError, ValueError, OverflowError):
        return None


class FeedFetcher:
    """Feed抓取器，每次调用只发出一个网络请求"""

    def __init__(self, session: Optional[requests.Session] = None,
                 settings: Optional[RSSBotSettings] = None,
                 validator_cache: Optional[DocumentStore] = None):
        """
        Args:
            session: requests会话（测试时可注入挂载了模拟适配器的会话）
            settings: 配置
            validator_cache: ETag/Last-Modified缓存，None表示不使用条件请求
        """
        self.settings = settings or get_config()
        self.session = session or create_session(self.settings)
        self.validator_cache = validator_cache
        self.logger = logging.getLogger("rssbot_fetcher")

    def fetch(self, url: str) -> FetchResult:
        """
        抓取并解析Feed

        Args:
            url: Feed URL

        Returns:
            FetchResult: 频道标题和条目列表（尽量按从旧到新排序）

        Raises:
            FetchError: 网络错误、非2xx响应或内容无法解析
        """
        cached = self._load_validators(url)
        headers = {}
        if cached:
            if cached.get("etag"):
                headers["If-None-Match"] = cached["etag"]
            if cached.get("last_modified"):
                headers["If-Modified-Since"] = cached["last_modified"]

        self.logger.debug(f"下载Feed: {url}")
        try:
            response = self.session.get(
                url,
                headers=headers,
                timeout=(self.settings.connect_timeout, self.settings.request_timeout),
            )
        except requests.exceptions.RequestException as e:
            raise FetchError(url, FetchError.TRANSPORT, str(e)) from e

        if response.status_code == 304 and cached and cached.get("body") is not None:
            self.logger.debug(f"Feed未修改，使用缓存内容: {url}")
            result = self.parse(url, base64.b64decode(cached["body"]))
            result.not_modified = True
            return result

        if not 200 <= response.status_code < 300:
            raise FetchError(
                url, FetchError.STATUS, f"HTTP {response.status_code}",
                status_code=response.status_code,
            )

        result = self.parse(url, response.content)
        self._save_validators(url, response)
        self.logger.debug(f"Feed下载成功: {url}, 条目数: {len(result.items)}")
        return result

    def parse(self, url: str, body) -> FetchResult:
        """
        使用feedparser解析Feed内容

        Args:
            url: Feed URL（用于错误信息）
            body: XML内容（bytes或str）

        Returns:
            FetchResult: 解析结果
        """
        feed_data = feedparser.parse(body)
        channel_title = feed_data.feed.get("title", "") if feed_data.feed else ""

        if feed_data.bozo:
            # bozo只是说明格式不严格，只有完全拿不到内容时才算解析失败
            if not feed_data.entries and not channel_title:
                raise FetchError(url, FetchError.PARSE, str(feed_data.get("bozo_exception", "无法解析")))
            self.logger.debug(f"Feed格式不严格 for {url}: {feed_data.get('bozo_exception')}")

        items = []
        for entry in feed_data.entries:
            title = clean_title(entry.get("title", ""))
            link = (entry.get("link") or "").strip()
            # 优先使用guid，不存在则使用link，最后退回标题
            item_id = (entry.get("id") or "").strip() or link or title
            if not item_id:
                self.logger.warning(f"跳过无法识别的条目: {url}")
                continue
            items.append(FeedItem(id=item_id, title=title, link=link, published_at=_entry_timestamp(entry)))

        if items and all(item.published_at is not None for item in items):
            items.sort(key=lambda item: item.published_at)
        else:
            # Feed通常把最新条目放在最前面
            items.reverse()

        return FetchResult(url=url, title=clean_title(channel_title), items=items)

    def _load_validators(self, url: str) -> Optional[dict]:
        if not self.validator_cache:
            return None
        try:
            return self.validator_cache.load(url)
        except StorageError as e:
            # 缓存不可用时退化为普通请求
            self.logger.warning(f"读取条件请求缓存失败: {url}, 错误: {str(e)}")
            return None

    def _save_validators(self, url: str, response: requests.Response) -> None:
        if not self.validator_cache:
            return
        etag = response.headers.get("ETag")
        last_modified = response.headers.get("Last-Modified")
        if not etag and not last_modified:
            return
        self.validator_cache.save(
            url,
            {
                "etag": etag,
                "last_modified": last_modified,
                "body": base64.b64encode(response.content).decode("ascii"),
            },
            ttl=self.settings.validator_cache_ttl,
        )

    def close(self) -> None:
        self.session.close()
