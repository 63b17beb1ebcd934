"""
RSS消息分发模块
把新条目格式化后发送到Feed订阅的所有房间，单个房间失败不影响其他房间和后续条目
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from .chat_client import ChatClient
from .config import RSSBotSettings, get_config
from .errors import DeliveryError
from .models import FeedItem


def format_notice(feed_title: str, item: FeedItem) -> str:
    """
    格式化条目通知

    Args:
        feed_title: Feed频道标题
        item: 条目

    Returns:
        str: 消息正文
    """
    title = item.title or item.link or item.id
    if item.link:
        return f"{feed_title} posted a new article: {title} ( {item.link} )"
    return f"{feed_title} posted a new article: {title}"


@dataclass
class DispatchReport:
    """一次分发的结果"""
    delivered: int = 0
    errors: List[DeliveryError] = field(default_factory=list)


class FanOutDispatcher:
    """多房间分发器"""

    def __init__(self, chat_client: ChatClient, settings: Optional[RSSBotSettings] = None):
        self.chat_client = chat_client
        self.settings = settings or get_config()
        self.logger = logging.getLogger("rssbot_dispatcher")

    async def dispatch(self, rooms: Iterable[str], items: List[FeedItem], feed_title: str) -> DispatchReport:
        """
        发送所有 (条目, 房间) 组合

        每个房间按条目顺序依次发送，不同房间并发发送。
        每次发送失败单独记录，不会中断其他发送。

        Args:
            rooms: 目标房间
            items: 新条目（Feed顺序）
            feed_title: Feed标题

        Returns:
            DispatchReport: 成功数量和失败列表
        """
        rooms = list(rooms)
        report = DispatchReport()
        if not rooms or not items:
            return report

        messages = [(item, format_notice(feed_title, item)) for item in items]
        room_reports = await asyncio.gather(*(self._send_to_room(room, messages) for room in rooms))

        for room_report in room_reports:
            report.delivered += room_report.delivered
            report.errors.extend(room_report.errors)

        if report.errors:
            self.logger.warning(
                f"分发完成: 成功 {report.delivered} 条，失败 {len(report.errors)} 条 ({feed_title})"
            )
        else:
            self.logger.info(f"分发完成: {len(items)} 个条目 -> {len(rooms)} 个房间 ({feed_title})")
        return report

    async def _send_to_room(self, room: str, messages) -> DispatchReport:
        report = DispatchReport()
        for item, body in messages:
            try:
                await asyncio.wait_for(
                    self.chat_client.send_message(room, body),
                    timeout=self.settings.send_timeout_seconds,
                )
                report.delivered += 1
            except asyncio.TimeoutError:
                error = DeliveryError(room, f"发送超时({self.settings.send_timeout_seconds}秒)", item_id=item.id)
                self.logger.error(str(error))
                report.errors.append(error)
            except DeliveryError as e:
                e.item_id = e.item_id or item.id
                self.logger.error(f"{e} (条目: {item.id})")
                report.errors.append(e)
            except Exception as e:
                self.logger.error(f"发送到 {room} 异常: {item.id}, 错误: {str(e)}", exc_info=True)
                report.errors.append(DeliveryError(room, str(e), item_id=item.id))
        return report
