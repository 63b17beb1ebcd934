"""
聊天客户端模块

定义发送消息的统一接口，并提供基于Telegram Bot的实现。
认证和房间成员关系由客户端自身负责，调用方只关心发送是否成功。
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from telegram import Bot, LinkPreviewOptions
from telegram.error import TelegramError

from .errors import DeliveryError


class ChatClient(ABC):
    """聊天客户端接口"""

    @abstractmethod
    async def send_message(self, room: str, body: str) -> None:
        """
        发送一条文本消息到指定房间

        Args:
            room: 房间（频道）ID
            body: 消息内容

        Raises:
            DeliveryError: 发送失败时抛出
        """
        pass


class TelegramChatClient(ChatClient):
    """基于Telegram Bot的聊天客户端"""

    def __init__(self, bot: Bot, parse_mode: Optional[str] = None,
                 disable_web_page_preview: bool = False):
        """
        Args:
            bot: Telegram Bot实例
            parse_mode: 消息格式（"HTML"、"MarkdownV2" 或 None）
            disable_web_page_preview: 是否关闭链接预览
        """
        self.bot = bot
        self.parse_mode = parse_mode
        self.disable_web_page_preview = disable_web_page_preview
        self.logger = logging.getLogger("telegram_chat_client")

    async def send_message(self, room: str, body: str) -> None:
        try:
            message = await self.bot.send_message(
                chat_id=room,
                text=body,
                parse_mode=self.parse_mode,
                link_preview_options=(
                    LinkPreviewOptions(is_disabled=True) if self.disable_web_page_preview else None
                ),
            )
        except TelegramError as e:
            raise DeliveryError(room, str(e)) from e

        self.logger.debug(f"消息发送成功: {room}, message_id={message.message_id}")
