"""
RSS机器人Telegram命令
服务实例保存在 application.bot_data 中，命令处理器从这里取出
"""

import logging
from datetime import datetime

from telegram import LinkPreviewOptions, Update
from telegram.ext import Application, CommandHandler, ContextTypes

from .errors import ConfigError
from .service import RSSBotService

SERVICE_KEY = "rssbot_service"


def _get_service(context: ContextTypes.DEFAULT_TYPE) -> RSSBotService:
    return context.application.bot_data[SERVICE_KEY]


async def add_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """处理 /rss_add 命令: /rss_add <url> [轮询间隔秒数]"""
    chat_id = str(update.effective_chat.id)
    logging.info(f"收到RSS_ADD命令 - 聊天ID: {chat_id} 参数: {context.args}")

    if not context.args:
        await update.message.reply_text(
            "请提供RSS订阅链接\n"
            "例如：/rss_add https://example.com/feed.xml [轮询间隔秒数]"
        )
        return

    url = context.args[0]
    interval = None
    if len(context.args) > 1:
        try:
            interval = int(context.args[1])
        except ValueError:
            await update.message.reply_text(f"❌ 轮询间隔必须是整数秒: {context.args[1]}")
            return

    service = _get_service(context)
    try:
        feed = service.add_feed(url, room=chat_id, poll_interval_seconds=interval)
    except ConfigError as e:
        await update.message.reply_text(f"❌ {e}")
        return

    await update.message.reply_text(
        f"✅ 已订阅: {url}\n"
        f"轮询间隔: {feed.effective_interval(service.settings)} 秒"
    )


async def del_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """处理 /rss_del 命令: 取消当前聊天对某个Feed的订阅"""
    chat_id = str(update.effective_chat.id)
    logging.info(f"收到RSS_DEL命令 - 聊天ID: {chat_id} 参数: {context.args}")

    if not context.args:
        await update.message.reply_text(
            "请提供要删除的RSS订阅链接\n"
            "例如：/rss_del https://example.com/feed.xml"
        )
        return

    url = context.args[0]
    if _get_service(context).remove_feed(url, room=chat_id):
        await update.message.reply_text(f"成功删除RSS订阅：{url}")
    else:
        await update.message.reply_text(f"当前聊天没有订阅：{url}")


async def list_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """处理 /rss_list 命令: 列出当前聊天的订阅"""
    chat_id = str(update.effective_chat.id)
    service = _get_service(context)
    feeds = [feed for feed in service.get_config().feeds.values() if chat_id in feed.rooms]

    if not feeds:
        await update.message.reply_text("当前没有RSS订阅")
        return

    lines = []
    for feed in feeds:
        status = "❌" if feed.is_failing else "✅"
        next_poll = datetime.fromtimestamp(feed.next_poll_timestamp).strftime("%Y-%m-%d %H:%M:%S")
        title = f" ({feed.feed_title})" if feed.feed_title else ""
        lines.append(f"{status} {feed.url}{title}\n    下次检查: {next_poll}")

    await update.message.reply_text(
        "当前RSS订阅列表：\n" + "\n".join(lines),
        link_preview_options=LinkPreviewOptions(is_disabled=True),
    )


async def poll_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """处理 /rss_poll 命令: 立即执行一轮轮询（只处理已到期的Feed）"""
    logging.info(f"收到RSS_POLL命令 - 聊天ID: {update.effective_chat.id}")
    report = await _get_service(context).poll()

    if report is None:
        await update.message.reply_text("❌ 轮询执行失败，请查看日志")
        return

    await update.message.reply_text(
        f"📊 轮询完成\n"
        f"到期Feed: {report.due}，更新: {report.updated}，失败: {report.failed}\n"
        f"新条目: {report.new_items}，发送成功: {report.delivered}，发送失败: {len(report.delivery_errors)}"
    )


COMMANDS = {
    "rss_add": add_command,
    "rss_del": del_command,
    "rss_list": list_command,
    "rss_poll": poll_command,
}


def register_commands(application: Application, service: RSSBotService) -> None:
    """注册RSS机器人的命令处理器"""
    application.bot_data[SERVICE_KEY] = service
    for name, handler in COMMANDS.items():
        application.add_handler(CommandHandler(name, handler))
