from core.config import telegram_config, rssbot_config, storage_config, debug_config
from telegram import Update, BotCommand
from telegram.ext import ApplicationBuilder, ContextTypes, CommandHandler, Application
import logging
import asyncio
from telegram.request import HTTPXRequest

from services.common.storage import get_store
from services.rssbot import (
    ConfigError,
    FeedFetcher,
    RSSBotService,
    TelegramChatClient,
    create_config_store,
    get_config,
)
from services.rssbot.commands import register_commands

commands = [
    BotCommand(command="help", description="Show help message"),
    BotCommand(command="rss_add", description="Subscribe this chat to a feed"),
    BotCommand(command="rss_del", description="Unsubscribe this chat from a feed"),
    BotCommand(command="rss_list", description="List feeds of this chat"),
    BotCommand(command="rss_poll", description="Poll due feeds now"),
]

HELP_TEXT = (
    "📰 RSS订阅机器人\n\n"
    "/rss_add <url> [间隔秒数] - 订阅Feed，新文章推送到当前聊天\n"
    "/rss_del <url> - 取消当前聊天的订阅\n"
    "/rss_list - 查看当前聊天的订阅\n"
    "/rss_poll - 立即检查已到期的订阅"
)


async def post_init(application: Application) -> None:
    await application.bot.set_my_commands(commands)


async def start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """处理 /start 命令"""
    await help(update, context)


async def help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """处理 /help 命令"""
    await update.message.reply_text(HELP_TEXT)


def create_application(token: str) -> Application:
    """
    创建Telegram应用实例，根据配置决定使用官方API还是本地API

    Args:
        token: 机器人Token

    Returns:
        Application: 配置好的应用实例
    """
    request = HTTPXRequest(
        connection_pool_size=8,
        read_timeout=60,
        write_timeout=60,
        connect_timeout=30,
        pool_timeout=30,
    )

    builder = (
        ApplicationBuilder()
        .token(token)
        .request(request)
        .concurrent_updates(True)
        .post_init(post_init)
    )

    api_base_url = telegram_config.get("api_base_url")
    if api_base_url:
        # 使用本地Bot API服务器
        builder = builder.base_url(f"{api_base_url}/bot").base_file_url(f"{api_base_url}/file/bot")
        logging.info(f"✅ 机器人已配置使用本地Bot API服务器: {api_base_url}")
    else:
        logging.info("✅ 机器人已配置使用官方Bot API服务器")

    return builder.build()


def load_default_document():
    """读取首次启动时导入的订阅配置文件，未配置时返回None"""
    feeds_file = rssbot_config.get("feeds_file")
    if not feeds_file:
        return None
    with open(feeds_file, "r", encoding="utf-8") as f:
        logging.info(f"从配置文件导入订阅: {feeds_file}")
        return f.read()


def create_service(application: Application) -> RSSBotService:
    """组装RSS机器人服务：Telegram发送、带条件请求缓存的抓取器、配置存储"""
    settings = get_config()
    store_type = storage_config.get("store_type")
    storage_dir = storage_config.get("storage_dir")

    validator_cache = get_store(
        "rssbot_http", store_type=store_type, ttl=settings.validator_cache_ttl, storage_dir=storage_dir
    )
    fetcher = FeedFetcher(settings=settings, validator_cache=validator_cache)
    chat_client = TelegramChatClient(application.bot)
    config_store = create_config_store(store_type, settings, storage_dir=storage_dir)

    return RSSBotService.load(
        rssbot_config["service_id"],
        config_store,
        fetcher,
        chat_client,
        default_document=load_default_document(),
        settings=settings,
    )


async def run(token: str) -> RSSBotService:
    application = create_application(token)
    service = create_service(application)

    application.add_handler(CommandHandler("start", start))
    application.add_handler(CommandHandler("help", help))
    register_commands(application, service)

    await application.initialize()
    await application.start()
    logging.info("Telegram bot startup successful")
    await application.updater.start_polling(drop_pending_updates=True)
    return service


async def scheduled_task(service: RSSBotService) -> None:
    """定时任务：按固定节奏触发轮询，每个Feed是否到期由服务自己判断"""
    await asyncio.sleep(rssbot_config["startup_delay_seconds"])

    try:
        await service.register()
    except ConfigError as e:
        # 无法抓取的Feed已标记为待初始化，之后第一次成功轮询只记录不发送
        logging.warning(f"订阅初始化未完成: {e}")

    cadence = rssbot_config["poll_cadence_seconds"]
    while True:
        try:
            await service.poll()
        except Exception as e:
            logging.error(f"RSS轮询失败: {str(e)}", exc_info=True)
        await asyncio.sleep(cadence)


async def main_async() -> None:
    token = telegram_config["token"]
    if not token:
        raise SystemExit("未配置 TELEGRAM_BOT_TOKEN")

    service = await run(token)
    await scheduled_task(service)


def main() -> None:
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=getattr(logging, debug_config["log_level"], logging.INFO),
    )
    # httpx 每个请求都会打INFO日志
    logging.getLogger("httpx").setLevel(logging.WARNING)

    try:
        asyncio.run(main_async())
    except KeyboardInterrupt:
        logging.info("Closing Telegram bot")


if __name__ == "__main__":
    main()
