"""Telegram命令测试"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from services.rssbot import create_service
from services.rssbot.commands import COMMANDS, SERVICE_KEY, register_commands

from fakes import rss_feed

NEWS_URL = "https://news.example.org/feed"


@pytest.fixture
def service(fetcher, chat_client, settings, clock):
    return create_service("svc", {"feeds": {}}, chat_client, fetcher, settings=settings, clock=clock)


def make_call(service, args, chat_id=42):
    update = MagicMock()
    update.effective_chat.id = chat_id
    update.message.reply_text = AsyncMock()
    context = MagicMock()
    context.args = args
    context.application.bot_data = {SERVICE_KEY: service}
    return update, context


def replied(update):
    return update.message.reply_text.call_args.args[0]


def test_static_command_table():
    assert set(COMMANDS) == {"rss_add", "rss_del", "rss_list", "rss_poll"}


def test_register_commands():
    application = MagicMock()
    application.bot_data = {}
    register_commands(application, "service")

    assert application.bot_data[SERVICE_KEY] == "service"
    assert application.add_handler.call_count == len(COMMANDS)


@pytest.mark.asyncio
async def test_add_subscribes_current_chat(service):
    update, context = make_call(service, [NEWS_URL, "600"])
    await COMMANDS["rss_add"](update, context)

    feed = service.get_config().feeds[NEWS_URL]
    assert feed.rooms == ["42"]
    assert feed.poll_interval_seconds == 600
    assert "600" in replied(update)


@pytest.mark.asyncio
async def test_add_reports_config_errors(service):
    update, context = make_call(service, ["ftp://news.example.org/feed"])
    await COMMANDS["rss_add"](update, context)

    assert service.get_config().feeds == {}
    assert "❌" in replied(update)


@pytest.mark.asyncio
async def test_add_rejects_non_integer_interval(service):
    update, context = make_call(service, [NEWS_URL, "soon"])
    await COMMANDS["rss_add"](update, context)

    assert service.get_config().feeds == {}
    assert "soon" in replied(update)


@pytest.mark.asyncio
async def test_add_without_args_shows_usage(service):
    update, context = make_call(service, [])
    await COMMANDS["rss_add"](update, context)
    assert "/rss_add" in replied(update)


@pytest.mark.asyncio
async def test_list_and_delete(service):
    service.add_feed(NEWS_URL, "42")
    service.add_feed("https://other.example.org/feed", "7")

    update, context = make_call(service, [])
    await COMMANDS["rss_list"](update, context)
    assert NEWS_URL in replied(update)
    assert "other.example.org" not in replied(update)

    update, context = make_call(service, [NEWS_URL])
    await COMMANDS["rss_del"](update, context)
    assert NEWS_URL not in service.get_config().feeds

    update, context = make_call(service, [])
    await COMMANDS["rss_list"](update, context)
    assert replied(update) == "当前没有RSS订阅"


@pytest.mark.asyncio
async def test_poll_reports_cycle(service, transport, chat_client, clock):
    transport.routes[NEWS_URL] = (200, rss_feed("News", [{"guid": "1", "title": "One"}]), {})
    service.add_feed(NEWS_URL, "42")

    # 新订阅第一次轮询只记录已有条目
    update, context = make_call(service, [])
    await COMMANDS["rss_poll"](update, context)
    assert chat_client.messages == []
    assert "📊" in replied(update)

    items = [{"guid": "2", "title": "Two"}, {"guid": "1", "title": "One"}]
    transport.routes[NEWS_URL] = (200, rss_feed("News", items), {})
    clock.now = service.next_poll_timestamp()
    update, context = make_call(service, [])
    await COMMANDS["rss_poll"](update, context)

    assert chat_client.bodies_for("42") == ["News posted a new article: Two"]
