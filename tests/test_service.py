"""RSS机器人服务测试"""

import json
from unittest.mock import MagicMock

import pytest
import redis

from services.common.storage import StorageError
from services.common.storage.redis_store import RedisDocumentStore
from services.rssbot import ConfigError, ConfigStore, RSSBotService, create_service

from fakes import rss_feed

MASK_SHOP_URL = "https://thehappymaskshop.hyrule"
MASK_SHOP_XML = """
<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0"
	xmlns:content="http://purl.org/rss/1.0/modules/content/"
	xmlns:dc="http://purl.org/dc/elements/1.1/"
	xmlns:atom="http://www.w3.org/2005/Atom"
	>
<channel>
	<title>Mask Shop</title>
	<item>
		<title>New Item: Majora&#8217;s Mask</title>
		<link>http://go.neb/rss/majoras-mask</link>
	</item>
</channel>
</rss>"""

NEWS_URL = "https://news.example.org/feed"


@pytest.mark.asyncio
async def test_html_entities_are_decoded_in_notice(transport, fetcher, chat_client, settings, clock):
    transport.routes[MASK_SHOP_URL] = (200, MASK_SHOP_XML, {})
    service = create_service(
        "id", json.dumps({"feeds": {MASK_SHOP_URL: {}}}), chat_client, fetcher,
        settings=settings, clock=clock,
    )

    def configure(feed):
        feed.rooms = ["!linksroom:hyrule"]
        feed.next_poll_timestamp = int(clock())

    await service.state.update(MASK_SHOP_URL, configure)
    report = await service.poll()

    assert report.delivered == 1
    assert len(chat_client.messages) == 1
    room, body = chat_client.messages[0]
    assert room == "!linksroom:hyrule"
    assert "New Item: Majora’s Mask" in body
    assert body == (
        "Mask Shop posted a new article: New Item: Majora’s Mask ( http://go.neb/rss/majoras-mask )"
    )


class TestConfiguration:
    def test_invalid_document_lists_every_problem(self, fetcher, chat_client, settings):
        document = {"feeds": {
            "ftp://files.example.org/feed": {},
            NEWS_URL: {"poll_interval_seconds": 0},
            "https://ok.example.org/feed": {"rooms": "!not-a-list"},
        }}
        with pytest.raises(ConfigError) as exc_info:
            create_service("svc", document, chat_client, fetcher, settings=settings)
        assert len(exc_info.value.problems) == 3

    def test_invalid_json(self, fetcher, chat_client, settings):
        with pytest.raises(ConfigError):
            create_service("svc", "{not json", chat_client, fetcher, settings=settings)

    def test_unknown_fields_ignored(self, fetcher, chat_client, settings):
        service = create_service(
            "svc", {"feeds": {NEWS_URL: {"rooms": ["!a"], "colour": "blue"}}, "extra": 1},
            chat_client, fetcher, settings=settings,
        )
        assert service.get_config().feeds[NEWS_URL].rooms == ["!a"]

    def test_rejected_update_changes_nothing(self, fetcher, chat_client, settings):
        service = create_service("svc", {"feeds": {NEWS_URL: {"rooms": ["!a"]}}}, chat_client, fetcher,
                                 settings=settings)
        before = service.get_config()

        with pytest.raises(ConfigError):
            service.update_config({"feeds": {
                "https://second.example.org/feed": {"rooms": ["!b"]},
                NEWS_URL: {"poll_interval_seconds": -5},
            }})

        assert service.get_config() == before

    def test_update_keeps_state_of_existing_feeds(self, fetcher, chat_client, settings, clock):
        service = create_service("svc", {"feeds": {NEWS_URL: {"rooms": ["!a"]}}}, chat_client, fetcher,
                                 settings=settings, clock=clock)
        config = service.get_config()
        config.feeds[NEWS_URL].seen_items = {"x": 1}
        config.feeds[NEWS_URL].next_poll_timestamp = clock.now + 999
        service.state.replace_all(config)

        updated = service.update_config({"feeds": {
            NEWS_URL: {"rooms": ["!b", "!a"], "poll_interval_seconds": 600},
            "https://second.example.org/feed": {},
        }})

        news = updated.feeds[NEWS_URL]
        assert news.rooms == ["!a", "!b"]
        assert news.poll_interval_seconds == 600
        assert news.seen_items == {"x": 1}
        assert news.next_poll_timestamp == clock.now + 999
        assert updated.feeds["https://second.example.org/feed"].next_poll_timestamp == clock.now

        service.update_config({"feeds": {}})
        assert service.get_config().feeds == {}

    def test_add_and_remove_rooms(self, fetcher, chat_client, settings):
        service = create_service("svc", {"feeds": {}}, chat_client, fetcher, settings=settings)

        service.add_feed(NEWS_URL, "!a")
        feed = service.add_feed(NEWS_URL, "!b", poll_interval_seconds=90)
        assert feed.rooms == ["!a", "!b"]
        assert feed.poll_interval_seconds == 90

        assert service.remove_feed(NEWS_URL, "!a") is True
        assert service.get_config().feeds[NEWS_URL].rooms == ["!b"]
        assert service.remove_feed(NEWS_URL, "!missing") is False

        assert service.remove_feed(NEWS_URL, "!b") is True
        assert NEWS_URL not in service.get_config().feeds

    def test_add_feed_validates(self, fetcher, chat_client, settings):
        service = create_service("svc", {"feeds": {}}, chat_client, fetcher, settings=settings)
        with pytest.raises(ConfigError):
            service.add_feed("not a url", "!a")
        with pytest.raises(ConfigError):
            service.add_feed(NEWS_URL, "!a", poll_interval_seconds=10 ** 9)
        assert service.get_config().feeds == {}


class TestRegister:
    @pytest.mark.asyncio
    async def test_existing_items_are_not_announced(self, transport, fetcher, chat_client, settings, clock):
        items = [{"guid": "old-1", "title": "Old 1"}, {"guid": "old-2", "title": "Old 2"}]
        transport.routes[NEWS_URL] = lambda request: (200, rss_feed("News", items), {})
        service = create_service("svc", {"feeds": {NEWS_URL: {"rooms": ["!a"]}}}, chat_client, fetcher,
                                 settings=settings, clock=clock)

        await service.register()
        feed = service.get_config().feeds[NEWS_URL]
        assert set(feed.seen_items) == {"old-1", "old-2"}
        assert feed.feed_title == "News"

        items.insert(0, {"guid": "new", "title": "Fresh"})
        clock.now = feed.next_poll_timestamp
        await service.poll()

        assert chat_client.bodies_for("!a") == ["News posted a new article: Fresh"]

    @pytest.mark.asyncio
    async def test_unreachable_feed_rejects_registration(self, fetcher, chat_client, settings, clock):
        service = create_service("svc", {"feeds": {NEWS_URL: {"rooms": ["!a"]}}}, chat_client, fetcher,
                                 settings=settings, clock=clock)

        with pytest.raises(ConfigError):
            await service.register()

        feed = service.get_config().feeds[NEWS_URL]
        assert feed.seen_items == {}
        assert feed.needs_priming is True


class TestPersistence:
    @pytest.mark.asyncio
    async def test_poll_persists_and_load_restores(self, transport, fetcher, chat_client, settings, clock,
                                                   file_store_factory):
        transport.routes[NEWS_URL] = (200, rss_feed("News", [{"guid": "1", "title": "One"}]), {})
        config_store = ConfigStore(file_store_factory("rssbot_config"))

        service = RSSBotService.load(
            "svc", config_store, fetcher, chat_client,
            default_document={"feeds": {NEWS_URL: {"rooms": ["!a"]}}},
            settings=settings, clock=clock,
        )
        await service.poll()
        assert len(chat_client.messages) == 1

        restored = RSSBotService.load("svc", config_store, fetcher, chat_client, settings=settings, clock=clock)
        feed = restored.get_config().feeds[NEWS_URL]
        assert "1" in feed.seen_items
        assert feed.feed_title == "News"

        clock.now = feed.next_poll_timestamp
        await restored.poll()
        assert len(chat_client.messages) == 1

    def test_load_without_stored_config(self, fetcher, chat_client, settings, file_store_factory):
        config_store = ConfigStore(file_store_factory("rssbot_config"))
        service = RSSBotService.load("empty", config_store, fetcher, chat_client, settings=settings)
        assert service.get_config().feeds == {}
        assert service.next_poll_timestamp() is None


class TestPriming:
    @pytest.mark.asyncio
    async def test_unreachable_feed_does_not_block_the_others(self, transport, fetcher, chat_client, settings,
                                                              clock):
        backlog = [{"guid": f"old-{n}", "title": f"Old {n}"} for n in range(5)]
        transport.routes[NEWS_URL] = (200, rss_feed("News", backlog), {})
        down_url = "https://down.example.org/feed"
        service = create_service(
            "svc", {"feeds": {NEWS_URL: {"rooms": ["!a"]}, down_url: {"rooms": ["!a"]}}},
            chat_client, fetcher, settings=settings, clock=clock,
        )

        with pytest.raises(ConfigError) as exc_info:
            await service.register()
        assert len(exc_info.value.problems) == 1
        assert down_url in exc_info.value.problems[0]

        # 恢复后第一次成功轮询也只记录已有条目
        transport.routes[down_url] = (200, rss_feed("Down", [{"guid": "d-1", "title": "Backlog"}]), {})
        clock.advance(settings.max_backoff_seconds)
        await service.poll()

        assert chat_client.messages == []
        config = service.get_config()
        assert len(config.feeds[NEWS_URL].seen_items) == 5
        assert "d-1" in config.feeds[down_url].seen_items
        assert config.feeds[down_url].needs_priming is False

    @pytest.mark.asyncio
    async def test_feed_added_later_does_not_announce_backlog(self, transport, fetcher, chat_client, settings,
                                                              clock):
        items = [{"guid": "old", "title": "Old"}]
        transport.routes[NEWS_URL] = lambda request: (200, rss_feed("News", items), {})
        service = create_service("svc", {"feeds": {}}, chat_client, fetcher, settings=settings, clock=clock)

        service.add_feed(NEWS_URL, "!a", poll_interval_seconds=60)
        await service.poll()
        assert chat_client.messages == []

        items.insert(0, {"guid": "new", "title": "New"})
        clock.advance(60)
        await service.poll()
        assert chat_client.bodies_for("!a") == ["News posted a new article: New"]

    def test_reconfigured_new_feeds_wait_for_priming(self, fetcher, chat_client, settings):
        service = create_service("svc", {"feeds": {NEWS_URL: {}}}, chat_client, fetcher, settings=settings)

        config = service.update_config({"feeds": {NEWS_URL: {}, "https://second.example.org/feed": {}}})

        assert config.feeds[NEWS_URL].needs_priming is False
        assert config.feeds["https://second.example.org/feed"].needs_priming is True


class TestStorageFailure:
    def test_unreadable_store_is_not_overwritten(self, fetcher, chat_client, settings):
        client = MagicMock()
        client.get.side_effect = redis.ConnectionError("connection reset")
        config_store = ConfigStore(RedisDocumentStore("rssbot_config", client=client))

        with pytest.raises(StorageError):
            RSSBotService.load("svc", config_store, fetcher, chat_client,
                               default_document={"feeds": {}}, settings=settings)

        client.set.assert_not_called()
