import pytest

from services.common.storage.file_store import FileDocumentStore
from services.rssbot import RSSBotSettings

from fakes import FakeClock, FakeTransport, RecordingChatClient, make_fetcher


@pytest.fixture
def settings():
    return RSSBotSettings()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def fetcher(transport, settings):
    return make_fetcher(transport, settings)


@pytest.fixture
def chat_client():
    return RecordingChatClient()


@pytest.fixture
def file_store_factory(tmp_path):
    def factory(namespace, ttl=None):
        return FileDocumentStore(namespace, ttl=ttl, storage_dir=str(tmp_path / "storage"))
    return factory
