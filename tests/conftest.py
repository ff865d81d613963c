"""
Shared test fixtures: temporary stores, settings and a mock feed server.
"""
import gzip
import os
import tempfile

# Module-level settings are built on import; keep them away from ./data
_SESSION_ROOT = tempfile.mkdtemp(prefix="guiatv-tests-")
os.environ.setdefault("DATABASE_PATH", os.path.join(_SESSION_ROOT, "session.db"))
os.environ.setdefault("OBJECT_STORE_ROOT", os.path.join(_SESSION_ROOT, "objects"))
os.environ.setdefault("SIGNED_URL_SECRET", "test-secret")

import httpx
import pytest
import pytest_asyncio

from guiatv.config import CustomSettings
from guiatv.database import SQLiteDocumentStore
from guiatv.services.feed_acquirer_service import FeedAcquirer
from guiatv.storage import LocalObjectStore
from guiatv.utils.day_key import DayKey


FEED_URL = "https://feeds.example.test/guia.xml"
REBUILD_URL = "https://feeds.example.test/guia.xml.gz"
LA1_ICON_URL = "https://img.example.test/la1.png"
ICON_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32

SAMPLE_DESCRIPTION = (
    "2023 | 16 | 8/10\n"
    "Drama/Thriller · A gripping tale\n"
    "Reparto: Actor A · País: España"
)

SAMPLE_FEED = f"""<?xml version="1.0" encoding="UTF-8"?>
<tv generator-info-name="test">
  <channel id="c1">
    <display-name>La 1</display-name>
    <display-name>TVE 1</display-name>
    <icon src="{LA1_ICON_URL}"/>
  </channel>
  <channel id="c2">
    <display-name>UnknownChan</display-name>
  </channel>
  <channel id="c3">
    <display-name>Canal Sur</display-name>
  </channel>
  <programme start="2024060100000" stop="20240601010000" channel="c1">
    <title>Noticias</title>
    <desc>{SAMPLE_DESCRIPTION}</desc>
    <icon src="https://img.example.test/noticias.png"/>
  </programme>
  <programme start="20240601010000 +0200" stop="20240601020000 +0200" channel="c1">
    <title>Cine</title>
  </programme>
  <programme start="20240601090000 +0200" stop="20240601100000 +0200" channel="c3">
    <title>Andalucía Directo</title>
  </programme>
  <programme start="20240601100000 +0200" stop="20240601110000 +0200" channel="c2">
    <title>Sin categoría</title>
  </programme>
  <programme start="20240602060000 +0200" stop="20240602070000 +0200" channel="c1">
    <title>Mañana</title>
  </programme>
  <programme start="20240601120000 +0200" stop="20240601130000 +0200" channel="ghost">
    <title>Huérfano</title>
  </programme>
</tv>
"""


class ChunkedStream(httpx.AsyncByteStream):
    """Response body served in fixed size chunks, like a slow network."""

    def __init__(self, data: bytes, chunk_size: int = 256) -> None:
        self._data = data
        self._chunk_size = chunk_size

    async def __aiter__(self):
        for start in range(0, len(self._data), self._chunk_size):
            yield self._data[start:start + self._chunk_size]


class FeedServer:
    """Programmable httpx transport standing in for the public feed host."""

    def __init__(self) -> None:
        self.routes: dict[str, tuple[int, bytes]] = {}
        self.requests: list[str] = []
        self.fail_with: Exception | None = None

    def serve(self, url: str, body: str | bytes, status_code: int = 200) -> None:
        payload = body.encode("utf-8") if isinstance(body, str) else body
        self.routes[url] = (status_code, payload)

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        if self.fail_with is not None:
            raise self.fail_with
        if url not in self.routes:
            return httpx.Response(404, stream=ChunkedStream(b"not found"))
        status_code, payload = self.routes[url]
        return httpx.Response(status_code, stream=ChunkedStream(payload))

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def target_day() -> DayKey:
    return DayKey(2024, 6, 1)


@pytest.fixture
def sample_feed() -> str:
    return SAMPLE_FEED


@pytest.fixture
def gzipped_feed() -> bytes:
    return gzip.compress(SAMPLE_FEED.encode("utf-8"))


@pytest.fixture
def feed_server() -> FeedServer:
    server = FeedServer()
    server.serve(FEED_URL, SAMPLE_FEED)
    server.serve(LA1_ICON_URL, ICON_BYTES)
    return server


@pytest.fixture
def settings(tmp_path) -> CustomSettings:
    """Settings pointing at per-test storage"""
    return CustomSettings(
        database_path=str(tmp_path / "guiatv.db"),
        object_store_root=str(tmp_path / "objects"),
        feed_url=FEED_URL,
        feed_rebuild_url=REBUILD_URL,
        feed_max_retries=2,
        feed_retry_backoff=0.01,
        curate_page_size=2,
        purge_page_size=3,
        signed_url_secret="test-secret",
    )


@pytest_asyncio.fixture
async def document_store(settings):
    store = SQLiteDocumentStore(settings.database_path)
    await store.open()
    yield store
    await store.close()


@pytest.fixture
def object_store(settings) -> LocalObjectStore:
    return LocalObjectStore(
        settings.object_store_root,
        base_url="https://objects.example.test",
        signing_secret=settings.signed_url_secret,
    )


@pytest.fixture
def acquirer(object_store, feed_server, settings) -> FeedAcquirer:
    return FeedAcquirer(
        object_store,
        feed_url=settings.feed_url,
        rebuild_url=settings.feed_rebuild_url,
        cache_prefix=settings.xml_cache_prefix,
        max_retries=settings.feed_max_retries,
        backoff_factor=settings.feed_retry_backoff,
        chunk_size=128,
        transport=feed_server.transport,
    )
