"""
Feed Acquirer Service

Resolves the raw XMLTV document for a day: the cached blob in the object
store first, the public feed second. Full rebuilds re-materialize the cache
through a streaming download -> gunzip -> object store pipe.
"""
import logging
import zlib
from collections.abc import AsyncIterator
from contextlib import aclosing

import httpx

from guiatv.exceptions import FeedDecompressionError, ObjectNotFoundError, SourceUnavailableError
from guiatv.services.fetch_types import AcquireResult, Channel, IconMirrorResult, RefreshResult
from guiatv.stores import ObjectStore
from guiatv.utils.day_key import DayKey
from guiatv.utils.file_operations import (
    create_http_client,
    download_bytes,
    download_text,
    retry_transient,
    sanitize_url_for_logging,
    stream_download,
)


logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"
XML_CONTENT_TYPE = "application/xml"
# Bodies shorter than this are error pages, not feeds
MIN_CACHEABLE_LENGTH = 50
ICON_FILENAME = "icono.png"
DEFAULT_ICON_CONTENT_TYPE = "image/png"


async def gunzip_stream(chunks: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
    """
    Inflate a gzip byte stream incrementally

    Concatenated gzip members are supported. Memory use is bounded by the
    size of one input chunk and its inflated output.

    Raises:
        FeedDecompressionError: On corrupt or truncated input
    """
    decompressor = zlib.decompressobj(16 + zlib.MAX_WBITS)
    pending = False
    try:
        async for chunk in chunks:
            while chunk:
                pending = True
                output = decompressor.decompress(chunk)
                if output:
                    yield output
                if decompressor.eof:
                    chunk = decompressor.unused_data
                    decompressor = zlib.decompressobj(16 + zlib.MAX_WBITS)
                    pending = False
                else:
                    chunk = b""
        tail = decompressor.flush()
        if tail:
            yield tail
    except zlib.error as exc:
        raise FeedDecompressionError(f"Feed decompression failed: {exc}") from exc

    if pending and not decompressor.eof:
        raise FeedDecompressionError("Feed decompression failed: truncated gzip stream")


def icon_path(prefix: str, channel_name: str) -> str:
    """Object store path of a channel's mirrored icon"""
    folder = channel_name.replace("/", "_").replace("\\", "_").strip(". ") or "_"
    return f"{prefix.rstrip('/')}/{folder}/{ICON_FILENAME}"


async def _sniff(chunks: AsyncIterator[bytes]) -> tuple[bytes, AsyncIterator[bytes]]:
    """Peek at the first chunk without losing it."""
    iterator = chunks.__aiter__()
    try:
        first = await iterator.__anext__()
    except StopAsyncIteration:
        first = b""

    async def replay() -> AsyncIterator[bytes]:
        if first:
            yield first
        async for chunk in iterator:
            yield chunk

    return first, replay()


class FeedAcquirer:
    """Fetches the XMLTV feed for a day with object store caching."""

    def __init__(
        self,
        object_store: ObjectStore,
        *,
        feed_url: str,
        rebuild_url: str | None = None,
        cache_prefix: str = "epg_xml",
        timeout: float = 20.0,
        max_retries: int = 3,
        backoff_factor: float = 2.0,
        chunk_size: int = 64 * 1024,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.object_store = object_store
        self.feed_url = feed_url
        self.rebuild_url = rebuild_url or feed_url
        self.cache_prefix = cache_prefix
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_factor = backoff_factor
        self.chunk_size = chunk_size
        self._transport = transport

    def cache_path(self, day: DayKey) -> str:
        return day.blob_path(self.cache_prefix)

    async def acquire(self, day: DayKey) -> AcquireResult:
        """
        Return the raw XML for a day

        Args:
            day: Requested day

        Returns:
            AcquireResult with the XML text and where it came from

        Raises:
            SourceUnavailableError: If the cache misses and the feed cannot be fetched
        """
        path = self.cache_path(day)
        try:
            content = await self.object_store.download(path)
            logger.info("Using cached feed %s (%.2f MB)", path, len(content) / 1024 / 1024)
            return AcquireResult(
                xml_text=content.decode("utf-8", errors="replace"),
                day=day,
                source="cache",
                path=path,
            )
        except (ObjectNotFoundError, OSError) as cache_error:
            logger.info("Cached feed %s unavailable (%s); fetching %s", path, cache_error,
                        sanitize_url_for_logging(self.feed_url))
            try:
                async with create_http_client(self.timeout, self._transport) as client:
                    xml_text = await download_text(client, self.feed_url)
            except httpx.HTTPError as network_error:
                logger.error(
                    "Feed %s unreachable (%s: %s) and no cached copy for %s",
                    sanitize_url_for_logging(self.feed_url),
                    type(network_error).__name__,
                    network_error,
                    day,
                )
                raise SourceUnavailableError(
                    f"Feed unreachable ({type(network_error).__name__}: {network_error}) "
                    f"and no cached copy: {cache_error}"
                ) from cache_error

        upload_error = await self._cache_feed(path, xml_text)
        return AcquireResult(
            xml_text=xml_text,
            day=day,
            source="network",
            path=path,
            upload_error=upload_error,
        )

    async def _cache_feed(self, path: str, xml_text: str) -> str | None:
        """Best-effort cache population; failures are reported, never raised."""
        if len(xml_text) <= MIN_CACHEABLE_LENGTH:
            logger.warning("Feed body too short to cache (%s chars)", len(xml_text))
            return None
        try:
            await self.object_store.upload(path, xml_text.encode("utf-8"), content_type=XML_CONTENT_TYPE)
            return None
        except (OSError, ValueError) as exc:
            logger.warning("Failed to upload fallback XML to %s: %s", path, exc)
            return str(exc)

    async def refresh_cache(self, day: DayKey) -> RefreshResult:
        """
        Replace the cached blob for a day with a fresh copy of the canonical feed

        The download, decompressor and store writer are chained chunk by
        chunk, so memory stays bounded regardless of the feed size.

        Raises:
            SourceUnavailableError: If the feed cannot be downloaded
            FeedDecompressionError: If the gzip stream is corrupt
        """
        path = self.cache_path(day)
        replaced = await self.object_store.exists(path)
        if replaced:
            await self.object_store.delete(path)
            logger.info("Removed previous cached feed %s", path)

        result = RefreshResult(
            day=day,
            path=path,
            url=self.rebuild_url,
            compressed=False,
            replaced_existing=replaced,
        )

        async def run_pipe() -> RefreshResult:
            result.bytes_downloaded = 0
            result.bytes_written = 0
            async with create_http_client(self.timeout, self._transport) as client:
                download = stream_download(client, self.rebuild_url, self.chunk_size)
                async with aclosing(download):
                    first, replay = await _sniff(self._count_downloaded(download, result))
                    result.compressed = first.startswith(GZIP_MAGIC)
                    if self.rebuild_url.endswith(".gz") and not result.compressed:
                        logger.warning("Feed %s has a .gz suffix but is not gzip data; storing as-is",
                                       sanitize_url_for_logging(self.rebuild_url))

                    body = gunzip_stream(replay) if result.compressed else replay
                    async with self.object_store.open_writer(path, content_type=XML_CONTENT_TYPE) as writer:
                        async for chunk in body:
                            await writer.write(chunk)
                            result.bytes_written += len(chunk)
            return result

        try:
            await retry_transient(
                run_pipe,
                description=sanitize_url_for_logging(self.rebuild_url),
                max_retries=self.max_retries,
                backoff_factor=self.backoff_factor,
            )
        except httpx.HTTPError as exc:
            raise SourceUnavailableError(f"Cannot download {sanitize_url_for_logging(self.rebuild_url)}: {exc}") from exc

        logger.info(
            "Feed cached at %s: %.2f MB downloaded, %.2f MB stored (compressed=%s)",
            path,
            result.bytes_downloaded / 1024 / 1024,
            result.bytes_written / 1024 / 1024,
            result.compressed,
        )
        return result

    async def mirror_channel_icons(self, channels: list[Channel], *, prefix: str) -> IconMirrorResult:
        """
        Copy channel icons into the object store and point channels at the copies

        Icons already stored are reused without a download. A channel whose
        icon cannot be fetched or stored loses its image; the failure is
        recorded, never raised.
        """
        result = IconMirrorResult()
        pending: list[tuple[Channel, str]] = []

        for channel in channels:
            if not channel.image:
                result.without_icon += 1
                continue
            path = icon_path(prefix, channel.name)
            try:
                if await self.object_store.exists(path):
                    channel.image = self.object_store.public_url(path)
                    result.reused += 1
                    continue
            except (OSError, ValueError) as exc:
                self._icon_failed(result, channel, exc)
                continue
            pending.append((channel, path))

        if pending:
            async with create_http_client(self.timeout, self._transport) as client:
                for channel, path in pending:
                    try:
                        data, content_type = await download_bytes(client, channel.image)
                        channel.image = await self.object_store.upload(
                            path,
                            data,
                            content_type=content_type or DEFAULT_ICON_CONTENT_TYPE,
                        )
                        result.mirrored += 1
                    except (httpx.HTTPError, OSError, ValueError) as exc:
                        self._icon_failed(result, channel, exc)

        logger.info(
            "Channel icons: %s mirrored, %s reused, %s failed, %s without icon",
            result.mirrored,
            result.reused,
            len(result.failures),
            result.without_icon,
        )
        return result

    @staticmethod
    def _icon_failed(result: IconMirrorResult, channel: Channel, exc: Exception) -> None:
        logger.warning("Could not mirror icon of channel %s (%s): %s", channel.name, channel.image, exc)
        result.failures[channel.name] = str(exc)
        channel.image = None

    @staticmethod
    async def _count_downloaded(chunks: AsyncIterator[bytes], result: RefreshResult) -> AsyncIterator[bytes]:
        async for chunk in chunks:
            result.bytes_downloaded += len(chunk)
            yield chunk
