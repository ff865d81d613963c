"""
Dependency Injection Configuration

Builds the stores, feed acquirer and pipeline from settings. Nothing is
created at import time: the application lifespan builds one container,
opens it, and FastAPI dependencies read it back from app.state.
"""
import logging
from dataclasses import dataclass

import httpx
from fastapi import Request

from guiatv.config import CustomSettings
from guiatv.database import SQLiteDocumentStore
from guiatv.services.epg_fetch_service import EPGIngestPipeline
from guiatv.services.feed_acquirer_service import FeedAcquirer
from guiatv.services.fetch_coordinator import FetchCoordinator
from guiatv.storage import LocalObjectStore


logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Explicitly constructed service graph shared by the HTTP layer."""
    settings: CustomSettings
    document_store: SQLiteDocumentStore
    object_store: LocalObjectStore
    acquirer: FeedAcquirer
    coordinator: FetchCoordinator
    pipeline: EPGIngestPipeline

    async def open(self) -> None:
        await self.document_store.open()
        logger.info("Document store opened at %s", self.settings.database_path)

    async def close(self) -> None:
        await self.document_store.close()
        logger.info("Document store closed")


def build_container(
    settings: CustomSettings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ServiceContainer:
    """
    Wire every service from settings

    Args:
        settings: Application settings
        transport: Optional httpx transport for the feed client (tests inject a mock)

    Returns:
        ServiceContainer; call open() before use
    """
    document_store = SQLiteDocumentStore(
        settings.database_path,
        max_batch_operations=settings.batch_write_limit,
    )
    object_store = LocalObjectStore(
        settings.object_store_root,
        base_url=settings.object_store_base_url,
        signing_secret=settings.signed_url_secret,
    )
    acquirer = FeedAcquirer(
        object_store,
        feed_url=settings.feed_url,
        rebuild_url=settings.feed_rebuild_url,
        cache_prefix=settings.xml_cache_prefix,
        timeout=settings.feed_timeout_sec,
        max_retries=settings.feed_max_retries,
        backoff_factor=settings.feed_retry_backoff,
        chunk_size=settings.feed_chunk_size,
        transport=transport,
    )
    coordinator = FetchCoordinator()
    pipeline = EPGIngestPipeline(
        document_store,
        object_store,
        acquirer,
        settings,
        coordinator=coordinator,
    )
    logger.debug("Service container built")
    return ServiceContainer(
        settings=settings,
        document_store=document_store,
        object_store=object_store,
        acquirer=acquirer,
        coordinator=coordinator,
        pipeline=pipeline,
    )


def get_container(request: Request) -> ServiceContainer:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise RuntimeError("Service container not initialized")
    return container


def get_pipeline(request: Request) -> EPGIngestPipeline:
    return get_container(request).pipeline
