from typing import Annotated, Any
import logging

from fastapi import APIRouter, Depends, Query

from guiatv import __version__
from guiatv.dependencies import ServiceContainer, get_container, get_pipeline
from guiatv.schemas import ChannelListResponse, ChannelResponse, IngestResponse, ScheduleManifestResponse
from guiatv.services import EPGIngestPipeline, list_channels
from guiatv.utils.day_key import DayKey


logger = logging.getLogger(__name__)

main_router = APIRouter()

SERVICE_NAME = "Guia TV EPG Service"
SERVICE_VERSION = __version__


@main_router.get("/")
async def root() -> dict:
    """Root endpoint with service information"""
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "endpoints": {
            "refresh": "/ingest/refresh?day= - Incremental refresh of one day (POST)",
            "rebuild": "/ingest/rebuild?day=&curate= - Purge and rebuild from the canonical feed (POST)",
            "programs": "/programs/date/{day} - Day schedule (today, tomorrow, after_tomorrow or YYYYMMDD)",
            "channels": "/channels - Stored channels",
            "health": "/health - Health check",
        },
    }


@main_router.get("/health")
async def health_check(container: Annotated[ServiceContainer, Depends(get_container)]) -> dict:
    """Health check endpoint"""
    last_result = container.pipeline.last_result
    return {
        "status": "ok",
        "ingest_running": container.coordinator.is_fetching(),
        "last_run": {
            "mode": last_result.mode,
            "day": str(last_result.day),
            "status": last_result.status,
            "state": last_result.state.value,
        } if last_result else None,
    }


@main_router.post("/ingest/refresh", response_model=IngestResponse)
async def trigger_refresh(
    pipeline: Annotated[EPGIngestPipeline, Depends(get_pipeline)],
    day: str | None = None,
) -> dict:
    """
    Incremental refresh: read the day's feed (cache first) and store what is new
    """
    day_key = DayKey.resolve(day)
    logger.info("Incremental refresh for %s triggered via API", day_key)
    result = await pipeline.run_incremental(day_key)
    return result.to_dict()


@main_router.post("/ingest/rebuild", response_model=IngestResponse)
async def trigger_rebuild(
    pipeline: Annotated[EPGIngestPipeline, Depends(get_pipeline)],
    day: str | None = None,
    curate: bool = True,
) -> dict:
    """
    Full rebuild: purge the collections, re-download the feed and store everything
    """
    day_key = DayKey.resolve(day)
    logger.info("Full rebuild for %s triggered via API (curate=%s)", day_key, curate)
    result = await pipeline.run_full_rebuild(day_key, curate=curate)
    return result.to_dict()


@main_router.get("/programs/date/{day}", response_model=None)
async def get_day_programs(
    day: str,
    pipeline: Annotated[EPGIngestPipeline, Depends(get_pipeline)],
) -> ScheduleManifestResponse | list[dict[str, Any]]:
    """
    Day schedule

    Returns a manifest with a signed URL to the precomputed JSON, or the
    schedule itself when it could not be published.
    """
    published = await pipeline.publish_day(DayKey.resolve(day))
    if published.json_url is None:
        return published.inline or []
    return ScheduleManifestResponse.model_validate(published.to_dict())


@main_router.get("/channels", response_model=ChannelListResponse)
async def get_channels(
    container: Annotated[ServiceContainer, Depends(get_container)],
    category: str | None = None,
    curated: bool = False,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
    cursor: str | None = None,
) -> ChannelListResponse:
    """Stored channels, one page at a time"""
    settings = container.settings
    collection = settings.curated_collection if curated else settings.channels_collection
    page = await list_channels(
        container.document_store,
        collection,
        category=category,
        page_size=limit,
        cursor=cursor,
    )
    channels = [
        ChannelResponse(
            id=document.id,
            name=document.data.get("name") or "",
            image=document.data.get("image"),
            category=document.data.get("category"),
            region=document.data.get("region"),
        )
        for document in page.documents
    ]
    return ChannelListResponse(count=len(channels), channels=channels, next_cursor=page.next_cursor)
