"""
EPG Query Service

Read-side helpers: shape a parsed day into the per-channel schedule guide
frontends consume, and precompute that schedule as JSON in the object store.
"""
from collections.abc import Mapping
import json
import logging

from guiatv.exceptions import ObjectNotFoundError
from guiatv.services.fetch_types import DaySchedule, ParseResult, PublishResult, ScheduleEntry
from guiatv.stores import DocumentStore, ObjectStore, Page
from guiatv.utils.day_key import DayKey

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"


def build_day_schedule(
    parse_result: ParseResult,
    channel_ids: Mapping[str, str] | None = None,
) -> DaySchedule:
    """
    Build the day schedule from parsed programs

    Args:
        parse_result: Parsed feed restricted to one day
        channel_ids: Stored channel ids by name; unknown channels use their name as id

    Returns:
        DaySchedule with one entry per channel, in feed order
    """
    channel_ids = channel_ids or {}
    schedule = DaySchedule(day=parse_result.target_day)

    for channel_name, programs in parse_result.programs_by_channel.items():
        if not programs:
            continue
        channel = parse_result.channels.get(channel_name)
        icon = channel.image if channel is not None else programs[0].channel_image_url
        schedule.entries.append(
            ScheduleEntry(
                channel_id=channel_ids.get(channel_name) or channel_name,
                channel_name=channel_name,
                icon=icon,
                programs=list(programs),
            )
        )

    logger.info(
        "Schedule for %s: %s channels, %s programs",
        schedule.day,
        len(schedule.entries),
        schedule.program_count,
    )
    return schedule


def schedule_path(prefix: str, day: DayKey) -> str:
    return day.blob_path(prefix, suffix=".json")


async def publish_schedule(
    object_store: ObjectStore,
    schedule: DaySchedule,
    *,
    prefix: str,
    ttl_minutes: int,
) -> PublishResult:
    """
    Store the schedule JSON once per day and hand out a signed URL

    An already published file is reused as is. If the object store fails,
    the schedule is returned inline instead.
    """
    path = schedule_path(prefix, schedule.day)
    entries = schedule.to_list()
    result = PublishResult(
        day=schedule.day,
        path=path,
        channels=[entry.summary() for entry in schedule.entries],
    )

    try:
        result.cached = await object_store.exists(path)
        if not result.cached:
            logger.info("Precomputing schedule JSON at %s", path)
            payload = json.dumps(entries, ensure_ascii=False).encode("utf-8")
            await object_store.upload(path, payload, content_type=JSON_CONTENT_TYPE)
        result.json_url = await object_store.signed_url(path, ttl_minutes=ttl_minutes)
    except (ObjectNotFoundError, OSError, ValueError) as exc:
        logger.warning("Failed to precompute or sign %s, returning inline schedule: %s", path, exc)
        result.json_url = None
        result.inline = entries
        result.error = str(exc)

    return result


async def list_channels(
    store: DocumentStore,
    collection: str,
    *,
    category: str | None = None,
    page_size: int = 100,
    cursor: str | None = None,
) -> Page:
    """One page of stored channels, optionally restricted to a category"""
    filters = {"category": category} if category else None
    return await store.query(collection, filters=filters, page_size=page_size, cursor=cursor)
