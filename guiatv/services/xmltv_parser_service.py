from collections import Counter
import asyncio
import logging

from lxml import etree # type: ignore

from guiatv.exceptions import MalformedFeedError
from guiatv.services.fetch_types import Channel, ParseResult, Program
from guiatv.utils.day_key import DateFormatError, DayKey, day_key_of_timestamp, parse_xmltv_timestamp

logger = logging.getLogger(__name__)

DEFAULT_DESCRIPTION_MAX_LENGTH = 500


def _build_parser() -> etree.XMLParser:
    # Feed content is untrusted: no entity expansion, no network lookups
    return etree.XMLParser(
        resolve_entities=False,
        no_network=True,
        remove_blank_text=True,
    )


def parse_epg(
    xml_text: str | bytes,
    target_day: DayKey,
    *,
    description_max_length: int = DEFAULT_DESCRIPTION_MAX_LENGTH,
) -> ParseResult:
    """
    Parse an XMLTV document and keep the programmes of one day

    Args:
        xml_text: Raw XMLTV document
        target_day: Only programmes starting on this day are kept
        description_max_length: Length of the stored description

    Returns:
        ParseResult with programs grouped by channel display name, in feed order

    Raises:
        MalformedFeedError: If the XML is malformed or has no tv root or channels
    """
    payload = xml_text.encode("utf-8") if isinstance(xml_text, str) else xml_text

    try:
        root = etree.fromstring(payload, _build_parser())
    except (etree.XMLSyntaxError, ValueError) as e:
        logger.error("XML parsing error: %s", e)
        raise MalformedFeedError(f"Feed is not valid XML: {e}") from e

    if root is None or root.tag != "tv":
        raise MalformedFeedError("Invalid XML structure: missing tv root element")

    channel_elements = root.findall("channel")
    programme_elements = root.findall("programme")
    if not channel_elements:
        raise MalformedFeedError("Feed contains no channels")

    logger.debug("  Extracting channels...")
    channels = _parse_channels(channel_elements)
    logger.debug("    Found %s valid channels", len(channels))

    result = ParseResult(
        target_day=target_day,
        feed_channels=list(channels.values()),
        channels_in_feed=len(channels),
        programmes_in_feed=len(programme_elements),
    )

    logger.debug("  Extracting programs for %s...", target_day)
    for programme in programme_elements:
        program = _parse_single_program(programme, channels, target_day, result.skipped, description_max_length)
        if program is None:
            continue

        channel = channels[program.xmltv_channel_id]
        result.channels.setdefault(channel.name, channel)
        result.programs_by_channel.setdefault(channel.name, []).append(program)

    logger.info(
        "XMLTV parsing complete for %s: %s channels, %s programs (skipped: %s)",
        target_day,
        len(result.programs_by_channel),
        result.program_count,
        dict(result.skipped) or "none",
    )
    return result


def _parse_channels(elements: list[etree._Element]) -> dict[str, Channel]:
    """Extract channels keyed by XMLTV id; the first definition of an id wins"""
    channels: dict[str, Channel] = {}

    for channel in elements:
        xmltv_id = channel.get("id")
        if not xmltv_id:
            logger.debug("Skipping channel with missing ID attribute")
            continue
        if xmltv_id in channels:
            logger.debug("Ignoring duplicate definition of channel %s", xmltv_id)
            continue

        # Get display name (first one or fallback to ID)
        display_name = _get_text(channel, "display-name", default=xmltv_id)

        channels[xmltv_id] = Channel(
            name=display_name or xmltv_id,
            image=_get_src(channel, "icon"),
            xmltv_id=xmltv_id,
        )

    return channels


def _parse_single_program(
    programme: etree._Element,
    channels: dict[str, Channel],
    target_day: DayKey,
    skipped: Counter,
    description_max_length: int,
) -> Program | None:
    """Parse single programme element, recording why it was dropped"""
    start_str = programme.get("start") or ""
    stop_str = programme.get("stop") or ""

    try:
        programme_day = day_key_of_timestamp(start_str)
    except DateFormatError:
        skipped["invalid_timestamp"] += 1
        return None

    if programme_day != target_day:
        skipped["other_day"] += 1
        return None

    # Orphaned programmes are common in the public feeds
    channel = channels.get(programme.get("channel") or "")
    if channel is None:
        skipped["orphan_channel"] += 1
        return None

    try:
        start_time = parse_xmltv_timestamp(start_str)
        stop_time = parse_xmltv_timestamp(stop_str)
    except DateFormatError:
        skipped["invalid_timestamp"] += 1
        return None

    # stop <= start is kept; consumers decide what to do with it
    raw_description = _get_text(programme, "desc", default="") or ""

    return Program(
        channel_name=channel.name,
        start=start_time,
        end=stop_time,
        title=_get_text(programme, "title", default="") or "",
        raw_description=raw_description,
        truncated_description=raw_description[:description_max_length],
        icon_url=_get_src(programme, "icon"),
        program_image_url=_get_src(programme, "programme-image"),
        channel_image_url=channel.image,
        xmltv_channel_id=channel.xmltv_id,
    )


async def parse_epg_async(
    xml_text: str | bytes,
    target_day: DayKey,
    *,
    description_max_length: int = DEFAULT_DESCRIPTION_MAX_LENGTH,
    parse_timeout_seconds: int | None = None,
) -> ParseResult:
    """
    Parse an XMLTV document without blocking the event loop

    Parsing is offloaded to the default thread pool executor. A timeout
    prevents malformed or massive documents from hanging a run.

    Raises:
        MalformedFeedError: If the document is malformed or parsing times out
    """
    effective_timeout = parse_timeout_seconds if parse_timeout_seconds and parse_timeout_seconds > 0 else None
    timeout_display = f"{effective_timeout}s" if effective_timeout else "disabled"

    loop = asyncio.get_running_loop()
    logger.debug("Offloading XML parsing to thread pool executor (timeout: %s)...", timeout_display)
    parse_task = loop.run_in_executor(
        None,
        lambda: parse_epg(xml_text, target_day, description_max_length=description_max_length),
    )

    try:
        if effective_timeout:
            return await asyncio.wait_for(parse_task, timeout=effective_timeout)
        return await parse_task
    except asyncio.TimeoutError:
        logger.error("XML parsing timed out after %s", timeout_display)
        raise MalformedFeedError("XML parsing timed out - file may be too large or malformed")


def _get_src(element: etree._Element, tag: str) -> str | None:
    """Read the src attribute of an optional child element"""
    child = element.find(tag)
    if child is None:
        return None
    return child.get("src") or None


def _get_text(element: etree._Element, tag: str, default: str | None = None) -> str | None:
    """Safely extract text from XML element"""
    child = element.find(tag)
    if child is None or not child.text:
        return default
    return child.text.strip()
