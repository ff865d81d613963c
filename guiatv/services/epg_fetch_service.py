"""
EPG Ingest Service

Coordinates acquisition, parsing, classification and persistence of one day
of EPG data. Two run modes exist:

* incremental: read the day's feed (cache first) and add what is new
* full rebuild: purge the collections, re-download the feed, write everything

Runs are best effort and not atomic: a failure part-way through leaves the
writes already committed in place.
"""
from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from guiatv.config import CustomSettings
from guiatv.services.channel_classifier import classify
from guiatv.services.db_service import (
    copy_curated_channels,
    purge_collection,
    resolve_channel_ids,
    write_channels,
    write_programs,
)
from guiatv.services.epg_query_service import build_day_schedule, publish_schedule
from guiatv.services.feed_acquirer_service import FeedAcquirer
from guiatv.services.fetch_coordinator import FetchCoordinator
from guiatv.services.fetch_types import (
    AcquireResult,
    Channel,
    ChannelWriteResult,
    CurateResult,
    DaySchedule,
    IconMirrorResult,
    ParseResult,
    ProgramWriteResult,
    PublishResult,
    PurgeResult,
    RefreshResult,
)
from guiatv.services.xmltv_parser_service import parse_epg_async
from guiatv.stores import DocumentStore, ObjectStore
from guiatv.utils.day_key import DayKey
from guiatv.utils.logging_helpers import (
    log_classification_summary,
    log_run_end,
    log_run_start,
    log_section_end,
    log_section_start,
    log_storage_stats,
)


logger = logging.getLogger(__name__)

RunMode = Literal["incremental", "full_rebuild"]


class PipelineState(str, Enum):
    IDLE = "idle"
    ACQUIRING = "acquiring"
    PARSING = "parsing"
    CLASSIFYING = "classifying"
    WRITING = "writing"
    DONE = "done"
    FAILED = "failed"


_NEXT_STATE = {
    PipelineState.IDLE: PipelineState.ACQUIRING,
    PipelineState.ACQUIRING: PipelineState.PARSING,
    PipelineState.PARSING: PipelineState.CLASSIFYING,
    PipelineState.CLASSIFYING: PipelineState.WRITING,
    PipelineState.WRITING: PipelineState.DONE,
}
TERMINAL_STATES = frozenset({PipelineState.DONE, PipelineState.FAILED})


@dataclass(slots=True)
class IngestResult:
    mode: RunMode
    day: DayKey
    started_at: datetime
    status: Literal["running", "success", "failed", "skipped"] = "running"
    completed_at: datetime | None = None
    states: list[PipelineState] = field(default_factory=lambda: [PipelineState.IDLE])
    purges: list[PurgeResult] = field(default_factory=list)
    refresh: RefreshResult | None = None
    acquire: AcquireResult | None = None
    channels_parsed: int = 0
    programs_parsed: int = 0
    parse_skipped: Counter = field(default_factory=Counter)
    categories: Counter = field(default_factory=Counter)
    icons: IconMirrorResult | None = None
    channel_write: ChannelWriteResult | None = None
    program_write: ProgramWriteResult | None = None
    curate: CurateResult | None = None
    error: str | None = None
    message: str | None = None

    @classmethod
    def skipped(cls, mode: RunMode, day: DayKey) -> IngestResult:
        now = datetime.now(timezone.utc)
        return cls(
            mode=mode,
            day=day,
            started_at=now,
            completed_at=now,
            status="skipped",
            message="EPG ingest operation already in progress",
        )

    @property
    def state(self) -> PipelineState:
        return self.states[-1]

    @property
    def duration_seconds(self) -> float:
        if self.completed_at is None:
            return 0.0
        return max(0.0, (self.completed_at - self.started_at).total_seconds())

    def advance(self, state: PipelineState) -> None:
        """Move to `state`; only the next stage or FAILED are accepted."""
        current = self.state
        if current in TERMINAL_STATES:
            raise RuntimeError(f"Run already finished in state {current.value}")
        if state is not PipelineState.FAILED and _NEXT_STATE[current] is not state:
            raise RuntimeError(f"Invalid pipeline transition {current.value} -> {state.value}")
        self.states.append(state)

    def finish(self) -> None:
        self.advance(PipelineState.DONE)
        self.status = "success"
        self.completed_at = datetime.now(timezone.utc)

    def fail(self, exc: BaseException) -> None:
        if self.state not in TERMINAL_STATES:
            self.advance(PipelineState.FAILED)
        self.status = "failed"
        self.error = f"{type(exc).__name__}: {exc}"
        self.completed_at = datetime.now(timezone.utc)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "status": self.status,
            "mode": self.mode,
            "day": str(self.day),
            "state": self.state.value,
            "states": [state.value for state in self.states],
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "channels_parsed": self.channels_parsed,
            "programs_parsed": self.programs_parsed,
            "parse_skipped": dict(self.parse_skipped),
            "categories": dict(self.categories),
        }
        if self.purges:
            payload["purges"] = [purge.to_dict() for purge in self.purges]
        if self.refresh is not None:
            payload["refresh"] = self.refresh.to_dict()
        if self.acquire is not None:
            payload["acquire"] = self.acquire.to_dict()
        if self.icons is not None:
            payload["icons"] = self.icons.to_dict()
        if self.channel_write is not None:
            payload["channel_write"] = self.channel_write.to_dict()
        if self.program_write is not None:
            payload["program_write"] = self.program_write.to_dict()
        if self.curate is not None:
            payload["curate"] = self.curate.to_dict()
        if self.error:
            payload["error"] = self.error
        if self.message:
            payload["message"] = self.message
        return payload


class EPGIngestPipeline:
    """Runs the acquire -> parse -> classify -> write stages for one day."""

    def __init__(
        self,
        document_store: DocumentStore,
        object_store: ObjectStore,
        acquirer: FeedAcquirer,
        settings: CustomSettings,
        *,
        coordinator: FetchCoordinator | None = None,
    ) -> None:
        self.document_store = document_store
        self.object_store = object_store
        self.acquirer = acquirer
        self.settings = settings
        self.coordinator = coordinator or FetchCoordinator()
        self.last_result: IngestResult | None = None

    async def run_incremental(self, day: DayKey) -> IngestResult:
        """
        Add the day's channels and programs without purging anything

        Raises:
            SourceUnavailableError: If neither the cache nor the feed is reachable
            MalformedFeedError: If the feed cannot be parsed
        """
        return await self.coordinator.execute(
            lambda: self._run("incremental", day, self._incremental),
            on_skip=lambda: IngestResult.skipped("incremental", day),
        )

    async def run_full_rebuild(self, day: DayKey, *, curate: bool = True) -> IngestResult:
        """
        Purge the collections and rebuild them from a fresh download of the feed

        Raises:
            SourceUnavailableError: If the feed cannot be downloaded
            FeedDecompressionError: If the downloaded gzip stream is corrupt
            MalformedFeedError: If the feed cannot be parsed
        """
        async def body(result: IngestResult) -> None:
            await self._full_rebuild(result, curate=curate)

        return await self.coordinator.execute(
            lambda: self._run("full_rebuild", day, body),
            on_skip=lambda: IngestResult.skipped("full_rebuild", day),
        )

    async def query_day(self, day: DayKey) -> DaySchedule:
        """Parse the day's feed and shape it per channel; nothing is written"""
        acquired = await self.acquirer.acquire(day)
        parsed = await self._parse_feed(acquired.xml_text, day)
        channel_ids = await resolve_channel_ids(
            self.document_store,
            parsed.programs_by_channel.keys(),
            self.settings.channels_collection,
        )
        return build_day_schedule(parsed, channel_ids)

    async def publish_day(self, day: DayKey) -> PublishResult:
        """Precompute the day schedule as JSON and return a signed URL to it"""
        schedule = await self.query_day(day)
        return await publish_schedule(
            self.object_store,
            schedule,
            prefix=self.settings.json_cache_prefix,
            ttl_minutes=self.settings.signed_url_ttl_minutes,
        )

    async def _run(
        self,
        mode: RunMode,
        day: DayKey,
        body: Callable[[IngestResult], Awaitable[None]],
    ) -> IngestResult:
        result = IngestResult(mode=mode, day=day, started_at=datetime.now(timezone.utc))
        self.last_result = result
        log_run_start(logger, mode, day)

        try:
            await body(result)
        except Exception as exc:
            failed_in = result.state
            result.fail(exc)
            logger.error("EPG %s run for %s failed while %s: %s", mode, day, failed_in.value, exc, exc_info=True)
            log_run_end(logger, mode, day, result.status)
            raise

        result.finish()
        log_run_end(logger, mode, day, result.status)
        return result

    async def _incremental(self, result: IngestResult) -> None:
        result.advance(PipelineState.ACQUIRING)
        result.acquire = await self.acquirer.acquire(result.day)

        parsed = await self._parse(result, result.acquire.xml_text)
        channels = list(parsed.channels.values())
        self._classify(result, channels)

        result.advance(PipelineState.WRITING)
        await self._write(result, parsed, channels)

    async def _full_rebuild(self, result: IngestResult, *, curate: bool) -> None:
        result.advance(PipelineState.ACQUIRING)
        log_section_start(logger, "Purging collections")
        for collection in (self.settings.channels_collection, self.settings.curated_collection):
            result.purges.append(
                await purge_collection(
                    self.document_store,
                    collection,
                    page_size=self.settings.purge_page_size,
                    batch_limit=self.settings.batch_write_limit,
                )
            )
        log_section_end(logger, "Purging collections")

        result.refresh = await self.acquirer.refresh_cache(result.day)
        result.acquire = await self.acquirer.acquire(result.day)

        parsed = await self._parse(result, result.acquire.xml_text)
        self._classify(result, parsed.feed_channels)

        result.advance(PipelineState.WRITING)
        await self._write(result, parsed, parsed.feed_channels)

        if curate:
            log_section_start(logger, "Copying curated channels")
            result.curate = await copy_curated_channels(
                self.document_store,
                self.settings.channels_collection,
                self.settings.curated_collection,
                page_size=self.settings.curate_page_size,
                batch_limit=self.settings.batch_write_limit,
            )
            log_section_end(logger, "Copying curated channels")

    async def _parse(self, result: IngestResult, xml_text: str) -> ParseResult:
        result.advance(PipelineState.PARSING)
        parsed = await self._parse_feed(xml_text, result.day)
        result.channels_parsed = len(parsed.channels)
        result.programs_parsed = parsed.program_count
        result.parse_skipped.update(parsed.skipped)
        return parsed

    async def _parse_feed(self, xml_text: str, day: DayKey) -> ParseResult:
        return await parse_epg_async(
            xml_text,
            day,
            description_max_length=self.settings.description_max_length,
            parse_timeout_seconds=self.settings.epg_parse_timeout_sec,
        )

    def _classify(self, result: IngestResult, channels: Iterable[Channel]) -> None:
        result.advance(PipelineState.CLASSIFYING)
        for channel in channels:
            channel.classification = classify(channel.name)
            result.categories[channel.classification.category.value] += 1
        log_classification_summary(logger, result.categories)

    async def _write(self, result: IngestResult, parsed: ParseResult, channels: list[Channel]) -> None:
        store = self.document_store
        collection = self.settings.channels_collection
        log_storage_stats(logger, len(channels), parsed.program_count)

        if self.settings.mirror_channel_icons:
            result.icons = await self.acquirer.mirror_channel_icons(channels, prefix=self.settings.icon_prefix)

        result.channel_write = await write_channels(
            store,
            channels,
            collection,
            batch_limit=self.settings.batch_write_limit,
        )

        # programs of channels stored by earlier runs still need their ids
        id_map = dict(result.channel_write.id_map)
        unresolved = [name for name in parsed.programs_by_channel if name not in id_map]
        if unresolved:
            id_map.update(await resolve_channel_ids(store, unresolved, collection))

        result.program_write = await write_programs(
            store,
            parsed.programs_by_channel,
            id_map,
            collection,
            batch_limit=self.settings.batch_write_limit,
        )
