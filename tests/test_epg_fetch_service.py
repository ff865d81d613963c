"""
Integration tests for the ingest pipeline on temporary stores.
"""
import json
from datetime import datetime, timezone

import httpx
import pytest

from guiatv.exceptions import MalformedFeedError, ObjectNotFoundError, SourceUnavailableError
from guiatv.services.epg_fetch_service import EPGIngestPipeline, IngestResult, PipelineState
from guiatv.services.epg_query_service import publish_schedule
from guiatv.services.feed_acquirer_service import FeedAcquirer
from guiatv.stores import Operation
from guiatv.storage import LocalObjectStore
from guiatv.utils.day_key import DayKey

from tests.conftest import FEED_URL, ICON_BYTES, LA1_ICON_URL, REBUILD_URL, SAMPLE_DESCRIPTION


HAPPY_PATH = [
    PipelineState.IDLE,
    PipelineState.ACQUIRING,
    PipelineState.PARSING,
    PipelineState.CLASSIFYING,
    PipelineState.WRITING,
    PipelineState.DONE,
]


class FailingPublishStore(LocalObjectStore):
    """Object store that cannot accept uploads."""

    async def upload(self, path, data, *, content_type="application/octet-stream"):
        raise OSError("quota exceeded")


class UnsignableStore(LocalObjectStore):
    """Object store whose signed URLs point at a vanished object."""

    async def signed_url(self, path, ttl_minutes=60):
        raise ObjectNotFoundError(path)


@pytest.fixture
def pipeline(document_store, object_store, acquirer, settings) -> EPGIngestPipeline:
    return EPGIngestPipeline(document_store, object_store, acquirer, settings)


async def _stored_channels(store, collection="channels") -> dict[str, dict]:
    page = await store.query(collection, page_size=500)
    return {document.data["name"]: document.data for document in page.documents}


class TestIncrementalRun:
    """Cache-first refresh of one day."""

    @pytest.mark.asyncio
    async def test_writes_channels_and_programs(self, pipeline, document_store, target_day):
        """A first run creates classified channels and their day bucket."""
        result = await pipeline.run_incremental(target_day)

        assert result.status == "success"
        assert result.states == HAPPY_PATH
        assert result.acquire.source == "network"
        assert dict(result.categories) == {"TDT": 1, "Autonomic": 1, "Unknown": 1}
        assert result.channel_write.created == 3
        assert result.program_write.programs_written == 4
        assert result.parse_skipped["orphan_channel"] == 1

        channels = await _stored_channels(document_store)
        assert set(channels) == {"La 1", "Canal Sur", "UnknownChan"}
        assert channels["La 1"]["category"] == "TDT"
        assert channels["Canal Sur"]["region"] == "Andalucía"
        assert [p["title"] for p in channels["La 1"]["programs_20240601"]] == ["Noticias", "Cine"]
        assert await document_store.count("curated_channels") == 0

    @pytest.mark.asyncio
    async def test_second_run_reuses_existing_channels(self, pipeline, document_store, feed_server, target_day):
        """No duplicate channels; programs still land on the stored ids."""
        first = await pipeline.run_incremental(target_day)
        second = await pipeline.run_incremental(target_day)

        assert second.acquire.source == "cache"
        assert second.icons.reused == 1
        assert feed_server.requests == [FEED_URL, LA1_ICON_URL]
        assert second.channel_write.created == 0
        assert second.channel_write.skipped_existing == 3
        assert second.program_write.programs_written == first.program_write.programs_written
        assert await document_store.count("channels") == 3

    @pytest.mark.asyncio
    async def test_only_channels_of_the_day_are_written(self, pipeline, document_store):
        """Channels without programs on the day are left out."""
        result = await pipeline.run_incremental(DayKey.parse("20240602"))

        assert result.channel_write.created == 1
        assert set(await _stored_channels(document_store)) == {"La 1"}

    @pytest.mark.asyncio
    async def test_channel_icons_are_mirrored(self, pipeline, document_store, object_store, target_day):
        """Stored channels point at the object store copy of their icon."""
        result = await pipeline.run_incremental(target_day)

        assert result.icons.mirrored == 1
        assert result.icons.without_icon == 2
        channels = await _stored_channels(document_store)
        assert channels["La 1"]["image"] == "https://objects.example.test/channel_icons/La%201/icono.png"
        assert channels["Canal Sur"]["image"] is None
        assert await object_store.download("channel_icons/La 1/icono.png") == ICON_BYTES
        assert result.to_dict()["icons"]["mirrored"] == 1

    @pytest.mark.asyncio
    async def test_unreachable_icon_clears_the_image(self, pipeline, document_store, feed_server, target_day):
        """A failed icon download is recorded and the channel is still stored."""
        feed_server.serve(LA1_ICON_URL, b"missing", status_code=404)

        result = await pipeline.run_incremental(target_day)

        assert result.status == "success"
        assert list(result.icons.failures) == ["La 1"]
        channels = await _stored_channels(document_store)
        assert channels["La 1"]["image"] is None

    @pytest.mark.asyncio
    async def test_guide_without_programmes_is_an_empty_day(self, pipeline, document_store, feed_server, target_day):
        """A valid guide with no programmes completes with nothing written."""
        feed_server.serve(
            FEED_URL,
            '<?xml version="1.0" encoding="UTF-8"?><tv><channel id="c1"><display-name>La 1</display-name></channel></tv>',
        )

        result = await pipeline.run_incremental(target_day)

        assert result.status == "success"
        assert result.states == HAPPY_PATH
        assert result.programs_parsed == 0
        assert result.channel_write.created == 0
        assert await document_store.count("channels") == 0

    @pytest.mark.asyncio
    async def test_source_unavailable_fails_the_run(self, pipeline, document_store, feed_server, target_day):
        """Fatal errors move the run to FAILED and propagate."""
        feed_server.fail_with = httpx.ConnectError("no route to host")

        with pytest.raises(SourceUnavailableError):
            await pipeline.run_incremental(target_day)

        result = pipeline.last_result
        assert result.status == "failed"
        assert result.states == [PipelineState.IDLE, PipelineState.ACQUIRING, PipelineState.FAILED]
        assert "SourceUnavailableError" in result.error
        assert await document_store.count("channels") == 0

    @pytest.mark.asyncio
    async def test_malformed_feed_fails_before_writes(self, pipeline, document_store, feed_server, target_day):
        feed_server.serve(FEED_URL, "<tv><channel id='broken'>")

        with pytest.raises(MalformedFeedError):
            await pipeline.run_incremental(target_day)

        assert pipeline.last_result.states[-2:] == [PipelineState.PARSING, PipelineState.FAILED]
        assert await document_store.count("channels") == 0

    @pytest.mark.asyncio
    async def test_concurrent_run_is_skipped(self, pipeline, target_day):
        """A run requested while another holds the lock is skipped."""
        async with pipeline.coordinator._fetch_lock:
            result = await pipeline.run_incremental(target_day)

        assert result.status == "skipped"
        assert result.to_dict()["message"] == "EPG ingest operation already in progress"
        assert not pipeline.coordinator.is_fetching()


class TestFullRebuild:
    """Purge and rebuild from the canonical feed."""

    @pytest.mark.asyncio
    async def test_rebuild_replaces_collections(self, pipeline, document_store, feed_server, gzipped_feed, target_day):
        """Old documents are purged and every feed channel is stored."""
        feed_server.serve(REBUILD_URL, gzipped_feed)
        await document_store.batch_commit("channels", [Operation.create("old", {"name": "Old Channel"})])
        await document_store.batch_commit("curated_channels", [Operation.create("old", {"name": "Old Channel"})])

        result = await pipeline.run_full_rebuild(target_day)

        assert result.status == "success"
        assert result.states == HAPPY_PATH
        assert [purge.deleted for purge in result.purges] == [1, 1]
        assert result.refresh.compressed is True
        assert result.acquire.source == "cache"
        assert FEED_URL not in feed_server.requests

        channels = await _stored_channels(document_store)
        assert set(channels) == {"La 1", "UnknownChan", "Canal Sur"}

        curated = await _stored_channels(document_store, "curated_channels")
        assert set(curated) == {"La 1", "Canal Sur"}
        assert result.curate.copied == 2
        assert result.curate.skipped_unknown == 1
        assert curated["La 1"]["programs_20240601"][0]["genre"] == "Drama"

    @pytest.mark.asyncio
    async def test_rebuild_without_curation(self, pipeline, document_store, feed_server, gzipped_feed, target_day):
        feed_server.serve(REBUILD_URL, gzipped_feed)

        result = await pipeline.run_full_rebuild(target_day, curate=False)

        assert result.curate is None
        assert await document_store.count("curated_channels") == 0
        assert "curate" not in result.to_dict()

    @pytest.mark.asyncio
    async def test_rebuild_download_failure(self, pipeline, target_day):
        """A missing canonical feed fails the run in ACQUIRING."""
        with pytest.raises(SourceUnavailableError):
            await pipeline.run_full_rebuild(target_day)

        assert pipeline.last_result.states == [PipelineState.IDLE, PipelineState.ACQUIRING, PipelineState.FAILED]


class TestQueryAndPublish:
    """Read-through day schedule."""

    @pytest.mark.asyncio
    async def test_query_day_shape(self, pipeline, target_day):
        """Entries carry channel info and programs; unknown ids fall back to names."""
        schedule = await pipeline.query_day(target_day)
        entries = schedule.to_list()

        assert [entry["channel"]["name"] for entry in entries] == ["La 1", "Canal Sur", "UnknownChan"]
        assert entries[0]["channel"]["id"] == "La 1"
        assert entries[0]["channel"]["icon"] == "https://img.example.test/la1.png"
        assert entries[0]["programs"][0] == {
            "title": "Noticias",
            "start": "2024-06-01T00:00:00+00:00",
            "end": "2024-06-01T01:00:00+00:00",
            "stop": "2024-06-01T01:00:00+00:00",
            "desc": SAMPLE_DESCRIPTION,
            "icon": "https://img.example.test/noticias.png",
        }

    @pytest.mark.asyncio
    async def test_query_day_uses_stored_ids(self, pipeline, document_store, target_day):
        ingest = await pipeline.run_incremental(target_day)

        schedule = await pipeline.query_day(target_day)

        assert schedule.entries[0].channel_id == ingest.channel_write.id_map["La 1"]

    @pytest.mark.asyncio
    async def test_publish_day_stores_json_once(self, pipeline, object_store, target_day):
        """The JSON is written on first request and reused afterwards."""
        first = await pipeline.publish_day(target_day)
        second = await pipeline.publish_day(target_day)

        assert first.cached is False
        assert second.cached is True
        assert first.path == "epg_json/20240601.json"
        assert "signature=" in first.json_url
        assert [channel["name"] for channel in first.channels] == ["La 1", "Canal Sur", "UnknownChan"]
        stored = json.loads(await object_store.download(first.path))
        assert stored[0]["channel"]["name"] == "La 1"

    @pytest.mark.asyncio
    async def test_publish_falls_back_to_inline(self, document_store, feed_server, settings, target_day):
        """Object store failures return the schedule itself."""
        store = FailingPublishStore(settings.object_store_root)
        acquirer = FeedAcquirer(store, feed_url=FEED_URL, transport=feed_server.transport)
        pipeline = EPGIngestPipeline(document_store, store, acquirer, settings)

        published = await pipeline.publish_day(target_day)

        assert published.json_url is None
        assert published.error == "quota exceeded"
        assert [entry["channel"]["name"] for entry in published.inline] == ["La 1", "Canal Sur", "UnknownChan"]

    @pytest.mark.asyncio
    async def test_publish_falls_back_when_signing_fails(self, pipeline, settings, target_day):
        """A published file that cannot be signed still yields the schedule."""
        store = UnsignableStore(settings.object_store_root)
        schedule = await pipeline.query_day(target_day)

        published = await publish_schedule(store, schedule, prefix="epg_json", ttl_minutes=5)

        assert published.json_url is None
        assert published.error == "No such object: epg_json/20240601.json"
        assert published.inline == schedule.to_list()


class TestIngestResult:
    """State machine bookkeeping."""

    def _result(self) -> IngestResult:
        return IngestResult(mode="incremental", day=DayKey(2024, 6, 1), started_at=datetime.now(timezone.utc))

    def test_stages_must_follow_order(self):
        result = self._result()

        with pytest.raises(RuntimeError):
            result.advance(PipelineState.PARSING)

    def test_failed_is_reachable_from_any_stage(self):
        result = self._result()
        result.advance(PipelineState.ACQUIRING)
        result.advance(PipelineState.PARSING)

        result.fail(ValueError("boom"))

        assert result.state is PipelineState.FAILED
        assert result.error == "ValueError: boom"
        with pytest.raises(RuntimeError):
            result.advance(PipelineState.CLASSIFYING)

    def test_to_dict(self):
        result = self._result()
        for state in HAPPY_PATH[1:-1]:
            result.advance(state)
        result.finish()

        payload = result.to_dict()

        assert payload["status"] == "success"
        assert payload["day"] == "20240601"
        assert payload["states"] == [state.value for state in HAPPY_PATH]
        assert payload["duration_seconds"] >= 0
