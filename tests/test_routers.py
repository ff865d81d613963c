"""
HTTP tests for the FastAPI application.
"""
import httpx
import pytest
from fastapi.testclient import TestClient

from guiatv.main import create_app

from tests.conftest import FEED_URL, REBUILD_URL


@pytest.fixture
def client(settings, feed_server):
    app = create_app(settings, transport=feed_server.transport)
    with TestClient(app) as test_client:
        yield test_client


class TestServiceEndpoints:
    """Informational endpoints."""

    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        body = response.json()
        assert body["service"] == "Guia TV EPG Service"
        assert "/health" in body["endpoints"]["health"]

    def test_health_before_any_run(self, client):
        response = client.get("/health")

        assert response.json() == {"status": "ok", "ingest_running": False, "last_run": None}

    def test_health_reports_last_run(self, client):
        client.post("/ingest/refresh", params={"day": "20240601"})

        last_run = client.get("/health").json()["last_run"]

        assert last_run == {"mode": "incremental", "day": "20240601", "status": "success", "state": "done"}


class TestIngestEndpoints:
    """Triggering ingest runs over HTTP."""

    def test_refresh(self, client):
        """The run summary is returned as JSON."""
        response = client.post("/ingest/refresh", params={"day": "20240601"})

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "success"
        assert body["mode"] == "incremental"
        assert body["states"][-1] == "done"
        assert body["channel_write"]["created"] == 3
        assert body["program_write"]["programs_written"] == 4
        assert body["acquire"]["source"] == "network"

    def test_rebuild(self, client, feed_server, gzipped_feed):
        feed_server.serve(REBUILD_URL, gzipped_feed)

        response = client.post("/ingest/rebuild", params={"day": "20240601"})

        assert response.status_code == 200
        body = response.json()
        assert body["mode"] == "full_rebuild"
        assert body["refresh"]["compressed"] is True
        assert body["curate"]["copied"] == 2
        assert [purge["collection"] for purge in body["purges"]] == ["channels", "curated_channels"]

    def test_rebuild_without_curation(self, client, feed_server, gzipped_feed):
        feed_server.serve(REBUILD_URL, gzipped_feed)

        body = client.post("/ingest/rebuild", params={"day": "20240601", "curate": "false"}).json()

        assert "curate" not in body

    def test_unreachable_feed_is_502(self, client, feed_server):
        """Source failures map to a standard error body."""
        feed_server.fail_with = httpx.ConnectError("no route to host")

        response = client.post("/ingest/refresh", params={"day": "20240601"})

        assert response.status_code == 502
        body = response.json()
        assert body["status"] == "error"
        assert body["error"]["code"] == "SOURCE_UNAVAILABLE"
        assert body["error"]["context"] == {"type": "SourceUnavailableError"}

    def test_corrupt_gzip_is_502(self, client, feed_server):
        feed_server.serve(REBUILD_URL, b"\x1f\x8b" + b"not deflate" * 20)

        response = client.post("/ingest/rebuild", params={"day": "20240601"})

        assert response.status_code == 502
        assert response.json()["error"]["code"] == "FEED_DECOMPRESSION_FAILED"

    def test_malformed_feed_is_422(self, client, feed_server):
        feed_server.serve(FEED_URL, "<tv><channel id='broken'>")

        response = client.post("/ingest/refresh", params={"day": "20240601"})

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "MALFORMED_FEED"


class TestReadEndpoints:
    """Day schedule and channel listing."""

    def test_day_schedule_manifest(self, client, settings):
        """A signed URL to the published JSON is returned."""
        response = client.get("/programs/date/20240601")

        assert response.status_code == 200
        body = response.json()
        assert body["day"] == "20240601"
        assert body["cached"] is False
        assert "expires=" in body["jsonUrl"]
        assert [channel["name"] for channel in body["channels"]] == ["La 1", "Canal Sur", "UnknownChan"]

        assert client.get("/programs/date/20240601").json()["cached"] is True

    def test_unknown_day_falls_back_to_today(self, client, feed_server):
        """Unparseable days resolve to the current day instead of failing."""
        response = client.get("/programs/date/not-a-day")

        assert response.status_code == 200
        assert response.json()["channels"] == []

    def test_channels_listing(self, client):
        client.post("/ingest/refresh", params={"day": "20240601"})

        body = client.get("/channels").json()

        assert body["count"] == 3
        assert {channel["name"] for channel in body["channels"]} == {"La 1", "Canal Sur", "UnknownChan"}
        assert body["next_cursor"] is None

    def test_channels_by_category_and_page(self, client):
        client.post("/ingest/refresh", params={"day": "20240601"})

        autonomic = client.get("/channels", params={"category": "Autonomic"}).json()
        first_page = client.get("/channels", params={"limit": 2}).json()
        second_page = client.get("/channels", params={"limit": 2, "cursor": first_page["next_cursor"]}).json()

        assert [channel["region"] for channel in autonomic["channels"]] == ["Andalucía"]
        assert first_page["count"] == 2
        assert second_page["count"] == 1

    def test_curated_channels_listing(self, client, feed_server, gzipped_feed):
        feed_server.serve(REBUILD_URL, gzipped_feed)
        client.post("/ingest/rebuild", params={"day": "20240601"})

        body = client.get("/channels", params={"curated": "true"}).json()

        assert {channel["name"] for channel in body["channels"]} == {"La 1", "Canal Sur"}

    def test_limit_is_validated(self, client):
        response = client.get("/channels", params={"limit": 0})

        assert response.status_code == 422
        assert response.json()["detail"][0]["loc"] == ["query", "limit"]
