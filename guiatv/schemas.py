from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class IngestResponse(BaseModel):
    """Outcome of an ingest run"""
    model_config = ConfigDict(extra="allow")

    status: str = Field(..., description="success, failed or skipped")
    mode: str = Field(..., description="incremental or full_rebuild")
    day: str = Field(..., description="Day processed (YYYYMMDD)")
    state: str = Field(..., description="Final pipeline state")
    states: list[str] = Field(default_factory=list, description="State history of the run")
    started_at: str
    completed_at: str | None = None
    duration_seconds: float = 0.0
    channels_parsed: int = 0
    programs_parsed: int = 0
    parse_skipped: dict[str, int] = Field(default_factory=dict, description="Dropped programmes by reason")
    categories: dict[str, int] = Field(default_factory=dict, description="Classified channels by category")
    message: str | None = None


class ChannelResponse(BaseModel):
    """Stored channel"""
    id: str = Field(..., description="Document id assigned on first insert")
    name: str = Field(..., description="Channel display name")
    image: str | None = Field(None, description="URL to channel icon")
    category: str | None = Field(None, description="TDT, Movistar, Cable, Autonomic or Unknown")
    region: str | None = Field(None, description="Region of Autonomic channels")


class ChannelListResponse(BaseModel):
    """One page of stored channels"""
    count: int
    channels: list[ChannelResponse]
    next_cursor: str | None = Field(None, description="Pass as cursor to read the next page")


class ScheduleManifestResponse(BaseModel):
    """Published day schedule"""
    model_config = ConfigDict(populate_by_name=True)

    day: str
    json_url: str = Field(..., alias="jsonUrl", description="Signed URL to the schedule JSON")
    channels: list[dict[str, Any]] = Field(..., description="Channel summary (id, name, image)")
    cached: bool = Field(..., description="True if the JSON was already published")


class ErrorDetail(BaseModel):
    """Standard error detail"""
    code: str = Field(..., description="Error code (e.g., 'SOURCE_UNAVAILABLE', 'MALFORMED_FEED')")
    message: str = Field(..., description="Human-readable error message")
    context: dict | None = Field(None, description="Additional context about the error")


class StandardErrorResponse(BaseModel):
    """Standardized error response for all endpoints"""
    status: str = Field("error", description="Status indicator")
    timestamp: str = Field(..., description="ISO8601 timestamp of error")
    error: ErrorDetail = Field(..., description="Error details")
