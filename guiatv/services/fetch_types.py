"""
Shared dataclasses used across the EPG ingestion pipeline.
"""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from guiatv.utils.day_key import DayKey, format_utc


class ChannelCategory(str, Enum):
    TDT = "TDT"
    MOVISTAR = "Movistar"
    CABLE = "Cable"
    AUTONOMIC = "Autonomic"
    UNKNOWN = "Unknown"


@dataclass(frozen=True, slots=True)
class ChannelClassification:
    category: ChannelCategory
    region: str | None = None

    def to_document(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"category": self.category.value}
        if self.category is ChannelCategory.AUTONOMIC and self.region:
            payload["region"] = self.region
        return payload


@dataclass(slots=True)
class Channel:
    """In-memory representation of a channel before persistence."""
    name: str
    image: str | None = None
    xmltv_id: str | None = None
    id: str | None = None
    classification: ChannelClassification | None = None

    def to_document(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"name": self.name, "image": self.image}
        if self.classification is not None:
            payload.update(self.classification.to_document())
        return payload


@dataclass(slots=True)
class ProgramDetail:
    """Structured metadata decoded from a program description."""
    duration_minutes: int = 0
    year: str = ""
    age_rating: str = ""
    votes: str = ""
    genre: str = ""
    subgenre: str = ""
    synopsis: str = ""
    detail_map: dict[str, str] = field(default_factory=dict)
    title: str = ""
    image: str = ""
    start_time: str = ""
    end_time: str = ""

    def to_document(self) -> dict[str, Any]:
        return {
            "durationMinutes": self.duration_minutes,
            "year": self.year,
            "ageRating": self.age_rating,
            "votes": self.votes,
            "genre": self.genre,
            "subgenre": self.subgenre,
            "synopsis": self.synopsis,
            "detailMap": dict(self.detail_map),
            "title": self.title,
            "image": self.image,
            "startTime": self.start_time,
            "endTime": self.end_time,
        }


@dataclass(slots=True)
class Program:
    """In-memory representation of a program before persistence."""
    channel_name: str
    start: datetime
    end: datetime
    title: str
    raw_description: str = ""
    truncated_description: str = ""
    icon_url: str | None = None
    program_image_url: str | None = None
    channel_image_url: str | None = None
    channel_id: str | None = None
    xmltv_channel_id: str | None = None

    @property
    def day_key(self) -> DayKey:
        return DayKey.from_date(self.start.date())

    def to_document(self, details: ProgramDetail | None = None) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "channelId": self.channel_id,
            "channelName": self.channel_name,
            "start": format_utc(self.start),
            "end": format_utc(self.end),
            "title": self.title,
            "description": self.truncated_description,
            "icon": self.icon_url,
            "programImage": self.program_image_url,
            "channelImage": self.channel_image_url,
        }
        if details is not None:
            payload["details"] = details.to_document()
        return payload


@dataclass(slots=True)
class ParseResult:
    """Parser output: programs grouped by channel name plus skip counters."""
    target_day: DayKey
    channels: dict[str, Channel] = field(default_factory=dict)
    programs_by_channel: dict[str, list[Program]] = field(default_factory=dict)
    # every channel defined in the feed, including those without programs that day
    feed_channels: list[Channel] = field(default_factory=list)
    skipped: Counter = field(default_factory=Counter)
    channels_in_feed: int = 0
    programmes_in_feed: int = 0

    @property
    def program_count(self) -> int:
        return sum(len(programs) for programs in self.programs_by_channel.values())


@dataclass(slots=True)
class AcquireResult:
    xml_text: str
    day: DayKey
    source: str  # "cache" or "network"
    path: str
    upload_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "day": str(self.day),
            "source": self.source,
            "path": self.path,
            "bytes": len(self.xml_text),
        }
        if self.upload_error:
            payload["upload_error"] = self.upload_error
        return payload


@dataclass(slots=True)
class RefreshResult:
    day: DayKey
    path: str
    url: str
    compressed: bool
    bytes_downloaded: int = 0
    bytes_written: int = 0
    replaced_existing: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "day": str(self.day),
            "path": self.path,
            "url": self.url,
            "compressed": self.compressed,
            "bytes_downloaded": self.bytes_downloaded,
            "bytes_written": self.bytes_written,
            "replaced_existing": self.replaced_existing,
        }


@dataclass(slots=True)
class IconMirrorResult:
    """Channel icons copied into the object store during a run."""
    mirrored: int = 0
    reused: int = 0
    without_icon: int = 0
    # channel name -> error; those channels are stored without an image
    failures: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "mirrored": self.mirrored,
            "reused": self.reused,
            "without_icon": self.without_icon,
            "failed": len(self.failures),
            "errors": dict(self.failures),
        }


@dataclass(slots=True)
class CommitFailure:
    collection: str
    chunk_index: int
    operations: int
    error: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "collection": self.collection,
            "chunk_index": self.chunk_index,
            "operations": self.operations,
            "error": self.error,
        }


@dataclass(slots=True)
class ChannelWriteResult:
    id_map: dict[str, str] = field(default_factory=dict)
    created: int = 0
    skipped_existing: int = 0
    commits: int = 0
    failures: list[CommitFailure] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "created": self.created,
            "skipped_existing": self.skipped_existing,
            "commits": self.commits,
            "failed_commits": len(self.failures),
            "errors": [failure.to_dict() for failure in self.failures],
        }


@dataclass(slots=True)
class ProgramWriteResult:
    channels_written: int = 0
    buckets_written: int = 0
    programs_written: int = 0
    skipped: Counter = field(default_factory=Counter)
    commits: int = 0
    failures: list[CommitFailure] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "channels_written": self.channels_written,
            "buckets_written": self.buckets_written,
            "programs_written": self.programs_written,
            "skipped": dict(self.skipped),
            "commits": self.commits,
            "failed_commits": len(self.failures),
            "errors": [failure.to_dict() for failure in self.failures],
        }


@dataclass(slots=True)
class PurgeResult:
    collection: str
    deleted: int = 0
    pages: int = 0
    commits: int = 0
    failures: list[CommitFailure] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "collection": self.collection,
            "deleted": self.deleted,
            "pages": self.pages,
            "commits": self.commits,
            "failed_commits": len(self.failures),
            "errors": [failure.to_dict() for failure in self.failures],
        }


@dataclass(slots=True)
class CurateResult:
    source: str
    target: str
    scanned: int = 0
    copied: int = 0
    skipped_unknown: int = 0
    commits: int = 0
    failures: list[CommitFailure] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "target": self.target,
            "scanned": self.scanned,
            "copied": self.copied,
            "skipped_unknown": self.skipped_unknown,
            "commits": self.commits,
            "failed_commits": len(self.failures),
            "errors": [failure.to_dict() for failure in self.failures],
        }


@dataclass(slots=True)
class ScheduleEntry:
    """One channel of a day schedule, in the shape guide frontends consume."""
    channel_id: str
    channel_name: str
    icon: str | None
    programs: list[Program] = field(default_factory=list)

    def summary(self) -> dict[str, Any]:
        return {"id": self.channel_id, "name": self.channel_name, "image": self.icon}

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel": {"id": self.channel_id, "name": self.channel_name, "icon": self.icon},
            "programs": [
                {
                    "title": program.title,
                    "start": format_utc(program.start),
                    "end": format_utc(program.end),
                    "stop": format_utc(program.end),
                    "desc": program.truncated_description,
                    "icon": program.icon_url,
                }
                for program in self.programs
            ],
        }


@dataclass(slots=True)
class DaySchedule:
    day: DayKey
    entries: list[ScheduleEntry] = field(default_factory=list)

    @property
    def program_count(self) -> int:
        return sum(len(entry.programs) for entry in self.entries)

    def to_list(self) -> list[dict[str, Any]]:
        return [entry.to_dict() for entry in self.entries]


@dataclass(slots=True)
class PublishResult:
    day: DayKey
    path: str
    channels: list[dict[str, Any]]
    json_url: str | None = None
    cached: bool = False
    inline: list[dict[str, Any]] | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if self.json_url is None:
            return {"day": str(self.day), "channels": self.inline or [], "error": self.error}
        return {
            "day": str(self.day),
            "jsonUrl": self.json_url,
            "channels": self.channels,
            "cached": self.cached,
        }


__all__ = [
    "AcquireResult",
    "Channel",
    "ChannelCategory",
    "ChannelClassification",
    "ChannelWriteResult",
    "CommitFailure",
    "CurateResult",
    "DaySchedule",
    "IconMirrorResult",
    "ParseResult",
    "Program",
    "ProgramDetail",
    "ProgramWriteResult",
    "PublishResult",
    "PurgeResult",
    "RefreshResult",
    "ScheduleEntry",
]
