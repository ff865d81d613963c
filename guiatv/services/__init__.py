"""
Services package for the EPG ingestion service

This package contains all business logic and service layer components.
"""
from guiatv.services.channel_classifier import classify, is_curated
from guiatv.services.db_service import (
    copy_curated_channels,
    purge_collection,
    resolve_channel_ids,
    write_channels,
    write_programs,
    write_programs_for_channel,
)
from guiatv.services.description_service import decompose
from guiatv.services.epg_fetch_service import EPGIngestPipeline, IngestResult, PipelineState
from guiatv.services.epg_query_service import build_day_schedule, list_channels, publish_schedule
from guiatv.services.feed_acquirer_service import FeedAcquirer
from guiatv.services.fetch_coordinator import FetchCoordinator
from guiatv.services.xmltv_parser_service import parse_epg, parse_epg_async

__all__ = [
    'EPGIngestPipeline',
    'FeedAcquirer',
    'FetchCoordinator',
    'IngestResult',
    'PipelineState',
    'build_day_schedule',
    'classify',
    'copy_curated_channels',
    'decompose',
    'is_curated',
    'list_channels',
    'parse_epg',
    'parse_epg_async',
    'publish_schedule',
    'purge_collection',
    'resolve_channel_ids',
    'write_channels',
    'write_programs',
    'write_programs_for_channel',
]
