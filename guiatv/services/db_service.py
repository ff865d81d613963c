"""
Document store operations for EPG data

This module contains all write operations for channels and program buckets.
Every write is flushed in chunks no larger than the store's per-commit cap.
A failed chunk is logged and recorded; the remaining chunks still run.
"""
import logging
from collections.abc import Iterable, Sequence
from time import perf_counter
from typing import Any

from guiatv.services.channel_classifier import classify
from guiatv.services.description_service import decompose
from guiatv.services.fetch_types import (
    Channel,
    ChannelCategory,
    ChannelWriteResult,
    CommitFailure,
    CurateResult,
    Program,
    ProgramWriteResult,
    PurgeResult,
)
from guiatv.stores import MAX_BATCH_OPERATIONS, DocumentStore, Operation
from guiatv.utils.day_key import DateFormatError, DayKey, day_key_from_bucket_field, parse_iso8601_to_utc


logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 500


def chunked(items: Sequence[Any], size: int) -> list[Sequence[Any]]:
    """Split a sequence into consecutive chunks of at most `size` items"""
    if size <= 0:
        raise ValueError("chunk size must be > 0")
    return [items[start:start + size] for start in range(0, len(items), size)]


async def commit_in_chunks(
    store: DocumentStore,
    collection: str,
    operations: Sequence[Operation],
    *,
    batch_limit: int = MAX_BATCH_OPERATIONS,
) -> tuple[int, list[tuple[int, Sequence[Operation], CommitFailure]]]:
    """
    Commit operations sequentially in chunks of at most `batch_limit`

    Returns:
        Tuple of (successful commit count, failed chunks as (index, operations, failure))
    """
    chunk_size = min(batch_limit, MAX_BATCH_OPERATIONS)
    commits = 0
    failed: list[tuple[int, Sequence[Operation], CommitFailure]] = []

    for chunk_index, chunk in enumerate(chunked(list(operations), chunk_size), start=1):
        started = perf_counter()
        try:
            await store.batch_commit(collection, list(chunk))
        except Exception as exc:
            logger.error(
                "Chunk %s (%s operations) on %s failed: %s",
                chunk_index,
                len(chunk),
                collection,
                exc,
                exc_info=True,
            )
            failed.append((
                chunk_index,
                chunk,
                CommitFailure(
                    collection=collection,
                    chunk_index=chunk_index,
                    operations=len(chunk),
                    error=str(exc),
                ),
            ))
            continue

        commits += 1
        logger.debug(
            "Chunk %s persisted on %s: operations=%s, time=%.2fs",
            chunk_index,
            collection,
            len(chunk),
            perf_counter() - started,
        )

    return commits, failed


async def load_channel_ids(
    store: DocumentStore,
    collection: str,
    *,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> dict[str, str]:
    """
    Read every stored channel name and its id

    Returns:
        Mapping of channel name -> document id (first document wins on duplicates)
    """
    channel_ids: dict[str, str] = {}
    cursor: str | None = None

    while True:
        page = await store.query(collection, page_size=page_size, cursor=cursor)
        for document in page.documents:
            name = document.data.get("name")
            if name and name not in channel_ids:
                channel_ids[name] = document.id
        if page.next_cursor is None:
            break
        cursor = page.next_cursor

    logger.debug("Loaded %s existing channel names from %s", len(channel_ids), collection)
    return channel_ids


async def resolve_channel_ids(
    store: DocumentStore,
    names: Iterable[str],
    collection: str,
) -> dict[str, str]:
    """Ids of already stored channels among `names`"""
    wanted = set(names)
    existing = await load_channel_ids(store, collection)
    return {name: channel_id for name, channel_id in existing.items() if name in wanted}


async def write_channels(
    store: DocumentStore,
    channels: Sequence[Channel],
    collection: str,
    *,
    batch_limit: int = MAX_BATCH_OPERATIONS,
) -> ChannelWriteResult:
    """
    Create channels whose name is not stored yet

    Existing names are skipped entirely, so repeated runs never create
    duplicates (and never refresh an existing channel's image or category).

    Args:
        store: Document store
        channels: Channels in feed order
        collection: Target collection

    Returns:
        ChannelWriteResult whose id_map holds only the newly created channels
    """
    result = ChannelWriteResult()
    channel_list = list(channels)
    if not channel_list:
        logger.debug("No channels to store")
        return result

    existing_names = set(await load_channel_ids(store, collection))

    staged: list[Operation] = []
    staged_names: dict[str, str] = {}
    for channel in channel_list:
        if channel.name in existing_names:
            result.skipped_existing += 1
            continue
        if channel.name in staged_names:
            continue

        channel_id = store.allocate_id(collection)
        staged_names[channel.name] = channel_id
        staged.append(Operation.create(channel_id, channel.to_document()))
        logger.debug("Staging channel %s with ID %s", channel.name, channel_id)

    logger.info(
        "Storing %s new channels in %s (%s already present)",
        len(staged),
        collection,
        result.skipped_existing,
    )

    commits, failed = await commit_in_chunks(store, collection, staged, batch_limit=batch_limit)
    result.commits = commits

    failed_ids: set[str] = set()
    for _, chunk, failure in failed:
        result.failures.append(failure)
        failed_ids.update(operation.document_id for operation in chunk)

    result.id_map = {
        name: channel_id for name, channel_id in staged_names.items() if channel_id not in failed_ids
    }
    result.created = len(result.id_map)
    for channel in channel_list:
        if channel.id is None and channel.name in result.id_map:
            channel.id = result.id_map[channel.name]

    logger.info("Channel store complete: %s created, %s failed chunks", result.created, len(result.failures))
    return result


def group_by_day(programs: Iterable[Program]) -> dict[DayKey, list[Program]]:
    """Group programs by the day of their start, preserving order"""
    buckets: dict[DayKey, list[Program]] = {}
    for program in programs:
        buckets.setdefault(program.day_key, []).append(program)
    return buckets


def build_program_documents(channel_id: str, programs: Sequence[Program]) -> list[dict[str, Any]]:
    """Program documents for one bucket; details come from the untruncated description"""
    documents = []
    for program in programs:
        program.channel_id = channel_id
        details = decompose(
            program.raw_description,
            program.start,
            program.end,
            title=program.title,
            image=program.icon_url,
        )
        documents.append(program.to_document(details))
    return documents


async def write_programs_for_channel(
    store: DocumentStore,
    channel_id: str,
    programs_by_bucket: dict[DayKey, Sequence[Program]],
    collection: str,
    *,
    batch_limit: int = MAX_BATCH_OPERATIONS,
) -> tuple[int, int, int, list[CommitFailure]]:
    """
    Overwrite the day buckets of one channel

    Each bucket becomes one field update replacing its previous content.

    Returns:
        Tuple of (commits, buckets written, programs written, failures)
    """
    operations: list[Operation] = []
    bucket_sizes: list[int] = []
    for day, programs in programs_by_bucket.items():
        operations.append(Operation.update(channel_id, {day.bucket_field: build_program_documents(channel_id, programs)}))
        bucket_sizes.append(len(programs))

    commits, failed = await commit_in_chunks(store, collection, operations, batch_limit=batch_limit)

    failed_indexes: set[int] = set()
    chunk_size = min(batch_limit, MAX_BATCH_OPERATIONS)
    for chunk_index, chunk, _ in failed:
        first = (chunk_index - 1) * chunk_size
        failed_indexes.update(range(first, first + len(chunk)))

    written_sizes = [size for index, size in enumerate(bucket_sizes) if index not in failed_indexes]
    return commits, len(written_sizes), sum(written_sizes), [failure for _, _, failure in failed]


async def write_programs(
    store: DocumentStore,
    programs_by_channel: dict[str, Sequence[Program]],
    id_map: dict[str, str],
    collection: str,
    *,
    batch_limit: int = MAX_BATCH_OPERATIONS,
) -> ProgramWriteResult:
    """
    Store programs of every channel into its day buckets

    Channels missing from `id_map` are skipped with a warning and their
    programs are dropped for this run.
    """
    result = ProgramWriteResult()

    for channel_name, programs in programs_by_channel.items():
        channel_id = id_map.get(channel_name)
        if not channel_id:
            logger.warning(
                "Channel %s has no stored ID; its %s programs will not be saved",
                channel_name,
                len(programs),
            )
            result.skipped["unresolved_channel"] += len(programs)
            continue

        buckets = group_by_day(programs)
        commits, buckets_written, written, failures = await write_programs_for_channel(
            store,
            channel_id,
            buckets,
            collection,
            batch_limit=batch_limit,
        )
        result.commits += commits
        result.failures.extend(failures)
        if failures:
            result.skipped["failed_commit"] += len(programs) - written
        if buckets_written:
            result.channels_written += 1
            result.buckets_written += buckets_written
            result.programs_written += written
        logger.debug("Stored %s programs for channel %s (ID: %s)", written, channel_name, channel_id)

    logger.info(
        "Program store complete: %s programs across %s channels, skipped=%s",
        result.programs_written,
        result.channels_written,
        dict(result.skipped) or "none",
    )
    return result


async def purge_collection(
    store: DocumentStore,
    collection: str,
    *,
    page_size: int = DEFAULT_PAGE_SIZE,
    batch_limit: int = MAX_BATCH_OPERATIONS,
) -> PurgeResult:
    """
    Delete every document of a collection page by page

    Paging stops at the first empty page, or after a page whose deletes
    failed so the same documents are not re-read forever.
    """
    result = PurgeResult(collection=collection)

    while True:
        page = await store.query(collection, page_size=page_size)
        if page.empty:
            break
        result.pages += 1

        operations = [Operation.delete(document.id) for document in page.documents]
        commits, failed = await commit_in_chunks(store, collection, operations, batch_limit=batch_limit)
        result.commits += commits
        result.deleted += len(operations) - sum(len(chunk) for _, chunk, _ in failed)

        if failed:
            result.failures.extend(failure for _, _, failure in failed)
            logger.error("Stopping purge of %s after failed deletes on page %s", collection, result.pages)
            break

    logger.info("Purged %s documents from %s in %s pages", result.deleted, collection, result.pages)
    return result


def curate_program(program: dict[str, Any]) -> dict[str, Any]:
    """Program document as stored in the curated collection"""
    details = program.get("details")
    if not isinstance(details, dict):
        start = end = None
        try:
            start = parse_iso8601_to_utc(program.get("start") or "")
            end = parse_iso8601_to_utc(program.get("end") or "")
        except DateFormatError:
            logger.debug("Program %s has unreadable times", program.get("title"))
        details = decompose(
            program.get("description"),
            start,
            end,
            title=program.get("title") or "",
            image=program.get("icon"),
        ).to_document()

    return {
        **details,
        "start": program.get("start"),
        "end": program.get("end"),
    }


def curate_channel(data: dict[str, Any]) -> dict[str, Any] | None:
    """Classified copy of a stored channel, or None when it does not qualify"""
    classification = classify(data.get("name") or "")
    if classification.category is ChannelCategory.UNKNOWN:
        return None

    curated = {key: value for key, value in data.items() if key != "region"}
    curated.update(classification.to_document())
    for key, value in data.items():
        if day_key_from_bucket_field(key) is not None and isinstance(value, list):
            curated[key] = [curate_program(program) for program in value if isinstance(program, dict)]
    return curated


async def copy_curated_channels(
    store: DocumentStore,
    source: str,
    target: str,
    *,
    page_size: int = 10,
    batch_limit: int = MAX_BATCH_OPERATIONS,
) -> CurateResult:
    """
    Copy classified channels, with their program buckets, into the curated collection

    Unknown channels are left out. Each source page is committed before the
    next one is read.
    """
    result = CurateResult(source=source, target=target)
    cursor: str | None = None

    while True:
        page = await store.query(source, page_size=page_size, cursor=cursor)
        if page.empty:
            break

        operations: list[Operation] = []
        for document in page.documents:
            result.scanned += 1
            curated = curate_channel(document.data)
            if curated is None:
                result.skipped_unknown += 1
                continue
            curated["sourceId"] = document.id
            operations.append(Operation.create(store.allocate_id(target), curated))

        commits, failed = await commit_in_chunks(store, target, operations, batch_limit=batch_limit)
        result.commits += commits
        result.copied += len(operations) - sum(len(chunk) for _, chunk, _ in failed)
        result.failures.extend(failure for _, _, failure in failed)

        if page.next_cursor is None:
            break
        cursor = page.next_cursor

    logger.info(
        "Curated copy %s -> %s: %s scanned, %s copied, %s unknown",
        source,
        target,
        result.scanned,
        result.copied,
        result.skipped_unknown,
    )
    return result
