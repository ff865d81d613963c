"""
Structured logging helpers for consistent log formatting.

Provides utilities for structured, clean logging without excessive decorative separators.
"""
import logging
from collections.abc import Mapping
from datetime import datetime, timezone


def log_section_start(logger: logging.Logger, section_name: str) -> None:
    """
    Log the start of a processing section.

    Args:
        logger: Logger instance
        section_name: Name of the section being started
    """
    logger.info("Starting: %s", section_name)


def log_section_end(logger: logging.Logger, section_name: str) -> None:
    """
    Log the end of a processing section.

    Args:
        logger: Logger instance
        section_name: Name of the section being ended
    """
    logger.info("Completed: %s", section_name)


def log_run_start(logger: logging.Logger, mode: str, day: object) -> None:
    """Log ingest run start."""
    logger.info("EPG %s run for %s started at %s", mode, day, datetime.now(timezone.utc).isoformat())


def log_run_end(logger: logging.Logger, mode: str, day: object, status: str) -> None:
    """Log ingest run end."""
    logger.info(
        "EPG %s run for %s finished with status %s at %s",
        mode,
        day,
        status,
        datetime.now(timezone.utc).isoformat(),
    )


def log_classification_summary(logger: logging.Logger, categories: Mapping[str, int]) -> None:
    """
    Log how many channels fell in each category.

    Args:
        logger: Logger instance
        categories: Category name -> channel count
    """
    summary = ", ".join(f"{name}={count}" for name, count in sorted(categories.items())) or "none"
    logger.info("Classification summary - %s", summary)


def log_storage_stats(
    logger: logging.Logger,
    total_channels: int,
    total_programs: int
) -> None:
    """
    Log storage statistics.

    Args:
        logger: Logger instance
        total_channels: Channels about to be stored
        total_programs: Programs about to be stored
    """
    logger.info("Storing data: %s channels, %s programs", total_channels, total_programs)
