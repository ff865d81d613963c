"""
Network transfer utilities

This module handles feed downloads with retry logic and chunked streaming.
"""
import logging
import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import TypeVar

import httpx


logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_USER_AGENT = "guiatv-epg/0.1"


def create_http_client(timeout: float, transport: httpx.AsyncBaseTransport | None = None) -> httpx.AsyncClient:
    """HTTP client used for every feed request"""
    return httpx.AsyncClient(
        timeout=timeout,
        transport=transport,
        follow_redirects=True,
        headers={"User-Agent": DEFAULT_USER_AGENT},
    )


async def retry_transient(
    operation: Callable[[], Awaitable[T]],
    *,
    description: str,
    max_retries: int = 3,
    backoff_factor: float = 2.0
) -> T:
    """
    Run an HTTP operation with exponential backoff retry logic

    Retries on transient network errors (timeouts, connection errors) and
    5xx responses. Does NOT retry on 4xx HTTP errors (client errors).

    Args:
        operation: Zero-argument coroutine factory performing the request
        description: Human readable target used in log lines
        max_retries: Maximum number of attempts
        backoff_factor: Exponential backoff multiplier (wait = backoff_factor ^ attempt)

    Raises:
        httpx.HTTPError: If the operation fails after all retries
    """
    last_error: Exception | None = None

    for attempt in range(max_retries):
        try:
            return await operation()

        except (httpx.TimeoutException, httpx.TransportError) as e:
            # Transient network errors - retry
            last_error = e
            if attempt < max_retries - 1:
                wait_time = backoff_factor ** attempt
                logger.warning(
                    "Request to %s attempt %s/%s failed (transient error): %s. Retrying in %.1fs...",
                    description, attempt + 1, max_retries, type(e).__name__, wait_time,
                )
                await asyncio.sleep(wait_time)
            else:
                logger.error("Request to %s failed after %s attempts (transient error)", description, max_retries)

        except httpx.HTTPStatusError as e:
            # HTTP errors - don't retry on 4xx (client error), retry on 5xx (server error)
            if 400 <= e.response.status_code < 500:
                logger.error("HTTP %s (client error) from %s", e.response.status_code, description)
                raise

            last_error = e
            if attempt < max_retries - 1:
                wait_time = backoff_factor ** attempt
                logger.warning(
                    "Request to %s attempt %s/%s failed (HTTP %s server error). Retrying in %.1fs...",
                    description, attempt + 1, max_retries, e.response.status_code, wait_time,
                )
                await asyncio.sleep(wait_time)
            else:
                logger.error(
                    "Request to %s failed after %s attempts (HTTP %s)",
                    description, max_retries, e.response.status_code,
                )

    # If we exhausted all retries, raise the last error
    if last_error:
        raise last_error

    raise RuntimeError(f"Failed to fetch {description} after {max_retries} attempts")


async def download_text(client: httpx.AsyncClient, url: str) -> str:
    """Fetch a URL and return its body decoded as text."""
    logger.info("Downloading %s...", url)
    response = await client.get(url)
    response.raise_for_status()

    logger.info("Downloaded %.2f MB from %s", len(response.content) / (1024 * 1024), url)
    return response.text


async def download_bytes(client: httpx.AsyncClient, url: str) -> tuple[bytes, str | None]:
    """Fetch a URL and return its raw body and content type."""
    response = await client.get(url)
    response.raise_for_status()
    return response.content, response.headers.get("content-type")


async def stream_download(
    client: httpx.AsyncClient,
    url: str,
    chunk_size: int = 64 * 1024
) -> AsyncIterator[bytes]:
    """
    Yield the raw (still encoded) body of a URL chunk by chunk

    The next chunk is only read once the consumer asks for it, so a slow
    consumer throttles the download.
    """
    async with client.stream("GET", url) as response:
        response.raise_for_status()
        async for chunk in response.aiter_raw(chunk_size):
            if chunk:
                yield chunk


def sanitize_url_for_logging(url: str) -> str:
    """Remove credentials from URL for safe logging."""
    if "://" not in url:
        return url
    try:
        protocol, rest = url.split("://", 1)
        if "@" in rest:
            rest = rest.split("@", 1)[1]
            return f"{protocol}://***:***@{rest}"
        return url
    except (ValueError, IndexError):
        return url
