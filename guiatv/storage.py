"""
Local filesystem object store

Implements the ObjectStore contract with files under a root directory.
Blob content type and upload time are kept in a JSON sidecar next to each
blob. Signed URLs are HMAC-SHA256 signed and carry their own expiry.
"""
from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import logging
import time
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Any
from urllib.parse import quote, urlencode

import aiofiles
import aiofiles.os

from guiatv.exceptions import ObjectNotFoundError

logger = logging.getLogger(__name__)

_METADATA_SUFFIX = ".metadata.json"
_PARTIAL_SUFFIX = ".part"


class _FileBlobWriter:
    def __init__(self, handle) -> None:
        self._handle = handle
        self.bytes_written = 0

    async def write(self, data: bytes) -> None:
        await self._handle.write(data)
        self.bytes_written += len(data)


class LocalObjectStore:
    """Object store rooted at a local directory."""

    def __init__(self, root: str | Path, *, base_url: str = "", signing_secret: str = "") -> None:
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")
        self._signing_secret = signing_secret.encode("utf-8")

    def _resolve(self, path: str) -> Path:
        relative = PurePosixPath(path)
        if relative.is_absolute() or ".." in relative.parts or not relative.parts:
            raise ValueError(f"Invalid object path: '{path}'")
        return self.root.joinpath(*relative.parts)

    def _metadata_file(self, target: Path) -> Path:
        return target.with_name(target.name + _METADATA_SUFFIX)

    def public_url(self, path: str) -> str:
        if self.base_url:
            return f"{self.base_url}/{quote(path)}"
        return self._resolve(path).resolve().as_uri()

    async def _write_metadata(self, target: Path, content_type: str, size: int) -> None:
        metadata = {
            "contentType": content_type,
            "size": size,
            "updated": datetime.now(timezone.utc).isoformat(),
        }
        async with aiofiles.open(self._metadata_file(target), "w", encoding="utf-8") as handle:
            await handle.write(json.dumps(metadata))

    async def exists(self, path: str) -> bool:
        return await aiofiles.os.path.isfile(self._resolve(path))

    async def upload(self, path: str, data: bytes, *, content_type: str = "application/octet-stream") -> str:
        target = self._resolve(path)
        await aiofiles.os.makedirs(target.parent, exist_ok=True)

        async with aiofiles.open(target, "wb") as handle:
            await handle.write(data)
        await self._write_metadata(target, content_type, len(data))

        logger.info("Uploaded %s (%.2f MB)", path, len(data) / 1024 / 1024)
        return self.public_url(path)

    async def download(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            async with aiofiles.open(target, "rb") as handle:
                content = await handle.read()
        except FileNotFoundError as exc:
            raise ObjectNotFoundError(path) from exc

        logger.debug("Downloaded %s (%s bytes)", path, len(content))
        return content

    async def delete(self, path: str) -> None:
        target = self._resolve(path)
        try:
            await aiofiles.os.remove(target)
        except FileNotFoundError as exc:
            raise ObjectNotFoundError(path) from exc

        metadata_file = self._metadata_file(target)
        if await aiofiles.os.path.isfile(metadata_file):
            await aiofiles.os.remove(metadata_file)
        logger.info("Deleted %s", path)

    async def get_metadata(self, path: str) -> dict[str, Any]:
        target = self._resolve(path)
        try:
            stat = await aiofiles.os.stat(target)
        except FileNotFoundError as exc:
            raise ObjectNotFoundError(path) from exc

        metadata: dict[str, Any] = {
            "name": path,
            "size": stat.st_size,
            "updated": datetime.fromtimestamp(stat.st_mtime, timezone.utc).isoformat(),
            "contentType": "application/octet-stream",
        }
        metadata_file = self._metadata_file(target)
        if await aiofiles.os.path.isfile(metadata_file):
            async with aiofiles.open(metadata_file, "r", encoding="utf-8") as handle:
                metadata.update(json.loads(await handle.read()))
        metadata["size"] = stat.st_size
        return metadata

    async def list(self, prefix: str = "") -> list[str]:
        if not await aiofiles.os.path.isdir(self.root):
            return []
        return await asyncio.to_thread(self._list_sync, prefix)

    def _list_sync(self, prefix: str) -> list[str]:
        paths = []
        for candidate in self.root.rglob("*"):
            if not candidate.is_file():
                continue
            if candidate.name.endswith((_METADATA_SUFFIX, _PARTIAL_SUFFIX)):
                continue
            relative = candidate.relative_to(self.root).as_posix()
            if relative.startswith(prefix):
                paths.append(relative)
        return sorted(paths)

    async def signed_url(self, path: str, ttl_minutes: int = 60) -> str:
        if not await self.exists(path):
            raise ObjectNotFoundError(path)
        expires = int(time.time()) + ttl_minutes * 60
        signature = self.sign(path, expires)
        query = urlencode({"expires": expires, "signature": signature})
        return f"{self.public_url(path)}?{query}"

    def sign(self, path: str, expires: int) -> str:
        message = f"{path}:{expires}".encode("utf-8")
        return hmac.new(self._signing_secret, message, hashlib.sha256).hexdigest()

    def verify_signature(self, path: str, expires: int, signature: str, *, now: float | None = None) -> bool:
        current = time.time() if now is None else now
        if expires < current:
            return False
        return hmac.compare_digest(self.sign(path, expires), signature)

    @asynccontextmanager
    async def open_writer(
        self,
        path: str,
        *,
        content_type: str = "application/octet-stream",
    ) -> AsyncIterator[_FileBlobWriter]:
        """
        Stream a blob into the store

        Data goes to a partial file that replaces the target only when the
        block exits cleanly, so a failed stream never leaves a truncated blob.
        """
        target = self._resolve(path)
        partial = target.with_name(target.name + _PARTIAL_SUFFIX)
        await aiofiles.os.makedirs(target.parent, exist_ok=True)

        try:
            async with aiofiles.open(partial, "wb") as handle:
                writer = _FileBlobWriter(handle)
                yield writer
        except BaseException:
            if await aiofiles.os.path.isfile(partial):
                await aiofiles.os.remove(partial)
            raise

        await aiofiles.os.replace(partial, target)
        await self._write_metadata(target, content_type, writer.bytes_written)
        logger.info("Stored %s via stream (%s bytes)", path, writer.bytes_written)
