"""Object storage backend for a Cloudinary-compatible HTTPS API.

Uploads are signed: the request parameters are sorted, joined as
``k=v&k=v``, suffixed with the API secret and hashed with SHA-1. PDFs are
stored as ``raw`` resources under ``<folder>/<generated name>``; the
provider's ``public_id`` is the storage key.
"""
import asyncio
import hashlib
import logging
import re
import time
from typing import AsyncIterable, AsyncIterator, Optional

import aiohttp

from archive.services.errors import ArchiveError, NotFoundError, StorageUnavailableError, StorageWriteError
from archive.services.storage.base import (
    READ_CHUNK_SIZE,
    BlobStream,
    ByteRange,
    CountingStream,
    PutResult,
    StorageBackend,
    StorageProvider,
    check_range,
    generate_blob_name,
)

logger = logging.getLogger(__name__)

RESOURCE_TYPE = "raw"
_CONTENT_RANGE_TOTAL = re.compile(r"/(\d+)\s*$")


def sign_params(params: dict, api_secret: str) -> str:
    """SHA-1 request signature over the sorted parameters."""
    to_sign = "&".join(f"{k}={params[k]}" for k in sorted(params) if params[k] not in (None, ""))
    return hashlib.sha1(f"{to_sign}{api_secret}".encode("utf-8")).hexdigest()


def force_https(url: str) -> str:
    if url.startswith("http://"):
        return "https://" + url[len("http://"):]
    return url


class ObjectStorageBackend(StorageBackend):
    """Async client for the object store.

    Reads are proxied through the server by default; with
    ``delivery_mode="redirect"`` the routes send clients to ``direct_url``
    instead.
    """

    provider = StorageProvider.OBJECT_STORAGE

    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        api_url: str = "https://api.cloudinary.com",
        delivery_url: str = "https://res.cloudinary.com",
        folder: str = "",
        delivery_mode: str = "proxy",
        use_https: bool = True,
        timeout: float = 120,
    ):
        super().__init__()
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret
        self.api_url = api_url.rstrip("/")
        self.delivery_url = delivery_url.rstrip("/")
        self.folder = folder.strip("/")
        self.delivery_mode = delivery_mode
        self.use_https = use_https
        self._session: Optional[aiohttp.ClientSession] = None
        self._timeout = aiohttp.ClientTimeout(sock_connect=10, sock_read=timeout)

    async def connect(self) -> None:
        if not (self.cloud_name and self.api_key and self.api_secret):
            raise ValueError("Object storage credentials are not configured")
        if not self._session:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        self.available = True

    async def close(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None
        self.available = False

    def _http(self) -> aiohttp.ClientSession:
        if not self._session:
            raise StorageUnavailableError()
        return self._session

    def _api(self, action: str) -> str:
        return f"{self.api_url}/v1_1/{self.cloud_name}/{RESOURCE_TYPE}/{action}"

    def _object_url(self, storage_key: str, download: bool = False) -> str:
        flags = "fl_attachment/" if download else ""
        url = f"{self.delivery_url}/{self.cloud_name}/{RESOURCE_TYPE}/upload/{flags}{storage_key}"
        return force_https(url) if self.use_https else url

    def _signed(self, params: dict) -> dict:
        params = {**params, "timestamp": str(int(time.time()))}
        params["signature"] = sign_params(params, self.api_secret)
        params["api_key"] = self.api_key
        return params

    def direct_url(self, storage_key: str, download: bool = False) -> Optional[str]:
        if self.delivery_mode != "redirect":
            return None
        return self._object_url(storage_key, download=download)

    async def put(
        self,
        stream: AsyncIterable[bytes],
        suggested_name: str,
        content_type: str,
        expected_size: Optional[int] = None,
    ) -> PutResult:
        name = generate_blob_name(".pdf")
        public_id = f"{self.folder}/{name}" if self.folder else name
        counted = CountingStream(stream)

        form = aiohttp.FormData()
        for key, value in self._signed({"public_id": public_id}).items():
            form.add_field(key, value)
        form.add_field("file", counted, filename=name, content_type=content_type)

        try:
            async with self._http().post(self._api("upload"), data=form) as resp:
                payload = await _read_json(resp)
                if resp.status >= 400:
                    error = payload.get("error")
                    message = error.get("message", "") if isinstance(error, dict) else ""
                    logger.error("Object storage upload rejected (HTTP %d): %s", resp.status, message)
                    raise StorageWriteError(f"Object storage rejected the upload (HTTP {resp.status})")
        except BaseException as e:
            await self._discard(public_id)
            if isinstance(e, (aiohttp.ClientConnectionError, asyncio.TimeoutError)):
                raise StorageUnavailableError("Object storage is unreachable") from e
            if isinstance(e, Exception) and not isinstance(e, ArchiveError):
                raise StorageWriteError("Failed to upload file to object storage") from e
            raise

        storage_key = payload.get("public_id") or public_id
        stored = payload.get("bytes")
        if stored != counted.count or (expected_size is not None and counted.count != expected_size):
            await self._discard(storage_key)
            raise StorageWriteError("Stored size does not match the uploaded size")
        return PutResult(storage_key=storage_key, bytes_written=counted.count)

    async def _head(self, storage_key: str) -> Optional[int]:
        """Object length, or None when the object does not exist."""
        try:
            async with self._http().head(self._object_url(storage_key), allow_redirects=True) as resp:
                if resp.status == 404:
                    return None
                if resp.status >= 400:
                    raise StorageUnavailableError(f"Object storage returned HTTP {resp.status}")
                if resp.content_length is not None:
                    return resp.content_length
            # Chunked HEAD replies carry no length; ask for the first byte instead
            return await self._probe_length(storage_key)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise StorageUnavailableError("Object storage is unreachable") from e

    async def _probe_length(self, storage_key: str) -> Optional[int]:
        async with self._http().get(self._object_url(storage_key), headers={"Range": "bytes=0-0"}) as resp:
            if resp.status == 404:
                return None
            if resp.status in (206, 416):
                match = _CONTENT_RANGE_TOTAL.search(resp.headers.get("Content-Range", ""))
                if match:
                    return int(match.group(1))
            elif resp.status == 200:
                # Range ignored: the body is the whole object
                return len(await resp.read())
            raise StorageUnavailableError("Object storage did not report a length")

    async def get(self, storage_key: str, byte_range: Optional[ByteRange] = None) -> BlobStream:
        total = await self._head(storage_key)
        if total is None:
            raise NotFoundError("File not found in storage")
        check_range(byte_range, total)
        return BlobStream(
            stream=self._read(storage_key, byte_range, total),
            total_length=total,
            byte_range=byte_range,
        )

    async def _read(self, storage_key: str, byte_range: Optional[ByteRange], total: int) -> AsyncIterator[bytes]:
        headers = {}
        if byte_range:
            headers["Range"] = f"bytes={byte_range.start}-{byte_range.end}"
        remaining = byte_range.length if byte_range else total
        async with self._http().get(self._object_url(storage_key), headers=headers) as resp:
            if resp.status not in (200, 206):
                raise StorageUnavailableError(f"Object storage returned HTTP {resp.status}")
            # A 200 means the provider ignored the Range header
            skip = byte_range.start if byte_range and resp.status == 200 else 0
            async for chunk in resp.content.iter_chunked(READ_CHUNK_SIZE):
                if skip:
                    if len(chunk) <= skip:
                        skip -= len(chunk)
                        continue
                    chunk = chunk[skip:]
                    skip = 0
                chunk = chunk[:remaining]
                remaining -= len(chunk)
                yield chunk
                if remaining <= 0:
                    break

    async def delete(self, storage_key: str) -> bool:
        try:
            async with self._http().post(self._api("destroy"), data=self._signed({"public_id": storage_key})) as resp:
                payload = await _read_json(resp)
        except (ArchiveError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("Failed to destroy object %s: %s", storage_key, e)
            return False
        result = payload.get("result")
        if resp.status < 400 and result in ("ok", "not found"):
            return True
        logger.error("Object storage refused to destroy %s (HTTP %d, result=%s)", storage_key, resp.status, result)
        return False

    async def exists(self, storage_key: str) -> bool:
        return await self._head(storage_key) is not None

    async def _discard(self, public_id: str) -> None:
        if not await self.delete(public_id):
            logger.error("Partial object %s could not be removed", public_id)


async def _read_json(resp: aiohttp.ClientResponse) -> dict:
    try:
        payload = await resp.json(content_type=None)
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}
