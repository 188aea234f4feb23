"""Test helpers: PDF payloads, byte streams and a fake object store."""
import re
from typing import AsyncIterator

from aiohttp import web
from aiohttp.test_utils import TestServer

from archive.services.storage.object_store import sign_params


def make_pdf(size: int) -> bytes:
    """Deterministic PDF-looking payload of exactly ``size`` bytes."""
    header = b"%PDF-1.4\n"
    body = bytes((i * 7 + 3) % 256 for i in range(max(size - len(header), 0)))
    return (header + body)[:size]


async def stream_bytes(data: bytes, piece: int = 4096) -> AsyncIterator[bytes]:
    for i in range(0, len(data), piece):
        yield data[i:i + piece]


async def failing_stream(data: bytes, fail_after: int, piece: int = 512) -> AsyncIterator[bytes]:
    """Yield ``fail_after`` bytes, then fail like a dropped client connection."""
    sent = 0
    while sent < fail_after:
        chunk = data[sent:min(sent + piece, fail_after)]
        sent += len(chunk)
        yield chunk
    raise OSError("connection reset while reading upload")


class TrackingStream:
    """Records whether anything iterated over it."""

    def __init__(self, data: bytes):
        self.data = data
        self.consumed = False

    def __aiter__(self):
        self.consumed = True
        return stream_bytes(self.data)


async def collect(stream: AsyncIterator[bytes]) -> bytes:
    return b"".join([chunk async for chunk in stream])


class FakeObjectStore:
    """In-memory stand-in for the object storage upload/destroy/delivery API."""

    def __init__(self, cloud_name: str = "demo", api_key: str = "key", api_secret: str = "secret"):
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret
        self.objects: dict[str, bytes] = {}
        self.reject_uploads = False
        self.misreport_size = False
        self.chunked_head = False

        app = web.Application(client_max_size=64 * 1024 * 1024)
        app.router.add_post(f"/v1_1/{cloud_name}/raw/upload", self.upload)
        app.router.add_post(f"/v1_1/{cloud_name}/raw/destroy", self.destroy)
        app.router.add_get(f"/{cloud_name}/raw/upload/{{public_id:.+}}", self.fetch)
        self.server = TestServer(app)

    async def start(self) -> str:
        await self.server.start_server()
        return str(self.server.make_url("")).rstrip("/")

    async def close(self) -> None:
        await self.server.close()

    def _signed_ok(self, form) -> bool:
        params = {k: v for k, v in form.items() if k not in ("file", "api_key", "signature")}
        return (
            form.get("api_key") == self.api_key
            and form.get("signature") == sign_params(params, self.api_secret)
        )

    async def upload(self, request: web.Request) -> web.Response:
        form = await request.post()
        if not self._signed_ok(form):
            return web.json_response({"error": {"message": "Invalid Signature"}}, status=401)
        if self.reject_uploads:
            return web.json_response({"error": {"message": "Quota exceeded"}}, status=400)
        data = form["file"].file.read()
        public_id = form["public_id"]
        self.objects[public_id] = data
        return web.json_response({
            "public_id": public_id,
            "bytes": len(data) + (1 if self.misreport_size else 0),
            "resource_type": "raw",
            "secure_url": f"https://res.example/{self.cloud_name}/raw/upload/{public_id}",
        })

    async def destroy(self, request: web.Request) -> web.Response:
        form = await request.post()
        if not self._signed_ok(form):
            return web.json_response({"error": {"message": "Invalid Signature"}}, status=401)
        removed = self.objects.pop(form["public_id"], None)
        return web.json_response({"result": "ok" if removed is not None else "not found"})

    async def fetch(self, request: web.Request) -> web.Response:
        public_id = request.match_info["public_id"]
        if public_id.startswith("fl_attachment/"):
            public_id = public_id[len("fl_attachment/"):]
        data = self.objects.get(public_id)
        if data is None:
            return web.json_response({"error": {"message": "Resource not found"}}, status=404)
        if request.method == "HEAD" and self.chunked_head:
            resp = web.StreamResponse()
            resp.enable_chunked_encoding()
            await resp.prepare(request)
            return resp
        match = re.match(r"bytes=(\d+)-(\d+)$", request.headers.get("Range", ""))
        if match:
            start, end = int(match.group(1)), int(match.group(2))
            if start >= len(data):
                return web.Response(status=416, headers={"Content-Range": f"bytes */{len(data)}"})
            end = min(end, len(data) - 1)
            return web.Response(
                body=data[start:end + 1],
                status=206,
                headers={"Content-Range": f"bytes {start}-{end}/{len(data)}"},
            )
        return web.Response(body=data)
