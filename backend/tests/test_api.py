"""HTTP tests against the FastAPI app with the filesystem backend."""
import asyncio
import uuid

import pytest
from fastapi.testclient import TestClient

from archive import main
from archive.config import settings
from archive.database import async_session
from archive.main import app
from archive.models import FileRecord
from archive.services.storage.object_store import ObjectStorageBackend

from tests.support import make_pdf

FORM = {"semester": "S1", "type": "cours", "subject": "Algèbre", "year": "2024"}


@pytest.fixture
def client(upload_dir):
    with TestClient(app) as c:
        yield c


def upload(client, data: bytes, filename: str = "Cours Intro.pdf", content_type: str = "application/pdf", **form):
    return client.post(
        "/api/upload",
        files={"pdf": (filename, data, content_type)},
        data={**FORM, **form},
    )


def set_provider(file_id: str, provider: str) -> None:
    async def _update():
        async with async_session() as db:
            record = await db.get(FileRecord, uuid.UUID(file_id))
            record.storage_provider = provider
            await db.commit()

    asyncio.run(_update())


def test_upload_view_range_delete_scenario(client, upload_dir):
    data = make_pdf(10 * 1024)

    resp = upload(client, data)
    assert resp.status_code == 201
    body = resp.json()
    assert body["fileSize"] == 10240
    assert body["originalName"] == "Cours Intro.pdf"
    assert body["storageProvider"] == "local"
    assert body["mimeType"] == "application/pdf"
    file_id = body["id"]
    assert body["viewUrl"] == f"/api/files/{file_id}/view"
    assert body["downloadUrl"] == f"/api/files/{file_id}/download"
    assert len(list(upload_dir.iterdir())) == 1

    full = client.get(f"/api/files/{file_id}/view")
    assert full.status_code == 200
    assert full.content == data
    assert full.headers["accept-ranges"] == "bytes"
    assert full.headers["content-type"] == "application/pdf"
    assert full.headers["content-disposition"] == 'inline; filename="Cours Intro.pdf"'
    assert full.headers["x-content-type-options"] == "nosniff"
    assert "content-range" not in full.headers

    part = client.get(f"/api/files/{file_id}/view", headers={"Range": "bytes=0-99"})
    assert part.status_code == 206
    assert part.headers["content-length"] == "100"
    assert part.headers["content-range"] == "bytes 0-99/10240"
    assert part.content == data[:100]

    resp = client.delete(f"/api/files/{file_id}")
    assert resp.status_code == 200
    assert resp.json() == {"id": file_id, "databaseDeleted": True, "blobDeleted": True}
    assert list(upload_dir.iterdir()) == []

    resp = client.get(f"/api/files/{file_id}/view")
    assert resp.status_code == 404
    assert resp.json()["error"] == "not_found"


def test_download_uses_display_name(client):
    resp = upload(client, make_pdf(2048), filename="scan.pdf", displayName="Rapport Été")
    file_id = resp.json()["id"]
    assert resp.json()["originalName"] == "Rapport Été.pdf"

    resp = client.get(f"/api/files/{file_id}/download")
    assert resp.status_code == 200
    disposition = resp.headers["content-disposition"]
    assert disposition.startswith('attachment; filename="Rapport Ete.pdf"')
    assert "filename*=UTF-8''Rapport%20%C3%89t%C3%A9.pdf" in disposition


def test_stream_alias_and_suffix_range(client):
    data = make_pdf(4096)
    file_id = upload(client, data).json()["id"]

    resp = client.get(f"/api/files/{file_id}/stream", headers={"Range": "bytes=-96"})
    assert resp.status_code == 206
    assert resp.headers["content-range"] == "bytes 4000-4095/4096"
    assert resp.content == data[-96:]


def test_unsatisfiable_range(client):
    file_id = upload(client, make_pdf(10 * 1024)).json()["id"]

    resp = client.get(f"/api/files/{file_id}/view", headers={"Range": "bytes=20000-"})
    assert resp.status_code == 416
    assert resp.headers["content-range"] == "bytes */10240"
    assert resp.json()["error"] == "range_not_satisfiable"


def test_non_pdf_is_rejected(client, upload_dir):
    resp = upload(client, b"plain text", filename="notes.txt", content_type="text/plain")
    assert resp.status_code == 400
    assert resp.json()["error"] == "unsupported_media_type"
    assert list(upload_dir.iterdir()) == []


def test_missing_pdf_or_classification(client):
    resp = client.post("/api/upload", data=FORM)
    assert resp.status_code == 400
    assert resp.json()["error"] == "validation_error"

    resp = client.post(
        "/api/upload",
        files={"pdf": ("a.pdf", make_pdf(100), "application/pdf")},
        data={"semester": "S1", "type": "cours"},
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "missing_classification"

    resp = upload(client, make_pdf(100), semester="S9")
    assert resp.status_code == 400
    assert resp.json()["message"] == "Invalid semester"


def test_oversized_upload(client, upload_dir, monkeypatch):
    monkeypatch.setattr(settings, "MAX_UPLOAD_BYTES", 1000)

    resp = upload(client, make_pdf(5000))
    assert resp.status_code == 413
    assert resp.json()["error"] == "payload_too_large"
    assert list(upload_dir.iterdir()) == []
    assert client.get("/api/semesters").status_code == 200


def test_storage_unavailable(client):
    file_id = upload(client, make_pdf(100)).json()["id"]
    client.app.state.storage.available = False

    assert upload(client, make_pdf(100)).status_code == 503
    resp = client.get(f"/api/files/{file_id}/view")
    assert resp.status_code == 503
    assert resp.json()["error"] == "storage_unavailable"
    assert client.get("/api/health").json()["status"] == "degraded"


def test_invalid_and_unknown_file_ids(client):
    resp = client.get("/api/files/not-a-uuid/view")
    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_file_id"

    unknown = str(uuid.uuid4())
    assert client.get(f"/api/files/{unknown}/download").status_code == 404
    assert client.delete(f"/api/files/{unknown}").status_code == 404
    assert client.put(f"/api/files/{unknown}", json={"originalName": "x"}).status_code == 404


def test_update_renames_and_repoints(client):
    first = upload(client, make_pdf(300)).json()
    file_id = first["id"]

    resp = client.put(f"/api/files/{file_id}", json={"originalName": "../Nouveau nom", "year": "2023-2024"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["originalName"] == "Nouveau nom.pdf"
    assert body["yearId"] != first["yearId"]
    assert body["subjectId"] == first["subjectId"]

    info = client.get(f"/api/files/{file_id}/info").json()
    assert info["year"] == "2023-2024"
    assert info["semester"] == "S1"
    assert info["exists"] is True
    assert info["streamUrl"] == f"/api/files/{file_id}/stream"

    resp = client.put(f"/api/files/{file_id}", json={"year": "last year"})
    assert resp.status_code == 400


def test_hierarchy_listings(client):
    body = upload(client, make_pdf(300)).json()

    semesters = client.get("/api/semesters").json()
    assert [s["name"] for s in semesters] == ["S1", "S2", "S3", "S4", "S5"]
    assert semesters[0]["displayName"] == "Semestre 1"
    semester_id = semesters[0]["id"]
    assert semester_id == body["semesterId"]

    types = client.get(f"/api/semesters/{semester_id}/types").json()
    assert [(t["name"], t["displayName"]) for t in types] == [("cours", "Cours")]

    subjects = client.get(f"/api/semesters/{semester_id}/types/{body['typeId']}/subjects").json()
    assert [s["name"] for s in subjects] == ["Algèbre"]

    years = client.get(
        f"/api/semesters/{semester_id}/types/{body['typeId']}/subjects/{body['subjectId']}/years"
    ).json()
    assert [y["year"] for y in years] == ["2024"]

    files = client.get(f"/api/years/{body['yearId']}/files").json()
    assert [f["id"] for f in files] == [body["id"]]


def test_missing_blob_is_pruned_and_swept(client, upload_dir):
    kept = upload(client, make_pdf(300)).json()["id"]
    lost = upload(client, make_pdf(400)).json()["id"]
    gone = upload(client, make_pdf(500)).json()["id"]
    for path in upload_dir.iterdir():
        if path.stat().st_size != 300:
            path.unlink()

    assert client.get(f"/api/files/{lost}/view").status_code == 404
    assert client.get(f"/api/files/{lost}/info").status_code == 404

    resp = client.post("/api/maintenance/sweep")
    assert resp.status_code == 200
    assert resp.json() == {"checked": 2, "removed": 1, "errors": 0}
    assert client.get(f"/api/files/{gone}/info").status_code == 404
    assert client.get(f"/api/files/{kept}/info").status_code == 200


def test_redirect_delivery_for_object_storage(client):
    file_id = upload(client, make_pdf(300)).json()["id"]
    set_provider(file_id, "object-storage")
    client.app.state.storage = ObjectStorageBackend(
        "demo", "key", "secret", delivery_url="https://res.example.com", delivery_mode="redirect",
    )
    client.app.state.storage.available = True

    resp = client.get(f"/api/files/{file_id}/download", follow_redirects=False)
    assert resp.status_code == 307
    assert resp.headers["location"].startswith("https://res.example.com/demo/raw/upload/fl_attachment/")


def test_health(client):
    body = client.get("/api/health").json()
    assert body == {
        "status": "ok",
        "database": "connected",
        "storage": {"provider": "local", "available": True},
    }


def test_shutdown_stops_periodic_sweep_before_closing_storage(upload_dir, monkeypatch):
    storage_open_at_cancel = []

    async def idle_sweep_loop(sweep, interval):
        try:
            await asyncio.sleep(interval)
        except asyncio.CancelledError:
            storage_open_at_cancel.append(sweep.storage.available)
            raise

    monkeypatch.setattr(settings, "CLEANUP_SWEEP_INTERVAL", 3600)
    monkeypatch.setattr(main, "sweep_loop", idle_sweep_loop)

    with TestClient(app) as c:
        task = c.app.state.sweep_task
        assert task is not None and not task.done()

    assert task.done()
    assert storage_open_at_cancel == [True]
