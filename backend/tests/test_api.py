"""API tests: routes, error mapping and organization scoping."""

from __future__ import annotations

import asyncio
import io
import zipfile

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import NullPool

from content_factory.db import Base, build_engine, build_session_factory, get_session
from content_factory.main import app

CSV = b"size,color\nS,Red\nM,Blue\n"


@pytest.fixture
def client(tmp_path):
    url = f"sqlite+aiosqlite:///{tmp_path / 'api.db'}"

    async def _create_schema() -> None:
        engine = build_engine(url)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await engine.dispose()

    asyncio.run(_create_schema())
    # NullPool: every request opens its connection on the client's own event loop.
    factory = build_session_factory(build_engine(url, poolclass=NullPool))

    async def _get_session():
        async with factory() as session:
            yield session

    app.dependency_overrides[get_session] = _get_session
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


def _project(client: TestClient, headers: dict | None = None) -> int:
    response = client.post(
        "/api/projects",
        json={"name": "Shirts", "template": "<p>{{size}}</p>", "title_template": "{{size}} {{color}} Shirt"},
        headers=headers or {},
    )
    assert response.status_code == 201
    project_id = response.json()["id"]
    upload = client.post(
        f"/api/projects/{project_id}/dataset",
        files={"file": ("shirts.csv", CSV, "text/csv")},
        headers=headers or {},
    )
    assert upload.status_code == 200
    return project_id


def test_ping(client: TestClient) -> None:
    assert client.get("/ping").json() == {"status": "ok"}


def test_generate_and_publish_flow(client: TestClient) -> None:
    project_id = _project(client)

    preview = client.post(f"/api/projects/{project_id}/preview-combinations").json()
    assert preview["estimated_combinations"] == 4

    generated = client.post(f"/api/projects/{project_id}/generate")
    assert generated.status_code == 200
    assert generated.json()["generated_count"] == 4

    listing = client.get(f"/api/projects/{project_id}/contents", params={"status": "pending"}).json()
    assert listing["total"] == 4
    assert {c["title"] for c in listing["contents"]} == {"S Red Shirt", "S Blue Shirt", "M Red Shirt", "M Blue Shirt"}

    job = client.post(f"/api/projects/{project_id}/publish", json={"delay_seconds": 0})
    assert job.status_code == 201
    job_id = job.json()["id"]
    assert job.json()["status"] == "pending"
    assert client.post(f"/api/projects/{project_id}/publish").status_code == 409
    assert client.get(f"/api/projects/{project_id}/active-publish-job").json()["id"] == job_id

    assert client.post(f"/api/publish-jobs/{job_id}/pause").json()["status"] == "paused"
    assert client.post(f"/api/publish-jobs/{job_id}/resume").json()["status"] == "pending"
    assert client.post(f"/api/publish-jobs/{job_id}/resume").status_code == 409
    assert client.delete(f"/api/publish-jobs/{job_id}").status_code == 409
    assert client.post(f"/api/publish-jobs/{job_id}/cancel").json()["status"] == "cancelled"
    assert client.get(f"/api/projects/{project_id}/active-publish-job").json() is None

    done = client.post(f"/api/projects/{project_id}/publish-sync", json={"delay_seconds": 0}).json()
    assert done["status"] == "completed"
    assert done["processed_count"] == done["total_contents"] == 4

    history = client.get(f"/api/projects/{project_id}/publish-jobs").json()
    assert [j["status"] for j in history] == ["completed", "cancelled"]

    stats = client.get("/api/stats/overall").json()
    assert stats["published_content"] == 4

    ids = [c["id"] for c in client.get(f"/api/projects/{project_id}/contents").json()["contents"]]
    assert client.post("/api/contents/unpublish", json={"content_ids": ids}).json() == {"unpublished": 4}


def test_exports(client: TestClient) -> None:
    project_id = _project(client)
    client.post(f"/api/projects/{project_id}/generate-sync")

    as_csv = client.get(f"/api/projects/{project_id}/export")
    as_json = client.get(f"/api/projects/{project_id}/export", params={"format": "json"})
    as_zip = client.get(f"/api/projects/{project_id}/export", params={"format": "html-zip"})

    assert as_csv.headers["content-type"].startswith("text/csv")
    assert len(as_csv.text.splitlines()) == 5
    assert len(as_json.json()) == 4
    assert len(zipfile.ZipFile(io.BytesIO(as_zip.content)).namelist()) == 5
    assert client.get(f"/api/projects/{project_id}/export", params={"format": "pdf"}).status_code == 422


def test_limit_exceeded_reports_estimate(client: TestClient, settings) -> None:
    project_id = _project(client)
    settings.max_combinations = 3

    response = client.post(f"/api/projects/{project_id}/generate")

    assert response.status_code == 422
    body = response.json()
    assert body["estimated_combinations"] == 4
    assert body["max_combinations"] == 3
    assert client.get(f"/api/projects/{project_id}/contents").json()["total"] == 0


def test_validation_and_not_found(client: TestClient) -> None:
    project_id = _project(client)

    assert client.post(f"/api/projects/{project_id}/publish", json={"delay_seconds": -1}).status_code == 422
    assert client.get("/api/projects/999").status_code == 404
    assert client.get("/api/publish-jobs/999").status_code == 404
    assert client.post("/api/projects/999/generate").status_code == 404
    bad = client.post(
        f"/api/projects/{project_id}/dataset",
        files={"file": ("empty.csv", b"size,color\n", "text/csv")},
    )
    assert bad.status_code == 400


def test_generate_without_rows_is_not_found(client: TestClient) -> None:
    project_id = client.post("/api/projects", json={"name": "Empty"}).json()["id"]

    assert client.post(f"/api/projects/{project_id}/generate").status_code == 404


def test_organization_header_scopes_projects(client: TestClient) -> None:
    project_id = _project(client, headers={"X-Organization-Id": "org-a"})

    assert client.get(f"/api/projects/{project_id}", headers={"X-Organization-Id": "org-a"}).status_code == 200
    assert client.get(f"/api/projects/{project_id}", headers={"X-Organization-Id": "org-b"}).status_code == 404
    assert client.get("/api/projects", headers={"X-Organization-Id": "org-b"}).json() == []


def test_unpublish_ignores_other_organizations_content(client: TestClient) -> None:
    org_a = {"X-Organization-Id": "org-a"}
    project_id = _project(client, headers=org_a)
    client.post(f"/api/projects/{project_id}/generate", headers=org_a)
    done = client.post(f"/api/projects/{project_id}/publish-sync", json={"delay_seconds": 0}, headers=org_a).json()
    assert done["status"] == "completed"
    ids = [c["id"] for c in client.get(f"/api/projects/{project_id}/contents", headers=org_a).json()["contents"]]

    foreign = client.post("/api/contents/unpublish", json={"content_ids": ids}, headers={"X-Organization-Id": "org-b"})
    assert foreign.json() == {"unpublished": 0}

    own = client.post("/api/contents/unpublish", json={"content_ids": ids}, headers=org_a)
    assert own.json() == {"unpublished": 4}


def test_scheduler_and_ops_routes(client: TestClient) -> None:
    status = client.get("/api/scheduler/status").json()
    assert status["running"] is False
    assert status["enabled"] is False
    assert client.post("/api/scheduler/start").json()["running"] is False

    assert client.post("/api/scheduler/jobs/publish_jobs/run").status_code == 404
    report = client.post("/api/ops/watchdog", params={"dry_run": "true"}).json()
    assert report == {"dry_run": True, "stuck_found": 0, "requeued": 0, "items": []}
