from __future__ import annotations

from pathlib import Path

from tubely.core.config import get_settings
from tubely.core.errors import ProbeFailure
from tubely.ingest.aspect import Geometry

from tests.conftest import fetch_video_url, seed_video

VIDEO_BYTES = b"\x00\x00\x00\x18ftypmp42" + b"\x02" * 2048


def _upload(client, video_id: str, headers: dict[str, str], *, content_type: str = "video/mp4"):
    return client.post(
        f"/v1/videos/{video_id}/upload",
        files={"video": ("boots.mp4", VIDEO_BYTES, content_type)},
        headers=headers,
    )


def _staging_root() -> Path:
    return Path(get_settings().staging_root)


def _staged_files() -> list[Path]:
    root = _staging_root()
    return list(root.iterdir()) if root.exists() else []


def test_v1_health_ok(client):
    resp = client.get("/v1/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_upload_flow_stores_video_and_returns_presigned_url(client, owner_headers, fake_probe):
    seed_video("vid-1", "user-owner")
    fake_probe.geometry = Geometry(width=1080, height=1920)

    resp = _upload(client, "vid-1", owner_headers)

    assert resp.status_code == 200, resp.text
    payload = resp.json()
    assert payload["id"] == "vid-1"
    assert payload["user_id"] == "user-owner"
    assert "expires=" in payload["video_url"]

    stored_reference = fetch_video_url("vid-1")
    assert stored_reference is not None
    assert "/portrait/" in stored_reference
    assert "expires=" not in stored_reference
    assert _staged_files() == []


def test_get_video_resolves_reference_for_owner(client, owner_headers):
    seed_video("vid-1", "user-owner")
    assert _upload(client, "vid-1", owner_headers).status_code == 200

    resp = client.get("/v1/videos/vid-1", headers=owner_headers)

    assert resp.status_code == 200
    assert resp.json()["video_url"].startswith(fetch_video_url("vid-1"))


def test_get_video_without_upload_has_no_url(client, owner_headers):
    seed_video("vid-2", "user-owner")
    resp = client.get("/v1/videos/vid-2", headers=owner_headers)
    assert resp.status_code == 200
    assert resp.json()["video_url"] is None


def test_get_video_never_returns_internal_references(client, owner_headers):
    seed_video("vid-3", "user-owner", video_url="file:///srv/elsewhere/landscape/k.mp4")
    resp = client.get("/v1/videos/vid-3", headers=owner_headers)
    assert resp.status_code == 200
    assert resp.json()["video_url"] is None


def test_get_video_for_stranger_is_forbidden(client, stranger_headers):
    seed_video("vid-1", "user-owner")
    resp = client.get("/v1/videos/vid-1", headers=stranger_headers)
    assert resp.status_code == 403


def test_upload_requires_authorization(client):
    seed_video("vid-1", "user-owner")
    resp = _upload(client, "vid-1", {})
    assert resp.status_code == 401


def test_upload_by_stranger_is_forbidden_and_stages_nothing(client, stranger_headers, fake_probe):
    seed_video("vid-1", "user-owner")

    resp = _upload(client, "vid-1", stranger_headers)

    assert resp.status_code == 403
    assert fake_probe.calls == []
    assert _staged_files() == []
    assert fetch_video_url("vid-1") is None


def test_upload_unknown_video_is_not_found(client, owner_headers):
    resp = _upload(client, "missing-video", owner_headers)
    assert resp.status_code == 404


def test_upload_wrong_content_type_is_bad_request(client, owner_headers, fake_probe):
    seed_video("vid-1", "user-owner")

    resp = _upload(client, "vid-1", owner_headers, content_type="image/png")

    assert resp.status_code == 400
    assert fake_probe.calls == []


def test_probe_failure_returns_generic_server_error(client, owner_headers, fake_probe):
    seed_video("vid-1", "user-owner")
    fake_probe.error = ProbeFailure("ffprobe exited with 1", diagnostics="moov atom not found")

    resp = _upload(client, "vid-1", owner_headers)

    assert resp.status_code == 500
    assert resp.json()["detail"] == "failed to analyze video file"
    assert "moov" not in resp.text
    assert _staged_files() == []
    assert fetch_video_url("vid-1") is None


def test_openapi_lists_video_routes(client):
    resp = client.get("/openapi.json")
    assert resp.status_code == 200
    paths = resp.json()["paths"]
    assert "/v1/videos/{video_id}/upload" in paths
    assert "/v1/health" in paths
