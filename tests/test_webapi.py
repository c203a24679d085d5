"""HTTP API tests using FastAPI's TestClient with fake codec providers."""

import time

import pytest

pytest.importorskip("httpx")
pytest.importorskip("argon2")

from fastapi.testclient import TestClient

from docshift import webapi
from docshift.conversion.adapters import Argon2Security
from docshift.conversion.matrix import as_dict

from conftest import PNG_HEADER, build_router


@pytest.fixture
def client(tmp_path, fakes, monkeypatch):
    monkeypatch.setattr(webapi, "DATA_DIR", tmp_path)
    monkeypatch.setattr(webapi, "WORKERS", 1)
    monkeypatch.setattr(webapi, "build_default_router", lambda limits: build_router(fakes, limits=limits))
    monkeypatch.setattr(webapi, "Argon2Security", lambda: Argon2Security(time_cost=1, memory_cost=8))
    with TestClient(webapi.app) as c:
        yield c


def _wait_for(client, job_id, token, timeout=10.0):
    headers = {"Authorization": f"Bearer {token}"}
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get(f"/jobs/{job_id}", headers=headers).json()
        if body["status"] in ("succeeded", "failed"):
            return body
        time.sleep(0.05)
    raise AssertionError(f"job {job_id} did not finish")


# ---------------------------------------------------------------------------
# Capability endpoints
# ---------------------------------------------------------------------------


class TestFormats:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_matrix(self, client):
        resp = client.get("/formats")
        assert resp.status_code == 200
        assert resp.json() == as_dict()

    def test_pair_normalizes_aliases(self, client):
        assert client.get("/formats/PPT/pdf").json() == {"source": "pptx", "target": "pdf", "supported": True}

    def test_unsupported_pair(self, client):
        assert client.get("/formats/pptx/jpg").json()["supported"] is False

    def test_unknown_labels(self, client):
        assert client.get("/formats/exe/exe").json()["supported"] is False


# ---------------------------------------------------------------------------
# Synchronous conversion
# ---------------------------------------------------------------------------


class TestConvert:
    def test_txt_to_pdf(self, client):
        resp = client.post(
            "/convert",
            files={"file": ("hello.txt", b"Hello world", "text/plain")},
            data={"target": "pdf"},
        )
        assert resp.status_code == 200
        assert resp.content.startswith(b"%PDF")
        assert resp.headers["content-type"] == "application/pdf"
        assert resp.headers["x-source-format"] == "txt"
        assert resp.headers["x-target-format"] == "pdf"
        assert 'filename="hello.pdf"' in resp.headers["content-disposition"]

    def test_source_field_overrides_filename(self, client):
        resp = client.post(
            "/convert",
            files={"file": ("scan.dat", PNG_HEADER, "application/octet-stream")},
            data={"target": "jpg", "source": "bin"},
        )
        assert resp.status_code == 200
        assert resp.headers["x-source-format"] == "png"
        assert resp.content == b"RASTER:jpg"

    def test_unsupported_pair_is_415(self, client):
        resp = client.post(
            "/convert",
            files={"file": ("deck.pptx", b"PK\x03\x04", "application/octet-stream")},
            data={"target": "jpg"},
        )
        assert resp.status_code == 415
        detail = resp.json()["detail"]
        assert detail["code"] == "unsupported_conversion"
        assert detail["source"] == "pptx"
        assert detail["target"] == "jpg"

    def test_undetectable_upload_is_415(self, client):
        resp = client.post(
            "/convert",
            files={"file": ("upload", b"\x00\x01\x02\x03", "application/octet-stream")},
            data={"target": "pdf"},
        )
        assert resp.status_code == 415
        assert resp.json()["detail"]["code"] == "detection_inconclusive"

    def test_empty_text_is_422(self, client):
        resp = client.post("/convert", files={"file": ("empty.txt", b"", "text/plain")}, data={"target": "docx"})
        assert resp.status_code == 422
        assert resp.json()["detail"]["code"] == "empty_extraction"

    def test_too_large_is_413(self, client, monkeypatch):
        monkeypatch.setattr(webapi, "MAX_UPLOAD_MB", 0)
        resp = client.post("/convert", files={"file": ("a.txt", b"abc", "text/plain")}, data={"target": "pdf"})
        assert resp.status_code == 413
        assert resp.json()["detail"]["code"] == "payload_too_large"

    def test_target_is_required(self, client):
        resp = client.post("/convert", files={"file": ("a.txt", b"abc", "text/plain")})
        assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


class TestJobs:
    def _create(self, client, name="notes.txt", data=b"Hello world", target="docx"):
        resp = client.post("/jobs", files={"file": (name, data, "text/plain")}, data={"target": target})
        assert resp.status_code == 202
        return resp

    def test_job_flow(self, client):
        resp = self._create(client)
        body = resp.json()
        job_id = body["id"]
        assert body["status"] == "queued"
        assert body["target"] == "docx"
        assert resp.headers["location"] == f"/jobs/{job_id}"
        assert body["links"]["result"] == f"/jobs/{job_id}/result"

        status = _wait_for(client, job_id, body["access_token"])
        assert status["status"] == "succeeded"
        assert "access_token_hash" not in status

        result = client.get(f"/jobs/{job_id}/result", headers={"Authorization": f"Bearer {body['access_token']}"})
        assert result.status_code == 200
        assert result.content == b"DOCX:1"
        assert 'filename="notes.docx"' in result.headers["content-disposition"]
        assert result.headers["x-source-format"] == "txt"

    def test_failed_job_reports_error(self, client):
        body = self._create(client, name="blob.bin", data=b"\x00\x01\x02\x03", target="pdf").json()
        status = _wait_for(client, body["id"], body["access_token"])
        assert status["status"] == "failed"
        assert status["error_code"] == "detection_inconclusive"

        result = client.get(f"/jobs/{body['id']}/result", headers={"Authorization": f"Bearer {body['access_token']}"})
        assert result.status_code == 404
        assert result.json()["detail"]["code"] == "not_ready"

    def test_unsupported_job_is_415(self, client):
        resp = client.post("/jobs", files={"file": ("deck.pptx", b"PK\x03\x04", "x")}, data={"target": "jpg"})
        assert resp.status_code == 415

    def test_missing_token_is_401(self, client):
        job_id = self._create(client).json()["id"]
        assert client.get(f"/jobs/{job_id}").status_code == 401
        assert client.get(f"/jobs/{job_id}", headers={"Authorization": "Bearer short"}).status_code == 401
        assert client.get(f"/jobs/{job_id}", headers={"Authorization": "Basic abc"}).status_code == 401

    def test_wrong_token_is_403(self, client):
        job_id = self._create(client).json()["id"]
        other = Argon2Security().new_token()
        resp = client.get(f"/jobs/{job_id}", headers={"Authorization": f"Bearer {other}"})
        assert resp.status_code == 403

    def test_unknown_job_is_404(self, client):
        token = Argon2Security().new_token()
        resp = client.get("/jobs/no-such-job", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 404
