from unittest.mock import MagicMock

import pytest

requests = pytest.importorskip("requests")

from docshift.client import ApiError, DocshiftClient, filename_from_disposition


def _response(status_code=200, json_body=None, content=b"", headers=None, text=""):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = json_body
    resp.content = content
    resp.headers = headers or {}
    resp.text = text
    return resp


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def client(session, sleeps):
    return DocshiftClient("http://api.test/", session=session, attempts=3, backoff=0.5, sleep=sleeps.append)


class TestFilenameFromDisposition:
    def test_quoted(self):
        assert filename_from_disposition('attachment; filename="report.pdf"') == "report.pdf"

    def test_trailing_parameters(self):
        assert filename_from_disposition("attachment; filename=a.docx; size=10") == "a.docx"

    def test_missing(self):
        assert filename_from_disposition("") == "converted"
        assert filename_from_disposition("inline", default="x.bin") == "x.bin"


class TestRetries:
    def test_retries_transient_status_then_succeeds(self, client, session, sleeps):
        session.get.side_effect = [_response(404, text="nope"), _response(200, json_body={"status": "queued"})]
        assert client.job("j1", "tok") == {"status": "queued"}
        assert sleeps == [0.5]
        url = session.get.call_args.args[0]
        assert url == "http://api.test/jobs/j1"
        assert session.get.call_args.kwargs["headers"] == {"Authorization": "Bearer tok"}

    def test_gives_up_after_attempts(self, client, session, sleeps):
        session.get.return_value = _response(503, text="busy")
        with pytest.raises(ApiError) as exc_info:
            client.formats()
        assert exc_info.value.status_code == 503
        assert session.get.call_count == 3
        assert sleeps == [0.5, 0.75]

    def test_client_error_is_not_retried(self, client, session, sleeps):
        session.get.return_value = _response(403, text="forbidden")
        with pytest.raises(ApiError, match="403"):
            client.job("j1", "bad")
        assert session.get.call_count == 1
        assert sleeps == []

    def test_connection_errors_are_retried(self, client, session):
        session.get.side_effect = [requests.ConnectionError("refused"), _response(200, json_body={})]
        assert client.formats() == {}


class TestTargets:
    MATRIX = {"pptx": ["docx", "pdf", "txt"], "png": ["docx", "jpg", "pdf", "pptx"]}

    def test_known_extension(self, client, session):
        session.get.side_effect = [
            _response(json_body=self.MATRIX),
            _response(json_body={"source": "pptx", "target": "pptx", "supported": True}),
        ]
        assert client.targets_for("slides.PPT") == ["docx", "pdf", "txt"]
        assert session.get.call_args.args[0] == "http://api.test/formats/PPT/PPT"

    def test_unknown_extension_offers_everything(self, client, session):
        session.get.side_effect = [
            _response(json_body=self.MATRIX),
            _response(json_body={"source": "unknown", "target": "unknown", "supported": False}),
        ]
        assert client.targets_for("blob") == ["docx", "jpg", "pdf", "pptx", "txt"]
        assert session.get.call_args.args[0] == "http://api.test/formats/unknown/unknown"


class TestJobs:
    def test_start_job(self, client, session):
        session.post.return_value = _response(202, json_body={"id": "j1", "access_token": "t" * 43})
        assert client.start_job("a.txt", b"hi", None, "pdf") == ("j1", "t" * 43)
        kwargs = session.post.call_args.kwargs
        assert kwargs["files"] == {"file": ("a.txt", b"hi", "application/octet-stream")}
        assert kwargs["data"] == {"target": "pdf"}

    def test_start_job_rejected(self, client, session):
        session.post.return_value = _response(415, text="unsupported")
        with pytest.raises(ApiError) as exc_info:
            client.start_job("deck.pptx", b"PK", None, "jpg")
        assert exc_info.value.status_code == 415

    def test_start_job_connection_failure(self, client, session):
        session.post.side_effect = requests.ConnectionError("down")
        with pytest.raises(ApiError, match="Failed to connect"):
            client.start_job("a.txt", b"hi", "text/plain", "pdf")

    def test_download(self, client, session):
        session.get.return_value = _response(
            content=b"%PDF-1.7",
            headers={"content-disposition": 'attachment; filename="a.pdf"', "content-type": "application/pdf"},
        )
        result = client.download("j1", "tok")
        assert (result.content, result.filename, result.media_type) == (b"%PDF-1.7", "a.pdf", "application/pdf")
