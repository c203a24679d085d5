"""Small HTTP client for the docshift API, used by the operator UI."""

import logging
import time
from dataclasses import dataclass
from pathlib import Path

import requests

logger = logging.getLogger(__name__)

# Statuses worth another attempt: the job file may not be visible yet, or the
# server is briefly overloaded.
RETRYABLE = frozenset({404, 409, 423, 429})


class ApiError(Exception):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class Download:
    content: bytes
    filename: str
    media_type: str


def filename_from_disposition(header: str, default: str = "converted") -> str:
    _, sep, rest = header.partition("filename=")
    if not sep:
        return default
    name = rest.split(";", 1)[0].strip().strip('"')
    return name or default


class DocshiftClient:
    def __init__(
        self,
        base_url: str,
        *,
        session: requests.Session | None = None,
        attempts: int = 5,
        backoff: float = 0.5,
        sleep=time.sleep,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._http = session or requests.Session()
        self._attempts = attempts
        self._backoff = backoff
        self._sleep = sleep

    def _get(self, path: str, *, token: str | None = None, timeout: float = 30) -> requests.Response:
        headers = {"Authorization": f"Bearer {token}"} if token else None
        delay = self._backoff
        problem = ""
        status_code = None
        for attempt in range(self._attempts):
            if attempt:
                self._sleep(delay)
                delay *= 1.5
            try:
                resp = self._http.get(f"{self.base_url}{path}", headers=headers, timeout=timeout)
            except requests.RequestException as e:
                problem, status_code = str(e), None
                continue
            if resp.status_code == 200:
                return resp
            problem, status_code = f"{resp.status_code} {resp.text}", resp.status_code
            if resp.status_code < 500 and resp.status_code not in RETRYABLE:
                break
            logger.debug("GET %s returned %s, retrying", path, resp.status_code)
        raise ApiError(f"GET {path} failed: {problem}", status_code)

    def formats(self) -> dict[str, list[str]]:
        return self._get("/formats", timeout=10).json()

    def targets_for(self, filename: str) -> list[str]:
        """Targets offered for a file, judged by its extension.

        Extensions the API does not recognize get every known target; the
        server then decides by file signature.
        """
        matrix = self.formats()
        ext = Path(filename).suffix.lstrip(".") or "unknown"
        source = self._get(f"/formats/{ext}/{ext}", timeout=10).json().get("source", ext)
        if source in matrix:
            return list(matrix[source])
        return sorted({t for targets in matrix.values() for t in targets})

    def start_job(self, filename: str, content: bytes, content_type: str | None, target: str) -> tuple[str, str]:
        files = {"file": (filename, content, content_type or "application/octet-stream")}
        try:
            resp = self._http.post(f"{self.base_url}/jobs", files=files, data={"target": target}, timeout=60)
        except requests.RequestException as e:
            raise ApiError(f"Failed to connect to API: {e}") from e
        if resp.status_code != 202:
            raise ApiError(f"Upload failed: {resp.status_code} {resp.text}", resp.status_code)
        body = resp.json()
        return str(body["id"]), str(body["access_token"])

    def job(self, job_id: str, token: str) -> dict[str, object]:
        return self._get(f"/jobs/{job_id}", token=token).json()

    def download(self, job_id: str, token: str) -> Download:
        resp = self._get(f"/jobs/{job_id}/result", token=token, timeout=60)
        return Download(
            content=resp.content,
            filename=filename_from_disposition(resp.headers.get("content-disposition", "")),
            media_type=resp.headers.get("content-type", "application/octet-stream"),
        )
