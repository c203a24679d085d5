import asyncio
import hashlib
import logging
import shutil
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable

from .errors import ConversionError, UnsupportedConversion
from .formats import FormatToken, is_generic_label, normalize
from .interfaces import ConversionRequest, ConversionResult, SecurityGateway, StorageGateway
from .router import ConversionRouter

logger = logging.getLogger(__name__)

ChunkReader = Callable[[int], Awaitable[bytes]]

CHUNK_SIZE = 1024 * 1024


class JobStatus:
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class JobRecord:
    data: dict[str, object]

    @property
    def id(self) -> str:
        return str(self.data["id"])  # type: ignore[index]

    @property
    def status(self) -> str:
        return str(self.data.get("status", ""))


def _utc_stamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _declared_source(filename: str, source: str | None) -> str | None:
    if source and source.strip():
        return source
    if "." in filename:
        return filename.rsplit(".", 1)[-1]
    return None


async def _drain(reader: ChunkReader, sink: Callable[[bytes], object], max_upload_mb: int) -> int:
    """Feed every chunk from ``reader`` to ``sink``; return the byte count."""
    limit = max_upload_mb * 1024 * 1024
    total = 0
    while True:
        chunk = await reader(CHUNK_SIZE)
        if not chunk:
            break
        total += len(chunk)
        if total > limit:
            raise ValueError(f"upload exceeds {max_upload_mb} MB")
        sink(bytes(chunk))
    return total


async def read_limited(reader: ChunkReader, *, max_upload_mb: int) -> bytes:
    """Drain ``reader`` into memory, failing once the upload exceeds the limit."""
    parts: list[bytes] = []
    await _drain(reader, parts.append, max_upload_mb)
    return b"".join(parts)


async def _spool_to_file(reader: ChunkReader, path: Path, max_upload_mb: int) -> tuple[int, str]:
    digest = hashlib.sha256()

    def write(block: bytes) -> None:
        out.write(block)
        digest.update(block)

    with path.open("wb") as out:
        size = await _drain(reader, write, max_upload_mb)
    return size, digest.hexdigest()


def _new_job(job_id: str, filename: str, content_type: str, declared: str | None, target: FormatToken) -> dict[str, object]:
    stamp = _utc_stamp()
    record: dict[str, object] = dict(
        id=job_id,
        filename=filename,
        content_type=content_type or "application/octet-stream",
        size_bytes=0,
        status=JobStatus.QUEUED,
        progress=0,
        source=declared,
        target=target.value,
        resolved_source=None,
        output_format=None,
        input_uri=None,
        output_uri=None,
        checksum=None,
        access_token_hash=None,
        error=None,
        error_code=None,
        error_stage=None,
        created_at=stamp,
        updated_at=stamp,
        started_at=None,
        completed_at=None,
        failed_at=None,
    )
    return record


class ConversionService:
    """Job layer around the conversion router.

    Uploads are spooled to storage and queued; a pool of asyncio workers
    picks them up and runs the router in a thread. Token hashing and job
    persistence go through the security and storage gateways.
    """

    def __init__(
        self,
        storage: StorageGateway,
        security: SecurityGateway,
        router: ConversionRouter,
        *,
        workers: int = 4,
    ) -> None:
        self._storage = storage
        self._security = security
        self._router = router
        self._workers = workers
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._tasks: list[asyncio.Task] = []

    @property
    def queue(self) -> asyncio.Queue[str]:
        return self._queue

    async def start(self) -> None:
        self._tasks.extend(
            asyncio.create_task(self._worker_loop(f"worker-{n}")) for n in range(1, self._workers + 1)
        )
        logger.info("Started %d conversion workers", self._workers)

    async def stop(self) -> None:
        pending, self._tasks = self._tasks, []
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    async def convert_upload(
        self,
        reader: ChunkReader,
        *,
        target: str,
        source: str | None = None,
        filename: str = "",
        max_upload_mb: int,
    ) -> ConversionResult:
        """Read a whole upload and convert it right away, off the event loop."""
        payload = await read_limited(reader, max_upload_mb=max_upload_mb)
        request = ConversionRequest(
            payload=payload,
            declared_source=_declared_source(filename, source),
            target=target,
        )
        return await asyncio.to_thread(self._router.convert, request)

    def _precheck(self, declared: str | None, target: FormatToken) -> None:
        # generic labels are resolved by the worker once it sees the bytes
        if target is FormatToken.UNKNOWN:
            raise UnsupportedConversion(normalize(declared), target)
        if not is_generic_label(declared):
            src = normalize(declared)
            if not self._router.is_supported(src, target):
                raise UnsupportedConversion(src, target)

    async def create_job_from_upload(
        self,
        filename: str,
        content_type: str,
        reader: ChunkReader,
        *,
        target: str,
        source: str | None = None,
        max_upload_mb: int,
    ) -> tuple[JobRecord, str]:
        """Store an upload, queue a conversion job for it and return the job with its one-time token.

        Pairs that are known to be unsupported are rejected before anything is
        written to storage.
        """
        declared = _declared_source(filename, source)
        target_token = normalize(target)
        self._precheck(declared, target_token)

        job_id = str(uuid.uuid4())
        name = filename or "upload"
        suffix = Path(name).suffix
        paths = self._storage.job_paths(job_id, suffix)
        input_path = Path(paths.input_path)
        try:
            size, checksum = await _spool_to_file(reader, input_path, max_upload_mb)
        except ValueError:
            shutil.rmtree(paths.job_dir, ignore_errors=True)
            raise

        token = self._security.new_token()
        job = _new_job(job_id, name, content_type, declared, target_token)
        job.update(
            size_bytes=size,
            checksum=checksum,
            input_uri=str(input_path),
            access_token_hash=await asyncio.to_thread(self._security.hash_token, token),
        )
        self._storage.save_job(job)

        await self._queue.put(job_id)
        logger.info("Queued job %s (%s -> %s, %d bytes)", job_id, declared, target_token, size)
        return JobRecord(job), token

    def load_job(self, job_id: str) -> JobRecord:
        return JobRecord(self._storage.load_job(job_id))

    def verify_token(self, job: JobRecord, token: str) -> bool:
        return self._security.verify(str(job.data.get("access_token_hash") or ""), token)

    def _transition(self, job: dict[str, object], status: str, stamp_field: str, **fields: object) -> None:
        stamp = _utc_stamp()
        job.update(fields, status=status, updated_at=stamp)
        job[stamp_field] = stamp
        self._storage.save_job(job)

    async def _worker_loop(self, name: str) -> None:
        while True:
            job_id = await self._queue.get()
            try:
                await self._run_job(job_id)
            except Exception as e:
                logger.warning("%s: job %s failed: %s", name, job_id, e, exc_info=not isinstance(e, ConversionError))
                try:
                    self._record_failure(job_id, e)
                except Exception:
                    logger.exception("%s: could not record failure of job %s", name, job_id)
            finally:
                self._queue.task_done()

    async def _run_job(self, job_id: str) -> None:
        job = self._storage.load_job(job_id)
        self._transition(job, JobStatus.RUNNING, "started_at")

        payload = await asyncio.to_thread(Path(str(job["input_uri"])).read_bytes)
        request = ConversionRequest(
            payload=payload,
            declared_source=job.get("source"),  # type: ignore[arg-type]
            target=str(job["target"]),
        )
        result = await asyncio.to_thread(self._router.convert, request)

        out_dir = Path(self._storage.job_paths(job_id).output_dir)
        result_path = out_dir / f"result.{result.format.value}"
        await asyncio.to_thread(result_path.write_bytes, result.payload)

        self._transition(
            job,
            JobStatus.SUCCEEDED,
            "completed_at",
            progress=100,
            resolved_source=result.source.value,
            output_format=result.format.value,
            output_uri=str(result_path),
        )
        logger.info("Job %s succeeded (%s -> %s)", job_id, result.source, result.format)

    def _record_failure(self, job_id: str, error: Exception) -> None:
        try:
            job = self._storage.load_job(job_id)
        except FileNotFoundError:
            logger.error("Job %s vanished before its failure could be recorded", job_id)
            return
        details: dict[str, object] = {"error": str(error)}
        if isinstance(error, ConversionError):
            details.update(error_code=error.code, error_stage=error.stage)
        self._transition(job, JobStatus.FAILED, "failed_at", **details)
