import logging
import os
import re
from pathlib import Path

from fastapi import FastAPI, File, Form, Header, HTTPException, UploadFile, status
from fastapi.responses import JSONResponse, Response

from docshift.conversion import (
    CAPABILITY_MATRIX,
    CodecFailure,
    ConversionError,
    ConversionLimits,
    ConversionService,
    EmptyExtraction,
    FormatToken,
    UnsupportedConversion,
    is_supported,
    normalize,
)
from docshift.conversion.adapters import Argon2Security, LocalStorage, build_default_router
from docshift.conversion.formats import media_type
from docshift.conversion.matrix import as_dict

app = FastAPI(
    title="docshift",
    version=os.getenv("DOC_SERVICE_VERSION", "0.1.0"),
    description=(
        "RESTful API for converting documents, spreadsheets and images "
        "between PDF, DOCX, PPTX, XLSX, CSV, TXT, JPG and PNG."
    ),
)

logger = logging.getLogger(__name__)

# Global configuration defaults
MAX_UPLOAD_MB = int(os.getenv("MAX_UPLOAD_MB", "300"))
DATA_DIR = Path(os.getenv("DATA_DIR", "./data")).resolve()
WORKERS = int(os.getenv("WORKERS", "4"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LIMITS = ConversionLimits(
    document_page_max_chars=int(os.getenv("PDF_PAGE_MAX_CHARS", "5000")),
    plain_text_page_max_chars=int(os.getenv("PDF_TEXT_PAGE_MAX_CHARS", "2000")),
    lines_per_slide=int(os.getenv("SLIDE_LINES_PER_SLIDE", "12")),
)

SERVICE: ConversionService | None = None

_TOKEN_RE = re.compile(r"[A-Za-z0-9_-]+={0,2}")


def _conversion_http_error(e: ConversionError) -> HTTPException:
    if isinstance(e, UnsupportedConversion):
        code = status.HTTP_415_UNSUPPORTED_MEDIA_TYPE
    elif isinstance(e, (EmptyExtraction, CodecFailure)):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail=e.to_detail())


def _too_large(e: ValueError) -> HTTPException:
    return HTTPException(status_code=413, detail={"code": "payload_too_large", "message": str(e)})


def _validate_bearer_token(auth_header: str | None) -> str:
    if not auth_header:
        raise HTTPException(status_code=401, detail={"code": "unauthorized", "message": "missing bearer token"})
    scheme, _, rest = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not rest:
        raise HTTPException(status_code=401, detail={"code": "unauthorized", "message": "missing bearer token"})
    raw_token = rest.strip()
    if not _TOKEN_RE.fullmatch(raw_token):
        raise HTTPException(status_code=401, detail={"code": "unauthorized", "message": "malformed token"})
    token = raw_token.rstrip("=")
    # 32-byte capability token, unpadded base64url
    if len(token) != 43:
        raise HTTPException(status_code=401, detail={"code": "unauthorized", "message": "malformed token"})
    return token


def _service() -> ConversionService:
    if SERVICE is None:
        raise HTTPException(status_code=503, detail={"code": "not_ready", "message": "service is starting"})
    return SERVICE


def _authorized_job(job_id: str, authorization: str | None) -> dict[str, object]:
    token = _validate_bearer_token(authorization)
    service = _service()
    try:
        job_rec = service.load_job(job_id)
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "job not found"})
    if not service.verify_token(job_rec, token):
        raise HTTPException(status_code=403, detail={"code": "forbidden", "message": "invalid token"})
    return job_rec.data


def _download_name(filename: str | None, fmt: FormatToken) -> str:
    stem = Path(filename or "converted").stem or "converted"
    return f"{stem}.{fmt.value}"


@app.on_event("startup")
async def _startup() -> None:
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    (DATA_DIR / "jobs").mkdir(parents=True, exist_ok=True)
    global SERVICE
    storage = LocalStorage(str(DATA_DIR))
    security = Argon2Security()
    router = build_default_router(LIMITS)
    SERVICE = ConversionService(storage=storage, security=security, router=router, workers=WORKERS)
    await SERVICE.start()


@app.on_event("shutdown")
async def _shutdown() -> None:
    global SERVICE
    if SERVICE is not None:
        await SERVICE.stop()
        SERVICE = None


@app.get("/health")
def health() -> dict[str, str]:
    """Basic health check endpoint."""
    return {"status": "ok"}


@app.get("/formats")
def formats() -> dict[str, list[str]]:
    """Supported direct conversions, keyed by source format."""
    return as_dict()


@app.get("/formats/{source}/{target}")
def format_pair(source: str, target: str) -> dict[str, object]:
    s = normalize(source)
    t = normalize(target)
    supported = s in CAPABILITY_MATRIX and t is not FormatToken.UNKNOWN and is_supported(s, t)
    return {"source": s.value, "target": t.value, "supported": supported}


@app.post("/convert")
async def convert(
    file: UploadFile = File(...),
    target: str = Form(...),
    source: str | None = Form(None),
) -> Response:
    """Convert an uploaded file synchronously and return the converted bytes.

    ``source`` overrides the format implied by the file name; when neither
    names a format the file signature decides.
    """
    service = _service()

    async def read_chunk(n: int) -> bytes:
        return await file.read(n)

    try:
        result = await service.convert_upload(
            read_chunk,
            target=target,
            source=source,
            filename=file.filename or "",
            max_upload_mb=MAX_UPLOAD_MB,
        )
    except ValueError as e:
        raise _too_large(e)
    except ConversionError as e:
        raise _conversion_http_error(e)

    headers = {
        "Content-Disposition": f'attachment; filename="{_download_name(file.filename, result.format)}"',
        "X-Source-Format": result.source.value,
        "X-Target-Format": result.format.value,
    }
    return Response(content=result.payload, media_type=media_type(result.format), headers=headers)


@app.post("/jobs", status_code=status.HTTP_202_ACCEPTED)
async def create_job(
    file: UploadFile = File(...),
    target: str = Form(...),
    source: str | None = Form(None),
) -> JSONResponse:
    """Create a new conversion job from an uploaded document.

    Accepts multipart/form-data with a required "file" part and "target"
    field. Persists the input and per-job metadata JSON under
    DATA_DIR/jobs/{job_id}/. Returns 202 Accepted with a newly created job id
    and a one-time access_token.
    """
    service = _service()

    async def read_chunk(n: int) -> bytes:
        return await file.read(n)

    try:
        job, token = await service.create_job_from_upload(
            filename=file.filename or "upload",
            content_type=file.content_type or "application/octet-stream",
            reader=read_chunk,
            target=target,
            source=source,
            max_upload_mb=MAX_UPLOAD_MB,
        )
    except ValueError as e:
        raise _too_large(e)
    except ConversionError as e:
        raise _conversion_http_error(e)

    job_id = job.id
    body = {
        "id": job_id,
        "status": job.status,
        "progress": job.data.get("progress", 0),
        "target": job.data.get("target"),
        "access_token": token,  # shown once; do not log
        "links": {
            "self": f"/jobs/{job_id}",
            "result": f"/jobs/{job_id}/result",
        },
    }
    headers = {"Location": f"/jobs/{job_id}"}
    return JSONResponse(status_code=status.HTTP_202_ACCEPTED, content=body, headers=headers)


@app.get("/jobs/{job_id}")
async def get_job(job_id: str, authorization: str | None = Header(None)) -> JSONResponse:
    job = _authorized_job(job_id, authorization)
    # Do not expose token hash in response
    redacted = {k: v for k, v in job.items() if k != "access_token_hash"}
    return JSONResponse(content=redacted)


@app.get("/jobs/{job_id}/result")
async def get_result(job_id: str, authorization: str | None = Header(None)) -> Response:
    job = _authorized_job(job_id, authorization)
    output_uri = job.get("output_uri")
    if not output_uri or not Path(str(output_uri)).exists():
        raise HTTPException(status_code=404, detail={"code": "not_ready", "message": "result not available"})
    fmt = normalize(str(job.get("output_format") or ""))
    content = Path(str(output_uri)).read_bytes()
    headers = {
        "Content-Disposition": f'attachment; filename="{_download_name(str(job.get("filename") or ""), fmt)}"',
        "X-Source-Format": str(job.get("resolved_source") or ""),
        "X-Target-Format": fmt.value,
    }
    return Response(content=content, media_type=media_type(fmt), headers=headers)


def run() -> None:
    """Run a development ASGI server using uvicorn.

    Exposes the app at host:port (default 0.0.0.0:8080). Set PORT env var to override.
    """
    import uvicorn

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8080"))
    # Enable reload in dev unless explicitly disabled
    reload = os.getenv("RELOAD", "true").lower() in {"1", "true", "yes", "on"}

    uvicorn.run("docshift.webapi:app", host=host, port=port, reload=reload, log_level=LOG_LEVEL.lower())


if __name__ == "__main__":
    run()
