# fileconverter/main.py
# FastAPI application entry point

import logging
import os
import tempfile
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.background import BackgroundTask

from .config import Settings, settings
from .converters import Backend, ConvertApiConverter, LibreOfficeConverter
from .db import init_db, make_engine
from .errors import ArtifactMissing, ConversionError, NotFound, NotReady, StorageError
from .media import MediaKind, MediaTranscoder, normalize_format
from .orchestrator import JobOrchestrator
from .records import JobRecordStore
from .schemas import JobOut, StartResponse, UploadResponse
from .storage import ArtifactStore
from .worker import ConversionWorker

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# -------------------------------------------------------------------
# Folders
# -------------------------------------------------------------------
UPLOAD_DIR = Path(settings.UPLOAD_DIR)
CONVERTED_DIR = Path(settings.CONVERTED_DIR)
MEDIA_TMP_DIR = Path(tempfile.gettempdir()) / "fileconverter-media"
UPLOAD_DIR.mkdir(exist_ok=True, parents=True)
CONVERTED_DIR.mkdir(exist_ok=True, parents=True)

# -------------------------------------------------------------------
# Wiring (set during lifespan, overridable in tests via dependency_overrides)
# -------------------------------------------------------------------
_orchestrator: Optional[JobOrchestrator] = None
_transcoder: Optional[MediaTranscoder] = None


def build_orchestrator(cfg: Settings) -> JobOrchestrator:
    engine = make_engine(cfg.DATABASE_URL)
    init_db(engine)
    converters = {
        Backend.OFFICE: LibreOfficeConverter(cfg.LIBREOFFICE_PATH, timeout=cfg.LIBREOFFICE_TIMEOUT),
        Backend.REMOTE: ConvertApiConverter(
            cfg.CONVERTAPI_SECRET,
            endpoint=cfg.CONVERTAPI_ENDPOINT,
            timeout=cfg.CONVERTAPI_TIMEOUT,
            poll_interval=cfg.POLL_INTERVAL,
            poll_max_wait=cfg.POLL_MAX_WAIT,
        ),
    }
    return JobOrchestrator(
        records=JobRecordStore(engine),
        uploads=ArtifactStore(cfg.UPLOAD_DIR),
        converted=ArtifactStore(cfg.CONVERTED_DIR),
        converters=converters,
        worker=ConversionWorker(max_workers=cfg.MAX_WORKERS),
        list_limit=cfg.LIST_LIMIT,
    )


def build_transcoder(cfg: Settings) -> MediaTranscoder:
    return MediaTranscoder(ArtifactStore(MEDIA_TMP_DIR), ffmpeg_path=cfg.FFMPEG_PATH, timeout=cfg.FFMPEG_TIMEOUT)


def get_orchestrator() -> JobOrchestrator:
    if _orchestrator is None:
        raise HTTPException(status_code=503, detail="Job orchestrator not initialized")
    return _orchestrator


def get_transcoder() -> MediaTranscoder:
    if _transcoder is None:
        raise HTTPException(status_code=503, detail="Media transcoder not initialized")
    return _transcoder


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _orchestrator, _transcoder
    _orchestrator = build_orchestrator(settings)
    _transcoder = build_transcoder(settings)
    _orchestrator.recover_interrupted()
    logger.info("File converter started (db=%s, uploads=%s, converted=%s)",
                settings.DATABASE_URL, UPLOAD_DIR, CONVERTED_DIR)
    if not settings.CONVERTAPI_SECRET:
        logger.warning("CONVERTAPI_SECRET not set: PDF -> DOCX conversions will fail")

    yield

    logger.info("File converter shutting down")
    _orchestrator.worker.shutdown(wait=False)


# -------------------------------------------------------------------
# FastAPI & CORS
# -------------------------------------------------------------------
app = FastAPI(title="File Converter Backend", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins or ["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount("/static/uploads", StaticFiles(directory=UPLOAD_DIR), name="uploads")
app.mount("/static/converted", StaticFiles(directory=CONVERTED_DIR), name="converted")


@app.get("/health")
def health():
    return {"ok": True, "time": datetime.now(timezone.utc).isoformat()}

# -------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------
def _safe_unlink(p: Optional[Path]) -> None:
    if not p:
        return
    try:
        Path(p).unlink(missing_ok=True)
    except OSError as e:
        logger.warning("unlink failed for %s: %s", p, e)


def _job_out(job) -> JobOut:
    return JobOut.model_validate(job)

# -------------------------------------------------------------------
# Job routes (/api/files)
# -------------------------------------------------------------------
files_router = APIRouter(prefix="/api/files", tags=["files"])


@files_router.post("/upload", response_model=UploadResponse)
def upload_files(
    files: List[UploadFile] = File(...),
    output_format: str = Form("PDF", alias="outputFormat"),
    category: Optional[str] = Form(None),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    try:
        saved = [
            orchestrator.submit(
                f.filename,
                f.file,
                output_format=output_format,
                category=category,
                content_type=f.content_type,
            )
            for f in files
        ]
    except Exception as e:
        logger.error("upload error: %s", e, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"success": False, "message": "Upload failed", "error": str(e)},
        )
    return UploadResponse(success=True, files=[_job_out(j) for j in saved])


@files_router.get("", response_model=List[JobOut])
def list_files(
    limit: Optional[int] = None,
    category: Optional[str] = None,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    return [_job_out(j) for j in orchestrator.list(limit=limit, category=category)]


@files_router.get("/{job_id}", response_model=JobOut)
def get_file(job_id: str, orchestrator: JobOrchestrator = Depends(get_orchestrator)):
    try:
        return _job_out(orchestrator.get(job_id))
    except NotFound:
        raise HTTPException(status_code=404, detail="Not found")


@files_router.post("/{job_id}/start", response_model=StartResponse, response_model_exclude_none=True)
def start_conversion(job_id: str, orchestrator: JobOrchestrator = Depends(get_orchestrator)):
    try:
        result = orchestrator.start_conversion(job_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="File not found")
    except Exception as e:
        logger.error("start error for job %s: %s", job_id, e, exc_info=True)
        raise HTTPException(status_code=500, detail=f"Cannot start conversion: {e}")

    if result.started:
        return StartResponse(ok=True)
    return StartResponse(ok=True, status=result.job.status)


@files_router.get("/{job_id}/download")
def download_file(job_id: str, orchestrator: JobOrchestrator = Depends(get_orchestrator)):
    try:
        download = orchestrator.download(job_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Not found")
    except NotReady:
        raise HTTPException(status_code=400, detail="File not ready")
    except ArtifactMissing:
        raise HTTPException(status_code=404, detail="Converted file missing")
    except StorageError as e:
        logger.error("download error for job %s: %s", job_id, e)
        raise HTTPException(status_code=500, detail="Download failed")
    return FileResponse(download.path, filename=download.filename, media_type="application/octet-stream")

# -------------------------------------------------------------------
# Synchronous media routes (/api/convert)
# -------------------------------------------------------------------
convert_router = APIRouter(prefix="/api/convert", tags=["convert"])


def _transcode_response(file: UploadFile, output_format: Optional[str], kind: MediaKind,
                        transcoder: MediaTranscoder) -> FileResponse:
    ext = normalize_format(output_format, kind)
    base_name = Path(file.filename or "upload").stem

    try:
        stored = transcoder.scratch.put(file.file, Path(file.filename or "").suffix)
    except StorageError as e:
        logger.error("%s upload error: %s", kind.value, e)
        raise HTTPException(status_code=500, detail=f"{kind.value.capitalize()} conversion failed")

    input_path = transcoder.scratch.path_of(stored)
    try:
        output_path = transcoder.transcode(input_path, ext, kind)
    except Exception as e:
        logger.error("%s convert error: %s", kind.value, e,
                     exc_info=not isinstance(e, ConversionError))
        _safe_unlink(input_path)
        _safe_unlink(transcoder.output_path_for(input_path, ext))
        raise HTTPException(status_code=500, detail=f"{kind.value.capitalize()} conversion failed")

    def cleanup() -> None:
        _safe_unlink(input_path)
        _safe_unlink(output_path)

    return FileResponse(
        output_path,
        media_type="application/octet-stream",
        filename=f"{base_name}.{ext}",
        background=BackgroundTask(cleanup),
    )


@convert_router.post("/audio")
def convert_audio(
    file: UploadFile = File(...),
    output_format: Optional[str] = Form("mp3", alias="outputFormat"),
    transcoder: MediaTranscoder = Depends(get_transcoder),
):
    return _transcode_response(file, output_format, MediaKind.AUDIO, transcoder)


@convert_router.post("/video")
def convert_video(
    file: UploadFile = File(...),
    output_format: Optional[str] = Form("mp4", alias="outputFormat"),
    transcoder: MediaTranscoder = Depends(get_transcoder),
):
    return _transcode_response(file, output_format, MediaKind.VIDEO, transcoder)


app.include_router(files_router)
app.include_router(convert_router)


def run() -> None:
    import uvicorn

    uvicorn.run("fileconverter.main:app", host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "4000")))
