# fileconverter/orchestrator.py
# Conversion job orchestrator: upload -> pending job -> start -> background attempt -> download

import logging
import mimetypes
from concurrent.futures import Future
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, List, Mapping, Optional, Union
from uuid import uuid4

from .converters import Backend, Converter, select_backend
from .errors import ArtifactMissing, ConversionError, NotReady
from .models import Category, Job, JobStatus
from .records import JobRecordStore
from .storage import ArtifactStore
from .worker import ConversionWorker

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_FORMAT = "PDF"
MAX_LIST_LIMIT = 200


@dataclass
class StartResult:
    job: Job
    started: bool
    handle: Optional[Future] = None


@dataclass
class Download:
    path: Path
    filename: str


def classify(filename: str, content_type: Optional[str] = None) -> str:
    """Category tag from the declared MIME type, then the extension; `document` otherwise."""
    for mime in (content_type, mimetypes.guess_type(filename or "")[0]):
        if not mime:
            continue
        major = mime.split("/", 1)[0].strip().lower()
        if major in (Category.IMAGE.value, Category.VIDEO.value, Category.AUDIO.value):
            return major
    return Category.DOCUMENT.value


def download_name(original_name: str, output_name: str) -> str:
    """report.docx + <token>.pdf -> report.pdf"""
    return Path(original_name).stem + Path(output_name).suffix


class JobOrchestrator:
    def __init__(
        self,
        records: JobRecordStore,
        uploads: ArtifactStore,
        converted: ArtifactStore,
        converters: Mapping[Backend, Converter],
        worker: ConversionWorker,
        list_limit: int = MAX_LIST_LIMIT,
    ):
        self.records = records
        self.uploads = uploads
        self.converted = converted
        self.converters = dict(converters)
        self.worker = worker
        self.list_limit = list_limit

    # -------------------------------------------------------------------
    # Request-time operations
    # -------------------------------------------------------------------
    def submit(
        self,
        filename: Optional[str],
        data: Union[bytes, BinaryIO],
        output_format: Optional[str] = None,
        category: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> Job:
        """Store the upload and create a pending job. Nothing is converted yet."""
        original_name = filename or "upload"
        ext = Path(original_name).suffix
        stored_name = self.uploads.put(data, ext)
        size = self.uploads.size_of(stored_name)

        if category and category.strip().lower() in {c.value for c in Category}:
            category = category.strip().lower()
        else:
            category = classify(original_name, content_type)

        job = self.records.create(
            id=uuid4().hex,
            original_name=original_name,
            stored_name=stored_name,
            size=size,
            category=category,
            input_format=ext.lstrip(".").upper(),
            output_format=(output_format or DEFAULT_OUTPUT_FORMAT).strip().lstrip(".").upper(),
            status=JobStatus.PENDING.value,
            progress=0,
        )
        logger.info(
            "Created job %s: file=%s (%d bytes) %s -> %s",
            job.id, original_name, size, job.input_format, job.output_format,
        )
        return job

    def get(self, job_id: str) -> Job:
        return self.records.get(job_id)

    def list(self, limit: Optional[int] = None, category: Optional[str] = None) -> List[Job]:
        cap = self.list_limit if not limit or limit <= 0 else min(limit, self.list_limit)
        return self.records.list(cap, category=category)

    def start_conversion(self, job_id: str) -> StartResult:
        """
        Move the job into `converting` and hand the attempt to the background worker.

        Returns without waiting for the conversion. A job that is already converting or
        completed is returned as-is and nothing is dispatched.
        """
        job, started = self.records.begin_conversion(job_id)
        if not started:
            logger.info("Start ignored for job %s (status: %s)", job_id, job.status)
            return StartResult(job=job, started=False)

        try:
            handle = self.worker.submit(job_id, self._run_conversion, job_id)
        except RuntimeError as e:
            # pool already shut down; do not leave the job stuck in converting
            self._mark_failed(job_id, e)
            raise
        return StartResult(job=job, started=True, handle=handle)

    def recover_interrupted(self) -> int:
        """Fail jobs left in `converting` by a previous process so they can be retried.

        Call once at startup, before any start request is served.
        """
        count = self.records.fail_interrupted("interrupted by restart")
        if count:
            logger.warning("Marked %d interrupted job(s) as failed", count)
        return count

    def download(self, job_id: str) -> Download:
        job = self.records.get(job_id)
        if job.status != JobStatus.COMPLETED.value or not job.output_name:
            raise NotReady(job_id, job.status)
        if not self.converted.exists(job.output_name):
            raise ArtifactMissing(job_id, job.output_name)
        return Download(
            path=self.converted.path_of(job.output_name),
            filename=download_name(job.original_name, job.output_name),
        )

    # -------------------------------------------------------------------
    # Background attempt
    # -------------------------------------------------------------------
    def _run_conversion(self, job_id: str) -> None:
        backend: Optional[Backend] = None
        try:
            job = self.records.get(job_id)
            backend = select_backend(job.input_format, job.output_format)

            if not self.uploads.exists(job.stored_name):
                raise ConversionError(f"source file {job.stored_name} is missing")

            converter = self.converters.get(backend)
            if converter is None:
                raise ConversionError(f"no converter configured for backend {backend.value}")

            logger.info(
                "Converting job %s with %s: %s -> %s",
                job_id, converter.name, job.input_format, job.output_format,
            )
            output_path = converter.convert(
                self.uploads.path_of(job.stored_name),
                job.input_format,
                job.output_format,
                self.converted.root,
                output_stem=job.id,
                on_progress=lambda pct: self.records.advance_progress(job_id, pct),
            )

            output_name = Path(output_path).name
            if not self.converted.exists(output_name):
                raise ConversionError(f"converter output {output_path} is not in the artifact store")

            self.records.update(
                job_id,
                status=JobStatus.COMPLETED.value,
                progress=100,
                output_name=output_name,
                error=None,
            )
            logger.info("Conversion finished for job %s -> %s", job_id, output_name)

        except Exception as e:
            logger.error(
                "Conversion failed for job %s (backend=%s): %s",
                job_id, backend.value if backend else "-", e,
                exc_info=not isinstance(e, ConversionError),
            )
            self._mark_failed(job_id, e)

    def _mark_failed(self, job_id: str, error: BaseException) -> None:
        try:
            self.records.update(
                job_id,
                status=JobStatus.FAILED.value,
                progress=0,
                output_name=None,
                error=str(error)[:2000],
            )
        except Exception:
            logger.exception("Could not mark job %s as failed", job_id)
