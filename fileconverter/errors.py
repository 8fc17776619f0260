# fileconverter/errors.py
# Domain errors raised by the store, the adapters and the orchestrator.
# Routes map them to HTTP status codes; the background worker maps them to a failed job.


class FileConverterError(Exception):
    """Base class for every error the service raises on purpose."""


class StorageError(FileConverterError):
    """Artifact store read/write failure."""


class NotFound(FileConverterError):
    def __init__(self, job_id: str):
        super().__init__(f"job {job_id} not found")
        self.job_id = job_id


class NotReady(FileConverterError):
    def __init__(self, job_id: str, status: str):
        super().__init__(f"job {job_id} is not ready (status: {status})")
        self.job_id = job_id
        self.status = status


class ArtifactMissing(FileConverterError):
    def __init__(self, job_id: str, name: str):
        super().__init__(f"converted file {name} for job {job_id} is missing")
        self.job_id = job_id
        self.name = name


class ConversionError(FileConverterError):
    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason
