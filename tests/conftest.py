import threading
import time
from pathlib import Path

import pytest

from fileconverter.converters import Backend
from fileconverter.db import init_db, make_engine
from fileconverter.errors import ConversionError
from fileconverter.orchestrator import JobOrchestrator
from fileconverter.records import JobRecordStore
from fileconverter.storage import ArtifactStore
from fileconverter.worker import ConversionWorker


class FakeConverter:
    """Writes `<output_stem>.<ext>` into the destination, or raises, and records every call."""

    def __init__(self, name="fake", fail_with=None, gate=None, progress=None):
        self.name = name
        self.fail_with = fail_with
        self.gate = gate
        self.progress = progress or []
        self.calls = []
        self.entered = threading.Event()

    def convert(self, source_path, input_format, output_format, destination_dir, *, output_stem, on_progress=None):
        self.calls.append((Path(source_path), input_format, output_format))
        self.entered.set()
        if self.gate is not None:
            assert self.gate.wait(5), "gate was never released"
        for pct in self.progress:
            if on_progress:
                on_progress(pct)
        if self.fail_with is not None:
            raise self.fail_with
        out = Path(destination_dir) / f"{output_stem}.{output_format.lower()}"
        out.write_bytes(b"converted:" + Path(source_path).read_bytes())
        return out


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'jobs.db'}")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def records(engine):
    return JobRecordStore(engine)


@pytest.fixture
def uploads(tmp_path):
    return ArtifactStore(tmp_path / "uploads")


@pytest.fixture
def converted(tmp_path):
    return ArtifactStore(tmp_path / "converted")


@pytest.fixture
def worker():
    w = ConversionWorker(max_workers=2)
    yield w
    w.shutdown(wait=True)


@pytest.fixture
def office():
    return FakeConverter(name="office")


@pytest.fixture
def remote():
    return FakeConverter(name="remote")


@pytest.fixture
def orchestrator(records, uploads, converted, worker, office, remote):
    return JobOrchestrator(
        records=records,
        uploads=uploads,
        converted=converted,
        converters={Backend.OFFICE: office, Backend.REMOTE: remote},
        worker=worker,
    )


@pytest.fixture
def wait_settled():
    """Block until a job leaves `converting`; returns the settled job."""

    def _wait(orch, job_id, timeout=5.0):
        handle = orch.worker.handle(job_id)
        if handle is not None:
            handle.result(timeout=timeout)
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            job = orch.get(job_id)
            if job.status != "converting":
                return job
            time.sleep(0.01)
        raise AssertionError(f"job {job_id} still converting after {timeout}s")

    return _wait


@pytest.fixture
def failing_converter():
    return FakeConverter(name="broken", fail_with=ConversionError("ConvertAPI did not return a file URL"))
