from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from fileconverter.errors import ConversionError
from fileconverter.main import app, get_orchestrator, get_transcoder
from fileconverter.media import MediaKind, MediaTranscoder
from fileconverter.storage import ArtifactStore


@pytest.fixture
def client(orchestrator):
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    yield TestClient(app)
    app.dependency_overrides.clear()


def _upload(client, name="report.docx", data=b"docx", output_format="PDF", **form):
    return client.post(
        "/api/files/upload",
        files=[("files", (name, data, "application/octet-stream"))],
        data={"outputFormat": output_format, **form},
    )


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["ok"] is True
    assert r.json()["time"].endswith("+00:00")


def test_upload_returns_pending_jobs_in_camel_case(client):
    r = client.post(
        "/api/files/upload",
        files=[
            ("files", ("report.docx", b"docx", "application/octet-stream")),
            ("files", ("scan.pdf", b"%PDF", "application/pdf")),
        ],
        data={"outputFormat": "pdf", "category": "document"},
    )
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert len(body["files"]) == 2
    first = body["files"][0]
    assert first["originalName"] == "report.docx"
    assert first["inputFormat"] == "DOCX"
    assert first["outputFormat"] == "PDF"
    assert first["status"] == "pending"
    assert first["progress"] == 0
    assert first["outputName"] is None
    assert "storedName" in first and "createdAt" in first


def test_upload_failure_is_500(client, orchestrator, monkeypatch):
    def broken(*args, **kwargs):
        raise OSError("disk full")

    monkeypatch.setattr(orchestrator, "submit", broken)
    r = _upload(client)
    assert r.status_code == 500
    assert r.json() == {"success": False, "message": "Upload failed", "error": "disk full"}


def test_list_and_get(client):
    ids = [_upload(client, name=f"f{i}.docx").json()["files"][0]["id"] for i in range(3)]
    listed = client.get("/api/files").json()
    assert {j["id"] for j in listed} == set(ids)

    r = client.get(f"/api/files/{ids[0]}")
    assert r.status_code == 200
    assert r.json()["originalName"] == "f0.docx"

    assert client.get("/api/files/unknown").status_code == 404
    assert len(client.get("/api/files", params={"limit": 2}).json()) == 2


def test_full_flow_start_poll_download(client, orchestrator, wait_settled):
    job_id = _upload(client).json()["files"][0]["id"]

    r = client.post(f"/api/files/{job_id}/start")
    assert r.status_code == 200
    assert r.json() == {"ok": True}

    wait_settled(orchestrator, job_id)
    polled = client.get(f"/api/files/{job_id}").json()
    assert polled["status"] == "completed"
    assert polled["progress"] == 100
    assert polled["outputName"].endswith(".pdf")

    again = client.post(f"/api/files/{job_id}/start")
    assert again.json() == {"ok": True, "status": "completed"}

    d = client.get(f"/api/files/{job_id}/download")
    assert d.status_code == 200
    assert d.content == b"converted:docx"
    assert 'filename="report.pdf"' in d.headers["content-disposition"]


def test_start_unknown_is_404(client):
    assert client.post("/api/files/unknown/start").status_code == 404


def test_download_errors(client, orchestrator, converted, records, wait_settled):
    assert client.get("/api/files/unknown/download").status_code == 404

    job_id = _upload(client).json()["files"][0]["id"]
    r = client.get(f"/api/files/{job_id}/download")
    assert r.status_code == 400

    client.post(f"/api/files/{job_id}/start")
    done = wait_settled(orchestrator, job_id)
    converted.path_of(done.output_name).unlink()
    r = client.get(f"/api/files/{job_id}/download")
    assert r.status_code == 404
    assert r.json()["detail"] == "Converted file missing"


def test_failed_job_download_is_not_ready(client, records):
    job_id = _upload(client).json()["files"][0]["id"]
    records.update(job_id, status="failed")
    assert client.get(f"/api/files/{job_id}/download").status_code == 400


# -------------------------------------------------------------------
# Synchronous media conversion
# -------------------------------------------------------------------
class FakeTranscoder(MediaTranscoder):
    def __init__(self, scratch, fail=False):
        super().__init__(scratch)
        self.fail = fail
        self.calls = []

    def transcode(self, input_path, output_format, kind):
        self.calls.append((Path(input_path), output_format, kind))
        if self.fail:
            self.output_path_for(input_path, output_format).write_bytes(b"partial")
            raise ConversionError("ffmpeg exited with code 1")
        out = self.output_path_for(input_path, output_format)
        out.write_bytes(b"transcoded:" + Path(input_path).read_bytes())
        return out


@pytest.fixture
def media_client(tmp_path):
    def _make(fail=False):
        transcoder = FakeTranscoder(ArtifactStore(tmp_path / "media"), fail=fail)
        app.dependency_overrides[get_transcoder] = lambda: transcoder
        return TestClient(app), transcoder

    yield _make
    app.dependency_overrides.clear()


def test_convert_audio_streams_result_and_cleans_up(media_client):
    client, transcoder = media_client()
    r = client.post(
        "/api/convert/audio",
        files={"file": ("voice_memo.wav", b"RIFF", "audio/wav")},
        data={"outputFormat": "OGG"},
    )
    assert r.status_code == 200
    assert r.content == b"transcoded:RIFF"
    assert 'filename="voice_memo.ogg"' in r.headers["content-disposition"]

    input_path, fmt, kind = transcoder.calls[0]
    assert fmt == "ogg" and kind is MediaKind.AUDIO
    assert list(transcoder.scratch.root.iterdir()) == []


def test_convert_video_defaults_to_mp4(media_client):
    client, transcoder = media_client()
    r = client.post("/api/convert/video", files={"file": ("clip.mov", b"MOOV", "video/quicktime")})
    assert r.status_code == 200
    assert 'filename="clip.mp4"' in r.headers["content-disposition"]
    assert transcoder.calls[0][1:] == ("mp4", MediaKind.VIDEO)


def test_convert_failure_is_500_and_cleans_up(media_client):
    client, transcoder = media_client(fail=True)
    r = client.post(
        "/api/convert/video",
        files={"file": ("clip.mov", b"MOOV", "video/quicktime")},
        data={"outputFormat": "webm"},
    )
    assert r.status_code == 500
    assert r.json()["detail"] == "Video conversion failed"
    assert list(transcoder.scratch.root.iterdir()) == []


def test_convert_unexpected_error_is_500_and_cleans_up(media_client):
    client, transcoder = media_client()

    def denied(input_path, output_format, kind):
        transcoder.output_path_for(input_path, output_format).write_bytes(b"partial")
        raise PermissionError("ffmpeg: permission denied")

    transcoder.transcode = denied
    r = client.post(
        "/api/convert/audio",
        files={"file": ("voice_memo.wav", b"RIFF", "audio/wav")},
        data={"outputFormat": "mp3"},
    )
    assert r.status_code == 500
    assert r.json()["detail"] == "Audio conversion failed"
    assert list(transcoder.scratch.root.iterdir()) == []
