# fileconverter/media.py
# Synchronous audio/video transcoding with ffmpeg (not tracked as a Job)

import logging
import subprocess
from enum import Enum
from pathlib import Path
from typing import Optional

import ffmpeg

from .errors import ConversionError
from .storage import ArtifactStore

logger = logging.getLogger(__name__)


class MediaKind(str, Enum):
    AUDIO = "audio"
    VIDEO = "video"


DEFAULT_FORMATS = {
    MediaKind.AUDIO: "mp3",
    MediaKind.VIDEO: "mp4",
}

# audio container -> codec; containers not listed are left to ffmpeg's defaults
AUDIO_CODECS = {
    "mp3": "libmp3lame",
    "ogg": "libvorbis",
    "oga": "libvorbis",
    "opus": "libopus",
    "aac": "aac",
    "m4a": "aac",
    "flac": "flac",
    "wav": "pcm_s16le",
}


def build_output(input_path: str, output_path: str, output_format: str, kind: MediaKind):
    """ffmpeg-python output node for the target container."""
    stream = ffmpeg.input(input_path)
    ext = output_format.lower()

    if kind == MediaKind.VIDEO:
        if ext == "mp4":
            return ffmpeg.output(
                stream, output_path,
                vcodec="libx264", acodec="aac", preset="veryfast", **{"b:a": "128k"},
            )
        return ffmpeg.output(
            stream, output_path,
            vcodec="libvpx", acodec="libvorbis", **{"b:v": "1M"},
        )

    codec = AUDIO_CODECS.get(ext)
    # drop any video/cover-art stream when producing audio
    if codec:
        return ffmpeg.output(stream, output_path, acodec=codec, vn=None)
    return ffmpeg.output(stream, output_path, vn=None)


class MediaTranscoder:
    """
    Transcodes one uploaded file per request. Inputs are written to a scratch store and
    outputs land next to them as `<input>.<ext>`; the caller removes both once the
    response has been sent.
    """

    def __init__(self, scratch: ArtifactStore, ffmpeg_path: str = "ffmpeg", timeout: int = 600):
        self.scratch = scratch
        self.ffmpeg_path = ffmpeg_path
        self.timeout = timeout

    def output_path_for(self, input_path: Path, output_format: str) -> Path:
        return Path(f"{input_path}.{output_format.lower()}")

    def transcode(self, input_path: Path, output_format: str, kind: MediaKind) -> Path:
        output_path = self.output_path_for(input_path, output_format)
        stream = build_output(str(input_path), str(output_path), output_format, kind)

        try:
            process = ffmpeg.run_async(
                stream,
                cmd=self.ffmpeg_path,
                pipe_stdout=True,
                pipe_stderr=True,
                overwrite_output=True,
            )
        except FileNotFoundError as e:
            raise ConversionError(f"ffmpeg executable not found: {self.ffmpeg_path}") from e
        except OSError as e:
            raise ConversionError(f"ffmpeg could not be started: {e}") from e

        try:
            _, err = process.communicate(timeout=self.timeout)
        except subprocess.TimeoutExpired as e:
            process.kill()
            process.communicate()
            output_path.unlink(missing_ok=True)
            raise ConversionError(f"ffmpeg timed out after {self.timeout}s") from e

        if process.returncode != 0:
            output_path.unlink(missing_ok=True)
            detail = (err or b"").decode("utf-8", errors="replace")[-1000:]
            raise ConversionError(f"ffmpeg exited with code {process.returncode}: {detail}")

        if not output_path.exists():
            raise ConversionError(f"ffmpeg produced no output at {output_path}")

        logger.info("Transcoded %s -> %s (%s)", input_path.name, output_path.name, kind.value)
        return output_path


def normalize_format(output_format: Optional[str], kind: MediaKind) -> str:
    fmt = (output_format or "").strip().lstrip(".").lower()
    return fmt or DEFAULT_FORMATS[kind]
