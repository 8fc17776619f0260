# fileconverter/converters.py
# Document converter backends and the format-pair dispatch table

import logging
import subprocess
import tempfile
import time
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Optional, Protocol, Tuple

import httpx

from .errors import ConversionError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]


class Converter(Protocol):
    name: str

    def convert(
        self,
        source_path: Path,
        input_format: str,
        output_format: str,
        destination_dir: Path,
        *,
        output_stem: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Path:
        """Convert `source_path` into `destination_dir` and return the produced file.

        Blocking; raises ConversionError on any failure.
        """


class Backend(str, Enum):
    OFFICE = "office"
    REMOTE = "remote"


# (input, output) pairs with a dedicated backend; everything else goes to OFFICE
ROUTES: Dict[Tuple[str, str], Backend] = {
    ("pdf", "docx"): Backend.REMOTE,
}
DEFAULT_BACKEND = Backend.OFFICE


def select_backend(input_format: str, output_format: str) -> Backend:
    key = ((input_format or "").strip().lower(), (output_format or "").strip().lower())
    return ROUTES.get(key, DEFAULT_BACKEND)


# -------------------------------------------------------------------
# LibreOffice (local headless converter)
# -------------------------------------------------------------------
class LibreOfficeConverter:
    """
    Runs `soffice --headless --convert-to <ext> --outdir <dir> <source>`.

    LibreOffice names its output after the source basename and sometimes upper-cases
    the extension, so both spellings are checked. `output_stem` is not used here.
    """

    name = "libreoffice"

    def __init__(self, soffice_path: str = "soffice", timeout: int = 180):
        self.soffice_path = soffice_path
        self.timeout = timeout

    def convert(
        self,
        source_path: Path,
        input_format: str,
        output_format: str,
        destination_dir: Path,
        *,
        output_stem: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Path:
        target_ext = (output_format or "pdf").lower()
        # separate profile per run; concurrent soffice processes cannot share one
        with tempfile.TemporaryDirectory(prefix="lo-profile-") as profile_dir:
            args = [
                self.soffice_path,
                f"-env:UserInstallation={Path(profile_dir).as_uri()}",
                "--headless",
                "--convert-to",
                target_ext,
                "--outdir",
                str(destination_dir),
                str(source_path),
            ]
            logger.debug("running %s", " ".join(args))
            try:
                proc = subprocess.run(args, capture_output=True, text=True, timeout=self.timeout)
            except FileNotFoundError as e:
                raise ConversionError(f"LibreOffice executable not found: {self.soffice_path}") from e
            except subprocess.TimeoutExpired as e:
                raise ConversionError(f"LibreOffice timed out after {self.timeout}s") from e
            except OSError as e:
                raise ConversionError(f"LibreOffice could not be started: {e}") from e

        if proc.returncode != 0:
            raise ConversionError(
                f"LibreOffice failed with exit code {proc.returncode}\n"
                f"stdout:\n{proc.stdout}\nstderr:\n{proc.stderr}"
            )

        base = Path(source_path).stem
        for candidate in (
            Path(destination_dir) / f"{base}.{target_ext}",
            Path(destination_dir) / f"{base}.{target_ext.upper()}",
        ):
            if candidate.exists():
                return candidate

        raise ConversionError(
            f"output not found. LibreOffice stdout:\n{proc.stdout}\nstderr:\n{proc.stderr}"
        )


# -------------------------------------------------------------------
# ConvertAPI (remote HTTP conversion service)
# -------------------------------------------------------------------
class ConvertApiConverter:
    """
    Uploads the source to ConvertAPI with StoreFile=true and downloads the file URL it
    returns. A 202 is polled via its Location header (or a poll url in the body) until a
    file URL shows up or POLL_MAX_WAIT passes; any other 2xx carries the result directly.
    """

    name = "convertapi"

    def __init__(
        self,
        secret: Optional[str],
        endpoint: str = "https://v2.convertapi.com",
        timeout: float = 120,
        poll_interval: float = 1.5,
        poll_max_wait: float = 120,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.secret = secret
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.poll_max_wait = poll_max_wait
        self._transport = transport

    def convert(
        self,
        source_path: Path,
        input_format: str,
        output_format: str,
        destination_dir: Path,
        *,
        output_stem: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Path:
        if not self.secret:
            raise ConversionError("Missing ConvertAPI token (CONVERTAPI_SECRET)")

        src_fmt = input_format.lower()
        dst_fmt = output_format.lower()
        url = f"{self.endpoint}/convert/{src_fmt}/to/{dst_fmt}"
        out_path = Path(destination_dir) / f"{output_stem}.{dst_fmt}"

        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                with Path(source_path).open("rb") as fh:
                    r = client.post(
                        url,
                        headers=self._headers(),
                        files={"File": (Path(source_path).name, fh)},
                        data={"StoreFile": "true"},
                    )
                file_url = self._result_url(client, r)
                if on_progress:
                    on_progress(50)
                self._download(client, file_url, out_path)
        except ConversionError:
            out_path.unlink(missing_ok=True)
            raise
        except httpx.HTTPError as e:
            out_path.unlink(missing_ok=True)
            raise ConversionError(f"ConvertAPI request failed: {e}") from e
        except OSError as e:
            out_path.unlink(missing_ok=True)
            raise ConversionError(f"ConvertAPI result could not be stored: {e}") from e

        return out_path

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.secret}",
            "Accept": "application/json",
        }

    def _result_url(self, client: httpx.Client, r: httpx.Response) -> str:
        if r.is_success and r.status_code != 202:
            file_url = _file_url(_json_or_none(r))
            if not file_url:
                raise ConversionError("ConvertAPI did not return a file URL")
            return file_url

        if r.status_code == 202:
            poll_url = r.headers.get("Location")
            if not poll_url:
                body = _json_or_none(r) or {}
                poll_url = body.get("poll_url") or body.get("status_url") or body.get("result_url")
            if not poll_url:
                raise ConversionError(f"no poll url (202): {r.text[:300]}")
            return self._poll(client, poll_url)

        raise ConversionError(f"ConvertAPI error {r.status_code}: {r.text[:300]}")

    def _poll(self, client: httpx.Client, poll_url: str) -> str:
        waited = 0.0
        while waited < self.poll_max_wait:
            pr = client.get(poll_url, headers=self._headers())
            if pr.status_code not in (200, 202):
                raise ConversionError(f"poll failed {pr.status_code}: {pr.text[:300]}")
            body = _json_or_none(pr) or {}

            file_url = _file_url(body)
            if file_url:
                return file_url

            status = str(body.get("status") or body.get("state") or "").lower()
            if status in ("failed", "error"):
                raise ConversionError(f"ConvertAPI job failed: {body}")
            if status in ("succeeded", "completed", "done", "success"):
                raise ConversionError("ConvertAPI did not return a file URL")

            time.sleep(self.poll_interval)
            waited += self.poll_interval

        raise ConversionError("ConvertAPI polling timeout")

    def _download(self, client: httpx.Client, url: str, out_path: Path) -> None:
        with client.stream("GET", url) as rr:
            rr.raise_for_status()
            with out_path.open("wb") as f:
                for chunk in rr.iter_bytes():
                    f.write(chunk)


def _json_or_none(r: httpx.Response) -> Optional[dict]:
    try:
        body = r.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def _file_url(body: Optional[dict]) -> Optional[str]:
    """First file URL of a ConvertAPI response (`Files[0].Url`, any casing)."""
    if not body:
        return None
    files = body.get("Files") or body.get("files") or []
    if files and isinstance(files[0], dict):
        return files[0].get("Url") or files[0].get("url")
    return None
