# fileconverter/storage.py
# Artifact store: raw uploads and converted files on the local filesystem

import logging
import shutil
from pathlib import Path
from typing import BinaryIO, Union
from uuid import uuid4

from .errors import StorageError

logger = logging.getLogger(__name__)


class ArtifactStore:
    """
    Files addressed by generated names under one root directory.

    Names are a random uuid token plus the original extension, so two puts never
    collide and nothing is overwritten. Converter backends may also write into
    `root` directly; their files are then looked up by name like any other.
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).resolve()
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"cannot create artifact directory {self.root}: {e}") from e

    def put(self, data: Union[bytes, BinaryIO], suggested_ext: str = "") -> str:
        """Persist bytes (or a readable binary stream) and return the generated name."""
        ext = suggested_ext or ""
        if ext and not ext.startswith("."):
            ext = "." + ext
        name = f"{uuid4().hex}{ext}"
        path = self.root / name
        try:
            with path.open("xb") as f:
                if isinstance(data, (bytes, bytearray, memoryview)):
                    f.write(data)
                else:
                    shutil.copyfileobj(data, f)
        except OSError as e:
            path.unlink(missing_ok=True)
            raise StorageError(f"cannot write {name}: {e}") from e
        logger.debug("stored %s (%d bytes)", name, path.stat().st_size)
        return name

    def path_of(self, name: str) -> Path:
        # generated names are flat; anything with a directory part is rejected
        if not name or Path(name).name != name or name in (".", ".."):
            raise StorageError(f"invalid artifact name: {name!r}")
        return self.root / name

    def exists(self, name: str) -> bool:
        try:
            return self.path_of(name).is_file()
        except StorageError:
            return False

    def size_of(self, name: str) -> int:
        try:
            return self.path_of(name).stat().st_size
        except OSError as e:
            raise StorageError(f"cannot stat {name}: {e}") from e
