from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Any, Dict, List

from .errors import ForbiddenError, NotFoundError

logger = logging.getLogger(__name__)


def _safe_component(value: str) -> str:
    text = (value or "").strip()
    if not text or text in {".", ".."} or "/" in text or "\\" in text or "\x00" in text:
        raise ForbiddenError(f"Invalid path component: {value!r}")
    return text


class BlobStore:
    """
    Per-student file storage laid out as <root>/<owner_id>/<student_id>/<file_name>.
    Every path component is validated so an owner can only address its own prefix.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def _student_dir(self, owner_id: str, student_id: str) -> Path:
        return self.root / _safe_component(owner_id) / _safe_component(student_id)

    def _file_path(self, owner_id: str, student_id: str, file_name: str) -> Path:
        return self._student_dir(owner_id, student_id) / _safe_component(file_name)

    def storage_path(self, owner_id: str, student_id: str, file_name: str) -> str:
        return "/".join(
            ["student_files", _safe_component(owner_id), _safe_component(student_id), _safe_component(file_name)]
        )

    def upload(self, owner_id: str, student_id: str, file_name: str, data: bytes) -> Dict[str, Any]:
        path = self._file_path(owner_id, student_id, file_name)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        with tmp.open("wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        tmp.replace(path)
        logger.info("[blobs] uploaded owner=%s student=%s file=%s bytes=%d", owner_id, student_id, file_name, len(data))
        return self._describe(owner_id, student_id, path)

    def _describe(self, owner_id: str, student_id: str, path: Path) -> Dict[str, Any]:
        return {
            "id": path.name,
            "fileName": path.name,
            "size": path.stat().st_size,
            "storagePath": self.storage_path(owner_id, student_id, path.name),
        }

    def list_files(self, owner_id: str, student_id: str) -> List[Dict[str, Any]]:
        folder = self._student_dir(owner_id, student_id)
        if not folder.is_dir():
            return []
        files = [p for p in sorted(folder.iterdir()) if p.is_file() and not p.name.endswith(".tmp")]
        return [self._describe(owner_id, student_id, p) for p in files]

    def read(self, owner_id: str, student_id: str, file_name: str) -> bytes:
        path = self._file_path(owner_id, student_id, file_name)
        if not path.is_file():
            raise NotFoundError(file_name)
        return path.read_bytes()

    def delete_file(self, owner_id: str, student_id: str, file_name: str) -> None:
        path = self._file_path(owner_id, student_id, file_name)
        if not path.is_file():
            raise NotFoundError(file_name)
        path.unlink()

    def delete_student_folder(self, owner_id: str, student_id: str) -> int:
        folder = self._student_dir(owner_id, student_id)
        if not folder.is_dir():
            return 0
        count = sum(1 for p in folder.iterdir() if p.is_file())
        shutil.rmtree(folder)
        logger.info("[blobs] removed %d files owner=%s student=%s", count, owner_id, student_id)
        return count

    def delete_owner_folder(self, owner_id: str) -> int:
        folder = self.root / _safe_component(owner_id)
        if not folder.is_dir():
            return 0
        count = sum(1 for p in folder.rglob("*") if p.is_file())
        shutil.rmtree(folder)
        logger.info("[blobs] removed %d files owner=%s", count, owner_id)
        return count
