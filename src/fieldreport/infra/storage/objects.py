from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date
from pathlib import Path
from typing import Optional

from src.fieldreport.config import settings


def report_folder(prefix: str, project_id: str, report_date: date, report_id: str) -> str:
    """Object key folder for a report: ``<prefix>/projects/<project>/reports/<YYYY>/<MM>/<DD>/<report_id>``."""

    return (
        f"{prefix}/projects/{project_id}/reports/"
        f"{report_date.year:04d}/{report_date.month:02d}/{report_date.day:02d}/{report_id}"
    )


def audio_key(prefix: str, project_id: str, report_date: date, report_id: str, extension: str = "webm") -> str:
    return f"{report_folder(prefix, project_id, report_date, report_id)}/audio.{extension}"


def transcript_key(prefix: str, project_id: str, report_date: date, report_id: str) -> str:
    return f"{report_folder(prefix, project_id, report_date, report_id)}/transcript.json"


class ObjectStorageBackend(ABC):
    @abstractmethod
    def put_object(self, key: str, content: bytes, *, content_type: str) -> str:
        """Persist bytes under ``key`` and return a URL/path reference.

        Writing an existing key replaces its content.
        """

    @abstractmethod
    def get_object(self, key: str) -> Optional[bytes]:
        """Return the stored bytes, or ``None`` if the key does not exist."""


class LocalObjectStorageBackend(ObjectStorageBackend):
    def __init__(self, base_dir: Path | None = None) -> None:
        self._base: Path = base_dir or settings.report_storage_dir

    def _path(self, key: str) -> Path:
        path = (self._base / key).resolve()
        if self._base.resolve() not in path.parents:
            raise ValueError(f"Object key escapes storage root: {key}")
        return path

    def put_object(self, key: str, content: bytes, *, content_type: str) -> str:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + ".tmp")
        tmp_path.write_bytes(content)
        tmp_path.replace(path)
        return str(path)

    def get_object(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_bytes()

