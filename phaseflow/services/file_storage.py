"""
File storage adapter.

Uploaded bytes live on disk under ``UPLOAD_FOLDER`` (or at an absolute
``file_path``).  Validation works on ``FileRef`` snapshots so worker
threads never touch ORM objects.
"""

import os
from dataclasses import dataclass

from flask import current_app

from phaseflow.models.project import ProjectFile


@dataclass(frozen=True)
class FileRef:
    id: int
    name: str
    extension: str
    size_bytes: int
    path: str

    @classmethod
    def from_model(cls, file: ProjectFile) -> "FileRef":
        return cls(
            id=file.id,
            name=file.original_name,
            extension=file.extension,
            size_bytes=file.file_size or 0,
            path=file.file_path,
        )

    @property
    def size_mb(self) -> float:
        return self.size_bytes / (1024 * 1024)


class FileStorage:
    """Resolves stored files on the local filesystem."""

    def __init__(self, base_dir: str):
        self.base_dir = base_dir

    @classmethod
    def from_app(cls) -> "FileStorage":
        return cls(current_app.config["UPLOAD_FOLDER"])

    def path_for(self, file: FileRef) -> str:
        if os.path.isabs(file.path):
            return file.path
        return os.path.join(self.base_dir, file.path)

    def read_bytes(self, file: FileRef) -> bytes:
        with open(self.path_for(file), "rb") as fh:
            return fh.read()
