"""Narrow file system contract used by validation and recovery."""

import os
import shutil
from pathlib import Path
from typing import Union

PathLike = Union[str, Path]


class FileSystem:
    """Local disk implementation; tests may substitute their own."""

    def file_exists(self, path: PathLike) -> bool:
        return Path(path).is_file()

    def directory_exists(self, path: PathLike) -> bool:
        return Path(path).is_dir()

    def read_text(self, path: PathLike) -> str:
        with open(path, "r", encoding="utf-8") as f:
            return f.read()

    def write_text(self, path: PathLike, content: str):
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)

    def copy_file(self, source: PathLike, destination: PathLike):
        """Byte-for-byte copy; metadata is not preserved."""
        shutil.copyfile(source, destination)

    def delete_file(self, path: PathLike):
        Path(path).unlink(missing_ok=True)

    def create_directory(self, path: PathLike):
        Path(path).mkdir(parents=True, exist_ok=True)

    def is_writable(self, path: PathLike) -> bool:
        return os.access(path, os.W_OK)
