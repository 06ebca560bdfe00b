from __future__ import annotations

from pathlib import Path, PurePath
from typing import Mapping, Protocol, Union

PathLike = Union[str, PurePath]


class ContentSource(Protocol):
    """Where the resolver reads source units from."""

    def is_file(self, path: PathLike) -> bool: ...

    def read_text(self, path: PathLike) -> str: ...


class FileSystemSource:
    def is_file(self, path: PathLike) -> bool:
        p = Path(path)
        return p.exists() and p.is_file()

    def read_text(self, path: PathLike) -> str:
        return Path(path).read_text(encoding="utf-8")


class MemorySource:
    """
    In-memory source keyed by POSIX-style paths:
      MemorySource({"api/__init__.py": "...", "api/orders.py": "..."})
    """

    def __init__(self, files: Mapping[str, str]):
        self._files = {self._key(k): v for k, v in files.items()}
        self.reads: list[str] = []

    @staticmethod
    def _key(path: PathLike) -> str:
        return PurePath(path).as_posix()

    def is_file(self, path: PathLike) -> bool:
        return self._key(path) in self._files

    def read_text(self, path: PathLike) -> str:
        key = self._key(path)
        if key not in self._files:
            raise FileNotFoundError(key)
        self.reads.append(key)
        return self._files[key]
