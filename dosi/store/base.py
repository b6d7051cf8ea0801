"""Directory-tree store interface.

Keys are '/'-joined relative paths such as ``adopted/fleet-a/ABC123/alias.txt``.
A key names either a file (text content plus a modification time) or a
directory (children only). Writing a file creates its missing parents.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional


class StoreError(Exception):
    """The store could not complete an operation."""


class StoreKeyError(StoreError, KeyError):
    """The key does not exist (or is not the kind of entry the call needs)."""

    def __str__(self) -> str:
        return Exception.__str__(self)


def split_key(key: str) -> list[str]:
    """Split a key into path segments, rejecting anything that could escape the root."""
    parts = [p for p in key.split("/") if p]
    for part in parts:
        if part in (".", "..") or "\\" in part or "\x00" in part:
            raise StoreError(f"Invalid key segment: {part!r}")
    return parts


def join_key(*parts: str) -> str:
    return "/".join(p.strip("/") for p in parts if p and p.strip("/"))


class TreeStore(ABC):
    """Minimal filesystem-shaped persistence used by the device registry."""

    @abstractmethod
    def exists(self, key: str) -> bool: ...

    @abstractmethod
    def is_dir(self, key: str) -> bool: ...

    @abstractmethod
    def list_dir(self, key: str) -> list[str]:
        """Return the sorted child names of a directory."""

    @abstractmethod
    def read_text(self, key: str) -> str: ...

    @abstractmethod
    def write_text(self, key: str, text: str) -> None: ...

    @abstractmethod
    def touch(self, key: str) -> None:
        """Create an empty file if missing, otherwise bump its modification time."""

    @abstractmethod
    def modified_at(self, key: str) -> Optional[datetime]:
        """UTC modification time, or None when the key does not exist."""

    @abstractmethod
    def make_dir(self, key: str) -> None:
        """Create a directory and its parents. Existing directories are fine."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Delete a file or a whole directory tree."""

    @abstractmethod
    def move(self, src: str, dst: str) -> None:
        """Rename ``src`` (file or tree) to ``dst``. ``dst`` must not exist."""
