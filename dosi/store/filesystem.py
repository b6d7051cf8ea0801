"""On-disk tree store: keys map one-to-one onto files and directories."""

import shutil
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from dosi.store.base import StoreError, StoreKeyError, TreeStore, split_key


@contextmanager
def _translate_errors(key: str):
    try:
        yield
    except (FileNotFoundError, NotADirectoryError) as e:
        raise StoreKeyError(f"No such entry: {key}") from e
    except OSError as e:
        raise StoreError(f"Cannot access {key}: {e}") from e


class FileSystemStore(TreeStore):
    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.root.joinpath(*split_key(key))

    def exists(self, key: str) -> bool:
        return self._path(key).exists()

    def is_dir(self, key: str) -> bool:
        return self._path(key).is_dir()

    def list_dir(self, key: str) -> list[str]:
        with _translate_errors(key):
            return sorted(p.name for p in self._path(key).iterdir())

    def read_text(self, key: str) -> str:
        with _translate_errors(key):
            return self._path(key).read_text(encoding="utf-8")

    def write_text(self, key: str, text: str) -> None:
        path = self._path(key)
        with _translate_errors(key):
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")

    def touch(self, key: str) -> None:
        path = self._path(key)
        with _translate_errors(key):
            path.parent.mkdir(parents=True, exist_ok=True)
            path.touch()

    def modified_at(self, key: str) -> Optional[datetime]:
        try:
            mtime = self._path(key).stat().st_mtime
        except (FileNotFoundError, NotADirectoryError):
            return None
        except OSError as e:
            raise StoreError(f"Cannot stat {key}: {e}") from e
        return datetime.fromtimestamp(mtime, tz=timezone.utc)

    def make_dir(self, key: str) -> None:
        with _translate_errors(key):
            self._path(key).mkdir(parents=True, exist_ok=True)

    def delete(self, key: str) -> None:
        path = self._path(key)
        if path == self.root:
            raise StoreError("Refusing to delete the store root")
        with _translate_errors(key):
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            else:
                path.unlink()

    def move(self, src: str, dst: str) -> None:
        src_path = self._path(src)
        dst_path = self._path(dst)
        if dst_path.exists():
            raise StoreError(f"Destination already exists: {dst}")
        with _translate_errors(src):
            if not src_path.exists():
                raise FileNotFoundError(src)
            dst_path.parent.mkdir(parents=True, exist_ok=True)
            src_path.rename(dst_path)
