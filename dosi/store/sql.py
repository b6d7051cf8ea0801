"""SQLite tree store: the same directory-shaped keys, kept as rows of one table."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from dosi.models.store_entry import StoreEntry
from dosi.store.base import StoreError, StoreKeyError, TreeStore, split_key


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _normalize(key: str) -> str:
    return "/".join(split_key(key))


class SqlStore(TreeStore):
    def __init__(self, engine: Engine):
        self.engine = engine

    # --- helpers ---

    def _session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    def _get(self, session: Session, key: str) -> Optional[StoreEntry]:
        return session.get(StoreEntry, key)

    def _ensure_parents(self, session: Session, key: str) -> None:
        parts = split_key(key)
        for i in range(1, len(parts)):
            ancestor = "/".join(parts[:i])
            entry = self._get(session, ancestor)
            if entry is None:
                session.add(StoreEntry(
                    key=ancestor,
                    parent="/".join(parts[:i - 1]),
                    name=parts[i - 1],
                    is_dir=True,
                ))
            elif not entry.is_dir:
                raise StoreError(f"Not a directory: {ancestor}")
        session.flush()

    def _subtree(self, session: Session, key: str) -> list[StoreEntry]:
        rows = session.exec(
            select(StoreEntry).where(col(StoreEntry.key).startswith(key + "/", autoescape=True))
        ).all()
        entry = self._get(session, key)
        return ([entry] if entry else []) + list(rows)

    def _run(self, key: str, fn):
        try:
            with self._session() as session:
                result = fn(session)
                session.commit()
                return result
        except StoreError:
            raise
        except SQLAlchemyError as e:
            raise StoreError(f"Cannot access {key}: {e}") from e

    # --- TreeStore ---

    def exists(self, key: str) -> bool:
        key = _normalize(key)
        if not key:
            return True
        return self._run(key, lambda s: self._get(s, key) is not None)

    def is_dir(self, key: str) -> bool:
        key = _normalize(key)
        if not key:
            return True

        def op(session):
            entry = self._get(session, key)
            return entry is not None and entry.is_dir

        return self._run(key, op)

    def list_dir(self, key: str) -> list[str]:
        key = _normalize(key)

        def op(session):
            if key:
                entry = self._get(session, key)
                if entry is None or not entry.is_dir:
                    raise StoreKeyError(f"No such directory: {key}")
            names = session.exec(
                select(StoreEntry.name).where(StoreEntry.parent == key).order_by(StoreEntry.name)
            ).all()
            return list(names)

        return self._run(key, op)

    def read_text(self, key: str) -> str:
        key = _normalize(key)

        def op(session):
            entry = self._get(session, key)
            if entry is None:
                raise StoreKeyError(f"No such entry: {key}")
            if entry.is_dir:
                raise StoreError(f"Is a directory: {key}")
            return entry.content

        return self._run(key, op)

    def write_text(self, key: str, text: str) -> None:
        key = _normalize(key)

        def op(session):
            self._ensure_parents(session, key)
            entry = self._get(session, key)
            if entry is None:
                parts = split_key(key)
                entry = StoreEntry(key=key, parent="/".join(parts[:-1]), name=parts[-1])
            elif entry.is_dir:
                raise StoreError(f"Is a directory: {key}")
            entry.content = text
            entry.modified_at = _now()
            session.add(entry)

        self._run(key, op)

    def touch(self, key: str) -> None:
        key = _normalize(key)

        def op(session):
            self._ensure_parents(session, key)
            entry = self._get(session, key)
            if entry is None:
                parts = split_key(key)
                entry = StoreEntry(key=key, parent="/".join(parts[:-1]), name=parts[-1])
            entry.modified_at = _now()
            session.add(entry)

        self._run(key, op)

    def modified_at(self, key: str) -> Optional[datetime]:
        key = _normalize(key)

        def op(session):
            entry = self._get(session, key)
            if entry is None:
                return None
            ts = entry.modified_at
            # SQLite drops the tzinfo on the way back
            return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)

        return self._run(key, op)

    def make_dir(self, key: str) -> None:
        key = _normalize(key)
        if not key:
            return

        def op(session):
            self._ensure_parents(session, key)
            entry = self._get(session, key)
            if entry is None:
                parts = split_key(key)
                session.add(StoreEntry(key=key, parent="/".join(parts[:-1]), name=parts[-1], is_dir=True))
            elif not entry.is_dir:
                raise StoreError(f"Not a directory: {key}")

        self._run(key, op)

    def delete(self, key: str) -> None:
        key = _normalize(key)
        if not key:
            raise StoreError("Refusing to delete the store root")

        def op(session):
            entries = self._subtree(session, key)
            if not entries or entries[0].key != key:
                raise StoreKeyError(f"No such entry: {key}")
            for entry in entries:
                session.delete(entry)

        self._run(key, op)

    def move(self, src: str, dst: str) -> None:
        src = _normalize(src)
        dst = _normalize(dst)

        def op(session):
            if self._get(session, dst) is not None:
                raise StoreError(f"Destination already exists: {dst}")
            entries = self._subtree(session, src)
            if not entries or entries[0].key != src:
                raise StoreKeyError(f"No such entry: {src}")
            self._ensure_parents(session, dst)
            for entry in entries:
                new_key = dst + entry.key[len(src):]
                new_parts = split_key(new_key)
                session.add(StoreEntry(
                    key=new_key,
                    parent="/".join(new_parts[:-1]),
                    name=new_parts[-1],
                    is_dir=entry.is_dir,
                    content=entry.content,
                    modified_at=entry.modified_at,
                ))
                session.delete(entry)

        self._run(src, op)
