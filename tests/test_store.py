"""Tree store behaviour shared by the filesystem and SQLite backends."""

import pytest

from dosi.store import StoreError, StoreKeyError, join_key


def test_write_creates_parents(store):
    store.write_text("adopted/fleet-a/ABC/alias.txt", "kitchen")

    assert store.read_text("adopted/fleet-a/ABC/alias.txt") == "kitchen"
    assert store.is_dir("adopted/fleet-a/ABC")
    assert store.is_dir("adopted")
    assert not store.is_dir("adopted/fleet-a/ABC/alias.txt")


def test_overwrite_replaces_content(store):
    store.write_text("unknown/X1", "first")
    store.write_text("unknown/X1", "second")
    assert store.read_text("unknown/X1") == "second"


def test_list_dir_sorted(store):
    for name in ["B2", "A1", "C3"]:
        store.write_text(join_key("unknown", name), "")
    store.make_dir("unknown/D4")

    assert store.list_dir("unknown") == ["A1", "B2", "C3", "D4"]


def test_list_missing_dir(store):
    with pytest.raises(StoreKeyError):
        store.list_dir("nope")


def test_read_missing_key(store):
    with pytest.raises(StoreKeyError):
        store.read_text("unknown/MISSING")


def test_read_directory_fails(store):
    store.make_dir("adopted/fleet-a")
    with pytest.raises(StoreError):
        store.read_text("adopted/fleet-a")


def test_touch_creates_and_bumps(store):
    assert store.modified_at("adopted/g/D/phonehome") is None

    store.touch("adopted/g/D/phonehome")
    first = store.modified_at("adopted/g/D/phonehome")
    assert first is not None
    assert first.tzinfo is not None

    store.touch("adopted/g/D/phonehome")
    assert store.modified_at("adopted/g/D/phonehome") >= first
    assert store.read_text("adopted/g/D/phonehome") == ""


def test_make_dir_is_idempotent(store):
    store.make_dir("adopted/fleet-a")
    store.make_dir("adopted/fleet-a")
    assert store.list_dir("adopted") == ["fleet-a"]


def test_delete_tree(store):
    store.write_text("adopted/g/D1/serial_number.txt", "x")
    store.touch("adopted/g/D1/reboot")
    store.write_text("adopted/g/library.script", "echo hi")

    store.delete("adopted/g/D1")

    assert not store.exists("adopted/g/D1")
    assert not store.exists("adopted/g/D1/reboot")
    assert store.list_dir("adopted/g") == ["library.script"]


def test_delete_missing(store):
    with pytest.raises(StoreKeyError):
        store.delete("unknown/GHOST")


def test_move_file_into_new_directory(store):
    store.write_text("unknown/X1", "New client detected")
    store.make_dir("adopted/fleet-a/X1")

    store.move("unknown/X1", "adopted/fleet-a/X1/serial_number.txt")

    assert not store.exists("unknown/X1")
    assert store.read_text("adopted/fleet-a/X1/serial_number.txt") == "New client detected"
    assert store.modified_at("adopted/fleet-a/X1/serial_number.txt") is not None


def test_move_tree(store):
    store.write_text("adopted/a/D1/serial_number.txt", "x")
    store.write_text("adopted/a/D1/alias.txt", "lobby")

    store.move("adopted/a/D1", "adopted/b/D1")

    assert store.list_dir("adopted/a") == []
    assert store.list_dir("adopted/b/D1") == ["alias.txt", "serial_number.txt"]
    assert store.read_text("adopted/b/D1/alias.txt") == "lobby"


def test_move_onto_existing_key_fails(store):
    store.write_text("unknown/A", "a")
    store.write_text("unknown/B", "b")
    with pytest.raises(StoreError):
        store.move("unknown/A", "unknown/B")
    assert store.read_text("unknown/B") == "b"


def test_move_missing_source(store):
    with pytest.raises(StoreKeyError):
        store.move("unknown/GHOST", "adopted/g/GHOST")


def test_keys_cannot_escape_root(store):
    with pytest.raises(StoreError):
        store.write_text("../outside", "x")
    with pytest.raises(StoreError):
        store.exists("adopted/../../etc")


def test_create_store_selects_backend(monkeypatch):
    from dosi.config import settings
    from dosi.store import FileSystemStore, create_store
    from dosi.store.sql import SqlStore

    assert isinstance(create_store(settings), FileSystemStore)

    monkeypatch.setattr(settings, "store_backend", "sqlite")
    assert isinstance(create_store(settings), SqlStore)

    monkeypatch.setattr(settings, "store_backend", "redis")
    with pytest.raises(ValueError):
        create_store(settings)
