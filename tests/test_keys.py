import threading
from datetime import datetime, timedelta

import pytest

from hsmtool.storage.keys import KeyEntry, KeyStore, KeyStoreError, KeyType


@pytest.fixture
def store_path(tmp_path):
    return tmp_path / "keystore.json"


@pytest.fixture
def ks(store_path):
    return KeyStore(store_path)


def _now():
    return datetime.now().astimezone().replace(microsecond=0)


def _by_name(entries):
    return sorted(entries, key=lambda e: e.name)


def test_new_store_is_empty(ks, store_path):
    assert ks.file_path == store_path
    assert ks.list() == []


def test_new_store_with_existing_parent(tmp_path):
    path = tmp_path / "existing_parent" / "keystore.json"
    path.parent.mkdir()
    store = KeyStore(path)
    assert store.file_path == path
    assert len(store) == 0


def test_new_store_creates_parent(tmp_path):
    path = tmp_path / "a" / "b" / "keystore.json"
    KeyStore(path)
    assert path.parent.is_dir()


def test_load_existing_empty_store(tmp_path):
    path = tmp_path / "empty.json"
    path.write_text("{}")
    assert KeyStore(path).list() == []


@pytest.mark.parametrize("content", ["invalid json", '{"key1": invalid_json_here}'])
def test_load_corrupted_store(tmp_path, content):
    path = tmp_path / "corrupted.json"
    path.write_text(content)
    with pytest.raises(KeyStoreError, match="failed to load keys"):
        KeyStore(path)


def test_file_as_parent_directory(tmp_path):
    parent = tmp_path / "file_as_parent_dir"
    parent.write_text("I am a file")
    with pytest.raises(KeyStoreError, match="failed to create storage directory"):
        KeyStore(parent / "keystore.json")


def test_store_get_list_delete(ks):
    entry1 = KeyEntry("TestKey1", KeyType.ZMK, 16, "123456", _now())
    entry2 = KeyEntry("TestKey2", KeyType.KEK, 32, "ABCDEF", _now() + timedelta(minutes=1))

    ks.store(entry1)
    ks.store(entry2)
    assert ks.get("TestKey1") == entry1
    assert ks.get("TestKey2") == entry2
    assert ks.get("NonExistentKey") is None
    assert _by_name(ks.list()) == [entry1, entry2]

    with pytest.raises(KeyStoreError, match="key name cannot be empty"):
        ks.store(KeyEntry("", KeyType.ZPK, 16, "000000"))

    ks.delete("TestKey1")
    assert ks.get("TestKey1") is None
    assert ks.list() == [entry2]

    with pytest.raises(KeyStoreError, match="key not found"):
        ks.delete("NonExistentKey")

    ks.delete("TestKey2")
    assert ks.list() == []


def test_persistence(store_path):
    store = KeyStore(store_path)
    persist1 = KeyEntry("Persist1", KeyType.PVK, 8, "P1P1P1", _now() - timedelta(hours=1))
    persist2 = KeyEntry("Persist2", KeyType.TMK, 24, "P2P2P2", _now() - timedelta(minutes=1))
    store.store(persist1)
    store.store(persist2)

    loaded = KeyStore(store_path)
    assert loaded.get("Persist1") == persist1
    assert loaded.get("Persist2") == persist2
    assert _by_name(loaded.list()) == [persist1, persist2]

    loaded.delete("Persist1")
    reloaded = KeyStore(store_path)
    assert reloaded.get("Persist1") is None
    assert reloaded.get("Persist2") == persist2


def test_load_missing_file_is_empty(tmp_path):
    store = KeyStore(tmp_path / "ghost.json")
    assert len(store) == 0


def test_store_new_entry_sets_created_at(ks):
    ks.store(KeyEntry("TestKey1", KeyType.ZMK, 16, "123CV"))
    got = ks.get("TestKey1")
    assert got.name == "TestKey1"
    assert got.type == KeyType.ZMK
    assert got.created_at is not None
    assert abs(datetime.now().astimezone() - got.created_at) < timedelta(minutes=1)


def test_store_does_not_mutate_caller_entry(ks):
    entry = KeyEntry("TimeKey", KeyType.KEK, 8, "TimeCV")
    ks.store(entry)
    assert entry.created_at is None
    assert ks.get("TimeKey").created_at is not None


def test_update_existing_entry(ks):
    ks.store(KeyEntry("TestKey1", KeyType.ZMK, 16, "123CV"))
    ks.store(KeyEntry("TestKey1", KeyType.ZPK, 24, "UpdatedCV"))
    got = ks.get("TestKey1")
    assert got.type == KeyType.ZPK
    assert got.check_value == "UpdatedCV"
    assert len(ks) == 1


def test_store_save_error(ks, store_path):
    ks.store(KeyEntry("dummySetup", KeyType.KEK, 8, "dummy"))
    store_path.unlink()
    store_path.mkdir()
    with pytest.raises(OSError):
        ks.store(KeyEntry("SaveFailKey", KeyType.TMK, 16, "SFail"))


def test_concurrent_operations(ks, store_path):
    errors = []

    def worker(gid):
        for j in range(20):
            name = f"ConcurrentKey_G{gid}_K{j}"
            try:
                ks.store(KeyEntry(name, KeyType.KEK, 16, f"cv_{gid}_{j}"))
                got = ks.get(name)
                if got is None or got.check_value != f"cv_{gid}_{j}":
                    errors.append(name)
                if j % 2 == 0:
                    ks.delete(name)
                    if ks.get(name) is not None:
                        errors.append(name)
            except Exception as exc:  # collected and asserted below
                errors.append(exc)

    threads = [threading.Thread(target=worker, args=(g,)) for g in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    final = _by_name(ks.list())
    assert len(final) == 8 * 10
    assert _by_name(KeyStore(store_path).list()) == final

    for entry in final:
        ks.delete(entry.name)
    assert ks.list() == []