import os
import threading

import pytest

from homecase.blobstore import (
    BlobRepository,
    FileSystemBlobRepository,
    FileSystemBlobRepositoryConfig,
    filesystem_repository_factory,
)
from homecase.domain import Blob


@pytest.fixture
def repo(tmp_path):
    return FileSystemBlobRepository("test", "bin", FileSystemBlobRepositoryConfig(basedir=str(tmp_path)))


def _read(path):
    with open(path, "rb") as file:
        return file.read()


@pytest.mark.parametrize(
    "blob_id, body",
    [
        ("existingblob", b"original content"),
        ("emptyblob", b""),
        ("largeblob", bytes(100 * 1024 * 1024)),
    ],
    ids=["new", "empty", "large"],
)
def test_store_writes_content(repo, blob_id, body):
    with repo.lock(blob_id, True):
        repo.store(Blob(blob_id, body))
    path = repo.filename(blob_id)
    assert os.path.exists(path)
    assert _read(path) == body


def test_store_replaces_existing_blob(repo):
    with repo.lock("existingblob", True):
        repo.store(Blob("existingblob", b"original content"))
        repo.store(Blob("existingblob", b"new content"))
    assert _read(repo.filename("existingblob")) == b"new content"


def test_init_creates_basedir(tmp_path):
    basedir = tmp_path / "nested" / "storage"
    FileSystemBlobRepository("x", "bin", FileSystemBlobRepositoryConfig(basedir=str(basedir)))
    assert basedir.is_dir()


def test_filename_uses_sharded_layout(repo, tmp_path):
    blob_id = "5f56692f0df9ff68607abdb054943ed86bcee7c9f2a2d01fdcb27032f70f3fe9"
    expected = os.path.join(str(tmp_path), "test", "5f", "56", "69", blob_id + ".bin")
    assert repo.filename(blob_id) == expected


def test_filename_pads_short_ids(repo, tmp_path):
    expected = os.path.join(str(tmp_path), "test", "00", "0a", "000abc.bin")
    assert repo.filename("abc") == expected


def test_filename_ignores_slashes(repo):
    assert repo.filename("ab/cdef/gh") == repo.filename("abcdefgh")


def test_fetch_existing_blob(repo):
    with repo.lock("existingblob", True):
        repo.store(Blob("existingblob", b"test content"))
    fetched = repo.fetch("existingblob")
    assert fetched.id == "existingblob"
    assert fetched.body == b"test content"


def test_fetch_missing_blob(repo):
    with pytest.raises(FileNotFoundError):
        repo.fetch("missingblob")


def test_delete_existing_blob(repo):
    with repo.lock("existingblob", True):
        repo.store(Blob("existingblob", b"test content"))
    assert repo.exists("existingblob") is True
    repo.delete("existingblob")
    assert repo.exists("existingblob") is False
    assert not os.path.exists(repo.filename("existingblob"))


def test_delete_missing_blob(repo):
    with pytest.raises(FileNotFoundError):
        repo.delete("missingblob")


def test_exists_tracks_store_and_delete(repo):
    assert repo.exists("someblob") is False
    repo.store(Blob("someblob", b"x"))
    assert repo.exists("someblob") is True
    repo.delete("someblob")
    assert repo.exists("someblob") is False


def test_delete_all_removes_matching_variants(repo):
    base = "abcdefgh"
    for blob_id in (base, base + "_100", base + "_200"):
        repo.store(Blob(blob_id, b"data"))

    repo.delete_all(base, "_*")

    assert repo.exists(base) is True
    assert repo.exists(base + "_100") is False
    assert repo.exists(base + "_200") is False


def test_delete_all_without_matches_keeps_blobs(repo):
    repo.store(Blob("abcdefgh", b"data"))
    repo.delete_all("abcdefgh", "_*")
    assert repo.fetch("abcdefgh").body == b"data"


def test_shared_lock_allows_multiple_readers(repo):
    first = repo.lock("sharedlock", False)
    try:
        second = repo.lock("sharedlock", False)
        assert second.held is True
        second.release()
    finally:
        first.release()
    assert first.held is False


def test_can_reacquire_after_release(repo):
    first = repo.lock("relock", True)
    first.release()
    with repo.lock("relock", True) as second:
        assert second.held is True
        assert os.path.exists(repo.filename("relock") + ".lock")


def test_release_removes_lock_file(repo):
    lock = repo.lock("lockfile", True)
    lockfile = repo.filename("lockfile") + ".lock"
    assert lock.held is True
    assert os.path.exists(lockfile)
    lock.release()
    lock.release()
    assert lock.held is False
    assert not os.path.exists(lockfile)


def test_exclusive_lock_blocks_other_lock(repo):
    acquired = threading.Event()

    def take_lock():
        with repo.lock("exclusivelock", True):
            acquired.set()

    first = repo.lock("exclusivelock", True)
    assert first.held is True
    worker = threading.Thread(target=take_lock)
    worker.start()
    try:
        assert acquired.wait(0.3) is False
    finally:
        first.release()
    assert first.held is False
    assert acquired.wait(5) is True
    worker.join(5)


def test_factory_creates_repositories(tmp_path):
    factory = filesystem_repository_factory(FileSystemBlobRepositoryConfig(basedir=str(tmp_path)))
    created = factory("meta", "json")
    assert isinstance(created, BlobRepository)
    path = created.filename("abcdefgh")
    assert path.startswith(os.path.join(str(tmp_path), "meta"))
    assert path.endswith(".json")