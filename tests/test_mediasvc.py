import contextlib

import pytest

from homecase.blobstore import (
    BlobRepository,
    FileSystemBlobRepositoryConfig,
    filesystem_repository_factory,
)
from homecase.context import username_scope
from homecase.domain import Blob, Media, MediaMeta, MediaTooLargeError, UnauthorizedError
from homecase.mediasvc import BlobMediaService, MediaConfig


class MockRepository(BlobRepository):
    def __init__(self):
        self.blobs = {}
        self.locks = []
        self.lock_error = None
        self.store_error = None
        self.fetch_error = None
        self.delete_error = None

    def lock(self, blob_id, exclusive=False):
        self.locks.append((blob_id, exclusive))
        if self.lock_error is not None:
            raise self.lock_error
        return contextlib.nullcontext()

    def exists(self, blob_id):
        return blob_id in self.blobs

    def store(self, blob):
        if self.store_error is not None:
            raise self.store_error
        self.blobs[blob.id] = blob.body

    def fetch(self, blob_id):
        if self.fetch_error is not None:
            raise self.fetch_error
        if blob_id not in self.blobs:
            raise FileNotFoundError(f"blob not found: {blob_id}")
        return Blob(blob_id, self.blobs[blob_id])

    def delete(self, blob_id):
        if self.delete_error is not None:
            raise self.delete_error
        if blob_id not in self.blobs:
            raise FileNotFoundError(f"blob not found: {blob_id}")
        del self.blobs[blob_id]

    def delete_all(self, blob_id, pattern):
        if self.delete_error is not None:
            raise self.delete_error


@pytest.fixture
def setup():
    data_repo = MockRepository()
    meta_repo = MockRepository()
    backref_repo = MockRepository()
    calls = []

    def factory(name, ext):
        calls.append((name, ext))
        if name == "data" and ext == "bin":
            return data_repo
        if name == "meta" and ext == "json":
            return meta_repo
        return backref_repo

    svc = BlobMediaService(factory, MediaConfig(max_size=1024 * 1024))
    return svc, data_repo, meta_repo, backref_repo, calls


def _media(data=b"test data", filename="test.txt", owner="testuser", mime_type=""):
    return Media(data, MediaMeta(filename=filename, owner=owner, mime_type=mime_type))


def test_factory_called_for_three_repositories(setup):
    _, _, _, _, calls = setup
    assert calls == [("data", "bin"), ("data", "txt"), ("meta", "json")]


def test_max_size_from_config(setup):
    svc = setup[0]
    assert svc.max_size() == 1024 * 1024


def test_store_new_media(setup):
    svc, data_repo, meta_repo, backref_repo, _ = setup
    media = Media(b"test data", MediaMeta(filename="test.txt"))
    with username_scope("testuser"):
        svc.store(media)
    assert data_repo.exists(media.hash)
    assert meta_repo.exists(media.id)
    assert data_repo.blobs[media.hash] == b"test data"
    assert backref_repo.blobs[media.hash] == media.id.encode()


def test_store_data_error(setup):
    svc, data_repo, meta_repo, _, _ = setup
    data_repo.store_error = OSError("store failed")
    media = Media(b"test data", MediaMeta(filename="test.txt"))
    with pytest.raises(OSError, match="store failed"):
        svc.store(media)
    assert not meta_repo.exists(media.id)


def test_store_media_too_large(setup):
    svc, data_repo, _, _, _ = setup
    media = Media(bytes(2 * 1024 * 1024), MediaMeta(filename="large.txt"))
    with pytest.raises(MediaTooLargeError):
        svc.store(media)
    assert data_repo.blobs == {}


def test_store_takes_exclusive_locks(setup):
    svc, data_repo, meta_repo, _, _ = setup
    media = _media()
    svc.store(media)
    assert meta_repo.locks == [(media.id, True)]
    assert data_repo.locks == [(media.hash, True)]


def test_store_twice_keeps_single_backref(setup):
    svc, _, _, backref_repo, _ = setup
    media = _media()
    svc.store(media)
    svc.store(media)
    assert backref_repo.blobs[media.hash] == media.id.encode()


def test_fetch_existing_media(setup):
    svc, _, _, _, _ = setup
    media = _media(mime_type="text/plain")
    with username_scope("testuser"):
        svc.store(media)
        fetched = svc.fetch(media.id)
    assert fetched.id == media.id
    assert fetched.data == media.data
    assert fetched.mime_type == "text/plain"


def test_fetch_unauthorized_user(setup):
    svc, _, _, _, _ = setup
    media = _media()
    svc.store(media)
    with username_scope("otheruser"), pytest.raises(UnauthorizedError):
        svc.fetch(media.id)


def test_fetch_without_user_is_unauthorized(setup):
    svc, _, _, _, _ = setup
    media = _media()
    svc.store(media)
    with pytest.raises(UnauthorizedError):
        svc.fetch(media.id)


def test_fetch_nonexistent_media(setup):
    svc = setup[0]
    with username_scope("testuser"), pytest.raises(FileNotFoundError):
        svc.fetch("nonexistent")


def test_delete_existing_media(setup):
    svc, data_repo, meta_repo, backref_repo, _ = setup
    media = _media()
    svc.store(media)
    with username_scope("testuser"):
        pruned, data_id = svc.delete(media.id)
    assert pruned is True
    assert data_id == media.hash
    assert not data_repo.exists(data_id)
    assert not backref_repo.exists(data_id)
    assert not meta_repo.exists(media.id)


def test_delete_unauthorized_user(setup):
    svc, data_repo, meta_repo, _, _ = setup
    media = _media()
    svc.store(media)
    with username_scope("otheruser"), pytest.raises(UnauthorizedError):
        svc.delete(media.id)
    assert meta_repo.exists(media.id)
    assert data_repo.exists(media.hash)


def test_delete_nonexistent_media(setup):
    svc = setup[0]
    with username_scope("testuser"), pytest.raises(FileNotFoundError):
        svc.delete("nonexistent")


def test_delete_shared_content_prunes_on_last_reference(setup):
    svc, data_repo, meta_repo, backref_repo, _ = setup
    first = _media(filename="a.txt")
    second = _media(filename="b.txt")
    assert first.hash == second.hash
    svc.store(first)
    svc.store(second)
    assert backref_repo.blobs[first.hash] == f"{first.id}\n{second.id}".encode()

    with username_scope("testuser"):
        pruned, _ = svc.delete(first.id)
        assert pruned is False
        assert data_repo.exists(first.hash)
        assert backref_repo.blobs[first.hash] == second.id.encode()
        assert not meta_repo.exists(first.id)

        pruned, data_id = svc.delete(second.id)
    assert pruned is True
    assert not data_repo.exists(data_id)


def test_lock_uses_shared_meta_lock(setup):
    svc, _, meta_repo, _, _ = setup
    with svc.lock("someid"):
        assert meta_repo.locks == [("someid", False)]


def test_lock_error_propagates(setup):
    svc, _, meta_repo, _, _ = setup
    meta_repo.lock_error = OSError("lock failed")
    with pytest.raises(OSError, match="lock failed"):
        with svc.lock("someid"):
            pass


def test_filesystem_round_trip(tmp_path):
    factory = filesystem_repository_factory(FileSystemBlobRepositoryConfig(basedir=str(tmp_path)))
    svc = BlobMediaService(factory, MediaConfig(max_size=1024))
    media = _media(data=b"filesystem data", mime_type="text/plain")
    with username_scope("testuser"):
        svc.store(media)
        fetched = svc.fetch(media.id)
        assert fetched.data == b"filesystem data"
        assert fetched.id == media.id
        pruned, data_id = svc.delete(media.id)
        assert pruned is True
        assert data_id == media.hash
        with pytest.raises(FileNotFoundError):
            svc.fetch(media.id)