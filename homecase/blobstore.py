"""Blob storage on the local filesystem, sharded into a directory hierarchy."""

from __future__ import annotations

import abc
import fcntl
import fnmatch
import logging
import os
from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass
from typing import Any

from homecase.config import env_field
from homecase.domain import Blob, BlobID

_DIR_PREFIX_LENGTH = 2  # 16^2 = 256 directories per level
_DIR_PREFIX_DEPTH = 3  # 256^3 directories in total
_ID_MIN_LENGTH = _DIR_PREFIX_LENGTH * _DIR_PREFIX_DEPTH

_log = logging.getLogger(__name__)


class BytesWrittenMismatchError(OSError):
    """Raised when fewer or more bytes were written than the blob holds."""


class BytesReadMismatchError(OSError):
    """Raised when the bytes read differ from the size of the stored file."""


class BlobRepository(abc.ABC):
    """Storage of blobs addressed by their identifiers."""

    @abc.abstractmethod
    def lock(self, blob_id: BlobID, exclusive: bool = False) -> AbstractContextManager[Any]:
        """Lock a blob; a write lock if ``exclusive``, otherwise a read lock.

        The returned object releases the lock when its ``with`` block ends.
        """

    @abc.abstractmethod
    def exists(self, blob_id: BlobID) -> bool:
        """Tell whether a blob with this identifier is stored."""

    @abc.abstractmethod
    def store(self, blob: Blob) -> None:
        """Persist a blob, replacing any earlier content."""

    @abc.abstractmethod
    def fetch(self, blob_id: BlobID) -> Blob:
        """Return the stored blob; raise FileNotFoundError if there is none."""

    @abc.abstractmethod
    def delete(self, blob_id: BlobID) -> None:
        """Remove a blob; raise FileNotFoundError if there is none."""

    @abc.abstractmethod
    def delete_all(self, blob_id: BlobID, pattern: str) -> None:
        """Remove every blob whose identifier is ``blob_id`` followed by ``pattern``."""


RepositoryFactory = Callable[[str, str], BlobRepository]
"""Creates a repository from a subdirectory name and a file extension."""


@dataclass
class FileSystemBlobRepositoryConfig:
    """Settings of the filesystem blob repository."""

    basedir: str = env_field("BASEDIR", "var/storage/blob")


class _FileLock:
    """An advisory lock held on a lock file next to a blob."""

    def __init__(self, path: str, fd: int, attrs: dict[str, Any]) -> None:
        self.path = path
        self._fd: int | None = fd
        self._attrs = attrs

    @property
    def held(self) -> bool:
        return self._fd is not None

    def release(self) -> None:
        """Remove the lock file and drop the lock; calling it again does nothing."""
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            os.remove(self.path)
        except OSError:
            pass
        os.close(fd)
        _log.debug("lock released", extra=self._attrs)

    def __enter__(self) -> _FileLock:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()


class FileSystemBlobRepository(BlobRepository):
    """Blob repository keeping each blob in its own file below a base directory."""

    def __init__(
        self,
        subdir: str,
        ext: str,
        config: FileSystemBlobRepositoryConfig | None = None,
    ) -> None:
        self.subdir = subdir
        self.ext = ext
        self.config = config if config is not None else FileSystemBlobRepositoryConfig()
        self._repo_attrs = {
            "basedir": self.config.basedir,
            "subdir": subdir,
            "ext": ext,
        }
        with self._logged("init storage", "init storage failed"):
            os.makedirs(self.config.basedir, mode=0o755, exist_ok=True)

    def __repr__(self) -> str:
        return (
            f"FileSystemBlobRepository(subdir={self.subdir!r}, ext={self.ext!r}, "
            f"basedir={self.config.basedir!r})"
        )

    @contextmanager
    def _logged(self, success: str, failure: str, **blob_attrs: Any) -> Iterator[None]:
        extra: dict[str, Any] = {"repo": self._repo_attrs}
        if blob_attrs:
            extra["blob"] = blob_attrs
        try:
            yield
        except Exception as exc:
            _log.error(failure, extra={**extra, "error": str(exc)})
            raise
        _log.debug(success, extra=extra)

    def _basename(self, blob_id: BlobID) -> str:
        name = str(blob_id).replace("/", "")
        name = name.rjust(_ID_MIN_LENGTH).replace(" ", "0")
        # e.g. 5f/56/69/5f56692f...fe9 for the identifier 5f56692f...fe9
        limit = min(_DIR_PREFIX_LENGTH * _DIR_PREFIX_DEPTH, len(name) - _DIR_PREFIX_LENGTH)
        prefixes = [name[i : i + _DIR_PREFIX_LENGTH] for i in range(0, limit, _DIR_PREFIX_LENGTH)]
        return os.path.join(self.config.basedir, self.subdir, *prefixes, name)

    def filename(self, blob_id: BlobID) -> str:
        """Return the path of the file that holds the blob."""
        return f"{self._basename(blob_id)}.{self.ext}"

    def _matching_filenames(self, blob_id: BlobID, pattern: str) -> list[str]:
        basename = self._basename(blob_id)
        full_pattern = f"{basename}{pattern}.{self.ext}"
        directory = os.path.dirname(basename)
        with os.scandir(directory) as entries:
            paths = [
                os.path.join(directory, entry.name)
                for entry in entries
                if not entry.is_dir()
            ]
        return sorted(path for path in paths if fnmatch.fnmatchcase(path, full_pattern))

    def lock(self, blob_id: BlobID, exclusive: bool = False) -> _FileLock:
        lockfile = self.filename(blob_id) + ".lock"
        mode = fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH
        attrs = {"repo": self._repo_attrs, "blob": {"lockfile": lockfile}}

        with self._logged("lock acquired", "lock failed", lockfile=lockfile):
            os.makedirs(os.path.dirname(lockfile), mode=0o755, exist_ok=True)
            fd = os.open(lockfile, os.O_CREAT | os.O_RDWR, 0o600)
            try:
                fcntl.flock(fd, mode)
            except OSError:
                try:
                    os.remove(lockfile)
                except OSError:
                    pass
                os.close(fd)
                raise
        return _FileLock(lockfile, fd, attrs)

    def exists(self, blob_id: BlobID) -> bool:
        return os.path.exists(self.filename(blob_id))

    def store(self, blob: Blob) -> None:
        path = self.filename(blob.id)
        with self._logged("blob stored", "blob store failed", id=blob.id, filename=path, size=blob.size):
            os.makedirs(os.path.dirname(path), mode=0o755, exist_ok=True)
            fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o644)
            with os.fdopen(fd, "r+b") as file:
                file.truncate(blob.size)
                written = blob.write_to(file)
                file.flush()
                os.fsync(file.fileno())
                stored = os.fstat(file.fileno()).st_size
            if written != stored or written != blob.size:
                raise BytesWrittenMismatchError(
                    f"bytes written mismatch: expected {blob.size}, got {written}"
                )

    def fetch(self, blob_id: BlobID) -> Blob:
        path = self.filename(blob_id)
        with self._logged("blob fetched", "blob fetch failed", id=blob_id, filename=path):
            with open(path, "rb") as file:
                blob = Blob(blob_id)
                count = blob.read_from(file)
                size = os.fstat(file.fileno()).st_size
            if count != size or count != blob.size:
                raise BytesReadMismatchError(f"bytes read mismatch: expected {size}, got {count}")
        return blob

    def delete(self, blob_id: BlobID) -> None:
        path = self.filename(blob_id)
        with self._logged("blob deleted", "blob delete failed", id=blob_id, filename=path):
            os.remove(path)

    def delete_all(self, blob_id: BlobID, pattern: str) -> None:
        with self._logged(
            "blob pattern deleted", "blob delete pattern failed", id=blob_id, pattern=pattern
        ):
            for path in self._matching_filenames(blob_id, pattern):
                try:
                    os.remove(path)
                except FileNotFoundError:
                    pass


def filesystem_repository_factory(config: FileSystemBlobRepositoryConfig) -> RepositoryFactory:
    """Return a factory creating filesystem repositories that share ``config``."""

    def factory(subdir: str, ext: str) -> BlobRepository:
        return FileSystemBlobRepository(subdir, ext, config)

    return factory