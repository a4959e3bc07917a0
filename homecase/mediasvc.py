"""Media storage on blob repositories, with content de-duplication by backreferences."""

from __future__ import annotations

import abc
import logging
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass
from typing import Any

from homecase.blobstore import BlobRepository, RepositoryFactory
from homecase.config import env_field
from homecase.context import current_username
from homecase.domain import (
    Blob,
    BlobID,
    Media,
    MediaID,
    MediaMeta,
    MediaTooLargeError,
    UnauthorizedError,
)

DEFAULT_MAX_SIZE = 20 * 1024 * 1024

_BACKREF_SEPARATOR = b"\n"

_log = logging.getLogger(__name__)


@dataclass
class MediaConfig:
    """Settings of the media service; ``max_size`` is the upload limit in bytes."""

    max_size: int = env_field("MAX_SIZE", DEFAULT_MAX_SIZE)


class MediaService(abc.ABC):
    """Management of media objects."""

    @abc.abstractmethod
    def lock(self, media_id: MediaID) -> AbstractContextManager[Any]:
        """Lock a media object for the duration of a ``with`` block."""

    @abc.abstractmethod
    def store(self, media: Media) -> None:
        """Persist media; raise MediaTooLargeError above the size limit."""

    @abc.abstractmethod
    def delete(self, media_id: MediaID) -> tuple[bool, BlobID]:
        """Remove media; return whether its content was pruned and the content's ID."""

    @abc.abstractmethod
    def fetch(self, media_id: MediaID) -> Media:
        """Return the media with this identifier."""

    @abc.abstractmethod
    def max_size(self) -> int:
        """Return the largest accepted media size in bytes."""


@contextmanager
def _logged(success: str, failure: str, **attrs: Any) -> Iterator[dict[str, Any]]:
    """Log ``success`` at debug level, or ``failure`` with the error, around a block."""
    try:
        yield attrs
    except Exception as exc:
        _log.error(failure, extra={"media": dict(attrs), "error": str(exc)})
        raise
    _log.debug(success, extra={"media": dict(attrs)})


def _authorize(meta: MediaMeta) -> None:
    username = current_username()
    if username is None or username != meta.owner:
        raise UnauthorizedError(
            f'unauthorized: user "{username or ""}" is not owner "{meta.owner}"'
        )


class BlobMediaService(MediaService):
    """Media service keeping content, metadata and backreferences in blob repositories.

    Content is stored once per hash; each content blob carries a list of the
    metadata IDs that refer to it, and is removed when the last one goes.
    """

    def __init__(self, repo_factory: RepositoryFactory, config: MediaConfig | None = None) -> None:
        self.config = config if config is not None else MediaConfig()
        self._data_repo: BlobRepository = repo_factory("data", "bin")
        self._backref_repo: BlobRepository = repo_factory("data", "txt")
        self._meta_repo: BlobRepository = repo_factory("meta", "json")

    def max_size(self) -> int:
        return self.config.max_size

    @contextmanager
    def lock(self, media_id: MediaID) -> Iterator[None]:
        with _logged("media locked", "media lock failed", id=media_id):
            meta_lock = self._meta_repo.lock(media_id, False)
        with meta_lock:
            yield
        _log.debug("media unlocked", extra={"media": {"id": media_id}})

    def store(self, media: Media) -> None:
        with _logged(
            "media stored",
            "media store failed",
            id=media.id,
            size=media.size,
            type=media.mime_type,
        ):
            if media.size > self.config.max_size:
                raise MediaTooLargeError(
                    f"media too large: {media.size} exceeds {self.config.max_size}"
                )

            meta_blob = media.meta.as_blob()
            data_blob = media.as_blob()

            with self._meta_repo.lock(meta_blob.id, True), self._data_repo.lock(data_blob.id, True):
                if not self._data_repo.exists(data_blob.id):
                    self._data_repo.store(data_blob)

                if not self._meta_repo.exists(meta_blob.id):
                    self._meta_repo.store(meta_blob)
                    self._add_backrefs(data_blob.id, meta_blob.id)

    def delete(self, media_id: MediaID) -> tuple[bool, BlobID]:
        with _logged("media deleted", "media delete failed", id=media_id) as attrs:
            with self._meta_repo.lock(media_id, False):
                meta = self._fetch_meta(media_id)
                data_id = meta.hash
                attrs.update(dataID=data_id, owner=meta.owner, filename=meta.filename)

                _authorize(meta)

                with self._data_repo.lock(data_id, True):
                    pruned = self._prune(meta)
                    self._meta_repo.delete(media_id)
            attrs["pruned"] = pruned
        return pruned, data_id

    def fetch(self, media_id: MediaID) -> Media:
        with _logged("media fetched", "media fetch failed", id=media_id) as attrs:
            with self._meta_repo.lock(media_id, False):
                meta = self._fetch_meta(media_id)
                attrs.update(hash=meta.hash, owner=meta.owner, filename=meta.filename)

                _authorize(meta)

                with self._data_repo.lock(meta.hash, False):
                    data_blob = self._data_repo.fetch(meta.hash)
                attrs["dataID"] = data_blob.id
        return Media(data_blob.body, meta)

    def _fetch_meta(self, media_id: MediaID) -> MediaMeta:
        return MediaMeta.from_blob(self._meta_repo.fetch(media_id))

    def _fetch_backrefs(self, data_id: BlobID) -> list[BlobID]:
        if not self._backref_repo.exists(data_id):
            return []
        body = self._backref_repo.fetch(data_id).body
        return [part.decode("utf-8") for part in body.split(_BACKREF_SEPARATOR)]

    def _store_backrefs(self, data_id: BlobID, backrefs: list[BlobID]) -> None:
        body = _BACKREF_SEPARATOR.join(ref.encode("utf-8") for ref in backrefs)
        self._backref_repo.store(Blob(data_id, body))

    def _add_backrefs(self, data_id: BlobID, *meta_ids: BlobID) -> None:
        backrefs = self._fetch_backrefs(data_id)
        backrefs.extend(meta_ids)
        self._store_backrefs(data_id, backrefs)

    def _prune(self, meta: MediaMeta) -> bool:
        data_id = meta.hash
        backrefs = [ref for ref in self._fetch_backrefs(data_id) if ref != meta.id]

        if not backrefs:
            self._data_repo.delete(data_id)
            self._backref_repo.delete(data_id)
            return True

        self._store_backrefs(data_id, backrefs)
        return False