# homecase

Building blocks for storing and serving images: a content-addressed blob
store on the local filesystem, a media service that keeps each distinct
payload once and tracks who refers to it, JPEG/PNG/TIFF type checks and
resizing, a client that validates authentication tokens over HTTP, and
configuration read from environment variables into dataclasses.

The blob store uses `fcntl` file locks, so it runs on POSIX systems.

## Installing

```
pip install .
pip install ".[test]"   # with pytest and responses for the test suite
```

## Modules

### `homecase.crockford`

```python
from homecase.crockford import encode_crockford_b32lc, normalize_crockford_b32lc

encode_crockford_b32lc(bytes([0xF5, 0x3A]))   # 'ymx0'
normalize_crockford_b32lc("Z7IO-L5KM")         # 'z710-15km'
```

`encode_crockford_b32lc` encodes bytes with Crockford's Base32 alphabet, in
lower case and without padding. `normalize_crockford_b32lc` removes spaces,
maps `O` to `0` and `I`/`L` to `1`, and lower-cases the result.

### `homecase.domain`

* `Blob(id, body)` — an identified byte string, with `size`, `read()`,
  `write_to(writer)` and `read_from(reader)`.
* `MediaMeta` — frozen metadata (`filename`, `id`, `hash`, `size`, `owner`,
  `mime_type`). `as_blob()` writes it as compact JSON (key `mimeType` for the
  MIME type) under the media ID; `MediaMeta.from_blob(blob)` reads it back and
  raises `ValueError` on invalid content.
* `Media(data, meta)` — content plus metadata. On construction `hash` is set
  to the Crockford Base32 SHA-256 of the content, `size` to its length, and
  `id` to the Crockford Base32 SHA-256 of hash, file name, MIME type and owner.
  `as_blob()` returns the content under its hash.
* `MediaIDResponse(id, filename)` with `to_dict()`, and `User`.
* Errors derived from `DomainError`: `ImageTypeNotSupportedError`,
  `ImageTypeMismatchError`, `ImageTooLargeError`, `MediaTooLargeError`,
  `NoMediaIDError`, `UnauthorizedError`, `UserAlreadyExistsError`,
  `UserNotFoundError`, `InvalidCredentialsError`.

```python
from homecase.domain import Media, MediaMeta

media = Media(b"...image bytes...", MediaMeta(filename="cat.png", owner="alice"))
media.hash  # SHA-256 of the content, Crockford Base32
media.id    # derived from hash, file name, MIME type and owner
```

### `homecase.context`

Request-scoped values held in context variables:

```python
from homecase.context import current_username, username_scope, trace_id_scope

with username_scope("alice"), trace_id_scope("abc123"):
    current_username()   # 'alice'
current_username()       # None
```

### `homecase.imagecodec`

* `mime_type_for_filename(name)` — `image/jpeg` for `.jpg`/`.jpeg`,
  `image/png` for `.png`, `image/tiff` for `.tif`/`.tiff` (any case); other
  extensions raise `ImageTypeNotSupportedError`.
* `matches_header(mime_type, data)` — whether `data` starts with the magic
  bytes of that type (both TIFF byte orders are accepted).
* `resize_image(data, mime_type, width, interpolator)` — scales the image to
  `width` pixels wide, keeping the aspect ratio, and encodes it in the same
  format. Interpolators: `nearestneighbor`, `catmullrom`, `bilinear`,
  `approxbilinear`. Unknown names raise `UnknownInterpolatorError`, other
  MIME types `UnsupportedMIMETypeError`.

### `homecase.config`

Declare settings as dataclasses with `env_field(name, default)` and nest them
with `nested_field(type, prefix)`; the top-level class derives from
`EnvConfig`. `parse(config_type, namespace, environ=None)` reads
`os.environ` (or the given mapping). For the namespace `DEMO_IMAGESVC`, a
variable `MEDIA_MAX_SIZE` is looked up as `DEMO_IMAGESVC_MEDIA_MAX_SIZE`, then
`DEMO_MEDIA_MAX_SIZE`; the default applies when neither is set.

```python
from dataclasses import dataclass

from homecase.blobstore import FileSystemBlobRepositoryConfig
from homecase.config import EnvConfig, nested_field, parse
from homecase.logs import LoggerConfig
from homecase.mediasvc import MediaConfig


@dataclass
class Settings(EnvConfig):
    log: LoggerConfig = nested_field(LoggerConfig, "LOG_")
    media: MediaConfig = nested_field(MediaConfig, "MEDIA_")
    blob: FileSystemBlobRepositoryConfig = nested_field(FileSystemBlobRepositoryConfig, "BLOB_")


settings = parse(Settings, "DEMO_IMAGESVC")
```

Fields of type `str`, `int` and `bool` are supported. A required variable
that is unset raises `VarNotSetError`, a value that does not convert raises
`InvalidValueError`, another field type raises `UnsupportedVarTypeError`, and
a target that is not an `EnvConfig` dataclass raises `InvalidConfigError`.

| Setting                                   | Variable   | Default            |
|-------------------------------------------|------------|--------------------|
| `LoggerConfig.output`                     | `OUTPUT`   | `stderr`           |
| `LoggerConfig.level`                      | `LEVEL`    | `info`             |
| `LoggerConfig.filter`                     | `FILTER`   | *(empty)*          |
| `LoggerConfig.json`                       | `JSON`     | `false`            |
| `MediaConfig.max_size`                    | `MAX_SIZE` | `20971520`         |
| `FileSystemBlobRepositoryConfig.basedir`  | `BASEDIR`  | `var/storage/blob` |
| `HTTPClientConfig.auth_url`               | `AUTH_URL` | `http://localhost:8080/auth/validate` |

### `homecase.logs`

`configure(LoggerConfig(...), app_name)` installs one handler on the root
logger and returns it. Output goes to `stdout`, `stderr`, a file path
(appended), or nowhere for `discard` or an empty value; `output_handle`
overrides it with an open stream. Without `json` the `ConsoleHandler` writes
coloured lines with the record's extra attributes and source location, and
honours per-logger levels from `filter` (`repo.blob:warn,svc:debug`, parsed by
`parse_pkg_levels`). With `json` each record is one JSON object
(`JSONFormatter`). `TracingFilter` adds the current trace ID to every record.

### `homecase.blobstore`

`FileSystemBlobRepository(subdir, ext, config)` keeps each blob in its own
file below `basedir/subdir`, sharded by the first characters of the ID
(`ab/cd/ef/abcdef....ext`; short IDs are left-padded with zeros).
`lock(id, exclusive)` returns a context manager holding a shared or exclusive
`flock`; `store`, `fetch`, `exists`, `delete`, `delete_all(id, pattern)` and
`filename(id)` do what their names say. Fetching or deleting a missing blob
raises `FileNotFoundError`. `filesystem_repository_factory(config)` returns a
`(subdir, ext) -> repository` factory.

### `homecase.authclient`

`HTTPAuthClient(config, session=None).validate(token)` posts to
`config.auth_url` with the token in the `Authorization` header (and the
current trace ID in `X-Request-ID`). It returns the response body as the
username on `200`, `None` on any other status, and lets network errors
propagate.

### `homecase.mediasvc`

`BlobMediaService(repo_factory, config)` stores content in `data/*.bin`,
the list of metadata IDs referring to it in `data/*.txt`, and metadata in
`meta/*.json`. Identical content is written once.

```python
from homecase.blobstore import FileSystemBlobRepositoryConfig, filesystem_repository_factory
from homecase.context import username_scope
from homecase.domain import Media, MediaMeta
from homecase.mediasvc import BlobMediaService, MediaConfig

factory = filesystem_repository_factory(FileSystemBlobRepositoryConfig(basedir="/tmp/blobs"))
service = BlobMediaService(factory, MediaConfig())

media = Media(b"\x89PNG...", MediaMeta(filename="cat.png", owner="alice", mime_type="image/png"))
service.store(media)
with username_scope("alice"):
    fetched = service.fetch(media.id)
    pruned, data_id = service.delete(media.id)
```

`store` raises `MediaTooLargeError` above `max_size`. `fetch` and `delete`
raise `UnauthorizedError` unless the current username is the owner. `delete`
reports whether the content itself was removed because nothing refers to it
any more.

## What the package does not do

It provides no HTTP server, no request routing or middleware, and no
command to start a service. There is no image service layer that combines
media storage with upload checks and a cache of resized images, and no
generation of request IDs: callers set trace IDs themselves with
`trace_id_scope`. The pieces above are meant to be assembled by the
application that hosts them.