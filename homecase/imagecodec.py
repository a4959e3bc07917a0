"""Image file types, header checks and resizing."""

import io
import os

from PIL import Image

from homecase.domain import ImageTypeNotSupportedError

MIME_TYPE_JPEG = "image/jpeg"
MIME_TYPE_PNG = "image/png"
MIME_TYPE_TIFF = "image/tiff"

_EXTENSION_TYPES = {
    ".jpg": MIME_TYPE_JPEG,
    ".jpeg": MIME_TYPE_JPEG,
    ".png": MIME_TYPE_PNG,
    ".tiff": MIME_TYPE_TIFF,
    ".tif": MIME_TYPE_TIFF,
}

_HEADERS = {
    MIME_TYPE_JPEG: (b"\xff\xd8",),
    MIME_TYPE_PNG: (b"\x89\x50\x4e\x47\x0d\x0a\x1a\x0a",),
    MIME_TYPE_TIFF: (b"\x49\x49\x2a\x00", b"\x4d\x4d\x00\x2a"),
}

_PIL_FORMATS = {
    MIME_TYPE_JPEG: "JPEG",
    MIME_TYPE_PNG: "PNG",
    MIME_TYPE_TIFF: "TIFF",
}

_INTERPOLATORS = {
    "nearestneighbor": Image.Resampling.NEAREST,
    "catmullrom": Image.Resampling.BICUBIC,
    "bilinear": Image.Resampling.BILINEAR,
    "approxbilinear": Image.Resampling.BILINEAR,
}

_SEPARATORS = {"/", os.sep}


class UnknownInterpolatorError(ValueError):
    """Raised for an interpolator name that is not supported."""


class UnsupportedMIMETypeError(ValueError):
    """Raised for an image format that cannot be processed."""


def _extension(filename: str) -> str:
    for index in range(len(filename) - 1, -1, -1):
        char = filename[index]
        if char in _SEPARATORS:
            break
        if char == ".":
            return filename[index:]
    return ""


def mime_type_for_filename(filename: str) -> str:
    """Return the image MIME type implied by the file extension (case-insensitive)."""
    extension = _extension(filename).lower()
    try:
        return _EXTENSION_TYPES[extension]
    except KeyError:
        raise ImageTypeNotSupportedError(f'image type not supported: "{extension}"') from None


def matches_header(mime_type: str, data: bytes) -> bool:
    """Tell whether ``data`` starts with a signature of the given image type."""
    return any(data.startswith(header) for header in _HEADERS.get(mime_type, ()))


def _interpolator(name: str) -> Image.Resampling:
    try:
        return _INTERPOLATORS[name.lower()]
    except KeyError:
        raise UnknownInterpolatorError(f"unknown interpolator: {name}") from None


def _encode(image: Image.Image, mime_type: str) -> bytes:
    buffer = io.BytesIO()
    if mime_type == MIME_TYPE_JPEG:
        flat = Image.new("RGB", image.size, (0, 0, 0))
        flat.paste(image, mask=image.getchannel("A"))
        flat.save(buffer, "JPEG", quality=75)
    else:
        image.save(buffer, _PIL_FORMATS[mime_type])
    return buffer.getvalue()


def resize_image(data: bytes, mime_type: str, width: int, interpolator: str) -> bytes:
    """Scale an image to ``width`` pixels, keeping its aspect ratio, in its own format."""
    pil_format = _PIL_FORMATS.get(mime_type)
    if pil_format is None:
        raise UnsupportedMIMETypeError(f"unsupported MIME type: {mime_type}")

    with Image.open(io.BytesIO(data), formats=[pil_format]) as original:
        original.load()
        source = original.convert("RGBA")

    height = int(source.height * (width / source.width))
    resample = _interpolator(interpolator)
    if width <= 0 or height <= 0:
        raise ValueError(f"invalid target size: {width}x{height}")

    resized = source.resize((width, height), resample)
    return _encode(resized, mime_type)