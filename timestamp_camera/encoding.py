import io
import struct
from typing import Tuple

import numpy as np
from PIL import Image

from .errors import EncodingError

MIME_TYPE_JPEG = "image/jpeg"
MIME_TYPE_PNG = "image/png"
MIME_TYPE_RAW_RGBA = "image/vnd.viam.rgba"
MIME_TYPE_SUFFIX_LAZY = "+lazy"
DEFAULT_MIME_TYPE = MIME_TYPE_JPEG

SUPPORTED_MIME_TYPES = [MIME_TYPE_JPEG, MIME_TYPE_PNG, MIME_TYPE_RAW_RGBA]

# "RGBA" followed by width and height as big-endian uint32
RAW_RGBA_MAGIC = b"RGBA"
RAW_RGBA_HEADER = struct.Struct(">4sII")

EXTENSIONS = {
    MIME_TYPE_JPEG: "jpg",
    MIME_TYPE_PNG: "png",
    MIME_TYPE_RAW_RGBA: "rgba",
}


def resolve_mime_type(mime_type: str | None) -> str:
    """Strips the lazy suffix and applies the default for an empty hint."""
    mime_type = (mime_type or "").strip()
    if mime_type.endswith(MIME_TYPE_SUFFIX_LAZY):
        mime_type = mime_type[: -len(MIME_TYPE_SUFFIX_LAZY)]
    return mime_type or DEFAULT_MIME_TYPE


def encode_image(pixels: np.ndarray, mime_type: str | None) -> Tuple[bytes, str]:
    """Encode an RGBA raster into the requested format.

    Returns the payload and the MIME type actually produced.
    """
    actual = resolve_mime_type(mime_type)
    if actual not in SUPPORTED_MIME_TYPES:
        raise EncodingError(f"do not know how to encode {actual!r}")

    height, width = pixels.shape[:2]
    if actual == MIME_TYPE_RAW_RGBA:
        return RAW_RGBA_HEADER.pack(RAW_RGBA_MAGIC, width, height) + pixels.tobytes(), actual

    img = Image.fromarray(pixels)
    buffer = io.BytesIO()
    try:
        if actual == MIME_TYPE_JPEG:
            img.convert("RGB").save(buffer, "JPEG", quality=100)
        else:
            img.save(buffer, "PNG")
    except (OSError, ValueError) as e:
        raise EncodingError(f"failed to encode image as {actual!r}: {e}") from e
    return buffer.getvalue(), actual


def decode_image(data: bytes, mime_type: str) -> np.ndarray:
    """Decode a payload produced by encode_image back into an RGBA raster."""
    actual = resolve_mime_type(mime_type)
    if actual == MIME_TYPE_RAW_RGBA:
        if len(data) < RAW_RGBA_HEADER.size:
            raise EncodingError(f"raw rgba payload is {len(data)} bytes, shorter than its header")
        magic, width, height = RAW_RGBA_HEADER.unpack_from(data)
        if magic != RAW_RGBA_MAGIC:
            raise EncodingError("raw rgba payload has a bad header")
        body = data[RAW_RGBA_HEADER.size:]
        if len(body) != width * height * 4:
            raise EncodingError(f"raw rgba body is {len(body)} bytes, expected {width * height * 4} for {width}x{height}")
        return np.frombuffer(body, dtype=np.uint8).reshape(height, width, 4)
    if actual not in SUPPORTED_MIME_TYPES:
        raise EncodingError(f"do not know how to decode {actual!r}")
    with Image.open(io.BytesIO(data)) as img:
        return np.asarray(img.convert("RGBA"))


def extension_for(mime_type: str) -> str:
    return EXTENSIONS.get(resolve_mime_type(mime_type), "bin")
