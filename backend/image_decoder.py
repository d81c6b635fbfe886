import base64
import binascii
import logging
import os
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass

from errors import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "image/png"

# suffix for temporary uploads
EXTENSION_MAP = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "image/heic": ".heic",
    "image/heif": ".heif",
}


@dataclass(frozen=True)
class RawImage:
    data: bytes
    mime_type: str = DEFAULT_MIME_TYPE


def sniff_mime_type(content):
    if content.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if content.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if content.startswith((b"GIF87a", b"GIF89a")):
        return "image/gif"
    if content[:4] == b"RIFF" and content[8:12] == b"WEBP":
        return "image/webp"
    if len(content) >= 12 and content[4:8] == b"ftyp" and content[8:12] in {b"heic", b"heix", b"mif1", b"msf1"}:
        return "image/heic"
    return DEFAULT_MIME_TYPE


def _split_data_uri(payload):
    """Return (declared mime type or None, base64 part) for a raw or data-URI payload."""
    if "," not in payload:
        return None, payload

    prefix, encoded = payload.split(",", 1)
    mime_type = None
    if prefix.startswith("data:"):
        mime_type = prefix[len("data:"):].split(";", 1)[0].strip().lower() or None
    return mime_type, encoded


def decode_image_payload(payload):
    """
    Turn the `image` field of a request into a RawImage.

    Accepts raw base64 or a `data:<mime>;base64,<payload>` URI.
    """
    if payload is None:
        raise ValidationError("Image data is required")
    if not isinstance(payload, str):
        raise ValidationError("Invalid image format")

    mime_type, encoded = _split_data_uri(payload)
    encoded = "".join(encoded.split())
    if "," in payload and not encoded:
        raise ValidationError("Invalid image format")

    try:
        data = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("Invalid image format") from exc

    if not data:
        raise ValidationError("Empty image data")

    return RawImage(data=data, mime_type=mime_type or sniff_mime_type(data))


@contextmanager
def temporary_image_file(raw_image, directory=None):
    """Write the image to a uniquely named file and always delete it afterwards."""
    if directory:
        os.makedirs(directory, exist_ok=True)
    suffix = EXTENSION_MAP.get(raw_image.mime_type, ".img")
    fd, path = tempfile.mkstemp(prefix="upload_", suffix=suffix, dir=directory)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(raw_image.data)
        yield path
    finally:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        logger.debug("Removed temporary upload %s", path)
