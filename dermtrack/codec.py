"""
DermTrack - Image codec
Converts between in-memory image bytes and the data URL stored with each lesion image.
"""

import base64
import binascii
import io
import re
from typing import Optional

from PIL import Image, UnidentifiedImageError

from dermtrack.errors import DecodeError
from dermtrack.schemas import BinaryHandle

DEFAULT_MIME_TYPE = "application/octet-stream"

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<payload>.*)$", re.DOTALL)


def sniff_mime_type(data: bytes, fallback: Optional[str] = None) -> str:
    """Identifies the image format with Pillow, without decoding the pixels"""
    try:
        with Image.open(io.BytesIO(data)) as image:
            mime_type = image.get_format_mimetype()
    except (UnidentifiedImageError, OSError, ValueError):
        mime_type = None
    return mime_type or fallback or DEFAULT_MIME_TYPE


def make_handle(data: bytes, name: str, mime_type: Optional[str] = None) -> BinaryHandle:
    """Wraps uploaded bytes in a handle, sniffing the MIME type when not given"""
    if not mime_type or mime_type == DEFAULT_MIME_TYPE:
        mime_type = sniff_mime_type(data, fallback=mime_type)
    return BinaryHandle(name=name, mime_type=mime_type, data=data)


def encode(handle: BinaryHandle) -> str:
    """Convierte una imagen en memoria a data URL base64"""
    payload = base64.b64encode(handle.data).decode()
    return f"data:{handle.mime_type};base64,{payload}"


def decode(data_url: str, name: str) -> BinaryHandle:
    """
    Reconstructs a binary handle from a data URL produced by `encode`.

    Args:
        data_url: String of the form ``data:<mime>;base64,<payload>``
        name: Name given to the rebuilt handle

    Returns:
        BinaryHandle with the decoded bytes

    Raises:
        DecodeError: if the header is missing or the payload is not valid base64
    """
    match = _DATA_URL_RE.match(data_url or "")
    if match is None:
        raise DecodeError(f"Image {name} is not a base64 data URL")

    try:
        data = base64.b64decode(match.group("payload"), validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Image {name} has a corrupt payload: {e}") from e

    return BinaryHandle(name=name, mime_type=match.group("mime"), data=data)
