import io
from dataclasses import dataclass
from typing import List, Optional, Tuple
from PIL import Image, UnidentifiedImageError
from .config import SIGNATURE_MAX_BYTES, SIGNATURE_MIN_DIMENSION
from .utils import b64image_to_bytes, declared_mime

ALLOWED_FORMATS = {"PNG": ("image/png", "png"), "JPEG": ("image/jpeg", "jpg")}


@dataclass
class SignatureImage:
    data: bytes
    content_type: str
    extension: str
    width: int
    height: int


def validate_signature_image(raw: Optional[str]) -> Tuple[Optional[SignatureImage], List[str]]:
    """Decode and check a submitted signature image.

    Returns the decoded image or the list of reasons it was rejected. Nothing
    is written anywhere.
    """
    errors: List[str] = []
    if not raw or not isinstance(raw, str) or not raw.strip():
        return None, ["signature_image is required"]

    mime = declared_mime(raw)
    if mime is not None and mime not in {ct for ct, _ in ALLOWED_FORMATS.values()}:
        errors.append(f"signature_image type {mime} is not supported (png or jpeg)")

    # base64 inflates by 4/3; refuse oversized payloads before decoding them
    if len(raw) > SIGNATURE_MAX_BYTES * 4 // 3 + 1024:
        errors.append(f"signature_image exceeds {SIGNATURE_MAX_BYTES} bytes")
        return None, errors

    try:
        data = b64image_to_bytes(raw.strip())
    except ValueError:
        errors.append("signature_image is not valid base64")
        return None, errors
    if not data:
        errors.append("signature_image is empty")
        return None, errors
    if len(data) > SIGNATURE_MAX_BYTES:
        errors.append(f"signature_image exceeds {SIGNATURE_MAX_BYTES} bytes")

    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = img.format
            width, height = img.size
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError):
        errors.append("signature_image is not a readable image")
        return None, errors

    if fmt not in ALLOWED_FORMATS:
        errors.append(f"signature_image format {fmt} is not supported (png or jpeg)")
        return None, errors
    content_type, extension = ALLOWED_FORMATS[fmt]
    if mime is not None and mime in {ct for ct, _ in ALLOWED_FORMATS.values()} and mime != content_type:
        errors.append(f"signature_image declared as {mime} but contains {content_type}")
    if width < SIGNATURE_MIN_DIMENSION or height < SIGNATURE_MIN_DIMENSION:
        errors.append(f"signature_image must be at least {SIGNATURE_MIN_DIMENSION}x{SIGNATURE_MIN_DIMENSION} pixels")

    if errors:
        return None, errors
    return SignatureImage(data, content_type, extension, width, height), []
