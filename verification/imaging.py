import base64
import binascii
import io
import re
from typing import Any

from PIL import Image, UnidentifiedImageError
import pillow_heif

from .errors import ValidationError

pillow_heif.register_heif_opener()

DATA_URL_PREFIX = re.compile(r"^data:image/[\w.+-]+;base64,", re.IGNORECASE)

# Well below Pillow's decompression bomb warning band
MAX_IMAGE_PIXELS = 50_000_000


def strip_data_url_prefix(value: Any):
    if not isinstance(value, str):
        return None
    return DATA_URL_PREFIX.sub("", value.strip())


def decode_image_payload(value: Any, min_bytes: int) -> bytes:
    """
    Decode a base64 string or data URL into raw image bytes.

    Rejects missing, malformed and clearly truncated payloads.
    """
    b64 = strip_data_url_prefix(value)
    if not b64:
        raise ValidationError("Invalid image data format", "INVALID_IMAGE")
    try:
        data = base64.b64decode(b64, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("Invalid image data format", "INVALID_IMAGE")

    if len(data) < min_bytes:
        raise ValidationError(
            "Image too small",
            "IMAGE_TOO_SMALL",
            details={"size": len(data), "min_size": min_bytes},
        )
    return data


def to_jpeg(data: bytes, quality: int = 95, max_pixels: int = MAX_IMAGE_PIXELS) -> bytes:
    """
    Convert an uploaded image (JPEG / PNG / HEIC / ...) into JPEG bytes.
    """
    try:
        img = Image.open(io.BytesIO(data))
    except Image.DecompressionBombError as e:
        raise ValidationError("Image too large", "INVALID_IMAGE", details={"reason": str(e)})
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise ValidationError("Image could not be decoded", "INVALID_IMAGE", details={"reason": str(e)})

    # Dimensions come from the header; pixels are not decoded yet
    pixels = img.width * img.height
    if pixels > max_pixels:
        raise ValidationError(
            "Image too large",
            "INVALID_IMAGE",
            details={"pixels": pixels, "max_pixels": max_pixels},
        )

    try:
        img = img.convert("RGB")
    except (OSError, ValueError) as e:
        raise ValidationError("Image could not be decoded", "INVALID_IMAGE", details={"reason": str(e)})

    out = io.BytesIO()
    img.save(out, "JPEG", quality=quality)
    return out.getvalue()


def prepare_upload(value: Any, min_bytes: int) -> bytes:
    """Decode and validate an upload payload and return it as JPEG bytes"""
    return to_jpeg(decode_image_payload(value, min_bytes))
