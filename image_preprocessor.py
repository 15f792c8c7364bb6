"""Client-side image normalization run before anything is sent to Gemini."""

import base64
import binascii
import io
import logging
import re

from PIL import Image, ImageOps, UnidentifiedImageError

from settings import JPEG_QUALITY, MAX_UPLOAD_BYTES

logger = logging.getLogger(__name__)

DATA_URI_RE = re.compile(r"^data:(image/[a-zA-Z.+-]+);base64,")
DEFAULT_MIME = "image/jpeg"


class InvalidInput(Exception):
    """Upload rejected before any network call. `kind` is InvalidType or TooLarge."""

    def __init__(self, kind, message):
        super().__init__(message)
        self.kind = kind


def validate(mimetype, size):
    if not mimetype or not mimetype.startswith("image/"):
        raise InvalidInput("InvalidType", "이미지 파일만 업로드해주세요.")
    if size > MAX_UPLOAD_BYTES:
        raise InvalidInput(
            "TooLarge", "파일 크기가 너무 큽니다. 10MB 이하의 이미지를 사용해주세요."
        )


def crop_to_square(raw_bytes):
    """Center-crop to a size x size square and re-encode as JPEG.

    If the bytes cannot be decoded the original payload is returned untouched;
    the upload then proceeds with the uncropped image.
    """
    try:
        img = Image.open(io.BytesIO(raw_bytes))
        img = ImageOps.exif_transpose(img)
        w, h = img.size
        size = min(w, h)
        left = (w - size) // 2
        top = (h - size) // 2
        cropped = img.crop((left, top, left + size, top + size))
        if cropped.mode != "RGB":
            cropped = cropped.convert("RGB")
        buf = io.BytesIO()
        cropped.save(buf, format="JPEG", quality=JPEG_QUALITY)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        logger.warning("Square crop failed, using original image: %s", e)
        return raw_bytes
    return buf.getvalue()


def to_data_uri(raw_bytes, mime):
    b64 = base64.b64encode(raw_bytes).decode("utf-8")
    return f"data:{mime};base64,{b64}"


def split_data_uri(image_data):
    """Return (mime_type, raw_bytes) for a data URI or bare base64 string."""
    match = DATA_URI_RE.match(image_data)
    if match:
        mime = match.group(1)
        b64 = image_data[match.end():]
    else:
        mime = DEFAULT_MIME
        b64 = image_data
    try:
        return mime, base64.b64decode(b64)
    except binascii.Error as e:
        raise ValueError("Invalid image data") from e


def prepare_upload(raw_bytes, mimetype):
    """Validate an uploaded file and turn it into a square JPEG data URI."""
    validate(mimetype, len(raw_bytes))
    cropped = crop_to_square(raw_bytes)
    if cropped is raw_bytes:
        return to_data_uri(raw_bytes, mimetype)
    return to_data_uri(cropped, DEFAULT_MIME)
