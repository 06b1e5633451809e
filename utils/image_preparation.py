# utils/image_preparation.py
import io
import logging
import math

from PIL import Image, UnidentifiedImageError

from services.errors import AcquisitionError, FailureKind

logger = logging.getLogger(__name__)

MAX_DIMENSION = 800
JPEG_QUALITY = 35
TARGET_BYTES = 300 * 1024


def _to_image(img_bytes: bytes) -> Image.Image:
    return Image.open(io.BytesIO(img_bytes)).convert("RGB")


def _encode_jpeg(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=JPEG_QUALITY, optimize=True)
    return buffer.getvalue()


def _downscale(image: Image.Image, max_dimension: int) -> Image.Image:
    width, height = image.size
    longest = max(width, height)
    if longest <= max_dimension:
        return image
    scale = max_dimension / longest
    return image.resize((max(1, int(width * scale)), max(1, int(height * scale))), Image.LANCZOS)


def prepare_jpeg(img_bytes: bytes) -> bytes:
    """
    Shrinks a photo to something a vision model accepts quickly.
    Longest side <= 800px, JPEG quality 35, then a second shrink when
    the payload is still above the target size.
    """
    if not img_bytes:
        raise AcquisitionError(FailureKind.IMAGE_PROCESSING_FAILED, details="empty image")

    try:
        image = _downscale(_to_image(img_bytes), MAX_DIMENSION)
        data = _encode_jpeg(image)

        if len(data) > TARGET_BYTES:
            ratio = math.sqrt(TARGET_BYTES / len(data))
            width, height = image.size
            image = image.resize(
                (max(1, int(width * ratio)), max(1, int(height * ratio))), Image.LANCZOS
            )
            data = _encode_jpeg(image)
    except (UnidentifiedImageError, OSError, ValueError) as e:
        logger.warning(f"⚠️ Image preparation failed: {e}")
        raise AcquisitionError(FailureKind.IMAGE_PROCESSING_FAILED, details=str(e)) from e

    logger.debug(f"🖼️ Prepared image {image.size[0]}x{image.size[1]} ({len(data) // 1024} KB)")
    return data
