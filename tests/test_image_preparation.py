import io

import pytest
from PIL import Image

from services.errors import AcquisitionError, FailureKind
from utils.image_preparation import MAX_DIMENSION, TARGET_BYTES, prepare_jpeg


def _png(width, height, color=(200, 120, 40)):
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


def test_large_photo_is_downscaled_to_jpeg():
    data = prepare_jpeg(_png(2400, 1600))

    image = Image.open(io.BytesIO(data))
    assert image.format == "JPEG"
    assert max(image.size) == MAX_DIMENSION
    assert image.size == (800, 533)
    assert len(data) <= TARGET_BYTES


def test_small_photo_keeps_its_size():
    image = Image.open(io.BytesIO(prepare_jpeg(_png(320, 240))))
    assert image.size == (320, 240)


def test_transparent_image_is_flattened():
    buffer = io.BytesIO()
    Image.new("RGBA", (50, 50), (0, 0, 0, 0)).save(buffer, format="PNG")

    image = Image.open(io.BytesIO(prepare_jpeg(buffer.getvalue())))

    assert image.mode == "RGB"


def test_output_is_jpeg_bytes():
    data = prepare_jpeg(_png(100, 100))
    assert data[:2] == b"\xff\xd8"


@pytest.mark.parametrize("payload", [b"", b"definitely not an image"])
def test_unreadable_input(payload):
    with pytest.raises(AcquisitionError) as exc:
        prepare_jpeg(payload)
    assert exc.value.kind is FailureKind.IMAGE_PROCESSING_FAILED
