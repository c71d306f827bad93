"""Unit tests for ImageOptimizer."""

import io

import pytest
from PIL import Image

from cutlist_intake.services.vision.image_optimizer import ImageOptimizer, classify_contrast


def png_bytes(size, color=(240, 240, 240)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


class TestImageOptimizer:
    """Resizing and re-encoding."""

    @pytest.mark.asyncio
    async def test_large_photo_is_resized_to_jpeg(self):
        optimizer = ImageOptimizer(max_dimension=2048)

        result = await optimizer.optimize(png_bytes((3000, 2000)), "image/png")

        assert result.mime_type == "image/jpeg"
        with Image.open(io.BytesIO(result.data)) as image:
            assert max(image.size) <= 2048

    @pytest.mark.asyncio
    async def test_invalid_image_is_passed_through(self):
        result = await ImageOptimizer().optimize(b"not an image", "image/jpeg")

        assert result.data == b"not an image"
        assert result.mime_type == "image/jpeg"
        assert result.reduction == 0.0

    @pytest.mark.parametrize(
        "contrast,expected",
        [(0.9, "printed"), (0.6, "mixed"), (0.4, "handwritten"), (0.1, "photo")],
    )
    def test_contrast_classification(self, contrast, expected):
        assert classify_contrast(contrast) == expected
