"""Image preparation before vision calls.

Photos from phones are often several megabytes; they are analyzed, resized
to fit the provider's preferred dimension and re-encoded as JPEG.
"""

import asyncio
import io
from dataclasses import dataclass
from typing import Optional

from PIL import Image, ImageStat

from cutlist_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)

MIN_JPEG_QUALITY = 60
QUALITY_STEP = 8


@dataclass
class ImageAnalysis:
    """Characteristics used to pick encoding settings."""
    content_type: str
    contrast: float
    complexity: float
    text_density: str
    max_dimension: int
    quality: int


@dataclass
class OptimizedImage:
    data: bytes
    mime_type: str
    original_bytes: int
    optimized_bytes: int
    analysis: Optional[ImageAnalysis] = None

    @property
    def reduction(self) -> float:
        if not self.original_bytes:
            return 0.0
        return 1 - self.optimized_bytes / self.original_bytes


def classify_contrast(contrast: float) -> str:
    """Map average channel contrast (0.0 to 1.0) to a content type."""
    if contrast > 0.8:
        return "printed"
    if contrast > 0.5:
        return "mixed"
    if contrast > 0.3:
        return "handwritten"
    return "photo"


class ImageOptimizer:
    """Resizes and re-encodes images toward a target byte size."""

    def __init__(self, max_dimension: int = 2048, target_bytes: int = 1_500_000):
        self.max_dimension = max_dimension
        self.target_bytes = target_bytes

    def analyze(self, image: Image.Image) -> ImageAnalysis:
        stat = ImageStat.Stat(image)
        extrema = stat.extrema
        contrast = sum((high - low) / 255 for low, high in extrema) / max(len(extrema), 1)
        complexity = min(sum(stat.stddev) / max(len(stat.stddev), 1) / 100, 1.0)
        content_type = classify_contrast(contrast)

        width, height = image.size
        aspect_ratio = width / max(height, 1)
        if aspect_ratio > 1.5 or aspect_ratio < 0.67:
            text_density = "dense"
        elif content_type == "printed":
            text_density = "normal"
        else:
            text_density = "sparse"

        if content_type == "handwritten":
            quality = 95
        elif content_type == "printed" and complexity > 0.3:
            quality = 92
        elif text_density == "dense":
            quality = 90
        else:
            quality = 85

        return ImageAnalysis(
            content_type=content_type,
            contrast=round(contrast, 3),
            complexity=round(complexity, 3),
            text_density=text_density,
            max_dimension=self.max_dimension,
            quality=quality,
        )

    async def optimize(self, data: bytes, mime_type: str) -> OptimizedImage:
        return await asyncio.to_thread(self.optimize_sync, data, mime_type)

    def optimize_sync(self, data: bytes, mime_type: str) -> OptimizedImage:
        """Optimize an image; on any failure the original bytes are returned."""
        try:
            image = Image.open(io.BytesIO(data))
            image.load()
            if image.mode not in ("RGB", "L"):
                image = image.convert("RGB")

            analysis = self.analyze(image)
            if max(image.size) > self.max_dimension:
                image.thumbnail((self.max_dimension, self.max_dimension))

            quality = analysis.quality
            encoded = self._encode(image, quality)
            while len(encoded) > self.target_bytes and quality > MIN_JPEG_QUALITY:
                quality = max(MIN_JPEG_QUALITY, quality - QUALITY_STEP)
                encoded = self._encode(image, quality)

            if len(encoded) >= len(data) and max(Image.open(io.BytesIO(data)).size) <= self.max_dimension:
                return OptimizedImage(data, mime_type, len(data), len(data), analysis)

            LOGGER.info(
                "Image optimized",
                extra={
                    "original_kb": round(len(data) / 1024, 1),
                    "optimized_kb": round(len(encoded) / 1024, 1),
                    "content_type": analysis.content_type,
                    "quality": quality,
                },
            )
            return OptimizedImage(encoded, "image/jpeg", len(data), len(encoded), analysis)

        except Exception as e:
            LOGGER.warning("Image optimization failed, using original", extra={"error": str(e)})
            return OptimizedImage(data, mime_type, len(data), len(data))

    @staticmethod
    def _encode(image: Image.Image, quality: int) -> bytes:
        buffer = io.BytesIO()
        image.save(buffer, format="JPEG", quality=quality, optimize=True)
        return buffer.getvalue()
