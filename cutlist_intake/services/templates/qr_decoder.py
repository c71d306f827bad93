"""QR code reading for printed templates."""

import asyncio
from abc import ABC, abstractmethod
from typing import Optional

import cv2
import numpy as np

from cutlist_intake.core.exceptions import TemplateDetectionError
from cutlist_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)


class QRDecoder(ABC):
    @abstractmethod
    async def decode(self, image_bytes: bytes) -> Optional[str]:
        """Return the QR payload, or None when no code is found."""


class OpenCVQRDecoder(QRDecoder):
    """Decodes QR codes with OpenCV's built-in detector."""

    async def decode(self, image_bytes: bytes) -> Optional[str]:
        return await asyncio.to_thread(self._decode_sync, image_bytes)

    def _decode_sync(self, image_bytes: bytes) -> Optional[str]:
        buffer = np.frombuffer(image_bytes, dtype=np.uint8)
        image = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
        if image is None:
            raise TemplateDetectionError("Image could not be decoded for QR detection")

        data, points, _ = cv2.QRCodeDetector().detectAndDecode(image)
        if not data:
            # Small codes on large photos are often missed at full size
            height, width = image.shape[:2]
            if max(height, width) > 1600:
                scale = 1600 / max(height, width)
                resized = cv2.resize(image, (int(width * scale), int(height * scale)))
                data, points, _ = cv2.QRCodeDetector().detectAndDecode(resized)

        if not data:
            return None
        LOGGER.debug("QR code decoded", extra={"payload_length": len(data)})
        return data.strip()
