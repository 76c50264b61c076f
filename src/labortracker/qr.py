"""QR code rendering and camera scanning.

Rendering uses OpenCV's QR encoder. Scanning opens a camera through
``cv2.VideoCapture`` inside :class:`QRScanner`, which releases the device on
every exit path, including errors and timeouts.
"""

import logging
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

import cv2
import numpy as np

from labortracker.errors import DeviceAccessError

logger = logging.getLogger(__name__)

QUIET_ZONE_MODULES = 4


def render_qr(text: str, scale: int = 8) -> np.ndarray:
    """Render ``text`` as a grayscale QR image.

    Args:
        text: Content to encode.
        scale: Pixels per QR module.

    Returns:
        Image with a white quiet zone around the code.
    """
    modules = cv2.QRCodeEncoder.create().encode(text)
    image = cv2.resize(modules, None, fx=scale, fy=scale, interpolation=cv2.INTER_NEAREST)
    border = QUIET_ZONE_MODULES * scale
    return cv2.copyMakeBorder(image, border, border, border, border, cv2.BORDER_CONSTANT, value=255)


def save_qr(text: str, path: str | Path, scale: int = 8) -> Path:
    """Render ``text`` as a QR code and write it to an image file.

    Raises:
        OSError: If the image cannot be written.
    """
    path = Path(path)
    if not cv2.imwrite(str(path), render_qr(text, scale=scale)):
        raise OSError(f"Could not write QR image to {path}")
    logger.info(f"Saved QR code ({len(text)} chars) to {path}")
    return path


def decode_qr_image(image: np.ndarray, detector: Any = None) -> str | None:
    """Read a QR code from an image.

    Returns:
        Decoded text, or None if no code was found.
    """
    detector = detector or cv2.QRCodeDetector()
    text, _points, _straight = detector.detectAndDecode(image)
    return text or None


class QRScanner:
    """Scoped camera session that reads QR codes from video frames.

    Example:
        with QRScanner(camera_index=0) as scanner:
            text = scanner.scan(timeout=30)
    """

    def __init__(
        self,
        camera_index: int = 0,
        capture_factory: Callable[[int], Any] = cv2.VideoCapture,
        detector: Any = None,
    ) -> None:
        self.camera_index = camera_index
        self._capture_factory = capture_factory
        self._detector = detector
        self._capture: Any = None

    def __enter__(self) -> "QRScanner":
        capture = self._capture_factory(self.camera_index)
        if not capture.isOpened():
            capture.release()
            raise DeviceAccessError(
                "Camera access denied or not available. Please check your camera permissions."
            )
        self._capture = capture
        logger.debug(f"Opened camera {self.camera_index}")
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        """Release the camera."""
        if self._capture is not None:
            self._capture.release()
            self._capture = None
            logger.debug(f"Released camera {self.camera_index}")

    def read_once(self) -> str | None:
        """Grab one frame and try to decode a QR code from it.

        Raises:
            DeviceAccessError: If the camera is closed or stops delivering frames.
        """
        if self._capture is None:
            raise DeviceAccessError("Camera is not open")
        ok, frame = self._capture.read()
        if not ok:
            raise DeviceAccessError("Camera stopped delivering frames")
        if self._detector is None:
            self._detector = cv2.QRCodeDetector()
        return decode_qr_image(frame, self._detector)

    def scan(
        self,
        timeout: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> str | None:
        """Read frames until a QR code is found or ``timeout`` seconds pass.

        Returns:
            Decoded text, or None on timeout.
        """
        deadline = clock() + timeout
        while clock() < deadline:
            text = self.read_once()
            if text:
                return text
        logger.info(f"No QR code found within {timeout:.0f}s")
        return None


def scan_qr(camera_index: int = 0, timeout: float = 60.0, **kwargs: Any) -> str | None:
    """Open the camera, scan for one QR code and release the camera."""
    with QRScanner(camera_index=camera_index, **kwargs) as scanner:
        return scanner.scan(timeout)
