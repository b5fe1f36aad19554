"""
Preprocessing Module
====================
Handles image ingestion (arrays, encoded bytes, files) and the
grayscale preparation that precedes silhouette detection.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import cv2
import numpy as np

from config import PipelineConfig
from errors import DecodeFailure

logger = logging.getLogger(__name__)

ImageInput = Union['RawImage', np.ndarray, bytes, bytearray, memoryview, str, Path]


@dataclass(frozen=True, eq=False)
class RawImage:
    """
    An immutable pixel buffer handed to the pipeline for one measurement.

    pixels is 8-bit, either (H, W) grayscale or (H, W, C) BGR/BGRA, and is
    marked read-only.
    """
    pixels: np.ndarray
    source: Optional[str] = None

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @classmethod
    def from_array(cls, array: np.ndarray, source: Optional[str] = None) -> 'RawImage':
        """Wrap an already-decoded image array (copied, converted to uint8)."""
        _check_shape(array)
        pixels = _to_uint8(array)
        if pixels.ndim == 3 and pixels.shape[2] == 1:
            pixels = pixels[:, :, 0]
        pixels = np.array(pixels, copy=True)
        pixels.setflags(write=False)
        return cls(pixels=pixels, source=source)

    @classmethod
    def from_bytes(cls, data: Union[bytes, bytearray, memoryview],
                   source: Optional[str] = None) -> 'RawImage':
        """Decode an encoded image (PNG, JPEG, ...)."""
        if not data:
            raise DecodeFailure("empty image data")
        buf = np.frombuffer(bytes(data), dtype=np.uint8)
        try:
            decoded = cv2.imdecode(buf, cv2.IMREAD_COLOR)
        except cv2.error as e:
            raise DecodeFailure(f"could not decode image data: {e}") from e
        if decoded is None:
            raise DecodeFailure("could not decode image data")
        return cls.from_array(decoded, source=source)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> 'RawImage':
        """Load an image file from disk."""
        image = cv2.imread(str(path))
        if image is None:
            raise DecodeFailure(f"could not load image {path}")
        return cls.from_array(image, source=Path(path).name)


def _check_shape(array) -> None:
    if not isinstance(array, np.ndarray):
        raise DecodeFailure(f"expected numpy array, got {type(array).__name__}")
    if array.ndim not in (2, 3) or array.size == 0:
        raise DecodeFailure(f"unsupported image shape {array.shape}")
    if array.ndim == 3 and array.shape[2] not in (1, 3, 4):
        raise DecodeFailure(f"unsupported channel count {array.shape[2]}")


def _to_uint8(array: np.ndarray) -> np.ndarray:
    if array.dtype == np.uint8:
        return array
    if array.dtype == np.bool_:
        return array.astype(np.uint8) * 255
    if array.dtype == np.uint16:
        return (array // 257).astype(np.uint8)
    if np.issubdtype(array.dtype, np.floating):
        finite = np.nan_to_num(array.astype(np.float64))
        # Floats in [0, 1] are treated as normalized intensities
        if finite.max() <= 1.0:
            finite = finite * 255.0
        return np.clip(finite, 0, 255).astype(np.uint8)
    return np.clip(array, 0, 255).astype(np.uint8)


def ingest(image: ImageInput) -> RawImage:
    """
    Turn any supported image input into a RawImage.

    Raises:
        DecodeFailure: if the input cannot be decoded to a pixel buffer.
    """
    if isinstance(image, RawImage):
        # Built directly, so the buffer has not been checked yet
        _check_shape(image.pixels)
        if image.pixels.dtype != np.uint8:
            raise DecodeFailure(f"expected 8-bit pixels, got {image.pixels.dtype}")
        if image.pixels.ndim == 3 and image.pixels.shape[2] == 1:
            return RawImage.from_array(image.pixels, source=image.source)
        return image
    if isinstance(image, np.ndarray):
        return RawImage.from_array(image)
    if isinstance(image, (bytes, bytearray, memoryview)):
        return RawImage.from_bytes(image)
    if isinstance(image, (str, Path)):
        return RawImage.from_file(image)
    raise DecodeFailure(f"unsupported image input {type(image).__name__}")


class ImagePreprocessor:
    """
    Prepares a grayscale detection image.

    Steps:
    1. Grayscale conversion
    2. Downscale to the configured maximum dimension
    3. Contrast adjustment around mid-gray
    4. Gaussian blur
    """

    def __init__(self, config: PipelineConfig):
        self.config = config

    def to_gray(self, image: np.ndarray) -> np.ndarray:
        """Convert to grayscale if needed."""
        if image.ndim == 2:
            return image.copy()
        if image.shape[2] == 4:
            return cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
        return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)

    def downscale(self, gray: np.ndarray) -> np.ndarray:
        """Shrink so the longest side is at most max_image_dimension."""
        max_dim = self.config.detection.max_image_dimension
        h, w = gray.shape[:2]
        if max_dim <= 0 or max(h, w) <= max_dim:
            return gray
        factor = max_dim / float(max(h, w))
        size = (max(1, int(round(w * factor))), max(1, int(round(h * factor))))
        logger.debug("Downscaling %dx%d -> %dx%d for detection", w, h, size[0], size[1])
        return cv2.resize(gray, size, interpolation=cv2.INTER_AREA)

    def adjust_contrast(self, gray: np.ndarray) -> np.ndarray:
        """Scale intensities around mid-gray by contrast_adjustment."""
        alpha = self.config.detection.contrast_adjustment
        if alpha == 1.0:
            return gray
        adjusted = alpha * (gray.astype(np.float32) - 128.0) + 128.0
        return np.clip(adjusted, 0, 255).astype(np.uint8)

    def blur(self, gray: np.ndarray) -> np.ndarray:
        k = self.config.detection.blur_kernel_size
        if k <= 0:
            return gray
        if k % 2 == 0:
            k += 1
        return cv2.GaussianBlur(gray, (k, k), 0)

    def is_featureless(self, gray: np.ndarray) -> bool:
        """True when the gray range is too narrow to hold a silhouette."""
        spread = int(gray.max()) - int(gray.min())
        return spread < self.config.detection.min_contrast

    def prepare(self, image: RawImage) -> np.ndarray:
        """Grayscale, downscaled, contrast-adjusted image (not yet blurred)."""
        gray = self.to_gray(image.pixels)
        gray = self.downscale(gray)
        return self.adjust_contrast(gray)
