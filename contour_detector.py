"""
Contour Detector Module
=======================
Finds the silhouette of a pendant droplet in a backlit photo.

The image is thresholded (Otsu) with the configured polarity, the
top-level contours are extracted with every boundary pixel kept, and
the contour with the most points is taken to be the droplet.

Coordinates are normalized: origin at the top-left corner, x to the
right, y downwards, x = column / width and y = row / height.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import cv2
import numpy as np

from config import PipelineConfig
from errors import NoContourFound
from preprocessing import ImagePreprocessor, RawImage

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class Contour:
    """One connected boundary as an ordered (N, 2) array of normalized points."""
    points: np.ndarray

    @classmethod
    def from_points(cls, points) -> 'Contour':
        arr = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        arr.setflags(write=False)
        return cls(points=arr)

    @property
    def point_count(self) -> int:
        return int(self.points.shape[0])

    def to_pixels(self, width: int, height: int) -> np.ndarray:
        """Pixel coordinates in OpenCV contour layout (N, 1, 2) int32."""
        scaled = np.round(self.points * np.array([width, height], dtype=np.float64))
        return scaled.astype(np.int32).reshape(-1, 1, 2)


def select_droplet_contour(contours: Sequence[Contour]) -> Contour:
    """
    Pick the contour with the largest point count.

    Ties keep the earliest contour. Raises NoContourFound when empty.
    """
    if not contours:
        raise NoContourFound("no top-level contour detected")
    # max() returns the first maximal element
    return max(contours, key=lambda c: c.point_count)


class ContourDetector:
    """
    Detects top-level silhouette contours in a droplet photo.

    Polarity follows DetectionConfig.detect_dark_on_light: a dark droplet
    on a bright backlight is the foreground by default.
    """

    def __init__(self, config: PipelineConfig):
        self.config = config
        self.preprocessor = ImagePreprocessor(config)

    def detect(self, image: RawImage) -> List[Contour]:
        """
        Run contour detection on an image.

        Returns:
            All top-level contours, in detection order. Empty for a
            featureless image.
        """
        gray = self.preprocessor.prepare(image)
        if self.preprocessor.is_featureless(gray):
            logger.debug("Image is featureless, no contours")
            return []

        mask = self._threshold(self.preprocessor.blur(gray))
        h, w = mask.shape[:2]

        found = cv2.findContours(mask, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_NONE)
        # OpenCV 3 returns (image, contours, hierarchy), OpenCV 4 (contours, hierarchy)
        raw_contours = found[0] if len(found) == 2 else found[1]

        scale = np.array([w, h], dtype=np.float64)
        contours = [
            Contour.from_points(c.reshape(-1, 2).astype(np.float64) / scale)
            for c in raw_contours
        ]
        logger.debug("Detected %d top-level contours", len(contours))
        return contours

    def detect_droplet(self, image: RawImage) -> Contour:
        """
        Detect contours and select the droplet.

        Raises:
            NoContourFound: nothing was found, or OpenCV failed while
                processing the image.
        """
        try:
            contours = self.detect(image)
        except cv2.error as e:
            logger.debug("Contour detection failed: %s", e)
            raise NoContourFound(f"contour detection failed: {e}") from e

        droplet = select_droplet_contour(contours)
        logger.debug("Selected droplet contour with %d points", droplet.point_count)
        return droplet

    def _threshold(self, gray: np.ndarray) -> np.ndarray:
        if self.config.detection.detect_dark_on_light:
            mode = cv2.THRESH_BINARY_INV
        else:
            mode = cv2.THRESH_BINARY
        _, mask = cv2.threshold(gray, 0, 255, mode + cv2.THRESH_OTSU)
        return mask

    def annotate_image(self, image: np.ndarray, contour: Contour,
                       extent=None, label: Optional[str] = None) -> np.ndarray:
        """
        Draw the droplet contour, its bounding box and a label.

        - Green contour
        - Orange bounding rectangle
        - White label in the top-left corner
        """
        annotated = image.copy()
        if annotated.ndim == 2:
            annotated = cv2.cvtColor(annotated, cv2.COLOR_GRAY2BGR)
        elif annotated.shape[2] == 4:
            annotated = cv2.cvtColor(annotated, cv2.COLOR_BGRA2BGR)

        h, w = annotated.shape[:2]
        thickness = max(1, min(w, h) // 300)

        cv2.drawContours(annotated, [contour.to_pixels(w, h)], -1, (0, 255, 0), thickness)

        if extent is not None:
            top_left = (int(round(extent.min_x * w)), int(round(extent.min_y * h)))
            bottom_right = (int(round(extent.max_x * w)), int(round(extent.max_y * h)))
            cv2.rectangle(annotated, top_left, bottom_right, (14, 127, 255), thickness)

        if label:
            font_scale = max(0.4, min(w, h) / 800.0)
            cv2.putText(annotated, label, (5, int(25 * font_scale) + 5),
                        cv2.FONT_HERSHEY_SIMPLEX, font_scale, (255, 255, 255),
                        max(1, thickness))

        return annotated
