"""
Geometry Module
===============
Converts the droplet contour into physical dimensions.

The pipette diameter is the reference length: when it is given, the
contour's measured pixel width is taken to correspond to it.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

from config import PipelineConfig
from contour_detector import Contour
from errors import DegenerateContour, InvalidScale

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BoundingExtent:
    """Axis-aligned extent of a contour in normalized coordinates."""
    min_x: float
    max_x: float
    min_y: float
    max_y: float

    @property
    def normalized_width(self) -> float:
        return self.max_x - self.min_x

    @property
    def normalized_height(self) -> float:
        return self.max_y - self.min_y


@dataclass(frozen=True)
class DropletDimensions:
    """Physical droplet size and the scale used to get it."""
    width_mm: float
    height_mm: float
    scale_mm_per_px: float
    extent: BoundingExtent


def bounding_extent(contour: Contour) -> BoundingExtent:
    """Raises DegenerateContour if the contour has no points."""
    if contour.point_count == 0:
        raise DegenerateContour("failed to determine bounding box")
    xs = contour.points[:, 0]
    ys = contour.points[:, 1]
    return BoundingExtent(
        min_x=float(xs.min()),
        max_x=float(xs.max()),
        min_y=float(ys.min()),
        max_y=float(ys.max()),
    )


def scale_factor(pipet_diameter_mm: Optional[float], normalized_width: float,
                 image_width: int, default_scale: float = 0.01) -> float:
    """
    Millimetres per pixel.

    With a positive pipette diameter the measured contour width in pixels
    is equated with it; otherwise default_scale is returned unchanged.

    Raises:
        InvalidScale: the derived scale is zero, negative or not finite.
    """
    if pipet_diameter_mm is None or not pipet_diameter_mm > 0:
        return default_scale

    measured_width_px = normalized_width * image_width
    if measured_width_px <= 0:
        raise InvalidScale(
            f"measured width is {measured_width_px} px, cannot derive scale")

    scale = pipet_diameter_mm / measured_width_px
    if not math.isfinite(scale) or scale <= 0:
        raise InvalidScale(f"scale factor {scale} mm/px is unusable")
    return scale


class GeometryExtractor:
    """Bounding extent -> scale factor -> droplet size in millimetres."""

    def __init__(self, config: PipelineConfig):
        self.config = config

    def extract(self, contour: Contour, image_width: int, image_height: int,
                pipet_diameter_mm: Optional[float] = None) -> DropletDimensions:
        extent = bounding_extent(contour)
        scale = scale_factor(
            pipet_diameter_mm,
            extent.normalized_width,
            image_width,
            default_scale=self.config.scale.default_scale_mm_per_px,
        )

        width_mm = extent.normalized_width * image_width * scale
        height_mm = extent.normalized_height * image_height * scale
        logger.debug("Measured droplet width: %.4f mm, height: %.4f mm (scale %.6f mm/px)",
                     width_mm, height_mm, scale)

        return DropletDimensions(
            width_mm=width_mm,
            height_mm=height_mm,
            scale_mm_per_px=scale,
            extent=extent,
        )
