"""
Main Pipeline — Orchestrates the droplet measurement workflow.
==============================================================

image -> droplet contour -> bounding extent -> dimensions (mm) -> tension

Every call is independent: the pipeline object holds configuration only.

Usage:
    # One photo
    python pipeline.py --images drop.png --pipet-diameter 1.8 --density 998

    # A folder of photos, exported to ./results
    python pipeline.py --images ./photos/ --pipet-diameter 1.8 --output ./results
"""

import argparse
import glob
import logging
import math
import os
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Union

import cv2
import pandas as pd

from config import PipelineConfig
from contour_detector import Contour, ContourDetector
from errors import DecodeFailure, MeasurementError
from geometry import DropletDimensions, GeometryExtractor
from preprocessing import ImageInput, RawImage, ingest
from tension import TensionEstimate, TensionEstimator

logger = logging.getLogger(__name__)

FAILURE_MESSAGE = "Measurement failed"

IMAGE_EXTENSIONS = ['*.png', '*.jpg', '*.jpeg', '*.tif', '*.tiff', '*.bmp']

RESULT_COLUMNS = [
    'image', 'status', 'error', 'width_mm', 'height_mm', 'scale_mm_per_px',
    'density_kg_m3', 'tension_mn_per_m', 'point_count', 'result',
]


def parse_positive(value: Union[str, float, int, None]) -> Optional[float]:
    """
    Lenient numeric parsing for user-entered fields.

    Returns a positive finite float, or None for anything else (empty,
    non-numeric, zero, negative, nan, inf).
    """
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    return number


@dataclass(frozen=True)
class MeasurementInputs:
    """User-supplied reference values, already validated."""
    pipet_diameter_mm: Optional[float] = None
    density_kg_m3: Optional[float] = None

    @classmethod
    def from_raw(cls, pipet_diameter, density) -> 'MeasurementInputs':
        return cls(
            pipet_diameter_mm=parse_positive(pipet_diameter),
            density_kg_m3=parse_positive(density),
        )


@dataclass(frozen=True, eq=False)
class MeasurementResult:
    """Outcome of one measurement: a formatted tension or a failure."""
    text: Optional[str] = None
    error: Optional[MeasurementError] = None
    dimensions: Optional[DropletDimensions] = None
    estimate: Optional[TensionEstimate] = None
    contour: Optional[Contour] = None
    image_size: Optional[Tuple[int, int]] = None
    source: Optional[str] = None

    @classmethod
    def failure(cls, error: MeasurementError, source: Optional[str] = None) -> 'MeasurementResult':
        return cls(error=error, source=source)

    @property
    def ok(self) -> bool:
        return self.error is None and self.text is not None

    @property
    def display_text(self) -> str:
        """What the user sees: the result string or the fixed failure message."""
        return self.text if self.ok else FAILURE_MESSAGE

    @property
    def error_kind(self) -> Optional[str]:
        return self.error.kind if self.error is not None else None

    @property
    def tension_mn_per_m(self) -> Optional[float]:
        return self.estimate.tension_mn_per_m if self.estimate is not None else None

    def to_record(self) -> Dict:
        """Flat dict for tables and JSON responses."""
        dims = self.dimensions
        return {
            'image': self.source,
            'status': 'success' if self.ok else 'failed',
            'error': self.error_kind,
            'width_mm': dims.width_mm if dims else None,
            'height_mm': dims.height_mm if dims else None,
            'scale_mm_per_px': dims.scale_mm_per_px if dims else None,
            'density_kg_m3': self.estimate.density_kg_m3 if self.estimate else None,
            'tension_mn_per_m': self.tension_mn_per_m,
            'point_count': self.contour.point_count if self.contour else None,
            'result': self.display_text,
        }


class MeasurementPipeline:
    """
    Measure surface tension from a pendant-droplet photo.

    Workflow:
    1. Ingest the image (array, encoded bytes or path)
    2. Detect the droplet silhouette
    3. Bounding extent and physical size via the pipette reference
    4. Tension estimate and formatting
    """

    def __init__(self, config: PipelineConfig = None):
        if config is None:
            config = PipelineConfig()
        self.config = config
        self.detector = ContourDetector(config)
        self.geometry = GeometryExtractor(config)
        self.estimator = TensionEstimator(config)

    def measure(self, image: ImageInput, pipet_diameter=None,
                density=None) -> MeasurementResult:
        """
        Run the full measurement on one image.

        Args:
            image: RawImage, decoded array, encoded bytes, or file path.
            pipet_diameter: Pipette diameter in mm (string or number, optional).
            density: Liquid density in kg/m3 (string or number, optional).

        Returns:
            MeasurementResult; failures never raise.
        """
        inputs = MeasurementInputs.from_raw(pipet_diameter, density)
        source = image.source if isinstance(image, RawImage) else _describe(image)

        try:
            raw = ingest(image)
            source = raw.source or source
            contour = self.detector.detect_droplet(raw)
            dimensions = self.geometry.extract(
                contour, raw.width, raw.height, inputs.pipet_diameter_mm
            )
        except MeasurementError as e:
            logger.warning("Measurement failed for %s (%s): %s", source or "image", e.kind, e)
            return MeasurementResult.failure(e, source=source)

        estimate = self.estimator.estimate(
            dimensions.width_mm, dimensions.height_mm, inputs.density_kg_m3
        )
        logger.debug("Analysis result: %s", estimate.text)

        return MeasurementResult(
            text=estimate.text,
            dimensions=dimensions,
            estimate=estimate,
            contour=contour,
            image_size=(raw.width, raw.height),
            source=source,
        )

    def annotate(self, image: RawImage, result: MeasurementResult):
        """Annotated BGR copy of the image, or None for a failed result."""
        if not result.ok:
            return None
        return self.detector.annotate_image(
            image.pixels, result.contour, result.dimensions.extent, result.text
        )

    def process_images(self, image_paths: List[str], pipet_diameter=None,
                       density=None, annotated_dir: Optional[str] = None,
                       verbose: bool = True) -> pd.DataFrame:
        """
        Measure a batch of photos.

        Args:
            image_paths: Paths to droplet photos.
            pipet_diameter: Pipette diameter in mm for all photos.
            density: Liquid density in kg/m3 for all photos.
            annotated_dir: If given, annotated images are written there.
            verbose: Print progress.

        Returns:
            DataFrame with one row per image (RESULT_COLUMNS).
        """
        if annotated_dir:
            os.makedirs(annotated_dir, exist_ok=True)
        if verbose:
            print(f"  Processing {len(image_paths)} images...")

        records = []
        for i, path in enumerate(image_paths):
            try:
                raw = RawImage.from_file(path)
            except DecodeFailure as e:
                logger.warning("Could not load %s, recording failure", path)
                result = MeasurementResult.failure(e, source=os.path.basename(path))
            else:
                result = self.measure(raw, pipet_diameter, density)
                if annotated_dir and result.ok:
                    annotated = self.annotate(raw, result)
                    stem = os.path.splitext(os.path.basename(path))[0]
                    ext = self.config.output.image_format
                    cv2.imwrite(os.path.join(annotated_dir, f"{stem}_annotated.{ext}"), annotated)

            records.append(result.to_record())
            if verbose:
                print(f"  [{i+1}/{len(image_paths)}] {os.path.basename(path)} | "
                      f"{result.display_text}")

        return pd.DataFrame(records, columns=RESULT_COLUMNS)

    def export_results(self, frame: pd.DataFrame, output_dir: str = None,
                       verbose: bool = True):
        """
        Export batch results: CSV, summary figure and the config used.
        """
        if output_dir is None:
            output_dir = self.config.output.export_dir
        os.makedirs(output_dir, exist_ok=True)

        # 1) Measurements CSV
        csv_path = os.path.join(output_dir, self.config.output.results_csv)
        frame.to_csv(csv_path, index=False)
        if verbose:
            print(f"  Saved measurements: {csv_path}")

        # 2) Summary figure
        from dashboard import MeasurementDashboard, plt
        dashboard = MeasurementDashboard(self.config, output_dir=os.path.join(output_dir, "figures"))
        plt.close(dashboard.plot_batch_summary(frame))

        # 3) Config
        config_path = os.path.join(output_dir, "pipeline_config.json")
        self.config.save(config_path)
        if verbose:
            print(f"  Saved config: {config_path}")
            print(f"\n  All results exported to: {output_dir}")


def _describe(image) -> Optional[str]:
    if isinstance(image, (str, os.PathLike)):
        return os.path.basename(str(image))
    return None


def analyze(image: ImageInput, pipet_diameter=None, density=None,
            config: PipelineConfig = None) -> MeasurementResult:
    """Measure one image with a fresh pipeline."""
    return MeasurementPipeline(config).measure(image, pipet_diameter, density)


def find_images(pattern: str) -> List[str]:
    """Resolve a file, a directory or a glob pattern to sorted image paths."""
    if any(ch in pattern for ch in '*?['):
        return sorted(glob.glob(pattern))
    if os.path.isfile(pattern):
        return [pattern]
    paths = []
    for ext in IMAGE_EXTENSIONS:
        paths.extend(glob.glob(os.path.join(pattern, ext)))
        paths.extend(glob.glob(os.path.join(pattern, ext.upper())))
    return sorted(set(paths))


# ============================================================
# CLI ENTRY POINT
# ============================================================

def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Droplet Tension Monitor — surface tension from pendant droplet photos'
    )
    parser.add_argument('--images', required=True,
                        help='Image file, directory of images, or glob pattern')
    parser.add_argument('--pipet-diameter', default=None,
                        help='Pipette diameter in mm (reference length)')
    parser.add_argument('--density', default=None,
                        help='Liquid density in kg/m3 (default: water)')
    parser.add_argument('--output', default=None,
                        help='Output directory for results')
    parser.add_argument('--config', default=None,
                        help='Path to JSON config file')
    parser.add_argument('--contrast', type=float, default=None,
                        help='Override contrast adjustment')
    parser.add_argument('--light-on-dark', action='store_true',
                        help='Droplet is bright against a dark background')
    parser.add_argument('--no-export', action='store_true',
                        help='Print results only, write no files')
    parser.add_argument('--verbose', action='store_true',
                        help='Debug logging')

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    # Load or create config
    if args.config:
        config = PipelineConfig.load(args.config)
    else:
        config = PipelineConfig()

    # Apply CLI overrides
    if args.contrast is not None:
        config.detection.contrast_adjustment = args.contrast
    if args.light_on_dark:
        config.detection.detect_dark_on_light = False
    if args.output:
        config.output.export_dir = args.output

    image_paths = find_images(args.images)
    if not image_paths:
        print(f"ERROR: No images found in {args.images}")
        return 1

    pipeline = MeasurementPipeline(config)

    if len(image_paths) == 1 and args.no_export:
        result = pipeline.measure(image_paths[0], args.pipet_diameter, args.density)
        print(result.display_text)
        return 0 if result.ok else 2

    print(f"Droplet Tension Monitor")
    print(f"=" * 50)
    print(f"Images: {len(image_paths)} files")
    print(f"Pipette diameter: {args.pipet_diameter or 'not set (default scale)'}")
    print(f"Density: {args.density or 'not set (water)'}")
    print(f"=" * 50)

    annotated_dir = None
    if not args.no_export and config.output.save_annotated_images:
        annotated_dir = os.path.join(config.output.export_dir, "annotated")

    frame = pipeline.process_images(
        image_paths, args.pipet_diameter, args.density,
        annotated_dir=annotated_dir, verbose=True
    )

    if not args.no_export:
        pipeline.export_results(frame, config.output.export_dir)

    n_ok = int((frame['status'] == 'success').sum())
    print(f"\nDone! {n_ok}/{len(frame)} measurements succeeded.")
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
