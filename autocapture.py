"""
autocapture.py — Still capture and measurement from a camera
============================================================

Opens the camera, waits for a trigger (Enter), grabs one still,
runs the measurement pipeline and prints the result.

Usage:
    python autocapture.py --pipet-diameter 1.8 --density 998
    python autocapture.py --camera 1 --save-dir ./captures
"""

import argparse
import logging
import os
import time
from dataclasses import replace
from datetime import datetime
from typing import Callable, Optional

import cv2
import numpy as np

from config import PipelineConfig
from errors import DecodeFailure
from pipeline import MeasurementPipeline, MeasurementResult

logger = logging.getLogger(__name__)

ACCESS_DENIED_MESSAGE = "Camera access denied"


# =============================================================
# CAMERA WRAPPER
# =============================================================

class Camera:
    """Thin wrapper around cv2.VideoCapture with retry logic."""

    def __init__(self, index: int = 0, warmup_frames: int = 5, retries: int = 3,
                 capture_factory: Callable = cv2.VideoCapture,
                 sleep: Callable[[float], None] = time.sleep):
        self.index = index
        self.cap = None
        self.warmup_frames = warmup_frames
        self.retries = retries
        self._capture_factory = capture_factory
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: PipelineConfig, **kwargs) -> 'Camera':
        cap_cfg = config.capture
        return cls(index=cap_cfg.camera_index, warmup_frames=cap_cfg.warmup_frames,
                   retries=cap_cfg.capture_retries, **kwargs)

    def open(self) -> bool:
        self.close()
        self.cap = self._capture_factory(self.index)
        if not self.cap.isOpened():
            logger.warning("Could not open camera at index %d", self.index)
            self.cap = None
            return False

        # Discard warmup frames (auto-exposure settling)
        for _ in range(self.warmup_frames):
            self.cap.read()
            self._sleep(0.1)

        logger.info("Camera opened (index %d)", self.index)
        return True

    def capture(self) -> Optional[np.ndarray]:
        """Capture a single frame with retry logic."""
        if self.cap is None:
            return None
        for attempt in range(self.retries):
            ret, frame = self.cap.read()
            if ret and frame is not None:
                return frame
            logger.warning("Capture attempt %d/%d failed, retrying...", attempt + 1, self.retries)
            self._sleep(0.5)

        # If all retries failed, try reopening the camera
        logger.warning("Reopening camera...")
        self.close()
        if self.open():
            ret, frame = self.cap.read()
            if ret:
                return frame
        return None

    def close(self):
        if self.cap is not None:
            self.cap.release()
            self.cap = None
            logger.info("Camera released.")

    def __enter__(self) -> 'Camera':
        return self

    def __exit__(self, *exc):
        self.close()


def build_filename(when: Optional[datetime] = None) -> str:
    """
    Example: capture_20261019_143005_123456.png
    """
    when = when or datetime.now()
    return f"capture_{when.strftime('%Y%m%d_%H%M%S_%f')}.png"


def capture_and_measure(camera: Camera, pipeline: MeasurementPipeline,
                        pipet_diameter=None, density=None,
                        save_dir: Optional[str] = None) -> MeasurementResult:
    """
    Grab one still and measure it.

    A failed capture is reported as a DecodeFailure result.
    """
    frame = camera.capture()
    if frame is None:
        logger.warning("Failed to capture photo")
        return MeasurementResult.failure(DecodeFailure("camera returned no frame"))

    source = None
    if save_dir:
        os.makedirs(save_dir, exist_ok=True)
        source = build_filename()
        cv2.imwrite(os.path.join(save_dir, source), frame)

    result = pipeline.measure(frame, pipet_diameter, density)
    logger.info("Analysis result: %s", result.display_text)
    if source and result.source is None:
        result = replace(result, source=source)
    return result


# =============================================================
# CLI
# =============================================================

def run_interactive(camera: Camera, pipeline: MeasurementPipeline, args,
                    prompt: Callable[[str], str] = input) -> int:
    """Capture on each Enter press until 'q'. Returns the number of captures."""
    count = 0
    while True:
        try:
            answer = prompt("  Press Enter to measure, 'q' to quit: ")
        except EOFError:
            break
        if answer.strip().lower() == 'q':
            break
        result = capture_and_measure(camera, pipeline, args.pipet_diameter,
                                     args.density, args.save_dir)
        count += 1
        print(f"  {result.display_text}")
    return count


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Droplet Tension Monitor — capture and measure from a camera'
    )
    parser.add_argument('--camera', type=int, default=None,
                        help='Camera index (default from config: 0)')
    parser.add_argument('--pipet-diameter', default=None,
                        help='Pipette diameter in mm (reference length)')
    parser.add_argument('--density', default=None,
                        help='Liquid density in kg/m3 (default: water)')
    parser.add_argument('--save-dir', default=None,
                        help='Keep raw captures in this directory')
    parser.add_argument('--config', default=None,
                        help='Path to JSON config file')
    parser.add_argument('--verbose', action='store_true',
                        help='Debug logging')

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    config = PipelineConfig.load(args.config) if args.config else PipelineConfig()
    if args.camera is not None:
        config.capture.camera_index = args.camera
    if args.save_dir is None:
        args.save_dir = config.capture.save_dir

    camera = Camera.from_config(config)
    if not camera.open():
        print(ACCESS_DENIED_MESSAGE)
        return 1

    pipeline = MeasurementPipeline(config)
    with camera:
        count = run_interactive(camera, pipeline, args)

    print(f"\nSession ended. {count} photos measured.")
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
