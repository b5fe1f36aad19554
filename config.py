"""
Configuration for Droplet Tension Monitor
=========================================
Adjust these parameters to match your camera setup, backlight
and the liquids you are measuring.
"""

from dataclasses import dataclass, field
from typing import Optional
import json


@dataclass
class DetectionConfig:
    """Silhouette contour detection parameters."""
    # Contrast gain applied around mid-gray before thresholding (1.0 = unchanged)
    contrast_adjustment: float = 1.0
    # True when the droplet is dark against a light (backlit) background
    detect_dark_on_light: bool = True
    # Longest image side (px) used for detection; larger images are downscaled
    max_image_dimension: int = 512
    # Gaussian blur kernel before thresholding (odd, 0 disables)
    blur_kernel_size: int = 5
    # Minimum gray-level range (0-255); flatter images are treated as featureless
    min_contrast: int = 8


@dataclass
class ScaleConfig:
    """Pixel-to-millimetre conversion."""
    # Used when no valid pipette diameter is given (not physically calibrated)
    default_scale_mm_per_px: float = 0.01


@dataclass
class PhysicsConfig:
    """Physical constants for the tension estimate."""
    gravity_m_s2: float = 9.81
    # Water
    default_density_kg_m3: float = 1000.0


@dataclass
class CaptureConfig:
    """Camera capture parameters."""
    camera_index: int = 0
    # Frames discarded after opening (auto-exposure settling)
    warmup_frames: int = 5
    capture_retries: int = 3
    # Directory for raw captures (None = don't keep them)
    save_dir: Optional[str] = None


@dataclass
class OutputConfig:
    """Output and export configuration."""
    export_dir: str = "./results"
    save_annotated_images: bool = True
    image_format: str = "png"
    results_csv: str = "measurements.csv"


@dataclass
class PipelineConfig:
    """Master configuration combining all sub-configs."""
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    scale: ScaleConfig = field(default_factory=ScaleConfig)
    physics: PhysicsConfig = field(default_factory=PhysicsConfig)
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    def to_dict(self) -> dict:
        import dataclasses
        return dataclasses.asdict(self)

    def save(self, path: str):
        """Save configuration to JSON."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, path: str) -> 'PipelineConfig':
        """Load configuration from JSON. Missing sections keep their defaults."""
        with open(path, 'r') as f:
            data = json.load(f)
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict) -> 'PipelineConfig':
        config = cls()
        config.detection = DetectionConfig(**data.get('detection', {}))
        config.scale = ScaleConfig(**data.get('scale', {}))
        config.physics = PhysicsConfig(**data.get('physics', {}))
        config.capture = CaptureConfig(**data.get('capture', {}))
        config.output = OutputConfig(**data.get('output', {}))
        return config


# Default configuration instance
DEFAULT_CONFIG = PipelineConfig()
