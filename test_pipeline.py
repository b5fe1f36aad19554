"""
Tests — Validates the measurement pipeline with synthetic droplet images
========================================================================
Creates backlit droplet silhouettes with OpenCV and checks every stage:
ingestion, contour selection, geometry, the tension formula, the
orchestrator and the batch export.
"""

import logging
import os
import sys

import cv2
import numpy as np
import pandas as pd
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import contour_detector
from config import PipelineConfig
from contour_detector import Contour, ContourDetector, select_droplet_contour
from errors import DecodeFailure, DegenerateContour, InvalidScale, NoContourFound
from geometry import GeometryExtractor, bounding_extent, scale_factor
from pipeline import (FAILURE_MESSAGE, MeasurementPipeline, analyze,
                      find_images, main, parse_positive)
from preprocessing import ImagePreprocessor, RawImage, ingest
from tension import TensionEstimator, format_tension, resolve_density


def create_droplet_image(width=400, height=300, center=(200, 150),
                         axes=(60, 80), background=255, droplet=0):
    """
    Create a synthetic backlit droplet photo.

    The droplet is a filled ellipse; axes are (half-width, half-height)
    in pixels.
    """
    img = np.full((height, width, 3), background, dtype=np.uint8)
    cv2.ellipse(img, center, axes, 0, 0, 360, (droplet, droplet, droplet), -1)
    return img


def encode_png(image):
    ok, buf = cv2.imencode('.png', image)
    assert ok
    return buf.tobytes()


# ------------------------------------------------------------
# Tension formula
# ------------------------------------------------------------

def test_formula_exactness():
    estimate = TensionEstimator(PipelineConfig()).estimate(2.0, 1.5, 1000.0)
    assert estimate.tension_n_per_m == pytest.approx(0.029430)
    assert estimate.tension_mn_per_m == pytest.approx(29.43)
    assert estimate.text == "Surface Tension: 29.4 mN/m"


def test_format_tension_one_decimal():
    assert format_tension(0.0) == "Surface Tension: 0.0 mN/m"
    assert format_tension(72.86) == "Surface Tension: 72.9 mN/m"


def test_density_fallback():
    assert resolve_density(None) == 1000.0
    assert resolve_density(0.0) == 1000.0
    assert resolve_density(-12.0) == 1000.0
    assert resolve_density(789.0) == 789.0

    estimator = TensionEstimator(PipelineConfig())
    assert estimator.estimate(2.0, 1.5, None).density_kg_m3 == 1000.0


# ------------------------------------------------------------
# Lenient input parsing
# ------------------------------------------------------------

@pytest.mark.parametrize("value", [None, "", "   ", "abc", "1,5", "0", "-2", "nan", "inf", 0, -1.0])
def test_parse_positive_rejects(value):
    assert parse_positive(value) is None


def test_parse_positive_accepts():
    assert parse_positive("1.8") == 1.8
    assert parse_positive(" 998 ") == 998.0
    assert parse_positive(2) == 2.0


# ------------------------------------------------------------
# Geometry
# ------------------------------------------------------------

def test_scale_factor_derivation():
    assert scale_factor(1.0, 0.5, 200) == pytest.approx(0.01)

    contour = Contour.from_points([(0.25, 0.2), (0.75, 0.2), (0.75, 0.6), (0.25, 0.6)])
    dims = GeometryExtractor(PipelineConfig()).extract(contour, 200, 100, pipet_diameter_mm=1.0)
    assert dims.scale_mm_per_px == pytest.approx(0.01)
    assert dims.width_mm == pytest.approx(1.0)
    assert dims.height_mm == pytest.approx(0.4 * 100 * 0.01)


@pytest.mark.parametrize("diameter", [None, 0.0, -1.0])
def test_scale_factor_fallback(diameter):
    assert scale_factor(diameter, 0.5, 200) == 0.01


def test_scale_factor_zero_width_is_invalid():
    with pytest.raises(InvalidScale):
        scale_factor(1.0, 0.0, 200)


def test_bounding_extent():
    contour = Contour.from_points([(0.2, 0.9), (0.6, 0.1), (0.4, 0.5)])
    extent = bounding_extent(contour)
    assert (extent.min_x, extent.max_x) == (0.2, 0.6)
    assert (extent.min_y, extent.max_y) == (0.1, 0.9)
    assert extent.normalized_width == pytest.approx(0.4)
    assert extent.normalized_height == pytest.approx(0.8)


def test_empty_contour_is_degenerate():
    with pytest.raises(DegenerateContour):
        bounding_extent(Contour.from_points(np.empty((0, 2))))


def test_degenerate_bounding_box_gives_zero_tension():
    config = PipelineConfig()
    contour = Contour.from_points([(0.3, 0.4)] * 4)
    dims = GeometryExtractor(config).extract(contour, 640, 480)
    assert dims.width_mm == 0.0
    assert dims.height_mm == 0.0

    estimate = TensionEstimator(config).estimate(dims.width_mm, dims.height_mm)
    assert estimate.text == "Surface Tension: 0.0 mN/m"


def test_degenerate_bounding_box_with_pipet_is_invalid_scale():
    contour = Contour.from_points([(0.3, 0.4)] * 4)
    with pytest.raises(InvalidScale):
        GeometryExtractor(PipelineConfig()).extract(contour, 640, 480, pipet_diameter_mm=1.0)


# ------------------------------------------------------------
# Contour selection and detection
# ------------------------------------------------------------

def _contour_with(n, offset):
    return Contour.from_points([(offset, i / 100.0) for i in range(n)])


def test_contour_selection_keeps_first_maximum():
    contours = [_contour_with(n, k / 10.0) for k, n in enumerate([5, 12, 12, 3])]
    selected = select_droplet_contour(contours)
    assert selected is contours[1]
    assert selected.point_count == 12


def test_selection_of_nothing_raises():
    with pytest.raises(NoContourFound):
        select_droplet_contour([])


def test_detects_dark_droplet_on_light_background():
    image = RawImage.from_array(create_droplet_image())
    detector = ContourDetector(PipelineConfig())
    contours = detector.detect(image)
    assert len(contours) == 1

    droplet = detector.detect_droplet(image)
    assert droplet.point_count > 100
    assert droplet.points.min() >= 0.0
    assert droplet.points.max() <= 1.0

    extent = bounding_extent(droplet)
    # Ellipse spans columns 140..260 and rows 70..230
    assert extent.normalized_width * 400 == pytest.approx(120, abs=3)
    assert extent.normalized_height * 300 == pytest.approx(160, abs=3)


def test_light_on_dark_polarity():
    config = PipelineConfig()
    config.detection.detect_dark_on_light = False
    image = RawImage.from_array(create_droplet_image(background=0, droplet=255))
    extent = bounding_extent(ContourDetector(config).detect_droplet(image))
    assert extent.normalized_width * 400 == pytest.approx(120, abs=3)


def test_picks_droplet_over_small_speck():
    img = create_droplet_image()
    cv2.rectangle(img, (10, 10), (14, 14), (0, 0, 0), -1)
    contours = ContourDetector(PipelineConfig()).detect(RawImage.from_array(img))
    assert len(contours) == 2
    droplet = select_droplet_contour(contours)
    assert bounding_extent(droplet).normalized_width * 400 == pytest.approx(120, abs=3)


def test_uniform_image_has_no_contours():
    detector = ContourDetector(PipelineConfig())
    for value in (0, 128, 255):
        image = RawImage.from_array(np.full((120, 160, 3), value, dtype=np.uint8))
        assert detector.detect(image) == []
        with pytest.raises(NoContourFound):
            detector.detect_droplet(image)


def test_detection_error_becomes_no_contour(monkeypatch):
    def broken(*args, **kwargs):
        raise cv2.error("findContours exploded")

    monkeypatch.setattr(contour_detector.cv2, "findContours", broken)
    image = RawImage.from_array(create_droplet_image())
    with pytest.raises(NoContourFound):
        ContourDetector(PipelineConfig()).detect_droplet(image)

    result = analyze(image)
    assert result.error_kind == "no_contour_found"
    assert result.display_text == FAILURE_MESSAGE


def test_detection_error_is_warned_once(monkeypatch, caplog):
    def broken(*args, **kwargs):
        raise cv2.error("findContours exploded")

    monkeypatch.setattr(contour_detector.cv2, "findContours", broken)
    with caplog.at_level(logging.DEBUG):
        analyze(create_droplet_image())
    warnings = [r for r in caplog.records if r.levelno >= logging.WARNING]
    assert len(warnings) == 1
    assert "no_contour_found" in warnings[0].getMessage()


def test_zero_contrast_flattens_image():
    config = PipelineConfig()
    config.detection.contrast_adjustment = 0.0
    result = analyze(create_droplet_image(), config=config)
    assert result.error_kind == "no_contour_found"


def test_large_image_is_downscaled_for_detection():
    img = create_droplet_image(width=2000, height=1000, center=(1000, 500), axes=(300, 200))
    preprocessor = ImagePreprocessor(PipelineConfig())
    assert max(preprocessor.prepare(RawImage.from_array(img)).shape) == 512

    result = analyze(img)
    assert result.ok
    # Default scale 0.01 mm/px on the full-size 600 x 400 px droplet
    assert result.dimensions.width_mm == pytest.approx(6.0, abs=0.1)
    assert result.dimensions.height_mm == pytest.approx(4.0, abs=0.1)


def test_annotate_image_draws_on_copy():
    img = create_droplet_image()
    raw = RawImage.from_array(img)
    detector = ContourDetector(PipelineConfig())
    droplet = detector.detect_droplet(raw)
    annotated = detector.annotate_image(raw.pixels, droplet, bounding_extent(droplet), "label")
    assert annotated.shape == img.shape
    assert not np.array_equal(annotated, img)
    assert np.array_equal(raw.pixels, img)


# ------------------------------------------------------------
# Ingestion
# ------------------------------------------------------------

def test_raw_image_is_read_only_copy():
    img = create_droplet_image()
    raw = RawImage.from_array(img)
    assert (raw.width, raw.height) == (400, 300)
    img[:] = 7
    assert raw.pixels[0, 0, 0] == 255
    with pytest.raises(ValueError):
        raw.pixels[0, 0, 0] = 1


def test_ingest_converts_other_dtypes():
    gray_float = np.ones((20, 30), dtype=np.float32)
    raw = ingest(gray_float)
    assert raw.pixels.dtype == np.uint8
    assert raw.pixels.max() == 255

    single_channel = np.zeros((20, 30, 1), dtype=np.uint8)
    assert ingest(single_channel).pixels.ndim == 2


@pytest.mark.parametrize("bad", [
    b"", b"definitely not an image", np.zeros((0, 0), dtype=np.uint8),
    np.zeros((4, 4, 2), dtype=np.uint8), 12345, "/no/such/droplet.png",
])
def test_undecodable_input_fails(bad):
    with pytest.raises(DecodeFailure):
        ingest(bad)
    result = analyze(bad)
    assert not result.ok
    assert result.error_kind == "decode_failure"
    assert result.display_text == "Measurement failed"


@pytest.mark.parametrize("pixels", [
    np.zeros((0, 0), dtype=np.uint8),
    np.zeros((4, 4, 2), dtype=np.uint8),
    np.zeros((2, 3, 4, 3), dtype=np.uint8),
    create_droplet_image().astype(np.float64),
])
def test_directly_built_raw_image_is_checked(pixels):
    raw = RawImage(pixels=pixels)
    with pytest.raises(DecodeFailure):
        ingest(raw)
    result = analyze(raw)
    assert result.error_kind == "decode_failure"
    assert result.display_text == "Measurement failed"


def test_directly_built_single_channel_raw_image():
    img = create_droplet_image()
    gray = cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)[:, :, np.newaxis]
    raw = ingest(RawImage(pixels=gray, source="drop.png"))
    assert raw.pixels.ndim == 2
    assert raw.source == "drop.png"
    assert analyze(RawImage(pixels=gray), "1.2").display_text == analyze(img, "1.2").display_text


def test_encoded_bytes_match_array():
    img = create_droplet_image()
    from_array = analyze(img, "1.2", "998")
    from_bytes = analyze(encode_png(img), "1.2", "998")
    assert from_bytes.ok
    assert from_bytes.display_text == from_array.display_text


# ------------------------------------------------------------
# Orchestrator
# ------------------------------------------------------------

def test_analyze_with_pipet_reference():
    result = analyze(create_droplet_image(), pipet_diameter="1.2", density="1000")
    assert result.ok
    dims = result.dimensions
    assert dims.width_mm == pytest.approx(1.2)
    assert dims.height_mm == pytest.approx(1.6, rel=0.05)
    assert result.tension_mn_per_m == pytest.approx(1000 * 9.81 * 1.2e-3 * dims.height_mm * 1e-3 * 1000)
    assert result.display_text == format_tension(result.tension_mn_per_m)
    assert result.display_text.startswith("Surface Tension: ")
    assert result.display_text.endswith(" mN/m")


@pytest.mark.parametrize("pipet", ["", "abc", "0", "-1", None])
def test_analyze_uses_default_scale_without_pipet(pipet):
    result = analyze(create_droplet_image(), pipet_diameter=pipet)
    assert result.ok
    assert result.dimensions.scale_mm_per_px == 0.01
    assert result.dimensions.width_mm == pytest.approx(1.2, abs=0.03)


@pytest.mark.parametrize("density", ["", "water", "0", "-5", None])
def test_analyze_uses_default_density(density):
    result = analyze(create_droplet_image(), density=density)
    assert result.estimate.density_kg_m3 == 1000.0


def test_analyze_is_deterministic():
    img = create_droplet_image()
    pipeline = MeasurementPipeline()
    texts = {pipeline.measure(img, "1.5", "997").display_text for _ in range(3)}
    assert len(texts) == 1


def test_single_dark_pixel_measures_zero():
    img = np.full((100, 100, 3), 255, dtype=np.uint8)
    img[50, 50] = 0
    result = analyze(img)
    assert result.ok
    assert result.display_text == "Surface Tension: 0.0 mN/m"


def test_no_contour_path():
    result = analyze(np.full((200, 200, 3), 180, dtype=np.uint8), "1.0", "1000")
    assert isinstance(result.error, NoContourFound)
    assert result.display_text == "Measurement failed"
    assert result.to_record()['status'] == 'failed'


# ------------------------------------------------------------
# Config
# ------------------------------------------------------------

def test_config_round_trip(tmp_path):
    config = PipelineConfig()
    config.detection.contrast_adjustment = 1.5
    config.physics.default_density_kg_m3 = 998.2
    path = str(tmp_path / "config.json")
    config.save(path)

    loaded = PipelineConfig.load(path)
    assert loaded == config


def test_config_partial_dict_keeps_defaults():
    config = PipelineConfig.from_dict({'scale': {'default_scale_mm_per_px': 0.02}})
    assert config.scale.default_scale_mm_per_px == 0.02
    assert config.physics.gravity_m_s2 == 9.81
    assert config.detection.detect_dark_on_light is True


def test_config_default_scale_is_used():
    config = PipelineConfig.from_dict({'scale': {'default_scale_mm_per_px': 0.02}})
    result = analyze(create_droplet_image(), config=config)
    assert result.dimensions.scale_mm_per_px == 0.02


# ------------------------------------------------------------
# Batch processing and CLI
# ------------------------------------------------------------

def _write_batch(folder):
    cv2.imwrite(str(folder / "drop_a.png"), create_droplet_image())
    cv2.imwrite(str(folder / "drop_b.png"), create_droplet_image(axes=(50, 70)))
    (folder / "broken.png").write_bytes(b"not a png")


def test_process_images_and_export(tmp_path):
    images = tmp_path / "images"
    images.mkdir()
    _write_batch(images)
    out = tmp_path / "results"

    pipeline = MeasurementPipeline()
    paths = find_images(str(images))
    assert len(paths) == 3

    frame = pipeline.process_images(paths, "1.2", "1000",
                                    annotated_dir=str(out / "annotated"), verbose=False)
    assert isinstance(frame, pd.DataFrame)
    assert len(frame) == 3
    by_name = frame.set_index('image')
    assert by_name.loc['broken.png', 'status'] == 'failed'
    assert by_name.loc['broken.png', 'error'] == 'decode_failure'
    assert by_name.loc['drop_a.png', 'status'] == 'success'
    assert by_name.loc['drop_a.png', 'width_mm'] == pytest.approx(1.2)

    assert (out / "annotated" / "drop_a_annotated.png").exists()
    assert not (out / "annotated" / "broken_annotated.png").exists()

    pipeline.export_results(frame, str(out), verbose=False)
    assert (out / "measurements.csv").exists()
    assert (out / "figures" / "tension_summary.png").exists()
    assert (out / "pipeline_config.json").exists()

    saved = pd.read_csv(out / "measurements.csv")
    assert saved['result'].str.startswith("Surface Tension").sum() == 2
    assert (saved['result'] == "Measurement failed").sum() == 1


def test_cli_single_image(tmp_path, capsys):
    path = tmp_path / "drop.png"
    cv2.imwrite(str(path), create_droplet_image())
    code = main(['--images', str(path), '--pipet-diameter', '1.2', '--no-export'])
    assert code == 0
    out = capsys.readouterr().out.strip()
    assert out.startswith("Surface Tension: ")


def test_cli_batch_export(tmp_path):
    images = tmp_path / "images"
    images.mkdir()
    _write_batch(images)
    out = tmp_path / "out"
    code = main(['--images', str(images), '--output', str(out)])
    assert code == 0
    assert (out / "measurements.csv").exists()
    assert len(list((out / "annotated").glob("*.png"))) == 2


def test_cli_no_images(tmp_path):
    assert main(['--images', str(tmp_path / "empty")]) == 1
