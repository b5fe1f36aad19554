"""
Measurement Errors
==================
Failure kinds raised by the pipeline stages. The orchestrator catches
every MeasurementError and turns it into a "Measurement failed" result.
"""


class MeasurementError(Exception):
    """Base class for recoverable measurement failures."""
    kind = "measurement_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind)


class DecodeFailure(MeasurementError):
    """The input could not be interpreted as a processable pixel buffer."""
    kind = "decode_failure"


class NoContourFound(MeasurementError):
    """Detection produced no top-level contour, or detection itself failed."""
    kind = "no_contour_found"


class DegenerateContour(MeasurementError):
    """The selected contour has no points, so no bounding extent exists."""
    kind = "degenerate_contour"


class InvalidScale(MeasurementError):
    """The mm-per-pixel scale factor is zero, negative or not finite."""
    kind = "invalid_scale"
