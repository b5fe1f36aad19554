"""
Droplet Tension Monitor — Surface tension from pendant droplet photos
=====================================================================
A Python pipeline that finds a pendant droplet's silhouette in a
backlit photo and estimates the liquid's surface tension from the
droplet size, a pipette diameter reference and the liquid density.

Modules:
    config           — Configuration parameters
    errors           — Measurement failure kinds
    preprocessing    — Image ingestion and grayscale preparation
    contour_detector — Silhouette contour detection and selection
    geometry         — Bounding extent, scale factor, droplet size in mm
    tension          — Surface tension estimate and result formatting
    pipeline         — Main orchestrator, batch export and CLI
    dashboard        — Report figures
    autocapture      — Camera still capture
    server           — Flask web app
"""

__version__ = "1.0.0"
__author__ = "Droplet Tension Monitor"
