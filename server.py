#!/usr/bin/env python3
"""
server.py
─────────
Minimal Flask web app: upload a droplet photo, enter the pipette
diameter and density, get the surface tension back.

Run:
    python server.py
    open http://localhost:5050
"""

import logging
import os

from flask import Flask, jsonify, render_template, request

from config import PipelineConfig
from pipeline import MeasurementPipeline

logger = logging.getLogger(__name__)

CONFIG_ENV = "DROPLET_TENSION_CONFIG"


def load_config() -> PipelineConfig:
    """Config from $DROPLET_TENSION_CONFIG if set, defaults otherwise."""
    path = os.environ.get(CONFIG_ENV)
    if path:
        logger.info("Loading config from %s", path)
        return PipelineConfig.load(path)
    return PipelineConfig()


def create_app(config: PipelineConfig = None) -> Flask:
    app = Flask(__name__)
    pipeline = MeasurementPipeline(config or load_config())

    # ─── routes: pages ───────────────────────────────────────────────────────

    @app.route("/")
    def index():
        return render_template("index.html")

    # ─── routes: API ─────────────────────────────────────────────────────────

    @app.get("/api/config")
    def api_config():
        return jsonify(pipeline.config.to_dict())

    @app.post("/api/measure")
    def api_measure():
        """Measure an uploaded photo. Failures still answer 200 with ok=false."""
        upload = request.files.get("image")
        if upload is None or upload.filename == "":
            return jsonify({"error": "no image uploaded"}), 400

        result = pipeline.measure(
            upload.read(),
            request.form.get("pipet_diameter"),
            request.form.get("density"),
        )
        record = result.to_record()
        return jsonify({
            "ok": result.ok,
            "result": result.display_text,
            "error": record["error"],
            "image": upload.filename,
            "tension_mn_per_m": record["tension_mn_per_m"],
            "width_mm": record["width_mm"],
            "height_mm": record["height_mm"],
            "scale_mm_per_px": record["scale_mm_per_px"],
            "density_kg_m3": record["density_kg_m3"],
        })

    return app


app = create_app()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    print("  API Endpoints:")
    print("    GET  /api/config    - Current pipeline configuration")
    print("    POST /api/measure   - Measure an uploaded droplet photo")
    print()
    print("  Open  http://localhost:5050  in your browser.\n")
    app.run(host="127.0.0.1", port=5050, debug=False)
