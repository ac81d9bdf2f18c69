"""Product Image Studio — Flask transform service."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from flask import Flask, jsonify, request, send_from_directory
from flask_cors import CORS
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

load_dotenv()

import log_setup
log_setup.configure(os.environ.get("LOG_LEVEL", "INFO"))

import prompts
import transform_core

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# App setup
# ---------------------------------------------------------------------------

BASE_DIR = Path(__file__).parent
PRODUCTS_DIR = Path(os.environ.get("PRODUCTS_DIR") or BASE_DIR / "public" / "products")

app = Flask(__name__, static_folder=None)
app.config["PRODUCTS_DIR"] = str(PRODUCTS_DIR)
# Headroom over MAX_FILE_SIZE for multipart framing; the exact ceiling is
# enforced by transform_core.validate_image.
app.config["MAX_CONTENT_LENGTH"] = transform_core.MAX_FILE_SIZE + 1024 * 1024
CORS(app)


def _error(exc: transform_core.TransformError):
    return jsonify(exc.to_dict()), exc.status


@app.errorhandler(RequestEntityTooLarge)
def too_large(_exc):
    return _error(transform_core.ValidationError(
        f"File is too large. Maximum size: {transform_core.MAX_FILE_SIZE // (1024 * 1024)}MB",
        code="file_too_large",
    ))


# ---------------------------------------------------------------------------
# Routes — Stored images (served from PRODUCTS_DIR)
# ---------------------------------------------------------------------------

@app.get(f"{transform_core.PUBLIC_PREFIX}/<path:filename>")
def serve_product_image(filename: str):
    return send_from_directory(app.config["PRODUCTS_DIR"], filename)


# ---------------------------------------------------------------------------
# Routes — Prompt catalog
# ---------------------------------------------------------------------------

@app.get("/api/admin/transform-presets")
def api_transform_presets():
    return jsonify({
        "default": prompts.DEFAULT_PROMPT,
        "presets": prompts.PRESET_PROMPTS,
    })


# ---------------------------------------------------------------------------
# Routes — Transform
# ---------------------------------------------------------------------------

@app.post("/api/admin/transform-image")
def api_transform_image():
    try:
        api_key = transform_core.require_api_key()

        image = request.files.get("image")
        if image is None or not image.filename:
            raise transform_core.ValidationError(
                "No image was provided", code="missing_image"
            )

        prompt = transform_core.effective_prompt(request.form.get("prompt"))
        image_bytes = image.read()
        transform_core.validate_image(image.mimetype, len(image_bytes))

        log.info(
            "Transform requested: %s  %s  %d bytes  prompt=%r",
            image.filename, image.mimetype, len(image_bytes), prompt[:60],
        )
        result = transform_core.transform_image(
            image_bytes,
            image.mimetype,
            prompt,
            app.config["PRODUCTS_DIR"],
            api_key,
        )
    except transform_core.TransformError as exc:
        log.warning(
            "Transform rejected: status=%d  code=%s  %s%s",
            exc.status, exc.code, exc.message,
            f" ({exc.details})" if exc.details else "",
        )
        return _error(exc)
    except HTTPException:
        raise
    except Exception as exc:
        log.error("Transform failed: %s", exc, exc_info=True)
        return jsonify({
            "error": "Failed to transform image",
            "code": "unexpected",
            "details": str(exc),
        }), 500

    log.info("Transform complete: %s", result["path"])
    return jsonify(result)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    print(f"\n  Product Image Studio → http://localhost:{port}\n")
    app.run(host="0.0.0.0", port=port, debug=False, threaded=True)
