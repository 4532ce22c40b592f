"""
HTTP Microservice
=================
Flask-based HTTP API for the conversion engine.

Endpoints:
    POST   /api/convert             → Convert an upload, a file path or a block stream
    GET    /api/download            → Download the last generated archive
    GET    /api/download/<id>       → Download a stored archive
    GET    /api/formats             → Registered export formats
    GET    /api/health              → Health check
    GET    /api/info                → Converter version info
"""

from __future__ import annotations

import io
import logging
import os
import uuid
from pathlib import Path

from flask import Flask, jsonify, request, send_file
from flask_cors import CORS

from . import __version__
from . import storage as fs_storage
from .block_extractor import blocks_from_json
from .engine import ConversionEngine, ConverterConfig
from .errors import ConversionError
from .exporters import available_formats
from .models import ConversionResult, QuestionType

logger = logging.getLogger(__name__)

app = Flask(__name__)
CORS(app)


def create_app(config: dict = None) -> Flask:
    """Create and configure the Flask app."""
    if config:
        app.config.update(config)

    # Default config using absolute paths
    app.config.setdefault("OUTPUT_DIR", str(fs_storage.OUTPUT_DIR))
    if not (config or {}).get("UPLOAD_DIR"):
        app.config["UPLOAD_DIR"] = str(Path(app.config["OUTPUT_DIR"]) / "uploads")
    app.config.setdefault("MAX_CONTENT_LENGTH", 100 * 1024 * 1024)  # 100MB
    app.config.setdefault("LOG_LEVEL", "INFO")

    # Ensure directories exist
    Path(app.config["UPLOAD_DIR"]).mkdir(parents=True, exist_ok=True)
    fs_storage.init_storage(app.config["OUTPUT_DIR"])

    return app


def _engine(**overrides) -> ConversionEngine:
    return ConversionEngine(ConverterConfig(
        output_dir=app.config.get("OUTPUT_DIR"),
        log_level=app.config.get("LOG_LEVEL", "INFO"),
        **overrides,
    ))


def _result_payload(result: ConversionResult) -> dict:
    payload = {
        "success": result.success,
        "message": result.message,
        "artifactRef": None,
        "report": result.report.model_dump(mode="json") if result.report else None,
    }
    if result.artifact_ref:
        payload["artifactRef"] = {
            "artifactId": result.artifact_ref.artifact_id,
            "displayName": result.artifact_ref.display_name,
        }
    return payload


def _parse_types(raw) -> dict[int, QuestionType]:
    """Read a {"<number>": "<type>"} override map from request data."""
    if not raw:
        return {}
    if not isinstance(raw, dict):
        raise ValueError("types must be an object mapping question numbers to types")
    try:
        return {int(k): QuestionType(str(v).lower()) for k, v in raw.items()}
    except ValueError as e:
        raise ValueError(f"Invalid type override: {e}") from e


# ─── Health Check ─────────────────────────────────────────────────────────────


@app.route("/api/health", methods=["GET"])
def health():
    """Health check endpoint."""
    return jsonify({
        "status": "healthy",
        "service": "quizconv",
        "version": __version__,
    })


@app.route("/api/info", methods=["GET"])
def info():
    """Converter version and capability info."""
    return jsonify({
        "version": __version__,
        "engine": "PyMuPDF",
        "input_types": ["pdf", "txt", "json"],
        "question_types": [t.value for t in QuestionType],
        "formats": [f["key"] for f in available_formats()],
    })


@app.route("/api/formats", methods=["GET"])
def formats():
    return jsonify({"formats": available_formats()})


# ─── Convert Endpoint ─────────────────────────────────────────────────────────


@app.route("/api/convert", methods=["POST"])
def convert():
    """
    Convert a document and store the resulting archive.

    Accepts either:
        - A file upload (multipart/form-data) with `format` and `title` fields
        - A JSON body with `format`, `title` and either `file_path`
          pointing to an existing file or an inline `blocks` stream

    Returns {success, message, artifactRef, report}; 422 when the
    conversion failed.
    """
    if "file" in request.files:
        file = request.files["file"]
        if not file.filename:
            return jsonify({"error": "No file selected"}), 400
        params = request.form
        source = fs_storage.save_uploaded_file(
            file,
            f"{uuid.uuid4().hex[:8]}_{file.filename}",
            app.config["UPLOAD_DIR"],
        )
        default_title = Path(file.filename).stem
        blocks = None
    elif request.is_json:
        params = request.get_json(silent=True) or {}
        blocks = params.get("blocks")
        source = params.get("file_path")
        if blocks is None:
            if not source or not os.path.exists(source):
                return jsonify({"error": f"File not found: {source}"}), 404
            default_title = Path(source).stem
        else:
            default_title = None
    else:
        return jsonify({
            "error": "Provide a file upload, or JSON with file_path or blocks"
        }), 400

    format_key = params.get("format")
    if not format_key:
        return jsonify({"error": "format is required"}), 400

    try:
        types = _parse_types(params.get("types")) if request.is_json else {}
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    title = params.get("title") or default_title
    engine = _engine(type_overrides=types)

    if blocks is not None:
        try:
            parsed = blocks_from_json(blocks)
        except ConversionError as e:
            logger.warning(f"Rejected inline block stream: {e.internal_message}")
            return jsonify({"error": e.user_message}), 400
        result = engine.convert(parsed, format_key, title)
    else:
        result = engine.convert_file(source, format_key, title)

    return jsonify(_result_payload(result)), 200 if result.success else 422


# ─── Download ─────────────────────────────────────────────────────────────────


@app.route("/api/download", methods=["GET"])
@app.route("/api/download/<artifact_id>", methods=["GET"])
def download(artifact_id: str = None):
    """Stream a stored archive; the last one when no id is given."""
    output_dir = app.config.get("OUTPUT_DIR")
    try:
        if artifact_id:
            ref = fs_storage.get_artifact_ref(artifact_id, output_dir)
        else:
            ref = fs_storage.get_last_artifact(output_dir)
        data = _engine().download(ref)
    except ConversionError as e:
        logger.warning(f"Download failed: {e.internal_message}")
        return jsonify({"error": e.user_message}), 404

    return send_file(
        io.BytesIO(data),
        mimetype="application/zip",
        as_attachment=True,
        download_name=ref.display_name,
    )


# ─── Run Server ──────────────────────────────────────────────────────────────


def run_server(
    host: str = "0.0.0.0",
    port: int = 5000,
    debug: bool = False,
    output_dir: str = None,
):
    """Start the microservice server."""
    create_app({"OUTPUT_DIR": output_dir} if output_dir else None)
    app.run(host=host, port=port, debug=debug)


if __name__ == "__main__":
    run_server(debug=True)
