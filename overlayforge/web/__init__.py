"""Flask application factory for the OverlayForge editing API."""

import tempfile
from pathlib import Path

from flask import Flask, jsonify

from overlayforge.errors import OverlayForgeError


def create_app(work_dir: Path | None = None) -> Flask:
    app = Flask(__name__)
    app.config["WORK_DIR"] = work_dir or Path(tempfile.mkdtemp(prefix="overlayforge_"))
    app.config["MAX_CONTENT_LENGTH"] = 10 * 1024 * 1024 * 1024  # 10 GB

    from overlayforge.web.routes import bp
    app.register_blueprint(bp)

    @app.errorhandler(413)
    def request_entity_too_large(error):
        return jsonify({"error": "File too large"}), 413

    @app.errorhandler(OverlayForgeError)
    def overlayforge_error(error: OverlayForgeError):
        return jsonify({"error": error.message, "kind": type(error).__name__}), 400

    return app
