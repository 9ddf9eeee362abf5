import os
from datetime import timedelta
from typing import Dict, Optional

from dotenv import load_dotenv
from flask import Flask, jsonify, send_from_directory
from flask_cors import CORS
from pymongo.errors import PyMongoError
from werkzeug.exceptions import HTTPException

from .extensions import jwt, mongo
from .routes import register_routes
from .uploads import MAX_PRODUCT_IMAGES

load_dotenv()


def create_app(config: Optional[Dict] = None) -> Flask:
    """Create and configure the Flask application.

    Settings come from the environment (``.env`` is honoured); ``config``
    overrides them, which is how the tests point the app at a scratch
    upload folder.
    """
    app = Flask(__name__)

    # --- Configuration ---
    app.config["MONGO_URI"] = os.getenv(
        "MONGO_URL", "mongodb://localhost:27017/marketplace"
    )
    app.config["JWT_SECRET_KEY"] = os.getenv("JWT_SECRET", "change-me-in-production")
    app.config["JWT_ACCESS_TOKEN_EXPIRES"] = timedelta(days=1)
    app.config["CORS_ORIGIN"] = os.getenv("CORS_ORIGIN", "http://localhost:3000")
    app.config["ADMIN_KEY"] = (os.getenv("ADMIN_KEY") or "").strip()
    app.config["UPLOAD_FOLDER"] = os.getenv("UPLOAD_FOLDER") or os.path.join(
        app.root_path, "uploads"
    )
    max_image_mb = int(os.getenv("MAX_IMAGE_SIZE_MB", "5"))
    app.config["MAX_IMAGE_SIZE"] = max_image_mb * 1024 * 1024
    app.config["DB_RETRY_DELAY"] = float(os.getenv("DB_RETRY_DELAY_SECONDS", "5"))

    if config:
        app.config.update(config)

    # Room for a full set of images plus the text fields of the form.
    if not app.config.get("MAX_CONTENT_LENGTH"):
        app.config["MAX_CONTENT_LENGTH"] = (
            MAX_PRODUCT_IMAGES * app.config["MAX_IMAGE_SIZE"] + 1024 * 1024
        )
    os.makedirs(app.config["UPLOAD_FOLDER"], exist_ok=True)

    # --- Initialize extensions ---
    allowed_origins = [
        origin.strip()
        for origin in str(app.config["CORS_ORIGIN"] or "").split(",")
        if origin.strip()
    ]
    CORS(app, origins=allowed_origins or "*")

    mongo.init_app(app)
    jwt.init_app(app)

    # --- Error handlers ---

    @app.errorhandler(413)
    def upload_too_large(error):
        return (
            jsonify(
                {
                    "success": False,
                    "message": "The upload is too large. Each image may be at most "
                    f"{app.config['MAX_IMAGE_SIZE'] // (1024 * 1024)} MB.",
                }
            ),
            413,
        )

    @app.errorhandler(HTTPException)
    def http_error(error):
        return (
            jsonify({"success": False, "message": error.description or error.name}),
            error.code,
        )

    @app.errorhandler(PyMongoError)
    def database_error(error):
        app.logger.error("Database error: %s", error)
        return (
            jsonify({"success": False, "message": "Server error", "error": str(error)}),
            500,
        )

    # --- ROUTES ---

    @app.route("/uploads/<path:filename>")
    def serve_uploaded_file(filename: str):
        return send_from_directory(app.config["UPLOAD_FOLDER"], filename)

    @app.route("/health")
    def health():
        return {"status": "ok"}, 200

    register_routes(app)

    return app
