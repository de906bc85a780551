"""Flask application factory."""

import json
import os
from flask import Flask
from flask_cors import CORS

from services import field_mapping
from services.errors import ConfigurationError


def load_field_mapping_config(app):
    """Configure the default field mapping from the config file, if any."""
    config_path = os.environ.get("FIELD_MAPPING_CONFIG") or os.path.join(
        os.path.dirname(__file__), "..", "config", "field-mapping.json"
    )

    if os.path.exists(config_path):
        try:
            with open(config_path, "r") as f:
                config = json.load(f)
            mapping = field_mapping.configure(
                config.get("fields", {}),
                config.get("doneStatuses", [])
            )
            app.logger.info(
                f"Loaded field mapping (sprint field {mapping.sprint}, "
                f"{len(mapping.done_statuses)} done statuses)"
            )
        except (json.JSONDecodeError, IOError, ConfigurationError) as e:
            app.logger.warning(f"Failed to load field mapping config: {e}")
            field_mapping.reset()
    else:
        app.logger.info("No field-mapping.json found, requests must supply fields")
        field_mapping.reset()


def create_app():
    """Create and configure the Flask application."""
    app = Flask(__name__)

    # Enable CORS for report tooling running in the browser
    CORS(app, resources={
        r"/api/*": {
            "origins": ["http://localhost:5173", "http://127.0.0.1:5173"],
            "methods": ["GET", "POST", "OPTIONS"],
            "allow_headers": ["Content-Type"]
        }
    })

    # Register blueprints
    from app.api import sprint_report
    app.register_blueprint(sprint_report.bp)

    load_field_mapping_config(app)

    # Health check endpoint
    @app.route("/health")
    def health():
        return {"status": "ok"}

    return app
