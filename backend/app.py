import os
from pathlib import Path

from dotenv import load_dotenv
from flask import Flask, jsonify
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

# .env lives at the repository root
load_dotenv(dotenv_path=Path(__file__).parent.parent / ".env")

from invoice_parsing.logging_config import get_logger

logger = get_logger(__name__)

app = Flask(__name__)

CORS(
    app,
    origins=os.getenv("CORS_ORIGINS", "http://localhost:5173").split(","),
)

# Extracted text only; scanned PDFs are OCR'd before they reach this service
app.config["MAX_CONTENT_LENGTH"] = 2 * 1024 * 1024


@app.errorhandler(HTTPException)
def handle_http_error(e):
    """Keep 404/405/413 responses in the same JSON shape as route errors."""
    return jsonify({"error": e.description}), e.code


# ============================================================================
# REGISTER BLUEPRINTS
# ============================================================================

from routes.health import health_bp
from routes.parsing import parsing_bp

app.register_blueprint(health_bp)
app.register_blueprint(parsing_bp)


if __name__ == "__main__":
    port = int(os.getenv("PORT", "5000"))
    logger.info(f"Invoice parsing API listening on port {port}")
    app.run(debug=False, use_reloader=False, host="0.0.0.0", port=port)
