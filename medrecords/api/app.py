"""
Flask application factory and server entry-point.
"""

import logging
import os
import sys
import traceback

from flask import Flask
from flask_cors import CORS

from medrecords.api.auth import EXTENSION_KEY
from medrecords.api.routes import register_routes
from medrecords.config import MAX_UPLOAD_BYTES, SECRET_KEY, TOKEN_EXPIRY_HOURS
from medrecords.database import init_engine
from medrecords.identity import IdentityProvider
from medrecords.storage import init_storage


def create_app(engine=None, storage=None, identity=None):
    """Build and return a fully configured Flask application.

    Resources not passed in are built from the environment.
    """
    app = Flask(__name__)
    CORS(app, resources={r"/api/*": {"origins": "*"}})
    app.config["SECRET_KEY"] = SECRET_KEY
    # leave headroom for the multipart envelope around the file itself
    app.config["MAX_CONTENT_LENGTH"] = MAX_UPLOAD_BYTES + 1024 * 1024

    # ── Initialise shared resources ──────────────────────────────────
    try:
        if engine is None:
            app.logger.info("Initializing database connection...")
            engine = init_engine()
        if storage is None:
            app.logger.info("Initializing object storage...")
            storage = init_storage()
        if identity is None:
            identity = IdentityProvider(engine)
    except Exception as e:
        print(f"[FATAL] Failed to initialize: {e}", file=sys.stderr)
        traceback.print_exc()
        sys.exit(1)

    app.extensions[EXTENSION_KEY] = {
        "engine": engine,
        "storage": storage,
        "identity": identity,
    }

    # ── Register routes ──────────────────────────────────────────────
    register_routes(app, engine, identity, storage)

    return app


def main():
    """Run the development server."""
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    print("=" * 60)
    print("MedRecords – REST API Server")
    print("=" * 60)

    app = create_app()

    host = os.getenv("API_HOST", "0.0.0.0")
    port = int(os.getenv("API_PORT", "8000"))
    debug = os.getenv("FLASK_ENV") == "development"

    print(f"\n[server] Starting Flask API on {host}:{port}")
    print(f"[server] Debug mode: {debug}")
    print(f"[server] Session expiry: {TOKEN_EXPIRY_HOURS} hours")
    print("\nAPI Endpoints:")
    print(f"  - POST http://{host}:{port}/api/auth/signup")
    print(f"  - POST http://{host}:{port}/api/auth/login")
    print(f"  - POST http://{host}:{port}/api/auth/logout")
    print(f"  - GET  http://{host}:{port}/patient")
    print(f"  - GET  http://{host}:{port}/doctor")
    print(f"  - GET  http://{host}:{port}/api/patients")
    print(f"  - GET  http://{host}:{port}/api/records")
    print(f"  - POST http://{host}:{port}/api/records")
    print(f"  - GET  http://{host}:{port}/health")
    print("\n" + "=" * 60)

    app.run(host=host, port=port, debug=debug, threaded=True)


if __name__ == "__main__":
    main()
