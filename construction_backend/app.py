import os

from flask import Flask, request, jsonify
from flask_cors import CORS
from dotenv import load_dotenv

from . import db

load_dotenv()


def _env_int(name, default):
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def create_app(test_config=None):
    app = Flask(__name__)

    # ============================================
    # CONFIG
    # ============================================
    app.config.update(
        SECRET_KEY=os.getenv("SECRET_KEY", "dev-secret-key-change-in-production"),
        DATABASE_URL=os.getenv("DATABASE_URL") or db.DEFAULT_DATABASE_URL,
        QUOTE_LIST_LIMIT=_env_int("QUOTE_LIST_LIMIT", 50),
        QUOTE_REQUEST_PAGE_SIZE=_env_int("QUOTE_REQUEST_PAGE_SIZE", 5),
        INVOICE_DUE_DAYS=_env_int("INVOICE_DUE_DAYS", 30),
        TOKEN_TTL_DAYS=_env_int("TOKEN_TTL_DAYS", 7),
        LOGIN_MAX_ATTEMPTS=_env_int("LOGIN_MAX_ATTEMPTS", 5),
        LOGIN_WINDOW_MINUTES=_env_int("LOGIN_WINDOW_MINUTES", 15),
    )
    if test_config:
        app.config.update(test_config)

    db.configure_engine(app.config["DATABASE_URL"])

    # ============================================
    # CORS
    # ============================================
    CORS(
        app,
        resources={r"/*": {"origins": "*"}},
        supports_credentials=False,
    )

    # ============================================
    # PREFLIGHT HANDLER
    # ============================================
    @app.before_request
    def handle_preflight():
        if request.method == "OPTIONS":
            resp = jsonify({"status": "ok"})
            resp.headers["Access-Control-Allow-Origin"] = "*"
            resp.headers["Access-Control-Allow-Methods"] = "GET,POST,OPTIONS"
            resp.headers["Access-Control-Allow-Headers"] = "*"
            return resp, 200

    # ============================================
    # AFTER-REQUEST HEADERS
    # ============================================
    @app.after_request
    def add_cors_headers(resp):
        resp.headers["Access-Control-Allow-Origin"] = "*"
        resp.headers["Access-Control-Allow-Methods"] = "GET,POST,OPTIONS"
        resp.headers["Access-Control-Allow-Headers"] = "*"
        return resp

    # ============================================
    # JSON ERRORS
    # ============================================
    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"success": False, "error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"success": False, "error": "Method not allowed"}), 405

    @app.errorhandler(500)
    def internal_error(e):
        app.logger.error(f"Unhandled error: {e}")
        return jsonify({"success": False, "error": "Internal server error"}), 500

    # ============================================
    # BLUEPRINTS
    # ============================================
    from .routes import auth_routes, billing_routes, quote_request_routes, crew_routes

    app.register_blueprint(auth_routes.auth_bp)
    app.register_blueprint(billing_routes.billing_bp)
    app.register_blueprint(quote_request_routes.quote_request_bp)
    app.register_blueprint(crew_routes.crew_bp)

    # ============================================
    # HEALTH CHECK
    # ============================================
    @app.route("/health", methods=["GET"])
    def health_check():
        return jsonify({"status": "ok", "message": "Server is running"}), 200

    return app


# ============================================
# STANDALONE LAUNCH
# ============================================
if __name__ == "__main__":
    app = create_app()

    print("=" * 60)
    print("🔧 CHECKING DATABASE...")
    print("=" * 60)

    from sqlalchemy import inspect
    inspector = inspect(db.get_engine())
    tables = inspector.get_table_names()
    print(f"\n📋 {len(tables)} tables detected:")
    for t in tables:
        print(f"   ✓ {t}")
    if not tables:
        print("\n⚠️  No tables yet - run: python -m construction_backend.init_db")

    print("=" * 60)

    port = _env_int("PORT", 5000)
    app.run(debug=True, host="0.0.0.0", port=port, threaded=True)
