from dotenv import load_dotenv
load_dotenv()
from flask import Flask, jsonify, request
from flask_cors import CORS
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
import logging
import os
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

# Use Flask-SQLAlchemy's default declarative base.
from extensions import db, limiter, utcnow

app = Flask(__name__)

# --- Secret key ---
secret_key = os.getenv('SECRET_KEY') or os.getenv('FLASK_SECRET_KEY') or 'dev-secret-key-change-me'
app.config['SECRET_KEY'] = secret_key

IS_PRODUCTION = bool(os.getenv("RENDER") or os.getenv("FLASK_ENV") == "production")

# -------------------------------
# Logging
# -------------------------------
# Everything logs through app.logger / current_app.logger.
app.logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())
if not app.debug and not any(isinstance(h, logging.StreamHandler) for h in app.logger.handlers):
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    app.logger.addHandler(_handler)


# -------------------------------
# Client IP resolution
# -------------------------------
# Render (and most PaaS) runs behind a reverse proxy. Without ProxyFix,
# request.remote_addr will often be the proxy IP, collapsing many users into one
# rate-limit bucket. We enable ProxyFix only in production/Render contexts.
if IS_PRODUCTION:
    # Trust a single proxy hop (Render's edge proxy)
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)

# -------------------------------
# Database
# -------------------------------
_db_url = os.getenv("DATABASE_URL")
if not _db_url:
    if os.getenv("RENDER") == "true":
        raise RuntimeError("DATABASE_URL missing on Render; refusing to use SQLite.")
    _db_url = "sqlite:///referrals.db"

if _db_url.startswith("postgres://"):
    _db_url = _db_url.replace("postgres://", "postgresql://", 1)

DB_TIMEOUT_SECONDS = int(os.getenv("DB_TIMEOUT_SECONDS", "5"))

_engine_options = {
    "pool_recycle": 300,
    "pool_pre_ping": True,
}
if _db_url.startswith("postgresql"):
    # Bound every DB round trip; a hung query fails (503, retryable) instead of hanging the worker.
    _engine_options["connect_args"] = {
        "connect_timeout": DB_TIMEOUT_SECONDS,
        "options": f"-c statement_timeout={DB_TIMEOUT_SECONDS * 1000}",
    }

app.config["SQLALCHEMY_DATABASE_URI"] = _db_url
app.config["SQLALCHEMY_ENGINE_OPTIONS"] = _engine_options

# Collaborators are plugged in by the deployment (see affiliates.py / eligibility.py).
app.config.setdefault("AFFILIATE_PROVIDER", None)
app.config.setdefault("ELIGIBILITY_CHECKER", None)

# Rate limiting
# - In production (Render), set RATE_LIMIT_STORAGE_URL to a Redis URL for multi-instance correctness.
# - Defaults to in-memory storage for simplicity.
app.config["RATELIMIT_STORAGE_URI"] = os.getenv("RATE_LIMIT_STORAGE_URL", "memory://")
app.config["RATELIMIT_ENABLED"] = os.getenv("RATELIMIT_ENABLED", "1") == "1"

# Initialize extensions
db.init_app(app)
CORS(app)
limiter.init_app(app)


# Performance-minded headers (safe defaults)
@app.after_request
def add_perf_headers(resp):
    try:
        # Every response here is wallet-specific or security-sensitive; never cache.
        resp.headers.setdefault("Cache-Control", "no-store")
        resp.headers.setdefault("X-Content-Type-Options", "nosniff")
    except Exception:
        pass
    return resp


# -------------------------------
# Errors: always JSON, never an HTML page
# -------------------------------
@app.errorhandler(OperationalError)
def handle_db_unavailable(e):
    db.session.rollback()
    app.logger.exception("[DB] Operational error on %s %s", request.method, request.path)
    return jsonify({"success": False, "error": "Database unavailable, try again", "retryable": True}), 503


@app.errorhandler(HTTPException)
def handle_http_error(e):
    return jsonify({"success": False, "error": e.description}), e.code


@app.errorhandler(Exception)
def handle_unexpected_error(e):
    db.session.rollback()
    app.logger.exception("[API] Unhandled error on %s %s", request.method, request.path)
    return jsonify({"success": False, "error": "Internal server error"}), 500


@app.route('/api/health', methods=['GET'])
@limiter.exempt
def health_check():
    try:
        # SQLAlchemy 2.x requires raw SQL to be wrapped in text().
        db.session.execute(text('SELECT 1'))
        return jsonify({
            'success': True,
            'status': 'healthy',
            'timestamp': utcnow().isoformat(),
            'database': 'connected',
            'version': '1.0.0'
        })
    except Exception as e:
        db.session.rollback()
        return jsonify({
            'success': False,
            'status': 'unhealthy',
            'error': str(e),
            'timestamp': utcnow().isoformat()
        }), 500


# ==================== WALLET ACTIVATION ====================
from models_activation import WalletActivation, WalletNonce  # noqa: F401
from activation import activation_api

# ==================== REFERRALS ====================
from models_referral import ReferralAttribution, ReferralConversion, WalletAffiliate  # noqa: F401
from affiliates import affiliates_api
from attribution import attribution_api
from completions import webhooks_api
from progress import progress_api

import nonces

app.register_blueprint(activation_api)
app.register_blueprint(affiliates_api)
app.register_blueprint(attribution_api)
app.register_blueprint(webhooks_api)
app.register_blueprint(progress_api)


@app.cli.command("sweep-nonces")
def sweep_nonces_command():
    """Delete expired challenge nonces."""
    removed = nonces.sweep_expired()
    print({"ok": True, "removed": removed})


with app.app_context():
    db.create_all()


if __name__ == '__main__':
    port = int(os.getenv('PORT', 5000))
    debug = os.getenv('FLASK_ENV', 'development') == 'development'

    print("=" * 60)
    print("Wallet Activation & Referral Service")
    print("=" * 60)
    print(f"Database: {_db_url.split('@')[-1]}")
    print(f"Affiliate provider configured: {app.config.get('AFFILIATE_PROVIDER') is not None}")
    print(f"Eligibility checker configured: {app.config.get('ELIGIBILITY_CHECKER') is not None}")
    print(f"Health: http://localhost:{port}/api/health")
    print("=" * 60)

    app.run(host='0.0.0.0', port=port, debug=debug)
