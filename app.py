import os, json, logging, threading, time, uuid
from collections import defaultdict, deque
from datetime import timedelta

import click
from dotenv import load_dotenv
from flask import has_request_context
from flask import Flask, Response, request, jsonify, g
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from prometheus_flask_exporter import PrometheusMetrics
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException, BadRequest
from werkzeug.middleware.proxy_fix import ProxyFix

import db
from services import accounts
from services.errors import ServiceError
from services.identities import create_tables


# ----------------------------
# Pull local env
# ----------------------------
if os.path.exists(".env"):
    load_dotenv(override=False)  # never override the process env


# ----------------------------
# Config
# ----------------------------
class Config:
    ENV = os.getenv("FLASK_ENV", "production")
    DEBUG = ENV == "development"
    TESTING = False

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Identity store (postgres://…, postgresql://… or mysql://…)
    DATABASE_URL = os.getenv("DATABASE_URL")

    # Auth
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(
        seconds=int(os.getenv("JWT_ACCESS_TOKEN_EXPIRES_S", "86400"))
    )
    MAX_LOGIN_ATTEMPTS = int(os.getenv("MAX_LOGIN_ATTEMPTS", "5"))

    # Request / server settings
    REQUEST_MAX_BODY_BYTES = int(os.getenv("REQUEST_MAX_BODY_BYTES", "1048576"))  # 1 MB

    # Rate limiting
    RATE_LIMIT_REQUESTS = int(os.getenv("RATE_LIMIT_REQUESTS", "100"))  # per window
    RATE_LIMIT_WINDOW_S = int(os.getenv("RATE_LIMIT_WINDOW_S", "60"))   # seconds
    # Proxies in front of the app whose X-Forwarded-For is trusted; 0 = none
    TRUSTED_PROXY_HOPS = int(os.getenv("TRUSTED_PROXY_HOPS", "0"))

    # Feature flags
    ENABLE_PROMETHEUS = os.getenv("ENABLE_PROMETHEUS", "true").lower() == "true"


class TestConfig(Config):
    TESTING = True
    JWT_SECRET_KEY = "test-secret-key-with-enough-length-for-hs256"
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(minutes=15)
    RATE_LIMIT_REQUESTS = 10000
    ENABLE_PROMETHEUS = False


# ----------------------------
# Logging (JSON)
# ----------------------------
class JsonFormatter(logging.Formatter):
    def format(self, record):
        payload = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "pid": os.getpid(),
        }

        # Only touch request/g if we actually have a request context
        if has_request_context():
            payload["path"] = request.path
            payload["method"] = request.method
            rid = getattr(g, "request_id", None)
            if rid:
                payload["request_id"] = rid

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def setup_logging():
    root = logging.getLogger()
    root.setLevel(logging.INFO)
    formatter = JsonFormatter()
    if not any(isinstance(h, logging.StreamHandler) for h in root.handlers):
        h = logging.StreamHandler()
        h.setFormatter(formatter)
        root.addHandler(h)
    else:
        for h in root.handlers:
            if isinstance(h, logging.StreamHandler):
                h.setFormatter(formatter)
    logging.getLogger("app").info(
        "App boot: PID=%s, PORT=%s, DATABASE_URL set=%s, NEO4J_URI set=%s",
        os.getpid(), os.getenv("PORT"), bool(os.getenv("DATABASE_URL")), bool(os.getenv("NEO4J_URI")),
    )


# ----------------------------
# Tiny in-memory rate limiter (per process)
# ----------------------------
class SimpleRateLimiter:
    def __init__(self, max_requests, window_s):
        self.max_requests = max_requests
        self.window_s = window_s
        self.buckets = defaultdict(deque)
        self._lock = threading.Lock()
        self._last_sweep = time.time()

    def is_allowed(self, key: str) -> bool:
        now = time.time()
        with self._lock:
            if now - self._last_sweep >= self.window_s:
                self._sweep(now)
            q = self.buckets[key]
            # Drop old timestamps
            while q and q[0] <= now - self.window_s:
                q.popleft()
            if len(q) >= self.max_requests:
                return False
            q.append(now)
            return True

    def _sweep(self, now):
        # Forget clients with nothing inside the window
        cutoff = now - self.window_s
        for key in [k for k, q in self.buckets.items() if not q or q[-1] <= cutoff]:
            del self.buckets[key]
        self._last_sweep = now


# ----------------------------
# App Factory
# ----------------------------
def create_app(config_object=Config):
    setup_logging()
    log = logging.getLogger("app")
    log.info("stage: flask_start")

    app = Flask(__name__)
    app.config.from_object(config_object)
    log.info("stage: config_loaded")

    if not app.config["DATABASE_URL"] and not app.config["TESTING"]:
        log.warning("DATABASE_URL not set. /readyz will fail.")

    # remote_addr only honours X-Forwarded-For when a proxy is configured
    if app.config["TRUSTED_PROXY_HOPS"] > 0:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=app.config["TRUSTED_PROXY_HOPS"])

    # Register Blueprints
    from auth import auth_bp
    from injuries import injuries_bp
    from players import players_bp
    from status import status_bp
    from teams import teams_bp

    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(injuries_bp)
    app.register_blueprint(status_bp)
    app.register_blueprint(teams_bp)
    app.register_blueprint(players_bp)
    log.info("stage: blueprints_ok")

    @app.get("/")
    def root():
        return jsonify(status="up")

    # CORS
    CORS(app, resources={r"/*": {"origins": app.config["CORS_ORIGINS"]}})
    log.info("stage: cors_ok")

    # Request ID middleware
    @app.before_request
    def attach_request_id():
        g.request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        # lightweight body size guard
        cl = request.headers.get("Content-Length")
        if cl and cl.isdigit() and int(cl) > app.config["REQUEST_MAX_BODY_BYTES"]:
            raise BadRequest("Request body too large")

    @app.after_request
    def echo_request_id(response):
        rid = getattr(g, "request_id", None)
        if rid:
            response.headers["X-Request-ID"] = rid
        return response

    # Simple rate limit
    limiter = SimpleRateLimiter(
        app.config["RATE_LIMIT_REQUESTS"], app.config["RATE_LIMIT_WINDOW_S"]
    )

    @app.before_request
    def apply_rate_limit():
        key = request.remote_addr or "unknown"
        if not limiter.is_allowed(key):
            return jsonify(error="rate_limited", message="Too many requests"), 429

    # -------- Auth (JWT) --------
    jwt = JWTManager(app)

    @jwt.user_lookup_loader
    def load_account(_jwt_header, jwt_data):
        # None makes flask-jwt-extended reject the token
        return accounts.get_active_account(db.get_engine(), jwt_data["sub"])

    @jwt.user_lookup_error_loader
    def account_unavailable(_jwt_header, _jwt_data):
        return jsonify(error="unauthorized", message="Account is inactive or locked"), 401

    @jwt.unauthorized_loader
    def missing_token(reason):
        return jsonify(error="unauthorized", message=reason), 401

    @jwt.invalid_token_loader
    def invalid_token(reason):
        return jsonify(error="unauthorized", message=reason), 401

    @jwt.expired_token_loader
    def expired_token(_jwt_header, _jwt_payload):
        return jsonify(error="unauthorized", message="Token has expired"), 401
    log.info("stage: jwt_ok")

    # Prometheus metrics
    if app.config["ENABLE_PROMETHEUS"]:
        PrometheusMetrics(app, group_by="endpoint")
        log.info("Prometheus metrics enabled at /metrics")

    # -------- Error Handlers --------
    @app.get("/routes")
    def _routes():
        lines = []
        for r in sorted(app.url_map.iter_rules(), key=lambda x: x.rule):
            lines.append(f"{','.join(sorted(r.methods))}  {r.rule}  -> {r.endpoint}")
        return Response("\n".join(lines), mimetype="text/plain")

    @app.errorhandler(ServiceError)
    def handle_service_ex(e: ServiceError):
        if e.status_code >= 500:
            log.exception("Service error")
        return jsonify(error=e.code, message=e.message), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_ex(e: HTTPException):
        return jsonify(error=e.name, message=e.description), e.code

    @app.errorhandler(SQLAlchemyError)
    def handle_db_ex(e):
        log.exception("Database error")
        return jsonify(error="database_error", message="Database temporarily unavailable"), 500

    @app.errorhandler(Exception)
    def handle_generic_ex(e):
        log.exception("Unhandled error")
        return jsonify(error="internal_error", message="Something went wrong"), 500

    # -------- Health / Readiness --------
    @app.get("/healthz")
    def healthz():
        return jsonify(status="ok", time=time.time())

    @app.get("/readyz")
    def readyz():
        checks = {}
        try:
            with db.get_engine().connect() as conn:
                conn.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception as e:
            log.warning("readyz: database ping failed: %s", e)
            checks["database"] = str(e)
        try:
            with db.graph_session() as session:
                session.run("RETURN 1 AS ok").single()
            checks["graph"] = "ok"
        except Exception as e:
            log.warning("readyz: graph ping failed: %s", e)
            checks["graph"] = str(e)

        if all(v == "ok" for v in checks.values()):
            return jsonify(status="ready", checks=checks)
        return jsonify(status="degraded", checks=checks), 503
    log.info("stage: handlers_ok")

    register_cli(app)
    return app


# ----------------------------
# CLI
# ----------------------------
GRAPH_CONSTRAINTS = (
    "CREATE CONSTRAINT injury_id_unique IF NOT EXISTS FOR (i:Injury) REQUIRE i.injuryId IS UNIQUE",
    "CREATE CONSTRAINT player_pseudonym_unique IF NOT EXISTS FOR (p:Player) REQUIRE p.pseudonymId IS UNIQUE",
    "CREATE CONSTRAINT team_id_unique IF NOT EXISTS FOR (t:Team) REQUIRE t.teamId IS UNIQUE",
)


def register_cli(app: Flask):
    @app.cli.command("init-db")
    def init_db():
        """Create the identity/account tables."""
        create_tables(db.get_engine())
        click.echo("identity tables ready")

    @app.cli.command("init-graph")
    def init_graph():
        """Create graph uniqueness constraints."""
        with db.graph_session() as session:
            for statement in GRAPH_CONSTRAINTS:
                session.run(statement).consume()
        click.echo(f"{len(GRAPH_CONSTRAINTS)} graph constraints ready")

    @app.cli.command("unlock-account")
    @click.argument("email")
    def unlock_account(email):
        """Clear the lockout flag and failed-login counter for EMAIL."""
        if accounts.unlock_account(db.get_engine(), email):
            logging.getLogger("app").info("account unlocked: %s", email)
            click.echo(f"unlocked {email}")
        else:
            raise click.ClickException(f"no account with email {email}")


# ----------------------------
# Entrypoint
# ----------------------------
if __name__ == "__main__":
    app = create_app()
    # For local dev only; use gunicorn in production
    app.run(host="0.0.0.0", port=int(os.getenv("PORT", "8080")))
