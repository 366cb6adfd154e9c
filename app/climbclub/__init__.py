import logging
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, jsonify, request, session
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from app.climbclub.config import load_config
from app.climbclub.db import init_db, rollback_db_session, teardown_db_session
from app.climbclub.errors import ClubError, StoreFailure
from app.climbclub.notify import notifier_from_config
from app.climbclub.routes import bp as routes_bp
from app.climbclub.auth import bp as auth_bp, load_current_user
from app.climbclub.admin import bp as admin_bp
from app.climbclub.users import bp as users_bp
from app.climbclub.modules.membership.routes import bp as membership_bp
from app.climbclub.modules.sessions.routes import bp as sessions_bp
from app.climbclub.modules.gear.routes import bp as gear_bp
from app.climbclub.modules.elections.routes import bp as voting_bp


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True
    app.json.sort_keys = False

    # CSRF protection (minimal)
    from app.climbclub.security import ensure_csrf_token, validate_csrf

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/health", "/healthz")):
            return None
        ensure_csrf_token()
        session.permanent = True
        if not app.config.get("CSRF_ENABLED", True):
            return None
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # Allow auth endpoints to pass through (register/login/logout)
            if (request.endpoint or "").startswith("auth."):
                return None
            if not validate_csrf(request):
                return jsonify({"error": "CSRF token missing or invalid.", "code": "CsrfFailed"}), 400

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)
    app.extensions["notifier"] = notifier_from_config(app.config)
    if not app.extensions["notifier"].configured:
        app.logger.warning("SMTP not configured; member notifications will be skipped.")

    def _dispose_engine_on_fork() -> None:
        import os

        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/api/auth")
    app.register_blueprint(admin_bp, url_prefix="/api/admin")
    app.register_blueprint(users_bp, url_prefix="/api")
    app.register_blueprint(membership_bp, url_prefix="/api")
    app.register_blueprint(sessions_bp, url_prefix="/api")
    app.register_blueprint(gear_bp, url_prefix="/api")
    app.register_blueprint(voting_bp, url_prefix="/api/voting")

    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(ClubError)
    def _err_club(e: ClubError):  # type: ignore[no-redef]
        rollback_db_session()
        if e.status_code >= 500:
            app.logger.error("%s (request_id=%s)", e.kind, getattr(g, "request_id", None))
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(SQLAlchemyError)
    def _err_store(e: SQLAlchemyError):  # type: ignore[no-redef]
        rollback_db_session()
        app.logger.exception("Store failure (request_id=%s)", getattr(g, "request_id", None))
        return jsonify(StoreFailure().to_dict()), 500

    @app.errorhandler(HTTPException)
    def _err_http(e: HTTPException):  # type: ignore[no-redef]
        return jsonify({"error": e.description, "code": e.name.replace(" ", "")}), e.code

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        rollback_db_session()
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return jsonify({"error": "Internal server error", "code": "InternalError"}), 500

    # Startup logging
    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
