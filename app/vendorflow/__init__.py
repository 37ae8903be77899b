import logging
import os
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, request

# Core models first; they pull in the module models at the bottom of the file.
from app.vendorflow import models  # noqa: F401
from app.vendorflow.auth import bp as auth_bp, load_current_user
from app.vendorflow.config import load_config
from app.vendorflow.db import init_db, teardown_db_session
from app.vendorflow.errors import GovernanceError
from app.vendorflow.modules.activity.api import bp as activity_bp
from app.vendorflow.modules.compliance.api import bp as compliance_bp
from app.vendorflow.modules.documents.api import bp as documents_bp
from app.vendorflow.modules.login_approval.api import bp as login_approvals_bp
from app.vendorflow.modules.vendors.api import bp as vendors_bp
from app.vendorflow.routes import bp as routes_bp


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    level = getattr(logging, str(app.config.get("LOG_LEVEL") or "INFO").upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    app.logger.setLevel(level)
    logging.getLogger("app.vendorflow").setLevel(level)

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [
            key
            for key in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")
            if not app.config.get(key)
        ]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(documents_bp, url_prefix="/api")
    app.register_blueprint(login_approvals_bp, url_prefix="/api")
    app.register_blueprint(vendors_bp, url_prefix="/api")
    app.register_blueprint(compliance_bp, url_prefix="/api")
    app.register_blueprint(activity_bp, url_prefix="/api")

    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(GovernanceError)
    def _err_governance(e: GovernanceError):  # type: ignore[no-redef]
        s = getattr(g, "db_session", None)
        if s is not None:
            s.rollback()
        rid = getattr(g, "request_id", None)
        if e.http_status >= 500:
            app.logger.error("%s on %s %s (request_id=%s): %s", e.code, request.method, request.path, rid, e.message)
        elif e.http_status == 403:
            app.logger.warning(
                "Forbidden on %s %s (request_id=%s): %s", request.method, request.path, rid, e.details
            )
        return {"error": e.to_dict()}, e.http_status

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        rid = getattr(g, "request_id", None)
        app.logger.exception("Unhandled 500 (request_id=%s)", rid)
        return {"error": {"code": "internal_error", "message": "Internal server error", "details": {}}}, 500

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return {"error": {"code": "not_found", "message": "Resource not found", "details": {}}}, 404

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        return {"error": {"code": "payload_too_large", "message": "File too large. Maximum size is 25MB.", "details": {}}}, 413

    @app.after_request
    def _request_id_header(response):  # type: ignore[no-redef]
        rid = getattr(g, "request_id", None)
        if rid:
            response.headers["X-Request-ID"] = rid
        return response

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app

