"""Flask application factory."""

import logging
import os
import secrets
from datetime import timedelta
from pathlib import Path

import redis
from dotenv import load_dotenv
from flask import Flask
from flask_session import Session
from sqlalchemy.pool import NullPool

from .extensions import db
from .services.portal_service import PortalService
from .services.storage_service import StorageService

logger = logging.getLogger(__name__)


def _resolve_secret_key() -> str:
    """Return a secret key for Flask sessions.

    In production we expect ``FLASK_SECRET_KEY`` (or the legacy ``SECRET_KEY``)
    to be configured. When the environment variable is missing, such as during
    local testing, we generate a temporary key to avoid crashing at import time.
    """

    for name in ("FLASK_SECRET_KEY", "SECRET_KEY"):
        value = os.environ.get(name)
        if value:
            return value

    return secrets.token_hex(32)


def _bool_from_env(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on"}


def _running_on_vercel() -> bool:
    """Return ``True`` when executing inside the Vercel serverless runtime."""

    return bool(os.environ.get("VERCEL") or os.environ.get("VERCEL_ENV"))


def _configure_sessions(app: Flask, is_production: bool) -> None:
    """Pick the session backend: redis, then SQL, then the filesystem."""

    redis_url = os.environ.get("UPSTASH_REDIS_URL")
    if redis_url:
        try:
            app.config["SESSION_TYPE"] = "redis"
            app.config["SESSION_REDIS"] = redis.from_url(redis_url)
            return
        except Exception:  # pragma: no cover - network dependent
            logger.warning(
                "Redis session initialisation failed; falling back to the next store",
                exc_info=True,
            )

    database_uri = os.environ.get("SUPABASE_DB_POOL_URL") or os.environ.get("DATABASE_URL")
    if database_uri:
        sslmode = os.environ.get("DATABASE_SSLMODE")
        if sslmode and "sslmode=" not in database_uri:
            separator = "&" if "?" in database_uri else "?"
            database_uri = f"{database_uri}{separator}sslmode={sslmode}"

        engine_options = {"pool_pre_ping": True}
        if _running_on_vercel():
            engine_options["poolclass"] = NullPool

        app.config.update(
            SQLALCHEMY_DATABASE_URI=database_uri,
            SQLALCHEMY_ENGINE_OPTIONS=engine_options,
            SQLALCHEMY_TRACK_MODIFICATIONS=False,
            SESSION_TYPE="sqlalchemy",
            SESSION_SQLALCHEMY=db,
            SESSION_SQLALCHEMY_TABLE=os.environ.get("SESSION_TABLE", "sessions"),
        )
        db.init_app(app)
        return

    if is_production:
        raise RuntimeError(
            "UPSTASH_REDIS_URL or SUPABASE_DB_POOL_URL is required in production to persist sessions."
        )

    session_dir = Path(os.environ.get("SESSION_FILE_DIR", "/tmp/research_portal_session"))
    session_dir.mkdir(parents=True, exist_ok=True)
    app.config["SESSION_TYPE"] = "filesystem"
    app.config["SESSION_FILE_DIR"] = str(session_dir)


def create_app() -> Flask:
    """Configure and return the Flask application."""

    load_dotenv()

    app = Flask(__name__)

    # Services discover their own credentials from the environment so the
    # portal runs against the local store when Supabase is not configured.
    app.storage_service = StorageService()
    app.portal_service = PortalService(app.storage_service)

    app.config["SECRET_KEY"] = _resolve_secret_key()

    is_vercel = _running_on_vercel()
    flask_env = os.environ.get("FLASK_ENV", "").lower()
    is_production = flask_env in {"production", "prod"} or is_vercel

    same_site_env = os.environ.get("SESSION_COOKIE_SAMESITE")
    same_site_default = "Lax"
    if same_site_env and same_site_env.lower() == "none":
        same_site_default = "None"

    app.config.update(
        SESSION_PERMANENT=True,
        PERMANENT_SESSION_LIFETIME=timedelta(
            days=int(os.environ.get("SESSION_LIFETIME_DAYS", "14"))
        ),
        SESSION_COOKIE_SECURE=_bool_from_env("SESSION_COOKIE_SECURE", is_production),
        SESSION_COOKIE_SAMESITE=os.environ.get("SESSION_COOKIE_SAMESITE", same_site_default),
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_NAME=os.environ.get("SESSION_COOKIE_NAME", "research_portal_session"),
        SESSION_COOKIE_DOMAIN=os.environ.get("SESSION_COOKIE_DOMAIN"),
        SESSION_USE_SIGNER=False,
    )

    _configure_sessions(app, is_production)
    Session(app)

    from .api import api_bp
    from .routes import main_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(api_bp)

    logger.info(
        "app.created",
        extra={
            "backend": "supabase" if app.storage_service.uses_supabase else "local",
            "session_type": app.config["SESSION_TYPE"],
        },
    )
    return app
