"""Flask application factory and service wiring."""
from __future__ import annotations

import logging
import logging.config
import os
from pathlib import Path
from typing import Any, Mapping

from flask import Flask, current_app, jsonify, request
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

import config as app_config
from codes.sources import scrape_social_links_from_sources, scrape_sources
from db import utils as db_utils
from db.schema import create_schema
from games import service as games_service
from init import initialize_app
from media.covers import MediaStorage
from routes import games as routes_games
from routes import web as routes_web

logger = logging.getLogger(__name__)

EXTENSION_KEY = "codes_admin"

# Room for multipart framing around a maximum-size upload.
_UPLOAD_OVERHEAD_BYTES = 1024 * 1024


def default_settings() -> dict[str, Any]:
    return {
        "DB_DSN": app_config.DB_DSN,
        "DB_CONNECT_TIMEOUT_SECONDS": app_config.DB_CONNECT_TIMEOUT_SECONDS,
        "RUN_DB_MIGRATIONS": app_config.RUN_DB_MIGRATIONS,
        "LOG_FILE": app_config.LOG_FILE,
        "MEDIA_DIR": app_config.MEDIA_DIR,
        "MEDIA_URL_PREFIX": app_config.MEDIA_URL_PREFIX,
        "MAX_UPLOAD_BYTES": app_config.MAX_UPLOAD_BYTES,
        "APP_SECRET_KEY": app_config.APP_SECRET_KEY,
        "APP_PASSWORD": app_config.APP_PASSWORD,
        "CODE_AGGREGATOR": scrape_sources,
        "SOCIAL_LINK_SCRAPER": scrape_social_links_from_sources,
        "DEBUG": False,
        "TESTING": False,
    }


def _determine_log_level(flask_app: Flask) -> int:
    if flask_app.debug:
        return logging.DEBUG
    if os.environ.get('FLASK_DEBUG', '').lower() in {'1', 'true', 'yes', 'on'}:
        return logging.DEBUG
    return logging.INFO


def _configure_logging(flask_app: Flask, log_file: str) -> None:
    log_level = _determine_log_level(flask_app)
    log_path = Path(log_file)
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError:
        pass

    for handler in list(flask_app.logger.handlers):
        flask_app.logger.removeHandler(handler)

    logging.config.dictConfig(
        {
            'version': 1,
            'disable_existing_loggers': False,
            'formatters': {
                'standard': {
                    'format': '%(asctime)s %(levelname)s [%(name)s] %(message)s',
                    'datefmt': '%Y-%m-%d %H:%M:%S',
                }
            },
            'handlers': {
                'console': {
                    'class': 'logging.StreamHandler',
                    'formatter': 'standard',
                    'level': log_level,
                    'stream': 'ext://sys.stdout',
                },
                'file': {
                    'class': 'logging.handlers.RotatingFileHandler',
                    'formatter': 'standard',
                    'level': logging.DEBUG,
                    'filename': os.fspath(log_path),
                    'maxBytes': 5 * 1024 * 1024,
                    'backupCount': 5,
                    'encoding': 'utf-8',
                },
            },
            'root': {
                'level': log_level,
                'handlers': ['console', 'file'],
            },
        }
    )

    flask_app.logger.setLevel(log_level)


def _state(key: str) -> Any:
    return current_app.extensions[EXTENSION_KEY][key]


def _request_db() -> db_utils.DatabaseHandle:
    return db_utils.get_db(lambda: _state("engine"))


def _register_error_handlers(flask_app: Flask) -> None:
    @flask_app.teardown_appcontext
    def close_db(exc):
        db_utils.close_db(exc)

    @flask_app.errorhandler(RequestEntityTooLarge)
    def handle_file_too_large(e):
        flask_app.logger.warning("File upload too large for path %s", request.path)
        return jsonify({'success': False, 'error': 'file too large'}), 413

    @flask_app.errorhandler(Exception)
    def handle_exception(e):
        if isinstance(e, HTTPException):
            return e
        flask_app.logger.exception("Unhandled exception")
        if request.path.startswith('/api/'):
            return jsonify({'success': False, 'error': 'internal server error'}), 500
        return "Internal Server Error", 500


def configure_blueprints(flask_app: Flask) -> None:
    routes_games.configure({
        'get_db': _request_db,
        'get_aggregator': lambda: current_app.config['CODE_AGGREGATOR'],
        'get_social_scraper': lambda: current_app.config['SOCIAL_LINK_SCRAPER'],
        'get_media_storage': lambda: _state('media'),
        'get_max_upload_bytes': lambda: current_app.config['MAX_UPLOAD_BYTES'],
    })

    routes_web.configure({
        'get_app_password': lambda: current_app.config['APP_PASSWORD'],
        'get_dashboard_counts': lambda: games_service.count_games(_request_db()),
    })

    if 'games' not in flask_app.blueprints:
        flask_app.register_blueprint(routes_games.games_blueprint)
    if 'web' not in flask_app.blueprints:
        flask_app.register_blueprint(routes_web.web_blueprint)


def create_app(settings: Mapping[str, Any] | None = None) -> Flask:
    """Return a configured Flask application instance.

    ``settings`` overrides the environment-derived defaults from :mod:`config`.
    """

    resolved = default_settings()
    if settings:
        resolved.update(settings)

    flask_app = Flask(__name__)
    flask_app.config.update(resolved)
    flask_app.secret_key = resolved["APP_SECRET_KEY"]
    flask_app.config["MAX_CONTENT_LENGTH"] = resolved["MAX_UPLOAD_BYTES"] + _UPLOAD_OVERHEAD_BYTES

    _configure_logging(flask_app, resolved["LOG_FILE"])

    engine = db_utils.build_engine_from_dsn(
        resolved["DB_DSN"], timeout=resolved["DB_CONNECT_TIMEOUT_SECONDS"]
    )
    media = MediaStorage(resolved["MEDIA_DIR"], url_prefix=resolved["MEDIA_URL_PREFIX"])

    def ensure_dirs() -> None:
        media.root.mkdir(parents=True, exist_ok=True)

    def init_db(*, run_migrations: bool) -> None:
        if run_migrations:
            create_schema(engine.engine)

    initialize_app(
        ensure_dirs=ensure_dirs,
        init_db=init_db,
        connection_factory=lambda: engine,
        run_migrations=resolved["RUN_DB_MIGRATIONS"],
    )

    flask_app.extensions[EXTENSION_KEY] = {"engine": engine, "media": media}

    _register_error_handlers(flask_app)
    configure_blueprints(flask_app)
    logger.info("Admin app created (database: %s)", engine.dialect_name)
    return flask_app


__all__ = ["EXTENSION_KEY", "configure_blueprints", "create_app", "default_settings"]
