"""
formrelay - relays public contact and work-application forms to a fixed
mailbox through a transactional mail API.
"""

import logging
from dataclasses import dataclass

from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

from .config import ConfigError, Settings
from .delivery import DeliveryError, build_mailer
from .handlers import bp
from .security import CsrfGuard, init_security

__all__ = ["create_app", "ConfigError", "DeliveryError", "Settings"]

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class AppState:
    settings: Settings
    mailer: object
    csrf: CsrfGuard
    limiter: object = None


def configure_logging(app, level_name):
    """Send app and package logs to one stream handler.

    ``app.logger`` is the ``formrelay`` logger, so module loggers such as
    ``formrelay.security`` end up on the same handler.
    """
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(logging.Formatter(LOG_FORMAT))

    # Flask's default handler would duplicate every line.
    if app.logger.hasHandlers():
        app.logger.handlers.clear()
    app.logger.addHandler(stream_handler)

    level = getattr(logging, level_name, logging.INFO)
    app.logger.setLevel(level)

    app.logger.info(f"Logger configured with level: {logging.getLevelName(level)}")


def register_error_handlers(app):
    @app.errorhandler(DeliveryError)
    def delivery_failed(error):
        # The cause stays in the log; the client only learns that it failed.
        app.logger.error(f"Email delivery failed for {request.path}: {error}", exc_info=error)
        return "Internal Server Error", 500, {"Content-Type": "text/plain; charset=utf-8"}

    @app.errorhandler(429)
    def ratelimit_handler(e):
        app.logger.warning(f"Rate limit exceeded: {e.description} from {request.remote_addr} for URL: {request.url}")
        return jsonify(error=f"Rate limit exceeded: {e.description}"), 429

    @app.errorhandler(RequestEntityTooLarge)
    def request_too_large(e):
        app.logger.warning(f"Request entity too large from {request.remote_addr} for URL: {request.url}")
        return jsonify(error="Request body too large"), 413

    @app.errorhandler(Exception)
    def unhandled_error(error):
        if isinstance(error, HTTPException):
            return jsonify(error=error.description), error.code
        app.logger.error(f"Unhandled error for URL: {request.url}", exc_info=error)
        return "Internal Server Error", 500, {"Content-Type": "text/plain; charset=utf-8"}


def register_access_log(app):
    access_logger = logging.getLogger(f"{__name__}.access")

    @app.after_request
    def log_request(response):
        # Set by the security gate; missing only if an earlier hook failed.
        security = g.get("security")
        scheme = security.scheme if security else request.scheme
        csrf = "verified" if security and security.csrf_checked else "-"
        access_logger.info(
            f'{request.remote_addr} - "{request.method} {request.full_path.rstrip("?")} '
            f'{request.environ.get("SERVER_PROTOCOL", "HTTP/1.1")}" {response.status_code} '
            f'{response.content_length or "-"} "{request.referrer or "-"}" "{request.user_agent.string or "-"}" '
            f"scheme={scheme} csrf={csrf}"
        )
        return response


def create_app(settings=None, mailer=None):
    """Application factory.

    ``settings`` defaults to ``Settings.from_env()`` and ``mailer`` to the
    provider chosen in the settings.
    """
    if settings is None:
        settings = Settings.from_env()

    app = Flask(__name__)
    configure_logging(app, settings.log_level)

    app.config.update(
        SECRET_KEY=settings.secret_key,
        MAX_CONTENT_LENGTH=settings.max_content_length,
    )

    state = AppState(
        settings=settings,
        mailer=mailer if mailer is not None else build_mailer(settings),
        csrf=CsrfGuard(),
    )
    state.limiter = init_security(app, settings, state.csrf)
    app.extensions["formrelay"] = state

    app.register_blueprint(bp)
    register_error_handlers(app)
    register_access_log(app)

    app.logger.info(
        f"formrelay ready: provider={settings.mail_provider}, destination={settings.contact_email}, "
        f"enforce_https={settings.enforce_https}, trusted_proxy_hops={settings.trusted_proxy_hops}"
    )
    return app
