"""
Security gate for the public form endpoints.

Checks run before any field validation, in this order: transport (HTTPS),
anti-forgery token, then rate admission control. Hardened response headers
come from Talisman.
"""

import logging
import time
from dataclasses import dataclass

from flask import g, jsonify, redirect, request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_talisman import Talisman
from flask_wtf.csrf import generate_csrf, validate_csrf
from werkzeug.middleware.proxy_fix import ProxyFix
from wtforms import ValidationError

logger = logging.getLogger(__name__)

STATE_CHANGING_METHODS = {"POST", "PUT", "PATCH", "DELETE"}

CSRF_FIELD_NAME = "_csrf"
CSRF_HEADERS = ("X-CSRF-Token", "CSRF-Token", "X-XSRF-Token")

# Standardised RateLimit-* names instead of the legacy X-RateLimit-* ones.
RATE_LIMIT_HEADERS = {
    "RATELIMIT_HEADER_LIMIT": "RateLimit-Limit",
    "RATELIMIT_HEADER_REMAINING": "RateLimit-Remaining",
    "RATELIMIT_HEADER_RESET": "RateLimit-Reset",
}

CONTENT_SECURITY_POLICY = {
    "default-src": "'self'",
    "script-src": "'self'",
    "style-src": "'self'",
    "object-src": "'none'",
    "upgrade-insecure-requests": "",
}


@dataclass
class SecurityContext:
    """What the gate learned about the current request."""

    scheme: str
    client_key: str
    csrf_checked: bool = False


class CsrfGuard:
    """Issues and verifies anti-forgery tokens bound to the session cookie."""

    def issue_token(self):
        return generate_csrf()

    def verify_token(self, presented):
        if not presented:
            return False
        try:
            validate_csrf(presented)
        except ValidationError as e:
            logger.info(f"CSRF token rejected: {e}")
            return False
        return True


def presented_csrf_token():
    """Token sent with the current request, from a header or the body."""
    for header in CSRF_HEADERS:
        token = request.headers.get(header)
        if token:
            return token
    token = request.form.get(CSRF_FIELD_NAME)
    if token:
        return token
    payload = request.get_json(silent=True)
    if isinstance(payload, dict) and isinstance(payload.get(CSRF_FIELD_NAME), str):
        return payload[CSRF_FIELD_NAME]
    return None


def configure_proxy(app, settings):
    """Honour X-Forwarded-* only when exactly one proxy hop is trusted."""
    if settings.trusted_proxy_hops == 1:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)
        app.logger.info("Trusting X-Forwarded-* headers from one upstream proxy.")
    else:
        app.logger.info("No trusted proxy configured; X-Forwarded-* headers are ignored.")


def build_limiter(settings):
    """Per-client admission control: a fixed quota per fixed window.

    The quota is shared by every route, so a client cannot multiply it by
    spreading requests across endpoints.
    """
    return Limiter(
        get_remote_address,
        application_limits=[settings.rate_limit],
        storage_uri=settings.rate_limit_storage_uri,
        strategy="fixed-window",
        headers_enabled=True,
    )


def rate_limit_reset_in_seconds(response, now=None):
    """Rewrite the limiter's epoch reset time as seconds until the window ends."""
    header = RATE_LIMIT_HEADERS["RATELIMIT_HEADER_RESET"]
    reset_at = response.headers.get(header)
    if reset_at is None:
        return response
    try:
        reset_at = int(float(reset_at))
    except ValueError:
        return response
    now = time.time() if now is None else now
    response.headers[header] = str(max(0, reset_at - int(now)))
    return response


def init_security(app, settings, csrf_guard):
    """Install the gate, the security headers and the limiter on ``app``.

    The gate hook is registered before the limiter so that transport and
    token checks run first; a rejected request never consumes quota.
    """
    configure_proxy(app, settings)

    app.config.update(
        SESSION_COOKIE_SECURE=True,
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SAMESITE="Strict",
        WTF_CSRF_TIME_LIMIT=settings.csrf_time_limit,
        **RATE_LIMIT_HEADERS,
    )

    Talisman(
        app,
        force_https=False,
        content_security_policy=CONTENT_SECURITY_POLICY,
        session_cookie_secure=True,
        session_cookie_http_only=True,
        session_cookie_samesite="Strict",
    )

    @app.before_request
    def enforce_security_gate():
        g.security = SecurityContext(scheme=request.scheme, client_key=get_remote_address())

        if settings.enforce_https and not request.is_secure:
            target = request.url.replace("http://", "https://", 1)
            app.logger.info(f"Redirecting insecure request from {g.security.client_key} to {target}")
            return redirect(target, code=302)

        if request.method in STATE_CHANGING_METHODS:
            if not csrf_guard.verify_token(presented_csrf_token()):
                app.logger.warning(
                    f"Rejected {request.method} {request.path} from {g.security.client_key}: invalid or missing CSRF token"
                )
                return jsonify(error="Invalid or missing CSRF token"), 403
            g.security.csrf_checked = True
        return None

    # after_request hooks run in reverse order of registration, so this one
    # sees the headers the limiter adds below.
    @app.after_request
    def reset_header_as_delta_seconds(response):
        return rate_limit_reset_in_seconds(response)

    limiter = build_limiter(settings)
    limiter.init_app(app)
    app.logger.info(f"Rate limiting configured: {settings.rate_limit} ({settings.rate_limit_storage_uri.split('@')[-1]})")
    return limiter
