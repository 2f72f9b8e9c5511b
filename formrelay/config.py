import os
from dataclasses import dataclass

import phonenumbers
from dotenv import load_dotenv


DEFAULT_CONTACT_THANK_YOU_URL = "https://grants4you.org/thank-you-for-getting-in-touch-with-us.html"
DEFAULT_APPLICATION_THANK_YOU_URL = "https://grants4you.org/thank-you-for-applying.html"

MAIL_PROVIDERS = ("graph", "mailgun")

# National-format phone numbers ("07400 123456") are read in this region.
DEFAULT_PHONE_REGION = "GB"


class ConfigError(Exception):
    """Raised when the environment does not describe a runnable deployment."""


def _as_bool(value, default):
    if value is None or value == "":
        return default
    return value.strip().lower() in ("true", "1", "t", "yes", "on")


def _as_int(env, name, default, errors):
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        errors.append(f"{name} must be an integer (got {raw!r})")
        return default


@dataclass(frozen=True)
class Settings:
    """Immutable deployment settings, assembled once at startup."""

    secret_key: str
    contact_email: str
    mail_provider: str = "graph"
    mail_sender: str = ""
    tenant_id: str = ""
    client_id: str = ""
    client_secret: str = ""
    mailgun_api_key: str = ""
    mailgun_domain: str = ""
    mail_timeout: int = 20
    trusted_proxy_hops: int = 0
    enforce_https: bool = True
    rate_limit_max: int = 100
    rate_limit_window_seconds: int = 900
    rate_limit_storage_uri: str = "memory://"
    csrf_time_limit: int = 3600
    contact_thank_you_url: str = DEFAULT_CONTACT_THANK_YOU_URL
    application_thank_you_url: str = DEFAULT_APPLICATION_THANK_YOU_URL
    default_phone_region: str = DEFAULT_PHONE_REGION
    max_content_length: int = 64 * 1024
    log_level: str = "INFO"

    @property
    def rate_limit(self):
        """Limit string understood by Flask-Limiter."""
        return f"{self.rate_limit_max} per {self.rate_limit_window_seconds} seconds"

    @property
    def sender_address(self):
        return self.mail_sender or self.contact_email

    @classmethod
    def from_env(cls, environ=None):
        """Build settings from the process environment (and a .env file)."""
        if environ is None:
            load_dotenv()
            environ = os.environ

        errors = []
        missing = []

        secret_key = environ.get("FLASK_SECRET_KEY", "")
        contact_email = environ.get("CONTACT_EMAIL") or environ.get("EMAIL", "")
        if not secret_key:
            missing.append("FLASK_SECRET_KEY")
        if not contact_email:
            missing.append("CONTACT_EMAIL")

        provider = environ.get("MAIL_PROVIDER", "graph").strip().lower()
        if provider not in MAIL_PROVIDERS:
            errors.append(f"MAIL_PROVIDER must be one of {', '.join(MAIL_PROVIDERS)} (got {provider!r})")
        elif provider == "graph":
            missing.extend(name for name in ("TENANT_ID", "CLIENT_ID", "CLIENT_SECRET") if not environ.get(name))
        else:
            missing.extend(name for name in ("MAILGUN_API_KEY", "MAILGUN_DOMAIN") if not environ.get(name))

        hops = _as_int(environ, "TRUSTED_PROXY_HOPS", 0, errors)
        if hops not in (0, 1):
            # Forwarded headers are only trustworthy behind exactly one proxy.
            errors.append(f"TRUSTED_PROXY_HOPS must be 0 or 1 (got {hops})")

        rate_limit_max = _as_int(environ, "RATE_LIMIT_MAX", 100, errors)
        window = _as_int(environ, "RATE_LIMIT_WINDOW_SECONDS", 900, errors)
        if rate_limit_max < 1 or window < 1:
            errors.append("RATE_LIMIT_MAX and RATE_LIMIT_WINDOW_SECONDS must be positive")

        mail_timeout = _as_int(environ, "MAIL_TIMEOUT_SECONDS", 20, errors)
        csrf_time_limit = _as_int(environ, "CSRF_TIME_LIMIT_SECONDS", 3600, errors)
        max_content_kb = _as_int(environ, "MAX_CONTENT_LENGTH_KB", 64, errors)

        # Set but empty means no default: numbers then need a + country code.
        region = environ.get("DEFAULT_PHONE_REGION", DEFAULT_PHONE_REGION).strip().upper() or None
        if region is not None and region not in phonenumbers.SUPPORTED_REGIONS:
            errors.append(f"DEFAULT_PHONE_REGION must be a two-letter region code (got {region!r})")

        if missing:
            errors.insert(0, f"Missing required environment variables: {', '.join(missing)}")
        if errors:
            raise ConfigError("; ".join(errors))

        return cls(
            secret_key=secret_key,
            contact_email=contact_email,
            mail_provider=provider,
            mail_sender=environ.get("MAIL_SENDER", ""),
            tenant_id=environ.get("TENANT_ID", ""),
            client_id=environ.get("CLIENT_ID", ""),
            client_secret=environ.get("CLIENT_SECRET", ""),
            mailgun_api_key=environ.get("MAILGUN_API_KEY", ""),
            mailgun_domain=environ.get("MAILGUN_DOMAIN", ""),
            mail_timeout=mail_timeout,
            trusted_proxy_hops=hops,
            enforce_https=_as_bool(environ.get("ENFORCE_HTTPS"), True),
            rate_limit_max=rate_limit_max,
            rate_limit_window_seconds=window,
            rate_limit_storage_uri=environ.get("REDIS_URL") or "memory://",
            csrf_time_limit=csrf_time_limit,
            contact_thank_you_url=environ.get("CONTACT_THANK_YOU_URL") or DEFAULT_CONTACT_THANK_YOU_URL,
            application_thank_you_url=environ.get("APPLICATION_THANK_YOU_URL") or DEFAULT_APPLICATION_THANK_YOU_URL,
            default_phone_region=region,
            max_content_length=max_content_kb * 1024,
            log_level=environ.get("LOG_LEVEL", "INFO").upper(),
        )
