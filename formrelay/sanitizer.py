"""
Field-level sanitisation and format checks for untrusted form input.

Every function here is pure. Validators return the cleaned value or raise
``InvalidField`` with a message that is safe to show to the submitter.
"""

import re

import bleach
import phonenumbers
from email_validator import EmailNotValidError, validate_email as _check_email_syntax
from phonenumbers import NumberParseException, PhoneNumberType


NAME_PATTERN = re.compile(r"^[a-zA-Z\s]+$")

MOBILE_NUMBER_TYPES = (PhoneNumberType.MOBILE, PhoneNumberType.FIXED_LINE_OR_MOBILE)

# Angle brackets are escaped before bleach parses the value: left raw, bleach
# drops comments and bogus markup such as "<!-- -->" or "</>" outright.
ANGLE_ENTITIES = {"<": "&lt;", ">": "&gt;"}

# Quotes survive bleach in text nodes, so they are escaped afterwards.
QUOTE_ENTITIES = {'"': "&quot;", "'": "&#x27;"}

# Provider addressing quirks applied during normalisation.
GMAIL_DOMAINS = {"gmail.com", "googlemail.com"}
PLUS_TAG_DOMAINS = {
    "outlook.com", "hotmail.com", "live.com", "msn.com", "hotmail.co.uk", "live.co.uk",
    "icloud.com", "me.com", "mac.com",
}
DASH_TAG_DOMAINS = {"yahoo.com", "yahoo.co.uk", "ymail.com", "rocketmail.com"}


class InvalidField(ValueError):
    """A single field failed its rule; ``message`` is user-facing."""

    def __init__(self, message):
        super().__init__(message)
        self.message = message


def sanitize_text(raw):
    """Trim and HTML-escape a value for interpolation into an HTML body.

    Markup, comments included, is escaped rather than stripped; character
    entities that are already present are kept, so sanitising twice changes
    nothing.
    """
    if raw is None:
        return ""
    value = str(raw).strip()
    if not value:
        return ""
    for char, entity in ANGLE_ENTITIES.items():
        value = value.replace(char, entity)
    # bleach escapes bare ampersands and leaves existing entities alone.
    cleaned = bleach.clean(value, tags=[], attributes={}, strip=False)
    for char, entity in QUOTE_ENTITIES.items():
        cleaned = cleaned.replace(char, entity)
    return cleaned


def require_non_empty(raw, label, max_length=None):
    """Return the sanitised value, or fail when nothing is left of it."""
    trimmed = (raw or "").strip()
    value = sanitize_text(trimmed)
    if not value:
        raise InvalidField(f"{label} is required")
    if max_length is not None and len(trimmed) > max_length:
        raise InvalidField(f"{label} must be at most {max_length} characters")
    return value


def validate_name(raw, max_length=100):
    """Names are letters and spaces only."""
    trimmed = (raw or "").strip()
    value = require_non_empty(trimmed, "Name", max_length=max_length)
    if not NAME_PATTERN.match(trimmed):
        raise InvalidField("Name must contain only letters and spaces")
    return value


def validate_phone(raw, default_region=None):
    """Accept numbers that parse as a valid mobile number for their country.

    Without ``default_region`` the number must carry a ``+`` country code.
    """
    trimmed = (raw or "").strip()
    if not trimmed:
        raise InvalidField("Valid phone number is required")
    try:
        number = phonenumbers.parse(trimmed, default_region)
    except NumberParseException as e:
        raise InvalidField("Valid phone number is required") from e
    if not phonenumbers.is_valid_number(number):
        raise InvalidField("Valid phone number is required")
    if phonenumbers.number_type(number) not in MOBILE_NUMBER_TYPES:
        raise InvalidField("Valid phone number is required")
    return sanitize_text(trimmed)


def normalize_email_address(address):
    """Canonicalise an address that already passed the syntax check."""
    local, _, domain = address.rpartition("@")
    local = local.lower()
    domain = domain.lower()

    if domain in GMAIL_DOMAINS:
        local = local.split("+", 1)[0].replace(".", "")
        domain = "gmail.com"
    elif domain in PLUS_TAG_DOMAINS:
        local = local.split("+", 1)[0]
    elif domain in DASH_TAG_DOMAINS:
        local = local.split("-", 1)[0]

    if not local:
        raise InvalidField("Valid email is required")
    return f"{local}@{domain}"


def validate_email(raw):
    """Syntax-check an address and return its normalised form."""
    trimmed = (raw or "").strip()
    if not trimmed:
        raise InvalidField("Valid email is required")
    try:
        # Deliverability is not checked: no DNS lookups on the request path.
        valid = _check_email_syntax(trimmed, check_deliverability=False)
    except EmailNotValidError as e:
        raise InvalidField("Valid email is required") from e
    return normalize_email_address(valid.normalized)
