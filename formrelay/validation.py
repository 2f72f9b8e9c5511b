"""
Per-kind validation of a submitted form.

Each field rule runs on its own; every failure is collected (one per field)
in the order the fields are declared below, so clients can render all inline
errors at once.
"""

import enum
from dataclasses import dataclass, field

from .sanitizer import InvalidField, require_non_empty, validate_email, validate_name, validate_phone, sanitize_text


class SubmissionKind(enum.Enum):
    CONTACT = "contact"
    WORK_APPLICATION = "work-application"


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str

    def to_dict(self):
        return {"field": self.field, "message": self.message}


@dataclass(frozen=True)
class ContactSubmission:
    full_name: str
    phone_number: str
    email_address: str
    subject: str
    message: str


@dataclass(frozen=True)
class WorkApplicationSubmission:
    full_name: str
    phone_number: str
    email_address: str
    right_to_work: str


@dataclass
class ValidationResult:
    submission: object = None
    errors: list = field(default_factory=list)

    @property
    def is_valid(self):
        return self.submission is not None and not self.errors


def _email_rule(raw, region):
    # Normalised addresses may still contain ' or &, which the HTML body must not see raw.
    return sanitize_text(validate_email(raw))


# (wire name, attribute name, rule); the rule takes (raw value, phone region).
COMMON_RULES = (
    ("full-name", "full_name", lambda raw, region: validate_name(raw)),
    ("phone-number", "phone_number", validate_phone),
    ("email-address", "email_address", _email_rule),
)

FIELD_RULES = {
    SubmissionKind.CONTACT: COMMON_RULES + (
        ("subject", "subject", lambda raw, region: require_non_empty(raw, "Subject", max_length=200)),
        ("message", "message", lambda raw, region: require_non_empty(raw, "Message", max_length=10000)),
    ),
    SubmissionKind.WORK_APPLICATION: COMMON_RULES + (
        ("right-to-work", "right_to_work", lambda raw, region: require_non_empty(raw, "Right to work", max_length=200)),
    ),
}

RECORD_TYPES = {
    SubmissionKind.CONTACT: ContactSubmission,
    SubmissionKind.WORK_APPLICATION: WorkApplicationSubmission,
}


def field_names(kind):
    """Wire names of the fields a submission of ``kind`` must carry."""
    return [name for name, _, _ in FIELD_RULES[kind]]


def validate_submission(kind, form, default_region=None):
    """Apply every rule for ``kind`` to ``form`` (a mapping of raw values)."""
    cleaned = {}
    errors = []
    for name, attribute, rule in FIELD_RULES[kind]:
        raw = form.get(name)
        if not isinstance(raw, str):
            raw = ""
        try:
            cleaned[attribute] = rule(raw, default_region)
        except InvalidField as e:
            errors.append(FieldError(name, e.message))

    if errors:
        return ValidationResult(errors=errors)
    return ValidationResult(submission=RECORD_TYPES[kind](**cleaned))
