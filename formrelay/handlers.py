import logging

from flask import Blueprint, current_app, g, jsonify, redirect, request

from .delivery import deliver
from .validation import SubmissionKind, validate_submission

logger = logging.getLogger(__name__)

bp = Blueprint("submissions", __name__)


def _state():
    return current_app.extensions["formrelay"]


def submitted_fields():
    """Raw field values from a form-encoded or JSON body."""
    if request.is_json:
        payload = request.get_json(silent=True)
        return payload if isinstance(payload, dict) else {}
    return request.form


def handle_submission(kind, thank_you_url):
    """Validate, send once, then redirect to the thank-you page.

    Delivery failures propagate as ``DeliveryError`` to the app's error
    handler, which answers with a generic 500.
    """
    state = _state()
    result = validate_submission(kind, submitted_fields(), state.settings.default_phone_region)

    if not result.is_valid:
        logger.warning(
            f"Rejected {kind.value} submission from {g.security.client_key}: "
            f"invalid fields {[error.field for error in result.errors]}"
        )
        return jsonify(errors=[error.to_dict() for error in result.errors]), 400

    deliver(state.mailer, kind, result.submission, state.settings.contact_email)
    logger.info(f"{kind.value} submission relayed; redirecting to {thank_you_url}")
    return redirect(thank_you_url, code=302)


@bp.route("/csrf-token", methods=["GET"])
def csrf_token():
    """Issue an anti-forgery token bound to the caller's session cookie."""
    return jsonify(csrfToken=_state().csrf.issue_token())


@bp.route("/submit-form", methods=["POST"])
def submit_form():
    return handle_submission(SubmissionKind.CONTACT, _state().settings.contact_thank_you_url)


@bp.route("/work-application", methods=["POST"])
def work_application():
    return handle_submission(SubmissionKind.WORK_APPLICATION, _state().settings.application_thank_you_url)
