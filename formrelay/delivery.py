"""
Outbound email: building the message for a sanitised submission and handing
it to the transactional mail provider.

A mailer is anything with ``send_email(to_address, subject, html_body)`` that
raises ``DeliveryError`` when the provider cannot take the message. Exactly
one attempt is made per submission.
"""

import logging
import threading
import time
from dataclasses import dataclass
from urllib.parse import quote

import requests
from flask import render_template
from markupsafe import Markup

from .validation import SubmissionKind

logger = logging.getLogger(__name__)

GRAPH_TOKEN_URL = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"
GRAPH_SEND_URL = "https://graph.microsoft.com/v1.0/users/{sender}/sendMail"
MAILGUN_SEND_URL = "https://api.mailgun.net/v3/{domain}/messages"

# Refresh access tokens this many seconds before they actually expire.
TOKEN_EXPIRY_MARGIN = 60

SUBJECT_TEMPLATES = {
    SubmissionKind.CONTACT: "Form Submission: {subject}",
    SubmissionKind.WORK_APPLICATION: "Work Application: {full_name}",
}

BODY_TEMPLATES = {
    SubmissionKind.CONTACT: "email/contact_submission.html",
    SubmissionKind.WORK_APPLICATION: "email/work_application.html",
}


class DeliveryError(Exception):
    """The mail provider could not be reached or refused the message."""


@dataclass(frozen=True)
class OutboundEmail:
    to_address: str
    subject: str
    html_body: str


def build_email(kind, submission, to_address):
    """Render the subject and HTML body for a sanitised submission.

    Field values are already escaped, so they are passed to the template as
    markup to avoid escaping them a second time. The subject is a plain-text
    header and gets the unescaped values on a single line.
    """
    fields = {name: Markup(value) for name, value in vars(submission).items()}
    plain = {name: " ".join(value.unescape().split()) for name, value in fields.items()}
    subject = SUBJECT_TEMPLATES[kind].format(**plain)
    html_body = render_template(BODY_TEMPLATES[kind], **fields)
    return OutboundEmail(to_address=to_address, subject=subject, html_body=html_body)


def deliver(mailer, kind, submission, to_address):
    """Build the email and send it once. Raises ``DeliveryError`` on failure."""
    email = build_email(kind, submission, to_address)
    logger.info(f"Sending {kind.value} email to {to_address} with subject '{email.subject}'.")
    mailer.send_email(email.to_address, email.subject, email.html_body)
    logger.info(f"{kind.value} email accepted by the mail provider.")
    return email


class GraphMailer:
    """Sends mail as ``sender`` through the Microsoft Graph ``sendMail`` API."""

    def __init__(self, tenant_id, client_id, client_secret, sender, timeout=20, session=None):
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.client_secret = client_secret
        self.sender = sender
        self.timeout = timeout
        self.session = session or requests.Session()
        self._token = None
        self._token_expires_at = 0.0
        self._token_lock = threading.Lock()

    def _access_token(self):
        with self._token_lock:
            if self._token and time.monotonic() < self._token_expires_at:
                return self._token

            try:
                resp = self.session.post(
                    GRAPH_TOKEN_URL.format(tenant=self.tenant_id),
                    data={
                        "grant_type": "client_credentials",
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "scope": GRAPH_SCOPE,
                    },
                    timeout=self.timeout,
                )
                resp.raise_for_status()
                payload = resp.json()
            except requests.exceptions.RequestException as e:
                raise DeliveryError(f"Could not obtain Graph access token: {e}") from e
            except ValueError as e:
                raise DeliveryError("Graph token endpoint returned invalid JSON") from e

            token = payload.get("access_token")
            if not token:
                raise DeliveryError("Graph token endpoint returned no access token")
            expires_in = int(payload.get("expires_in", 3600))
            self._token = token
            self._token_expires_at = time.monotonic() + max(expires_in - TOKEN_EXPIRY_MARGIN, 0)
            return token

    def send_email(self, to_address, subject, html_body):
        message = {
            "message": {
                "subject": subject,
                "body": {"contentType": "HTML", "content": html_body},
                "toRecipients": [{"emailAddress": {"address": to_address}}],
            }
        }
        headers = {"Authorization": f"Bearer {self._access_token()}"}
        url = GRAPH_SEND_URL.format(sender=quote(self.sender, safe=""))
        try:
            resp = self.session.post(url, json=message, headers=headers, timeout=self.timeout)
            resp.raise_for_status()
        except requests.exceptions.HTTPError as e:
            logger.error(f"Graph sendMail rejected the message: {e.response.status_code} - {e.response.text}")
            raise DeliveryError(f"Graph sendMail returned {e.response.status_code}") from e
        except requests.exceptions.RequestException as e:
            raise DeliveryError(f"Network error contacting Graph: {e}") from e
        logger.debug(f"Graph sendMail response: {resp.status_code}")


class MailgunMailer:
    """Sends mail through the Mailgun messages API."""

    def __init__(self, api_key, domain, sender, timeout=20, session=None):
        self.api_key = api_key
        self.domain = domain
        self.sender = sender
        self.timeout = timeout
        self.session = session or requests.Session()

    def send_email(self, to_address, subject, html_body):
        data = {
            "from": self.sender,
            "to": [to_address],
            "subject": subject,
            "html": html_body,
            "o:tracking": "false",
            "o:tracking-clicks": "false",
            "o:tracking-opens": "false",
        }
        try:
            resp = self.session.post(
                MAILGUN_SEND_URL.format(domain=self.domain),
                auth=("api", self.api_key),
                data=data,
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.exceptions.HTTPError as e:
            logger.error(f"Mailgun rejected the message: {e.response.status_code} - {e.response.text}")
            raise DeliveryError(f"Mailgun returned {e.response.status_code}") from e
        except requests.exceptions.RequestException as e:
            raise DeliveryError(f"Network error contacting Mailgun: {e}") from e
        logger.debug(f"Mailgun response: {resp.status_code} - {resp.text}")


def build_mailer(settings):
    """Mailer for the configured provider."""
    if settings.mail_provider == "mailgun":
        return MailgunMailer(
            settings.mailgun_api_key,
            settings.mailgun_domain,
            sender=settings.sender_address,
            timeout=settings.mail_timeout,
        )
    return GraphMailer(
        settings.tenant_id,
        settings.client_id,
        settings.client_secret,
        sender=settings.sender_address,
        timeout=settings.mail_timeout,
    )
