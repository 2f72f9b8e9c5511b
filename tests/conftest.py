import pytest

from formrelay import create_app
from formrelay.config import Settings
from formrelay.delivery import DeliveryError

HTTPS = "https://localhost"

CONTACT_FORM = {
    "full-name": "Jane Doe",
    "phone-number": "+14155551234",
    "email-address": "jane@example.com",
    "subject": "Hello",
    "message": "Hi there",
}

APPLICATION_FORM = {
    "full-name": "Jane Doe",
    "phone-number": "+14155551234",
    "email-address": "jane@example.com",
    "right-to-work": "Yes, UK citizen",
}


class RecordingMailer:
    """Stands in for the mail provider; records every send."""

    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    def send_email(self, to_address, subject, html_body):
        if self.fail:
            raise DeliveryError("provider unavailable")
        self.sent.append({"to": to_address, "subject": subject, "html": html_body})


def make_settings(**overrides):
    values = dict(
        secret_key="test-secret-key",
        contact_email="inbox@example.org",
        tenant_id="tenant",
        client_id="client",
        client_secret="secret",
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def app(settings, mailer):
    app = create_app(settings, mailer=mailer)
    app.config.update(TESTING=True)
    return app


@pytest.fixture
def client(app):
    return app.test_client()


def fetch_csrf_token(client):
    resp = client.get("/csrf-token", base_url=HTTPS)
    assert resp.status_code == 200
    return resp.get_json()["csrfToken"]


@pytest.fixture
def csrf_token(client):
    return fetch_csrf_token(client)
