from conftest import APPLICATION_FORM, CONTACT_FORM, HTTPS, RecordingMailer, fetch_csrf_token, make_settings

from formrelay import create_app
from formrelay.config import DEFAULT_APPLICATION_THANK_YOU_URL, DEFAULT_CONTACT_THANK_YOU_URL


def post(client, path, form, token):
    return client.post(path, data=dict(form, _csrf=token), base_url=HTTPS)


def test_csrf_token_endpoint(client):
    resp = client.get("/csrf-token", base_url=HTTPS)
    assert resp.status_code == 200
    token = resp.get_json()["csrfToken"]
    assert isinstance(token, str) and token


def test_contact_submission_is_sent_and_redirected(client, mailer, csrf_token):
    resp = post(client, "/submit-form", CONTACT_FORM, csrf_token)

    assert resp.status_code == 302
    assert resp.headers["Location"] == DEFAULT_CONTACT_THANK_YOU_URL
    assert len(mailer.sent) == 1
    sent = mailer.sent[0]
    assert sent["to"] == "inbox@example.org"
    assert sent["subject"] == "Form Submission: Hello"
    assert "Jane Doe" in sent["html"]
    assert "Hi there" in sent["html"]


def test_work_application_is_sent_and_redirected(client, mailer, csrf_token):
    resp = post(client, "/work-application", APPLICATION_FORM, csrf_token)

    assert resp.status_code == 302
    assert resp.headers["Location"] == DEFAULT_APPLICATION_THANK_YOU_URL
    assert mailer.sent[0]["subject"] == "Work Application: Jane Doe"
    assert "Yes, UK citizen" in mailer.sent[0]["html"]


def test_invalid_name_returns_field_errors(client, mailer, csrf_token):
    resp = post(client, "/submit-form", dict(CONTACT_FORM, **{"full-name": "J4ne"}), csrf_token)

    assert resp.status_code == 400
    assert resp.get_json() == {
        "errors": [{"field": "full-name", "message": "Name must contain only letters and spaces"}]
    }
    assert mailer.sent == []


def test_multiple_errors_reported_together(client, mailer, csrf_token):
    form = {"full-name": "Jane Doe", "phone-number": "nope", "email-address": "nope", "right-to-work": ""}
    resp = post(client, "/work-application", form, csrf_token)

    assert resp.status_code == 400
    assert [error["field"] for error in resp.get_json()["errors"]] == ["phone-number", "email-address", "right-to-work"]
    assert mailer.sent == []


def test_markup_in_fields_is_escaped_in_email(client, mailer, csrf_token):
    form = dict(CONTACT_FORM, message="<script>alert('x')</script>")
    resp = post(client, "/submit-form", form, csrf_token)

    assert resp.status_code == 302
    html = mailer.sent[0]["html"]
    assert "<script>" not in html
    assert "&lt;script&gt;alert(&#x27;x&#x27;)&lt;/script&gt;" in html


def test_delivery_failure_returns_generic_500():
    mailer = RecordingMailer(fail=True)
    app = create_app(make_settings(), mailer=mailer)
    client = app.test_client()
    token = fetch_csrf_token(client)

    resp = post(client, "/work-application", APPLICATION_FORM, token)

    assert resp.status_code == 500
    assert "Location" not in resp.headers
    assert resp.mimetype == "text/plain"
    assert resp.get_data(as_text=True) == "Internal Server Error"
    assert "provider unavailable" not in resp.get_data(as_text=True)


def test_unexpected_error_is_contained():
    class BrokenMailer:
        def send_email(self, to_address, subject, html_body):
            raise RuntimeError("disk on fire")

    app = create_app(make_settings(), mailer=BrokenMailer())
    client = app.test_client()
    token = fetch_csrf_token(client)

    resp = post(client, "/submit-form", CONTACT_FORM, token)
    assert resp.status_code == 500
    assert resp.get_data(as_text=True) == "Internal Server Error"

    # the app keeps serving
    assert client.get("/csrf-token", base_url=HTTPS).status_code == 200


def test_custom_thank_you_urls():
    mailer = RecordingMailer()
    app = create_app(
        make_settings(contact_thank_you_url="https://example.org/thanks", application_thank_you_url="https://example.org/applied"),
        mailer=mailer,
    )
    client = app.test_client()
    token = fetch_csrf_token(client)

    assert post(client, "/submit-form", CONTACT_FORM, token).headers["Location"] == "https://example.org/thanks"
    assert post(client, "/work-application", APPLICATION_FORM, token).headers["Location"] == "https://example.org/applied"


def test_national_format_phone_accepted_by_default(client, mailer, csrf_token):
    resp = post(client, "/submit-form", dict(CONTACT_FORM, **{"phone-number": "07400 123456"}), csrf_token)
    assert resp.status_code == 302
    assert "07400 123456" in mailer.sent[0]["html"]


def test_without_phone_region_a_country_code_is_required():
    mailer = RecordingMailer()
    app = create_app(make_settings(default_phone_region=None), mailer=mailer)
    client = app.test_client()
    token = fetch_csrf_token(client)

    resp = post(client, "/submit-form", dict(CONTACT_FORM, **{"phone-number": "07400 123456"}), token)
    assert resp.status_code == 400
    assert resp.get_json()["errors"][0]["field"] == "phone-number"
    assert post(client, "/submit-form", dict(CONTACT_FORM, **{"phone-number": "+44 7400 123456"}), token).status_code == 302


def test_get_on_submission_endpoint_not_allowed(client):
    resp = client.get("/submit-form", base_url=HTTPS)
    assert resp.status_code == 405


def test_unknown_route_returns_json_404(client):
    resp = client.get("/nope", base_url=HTTPS)
    assert resp.status_code == 404
    assert "error" in resp.get_json()


def test_oversized_body_is_rejected(csrf_token, client, mailer):
    form = dict(CONTACT_FORM, message="x" * (70 * 1024), _csrf=csrf_token)
    resp = client.post("/submit-form", data=form, base_url=HTTPS)
    assert resp.status_code == 413
    assert mailer.sent == []
