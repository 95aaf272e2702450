from unittest.mock import AsyncMock, MagicMock
from urllib.parse import parse_qs, urlparse

from fastapi.testclient import TestClient

from inbox_classifier.auth import GoogleOAuth
from inbox_classifier.config import EmailCategory, Provider, Settings, get_settings
from inbox_classifier.errors import InvalidCredential, InvalidOAuthCode, RateLimited
from inbox_classifier.models import AuthenticatedUser, EmailMessage, GoogleUser, OAuthTokens
from inbox_classifier.scheduler import BatchScheduler
from inbox_classifier.webapp import (
    create_app,
    get_current_user,
    get_gmail_client_factory,
    get_oauth,
    get_scheduler,
)


class FakeClassifier:
    def __init__(self, labels=None, error=None):
        self.labels = labels or {}
        self.error = error
        self.calls = []

    async def classify_one(self, email, api_key):
        self.calls.append((email.id, api_key))
        if self.error is not None:
            raise self.error
        return self.labels.get(email.id, EmailCategory.IMPORTANT)


async def _no_sleep(seconds):
    return None


def _scheduler(fake) -> BatchScheduler:
    return BatchScheduler(
        settings=Settings(),
        classifier_factory=lambda provider, settings: fake,
        sleep=_no_sleep,
    )


def _user() -> AuthenticatedUser:
    return AuthenticatedUser(email="alice@example.com", name="Alice", access_token="ya29.token")


def _emails(count: int) -> list[EmailMessage]:
    return [
        EmailMessage(id=f"e{i}", thread_id=f"t{i}", sender="bob@example.com", subject=f"Hello {i}")
        for i in range(1, count + 1)
    ]


def _gmail_factory(emails):
    gmail = MagicMock()
    gmail.fetch_emails.return_value = emails
    factory = MagicMock(return_value=gmail)
    return factory, gmail


def test_health() -> None:
    """Health endpoint returns ok."""

    client = TestClient(create_app())

    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_classify_returns_labels_stats_and_envelope() -> None:
    """Classify endpoint wraps the outcome in the success envelope."""

    app = create_app()
    fake = FakeClassifier(labels={"e2": EmailCategory.SPAM})
    app.dependency_overrides[get_scheduler] = lambda: _scheduler(fake)

    client = TestClient(app)
    resp = client.post(
        "/api/emails/classify",
        json={
            "emails": [
                {"id": "e1", "threadId": "t1", "from": "bob@example.com", "subject": "Lunch"},
                {"id": "e2", "threadId": "t2", "from": "promo@shop.com", "subject": "WIN"},
            ],
            "apiKey": "gsk_test",
            "provider": "groq",
        },
    )

    assert resp.status_code == 200
    payload = resp.json()
    assert payload["success"] is True
    assert payload["message"] == "Emails classified successfully using GROQ"
    assert "timestamp" in payload

    data = payload["data"]
    assert data["count"] == 2
    assert data["provider"] == "groq"
    assert data["classifiedEmails"][0]["from"] == "bob@example.com"
    assert data["classifiedEmails"][0]["threadId"] == "t1"
    assert [e["category"] for e in data["classifiedEmails"]] == ["Important", "Spam"]
    assert data["stats"] == {
        "Important": 1,
        "Promotional": 0,
        "Social": 0,
        "Marketing": 0,
        "Spam": 1,
        "General": 0,
    }
    assert fake.calls == [("e1", "gsk_test"), ("e2", "gsk_test")]


def test_classify_fatal_error_uses_error_envelope() -> None:
    """A fatal backend error is reported with its specific code and status."""

    app = create_app()
    fake = FakeClassifier(error=InvalidCredential(Provider.GROQ, "401: Invalid API Key"))
    app.dependency_overrides[get_scheduler] = lambda: _scheduler(fake)

    client = TestClient(app)
    resp = client.post(
        "/api/emails/classify",
        json={"emails": [{"id": "e1"}], "apiKey": "gsk_bad", "provider": "groq"},
    )

    assert resp.status_code == 400
    payload = resp.json()
    assert payload["success"] is False
    assert payload["error"]["code"] == "ERROR_50003"
    assert payload["message"] == "Invalid or missing Groq API key"


def test_classify_rate_limit_maps_to_429() -> None:
    """A rate-limited run returns HTTP 429."""

    app = create_app()
    fake = FakeClassifier(error=RateLimited(Provider.GEMINI, "429"))
    app.dependency_overrides[get_scheduler] = lambda: _scheduler(fake)

    client = TestClient(app)
    resp = client.post(
        "/api/emails/classify",
        json={"emails": [{"id": "e1"}], "apiKey": "AIzaSyKey", "provider": "gemini"},
    )

    assert resp.status_code == 429
    assert resp.json()["error"]["code"] == "ERROR_50009"


def test_classify_rejects_empty_email_list() -> None:
    """An empty email list is invalid input."""

    app = create_app()
    fake = FakeClassifier()
    app.dependency_overrides[get_scheduler] = lambda: _scheduler(fake)

    resp = TestClient(app).post(
        "/api/emails/classify", json={"emails": [], "apiKey": "gsk_test"}
    )

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "ERROR_50005"
    assert fake.calls == []


def test_classify_requires_api_key_for_provider() -> None:
    """A missing key is reported with the selected provider's code."""

    app = create_app()
    app.dependency_overrides[get_scheduler] = lambda: _scheduler(FakeClassifier())

    resp = TestClient(app).post(
        "/api/emails/classify", json={"emails": [{"id": "e1"}], "provider": "gemini"}
    )

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "ERROR_50006"


def test_classify_rejects_unknown_provider() -> None:
    """An unknown provider is a parameter error."""

    app = create_app()
    app.dependency_overrides[get_scheduler] = lambda: _scheduler(FakeClassifier())

    resp = TestClient(app).post(
        "/api/emails/classify",
        json={"emails": [{"id": "e1"}], "apiKey": "key", "provider": "openai"},
    )

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "ERROR_10007"


def test_classify_checks_empty_list_before_provider() -> None:
    """An empty list is reported even when the provider is also unknown."""

    app = create_app()
    app.dependency_overrides[get_scheduler] = lambda: _scheduler(FakeClassifier())

    resp = TestClient(app).post(
        "/api/emails/classify",
        json={"emails": [], "apiKey": "key", "provider": "openai"},
    )

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "ERROR_50005"


def test_classify_validation_error_envelope() -> None:
    """Malformed bodies are reported as validation errors."""

    resp = TestClient(create_app()).post(
        "/api/emails/classify", json={"emails": [{"subject": "no id"}], "apiKey": "k"}
    )

    assert resp.status_code == 400
    payload = resp.json()
    assert payload["success"] is False
    assert payload["error"]["code"] == "VALIDATION_ERROR"


def test_unexpected_error_uses_internal_error_envelope() -> None:
    """Unhandled exceptions are reported as a generic 500."""

    app = create_app()
    scheduler = MagicMock()
    scheduler.classify = AsyncMock(side_effect=RuntimeError("boom"))
    app.dependency_overrides[get_scheduler] = lambda: scheduler

    client = TestClient(app, raise_server_exceptions=False)
    resp = client.post(
        "/api/emails/classify", json={"emails": [{"id": "e1"}], "apiKey": "gsk_test"}
    )

    assert resp.status_code == 500
    payload = resp.json()
    assert payload["success"] is False
    assert payload["error"]["code"] == "INTERNAL_SERVER_ERROR"


def test_fetch_and_classify_requires_bearer_token() -> None:
    """Requests without a Bearer header are rejected before any work."""

    app = create_app()
    app.dependency_overrides[get_oauth] = lambda: MagicMock(spec=GoogleOAuth)

    resp = TestClient(app).post(
        "/api/emails/fetch-and-classify", json={"apiKey": "gsk_test"}
    )

    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "ERROR_20001"


def test_fetch_and_classify_runs_scheduler_on_fetched_emails() -> None:
    """Fetched emails are classified with the requested limit."""

    app = create_app()
    fake = FakeClassifier()
    factory, gmail = _gmail_factory(_emails(3))
    app.dependency_overrides[get_current_user] = _user
    app.dependency_overrides[get_gmail_client_factory] = lambda: factory
    app.dependency_overrides[get_scheduler] = lambda: _scheduler(fake)

    resp = TestClient(app).post(
        "/api/emails/fetch-and-classify?limit=3",
        json={"apiKey": "gsk_test", "provider": "groq"},
    )

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["count"] == 3
    assert data["stats"]["Important"] == 3
    factory.assert_called_once_with("ya29.token")
    gmail.fetch_emails.assert_called_once_with(3)


def test_fetch_and_classify_uses_default_limit() -> None:
    """Without a limit, the configured default is requested."""

    app = create_app()
    factory, gmail = _gmail_factory(_emails(1))
    app.dependency_overrides[get_current_user] = _user
    app.dependency_overrides[get_gmail_client_factory] = lambda: factory
    app.dependency_overrides[get_scheduler] = lambda: _scheduler(FakeClassifier())
    app.dependency_overrides[get_settings] = lambda: Settings(default_email_limit=7)

    resp = TestClient(app).post("/api/emails/fetch-and-classify", json={"apiKey": "gsk_test"})

    assert resp.status_code == 200
    gmail.fetch_emails.assert_called_once_with(7)


def test_fetch_and_classify_rejects_out_of_range_limit() -> None:
    """Limits above 50 are rejected before fetching."""

    app = create_app()
    factory, gmail = _gmail_factory([])
    app.dependency_overrides[get_current_user] = _user
    app.dependency_overrides[get_gmail_client_factory] = lambda: factory

    resp = TestClient(app).post(
        "/api/emails/fetch-and-classify?limit=51", json={"apiKey": "gsk_test"}
    )

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "ERROR_30003"
    gmail.fetch_emails.assert_not_called()


def test_fetch_and_classify_empty_inbox() -> None:
    """An empty inbox is a success with no results."""

    app = create_app()
    fake = FakeClassifier()
    factory, _ = _gmail_factory([])
    app.dependency_overrides[get_current_user] = _user
    app.dependency_overrides[get_gmail_client_factory] = lambda: factory
    app.dependency_overrides[get_scheduler] = lambda: _scheduler(fake)

    resp = TestClient(app).post(
        "/api/emails/fetch-and-classify", json={"apiKey": "AIzaSyKey", "provider": "gemini"}
    )

    assert resp.status_code == 200
    payload = resp.json()
    assert payload["message"] == "No emails found"
    assert payload["data"] == {
        "classifiedEmails": [],
        "stats": {},
        "count": 0,
        "provider": "gemini",
    }
    assert fake.calls == []


def test_list_emails_returns_wire_shape() -> None:
    """The list endpoint returns messages with camelCase aliases."""

    app = create_app()
    factory, _ = _gmail_factory(_emails(2))
    app.dependency_overrides[get_current_user] = _user
    app.dependency_overrides[get_gmail_client_factory] = lambda: factory

    resp = TestClient(app).get("/api/emails?limit=2")

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["count"] == 2
    assert data["emails"][0]["threadId"] == "t1"
    assert data["emails"][0]["from"] == "bob@example.com"


def test_auth_url_points_back_to_callback() -> None:
    """The consent URL redirects back to this app's callback route."""

    app = create_app()
    app.dependency_overrides[get_oauth] = lambda: GoogleOAuth(Settings(google_client_id="cid"))

    resp = TestClient(app).get("/api/auth/google")

    assert resp.status_code == 200
    auth_url = resp.json()["data"]["authUrl"]
    query = parse_qs(urlparse(auth_url).query)
    assert query["client_id"] == ["cid"]
    assert query["redirect_uri"] == ["http://testserver/api/auth/google/callback"]


def test_google_callback_redirects_with_tokens() -> None:
    """A successful code exchange hands the tokens to the frontend."""

    app = create_app()
    oauth = MagicMock()
    oauth.exchange_code.return_value = OAuthTokens(access_token="at", refresh_token="rt")
    oauth.get_user_info.return_value = GoogleUser(email="alice@example.com", name="Alice")
    app.dependency_overrides[get_oauth] = lambda: oauth
    app.dependency_overrides[get_settings] = lambda: Settings(frontend_url="http://front.test/")

    resp = TestClient(app).get(
        "/api/auth/google/callback?code=abc", follow_redirects=False
    )

    assert resp.status_code == 307
    location = urlparse(resp.headers["location"])
    assert f"{location.scheme}://{location.netloc}{location.path}" == "http://front.test/auth/callback"
    query = parse_qs(location.query)
    assert query["access_token"] == ["at"]
    assert query["refresh_token"] == ["rt"]
    assert query["email"] == ["alice@example.com"]
    assert oauth.exchange_code.call_args.args[0] == "abc"


def test_google_callback_failure_redirects_with_error() -> None:
    """A failed exchange redirects to the frontend auth page with an error flag."""

    app = create_app()
    oauth = MagicMock()
    oauth.exchange_code.side_effect = InvalidOAuthCode()
    app.dependency_overrides[get_oauth] = lambda: oauth
    app.dependency_overrides[get_settings] = lambda: Settings(frontend_url="http://front.test")

    resp = TestClient(app).get("/api/auth/google/callback", follow_redirects=False)

    assert resp.status_code == 307
    assert resp.headers["location"] == "http://front.test/auth?error=authentication_failed"


def test_verify_token_hides_access_token() -> None:
    """Verification returns the user profile without echoing the token."""

    app = create_app()
    app.dependency_overrides[get_current_user] = _user

    resp = TestClient(app).get("/api/auth/verify")

    assert resp.status_code == 200
    user = resp.json()["data"]["user"]
    assert user["email"] == "alice@example.com"
    assert "access_token" not in user


def test_verify_token_with_bearer_header_calls_google() -> None:
    """The bearer token is resolved through the OAuth dependency."""

    app = create_app()
    oauth = MagicMock()
    oauth.get_user_info.return_value = GoogleUser(email="alice@example.com")
    app.dependency_overrides[get_oauth] = lambda: oauth

    resp = TestClient(app).get(
        "/api/auth/verify", headers={"Authorization": "Bearer ya29.token"}
    )

    assert resp.status_code == 200
    oauth.get_user_info.assert_called_once_with("ya29.token")


def test_refresh_token() -> None:
    """Refresh returns the new access token and its lifetime."""

    app = create_app()
    oauth = MagicMock()
    oauth.refresh_access_token.return_value = OAuthTokens(access_token="new", expires_in=3600)
    app.dependency_overrides[get_oauth] = lambda: oauth

    resp = TestClient(app).post("/api/auth/refresh", json={"refreshToken": "rt"})

    assert resp.status_code == 200
    assert resp.json()["data"] == {"accessToken": "new", "expiresIn": 3600}
    oauth.refresh_access_token.assert_called_once_with("rt")


def test_home_renders_form() -> None:
    """Home page renders the run form with every provider."""

    resp = TestClient(create_app()).get("/")

    assert resp.status_code == 200
    assert "Fetch and classify" in resp.text
    assert 'value="groq"' in resp.text
    assert 'value="gemini"' in resp.text


def test_run_html_renders_results() -> None:
    """HTML run renders the histogram and one entry per email."""

    app = create_app()
    fake = FakeClassifier(labels={"e2": EmailCategory.SOCIAL})
    factory, gmail = _gmail_factory(_emails(2))
    app.dependency_overrides[get_gmail_client_factory] = lambda: factory
    app.dependency_overrides[get_scheduler] = lambda: _scheduler(fake)

    resp = TestClient(app).post(
        "/run",
        data={"access_token": "ya29.token", "api_key": "gsk_test", "provider": "groq", "limit": "2"},
    )

    assert resp.status_code == 200
    assert "2 emails classified with Groq" in resp.text
    assert 'id="email-e1"' in resp.text
    assert 'id="email-e2"' in resp.text
    assert "Social: 1" in resp.text
    gmail.fetch_emails.assert_called_once_with(2)


def test_run_html_failure_rerenders_form_with_error() -> None:
    """HTML run shows the user-facing message with the error's status."""

    app = create_app()
    fake = FakeClassifier(error=RateLimited(Provider.GROQ, "429"))
    factory, _ = _gmail_factory(_emails(1))
    app.dependency_overrides[get_gmail_client_factory] = lambda: factory
    app.dependency_overrides[get_scheduler] = lambda: _scheduler(fake)

    resp = TestClient(app).post(
        "/run",
        data={"access_token": "ya29.token", "api_key": "gsk_test", "provider": "groq"},
    )

    assert resp.status_code == 429
    assert "Groq rate limit exceeded" in resp.text
    assert "Fetch and classify" in resp.text


def test_run_html_rejects_non_numeric_limit() -> None:
    """A non-numeric limit is rejected without fetching."""

    app = create_app()
    factory, gmail = _gmail_factory([])
    app.dependency_overrides[get_gmail_client_factory] = lambda: factory
    app.dependency_overrides[get_scheduler] = lambda: _scheduler(FakeClassifier())

    resp = TestClient(app).post(
        "/run",
        data={"access_token": "ya29.token", "api_key": "gsk_test", "limit": "ten"},
    )

    assert resp.status_code == 400
    assert "Invalid email limit" in resp.text
    gmail.fetch_emails.assert_not_called()
