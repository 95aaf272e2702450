"""FastAPI web frontend and JSON API.

Objective:
    Expose the classification workflow over HTTP: Google sign-in, inbox
    retrieval, batch classification, and a server-rendered dashboard. Business
    logic lives in :mod:`inbox_classifier.scheduler`; this module only parses
    requests, resolves dependencies and renders responses.

High-level call tree:
    - :func:`create_app`:
        - defines routes:
            - ``GET /health`` -> :func:`health`
            - ``GET /api/auth/google`` -> :func:`auth_url`
            - ``GET /api/auth/google/callback`` -> :func:`google_callback`
            - ``GET /api/auth/verify`` -> :func:`verify_token`
            - ``POST /api/auth/refresh`` -> :func:`refresh_token`
            - ``GET /api/emails`` -> :func:`list_emails`
            - ``POST /api/emails/classify`` -> :func:`classify`
            - ``POST /api/emails/fetch-and-classify`` -> :func:`fetch_and_classify`
            - ``GET /`` -> :func:`home`
            - ``POST /run`` -> :func:`run_html`
        - installs error handlers producing the JSON envelope (unknown
          exceptions become ``INTERNAL_SERVER_ERROR``)
        - wires templates via :class:`fastapi.templating.Jinja2Templates`

Response envelope:
    - success: ``{"success": true, "message", "data", "timestamp"}``
    - error: ``{"success": false, "message", "error": {"code"}, "timestamp"}``

Operational notes:
    - Run with ``python -m uvicorn inbox_classifier.webapp:app``.
    - For tests, dependencies (:func:`get_scheduler`, :func:`get_oauth`,
      :func:`get_current_user`, :func:`get_gmail_client_factory`,
      :func:`inbox_classifier.config.get_settings`) are overridden via
      ``app.dependency_overrides``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional
from urllib.parse import urlencode

from fastapi import Depends, FastAPI, Form, Header, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel, ConfigDict, Field
from starlette.concurrency import run_in_threadpool

from .auth import GoogleOAuth, parse_bearer_token
from .config import EmailCategory, Provider, Settings, get_settings
from .errors import (
    ClassificationFailed,
    FailureKind,
    InvalidEmailData,
    InvalidEmailLimit,
    InvalidParams,
    RequestError,
)
from .gmail_client import MAX_EMAIL_LIMIT, GmailClient
from .models import AuthenticatedUser, ClassificationOutcome, EmailMessage
from .sanitizer import sanitize_email_body
from .scheduler import BatchScheduler

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

CATEGORY_STYLES: dict[EmailCategory, dict[str, str]] = {
    EmailCategory.IMPORTANT: {"color": "#166534", "background": "#dcfce7", "icon": "⚠️"},
    EmailCategory.PROMOTIONAL: {"color": "#1e40af", "background": "#dbeafe", "icon": "🎁"},
    EmailCategory.SOCIAL: {"color": "#3730a3", "background": "#e0e7ff", "icon": "👥"},
    EmailCategory.MARKETING: {"color": "#854d0e", "background": "#fef9c3", "icon": "📢"},
    EmailCategory.SPAM: {"color": "#991b1b", "background": "#fee2e2", "icon": "🚫"},
    EmailCategory.GENERAL: {"color": "#6b21a8", "background": "#f3e8ff", "icon": "📧"},
}


class ClassifyRequest(BaseModel):
    """Body of ``POST /api/emails/classify``."""

    emails: list[EmailMessage] = Field(default_factory=list)
    api_key: str = Field(default="", alias="apiKey")
    provider: str = Provider.GROQ.value

    model_config = ConfigDict(populate_by_name=True)


class FetchAndClassifyRequest(BaseModel):
    """Body of ``POST /api/emails/fetch-and-classify``."""

    api_key: str = Field(default="", alias="apiKey")
    provider: str = Provider.GROQ.value

    model_config = ConfigDict(populate_by_name=True)


class RefreshRequest(BaseModel):
    """Body of ``POST /api/auth/refresh``."""

    refresh_token: str = Field(default="", alias="refreshToken")

    model_config = ConfigDict(populate_by_name=True)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def success_response(data: Any, message: str = "Success", status_code: int = 200) -> JSONResponse:
    """Wrap ``data`` in the success envelope."""
    return JSONResponse(
        {
            "success": True,
            "message": message,
            "data": jsonable_encoder(data),
            "timestamp": _timestamp(),
        },
        status_code=status_code,
    )


def error_response(
    message: str, status_code: int, code: str, details: Any = None
) -> JSONResponse:
    """Build the error envelope."""
    error: dict[str, Any] = {"code": code}
    if details is not None:
        error["details"] = jsonable_encoder(details)
    return JSONResponse(
        {
            "success": False,
            "message": message,
            "error": error,
            "timestamp": _timestamp(),
        },
        status_code=status_code,
    )


def parse_provider(value: Optional[str]) -> Provider:
    """Parse a provider selector; unknown values raise :class:`InvalidParams`."""
    try:
        return Provider((value or Provider.GROQ.value).lower())
    except ValueError as e:
        raise InvalidParams(f"Unknown provider: {value}") from e


def resolve_limit(limit: Optional[int], settings: Settings) -> int:
    """Apply the default limit and enforce the 1-50 range."""
    resolved = limit or settings.default_email_limit
    if resolved < 1 or resolved > MAX_EMAIL_LIMIT:
        raise InvalidEmailLimit()
    return resolved


def outcome_payload(outcome: ClassificationOutcome) -> dict[str, Any]:
    """Serialize an outcome to the API shape."""
    return {
        "classifiedEmails": [
            email.model_dump(by_alias=True, mode="json") for email in outcome.classified_emails
        ],
        "stats": outcome.stats_by_name(),
        "count": outcome.count,
        "provider": outcome.provider.value,
    }


def get_scheduler() -> BatchScheduler:
    """Create the :class:`~inbox_classifier.scheduler.BatchScheduler` dependency."""
    return BatchScheduler(settings=get_settings())


def get_oauth() -> GoogleOAuth:
    """Create the :class:`~inbox_classifier.auth.GoogleOAuth` dependency."""
    return GoogleOAuth(get_settings())


def get_gmail_client_factory() -> Callable[[str], GmailClient]:
    """Return a callable building a Gmail client from an access token."""
    return GmailClient


def get_current_user(
    authorization: Optional[str] = Header(default=None),
    oauth: GoogleOAuth = Depends(get_oauth),
) -> AuthenticatedUser:
    """Verify the bearer token and return the user it belongs to.

    Raises:
        NoTokenProvided: If no Bearer header was sent.
        InvalidAuthToken: If Google rejected the token.
    """
    token = parse_bearer_token(authorization)
    user = oauth.get_user_info(token)
    logger.info(f"User authenticated: {user.email}")
    return AuthenticatedUser(**user.model_dump(), access_token=token)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        FastAPI: FastAPI app.
    """

    app = FastAPI(title="Inbox Classifier")

    templates = Jinja2Templates(directory=str(TEMPLATES_DIR))

    @app.exception_handler(RequestError)
    async def handle_request_error(request: Request, exc: RequestError) -> JSONResponse:
        logger.error(
            "Error occurred: %s (%s %s, code=%s)",
            exc.message,
            request.method,
            request.url.path,
            exc.code,
        )
        return error_response(exc.message, exc.status_code, exc.error_code)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return error_response("Validation Error", 400, "VALIDATION_ERROR", exc.errors())

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return error_response("Internal Server Error", 500, "INTERNAL_SERVER_ERROR")

    @app.get("/health")
    def health() -> dict[str, str]:
        """Health check endpoint. Performs no external calls."""

        return {"status": "ok"}

    @app.get("/api/auth/google")
    def auth_url(request: Request, oauth: GoogleOAuth = Depends(get_oauth)) -> JSONResponse:
        """Return the Google consent-screen URL."""

        redirect_uri = str(request.url_for("google_callback"))
        return success_response(
            {"authUrl": oauth.build_auth_url(redirect_uri)},
            "OAuth URL generated successfully",
        )

    @app.get("/api/auth/google/callback", name="google_callback")
    def google_callback(
        request: Request,
        code: Optional[str] = Query(default=None),
        oauth: GoogleOAuth = Depends(get_oauth),
        settings: Settings = Depends(get_settings),
    ) -> RedirectResponse:
        """Exchange the authorization code and hand the tokens to the frontend.

        Any failure redirects to the frontend's auth page with
        ``error=authentication_failed``.
        """

        frontend_url = settings.frontend_url.rstrip("/")
        try:
            tokens = oauth.exchange_code(code or "", str(request.url_for("google_callback")))
            user = oauth.get_user_info(tokens.access_token)
        except RequestError as e:
            logger.error(f"Error in OAuth callback: {e}")
            return RedirectResponse(f"{frontend_url}/auth?error=authentication_failed")

        logger.info(f"User authenticated: {user.email}")
        query = urlencode(
            {
                "access_token": tokens.access_token,
                "refresh_token": tokens.refresh_token or "",
                "email": user.email,
                "name": user.name,
            }
        )
        return RedirectResponse(f"{frontend_url}/auth/callback?{query}")

    @app.get("/api/auth/verify")
    def verify_token(user: AuthenticatedUser = Depends(get_current_user)) -> JSONResponse:
        """Confirm that the bearer token is valid."""

        return success_response(
            {"user": user.model_dump(exclude={"access_token"})}, "Token is valid"
        )

    @app.post("/api/auth/refresh")
    def refresh_token(
        payload: RefreshRequest, oauth: GoogleOAuth = Depends(get_oauth)
    ) -> JSONResponse:
        """Exchange a refresh token for a new access token."""

        tokens = oauth.refresh_access_token(payload.refresh_token)
        return success_response(
            {"accessToken": tokens.access_token, "expiresIn": tokens.expires_in},
            "Token refreshed successfully",
        )

    @app.get("/api/emails")
    async def list_emails(
        limit: Optional[int] = Query(default=None),
        user: AuthenticatedUser = Depends(get_current_user),
        gmail_factory: Callable[[str], GmailClient] = Depends(get_gmail_client_factory),
        settings: Settings = Depends(get_settings),
    ) -> JSONResponse:
        """Fetch inbox messages without classifying them."""

        resolved_limit = resolve_limit(limit, settings)
        gmail = gmail_factory(user.access_token)
        emails = await run_in_threadpool(gmail.fetch_emails, resolved_limit)

        logger.info(f"Fetched {len(emails)} emails for user {user.email}")
        return success_response(
            {
                "emails": [e.model_dump(by_alias=True, mode="json") for e in emails],
                "count": len(emails),
            },
            "Emails fetched successfully",
        )

    @app.post("/api/emails/classify")
    async def classify(
        payload: ClassifyRequest,
        scheduler: BatchScheduler = Depends(get_scheduler),
    ) -> JSONResponse:
        """Classify messages supplied by the caller."""

        if not payload.emails:
            raise InvalidEmailData()
        provider = parse_provider(payload.provider)
        if not payload.api_key:
            raise ClassificationFailed(FailureKind.INVALID_CREDENTIAL, provider)

        outcome = await scheduler.classify(payload.emails, payload.api_key, provider)
        return success_response(
            outcome_payload(outcome),
            f"Emails classified successfully using {provider.value.upper()}",
        )

    @app.post("/api/emails/fetch-and-classify")
    async def fetch_and_classify(
        payload: FetchAndClassifyRequest,
        limit: Optional[int] = Query(default=None),
        user: AuthenticatedUser = Depends(get_current_user),
        gmail_factory: Callable[[str], GmailClient] = Depends(get_gmail_client_factory),
        scheduler: BatchScheduler = Depends(get_scheduler),
        settings: Settings = Depends(get_settings),
    ) -> JSONResponse:
        """Fetch inbox messages and classify them in one request."""

        provider = parse_provider(payload.provider)
        if not payload.api_key:
            raise ClassificationFailed(FailureKind.INVALID_CREDENTIAL, provider)
        resolved_limit = resolve_limit(limit, settings)

        logger.info(
            f"Fetching and classifying {resolved_limit} emails for user {user.email} "
            f"using {provider.value.upper()}"
        )
        gmail = gmail_factory(user.access_token)
        emails = await run_in_threadpool(gmail.fetch_emails, resolved_limit)

        if not emails:
            return success_response(
                {"classifiedEmails": [], "stats": {}, "count": 0, "provider": provider.value},
                "No emails found",
            )

        outcome = await scheduler.classify(emails, payload.api_key, provider)
        return success_response(
            outcome_payload(outcome),
            f"Emails fetched and classified successfully using {provider.value.upper()}",
        )

    @app.get("/", response_class=HTMLResponse)
    def home(request: Request) -> Any:
        """Render the form used to start a classification run."""

        return templates.TemplateResponse(
            request,
            "index.html",
            {"providers": list(Provider)},
        )

    @app.post("/run", response_class=HTMLResponse)
    async def run_html(
        request: Request,
        access_token: str = Form(default=""),
        api_key: str = Form(default=""),
        provider: str = Form(default=Provider.GROQ.value),
        limit: str = Form(default=""),
        gmail_factory: Callable[[str], GmailClient] = Depends(get_gmail_client_factory),
        scheduler: BatchScheduler = Depends(get_scheduler),
        settings: Settings = Depends(get_settings),
    ) -> Any:
        """Fetch, classify and render the dashboard.

        Failures re-render the form with the error's user-facing message and
        HTTP status.
        """

        form_state = {
            "providers": list(Provider),
            "selected_provider": provider,
            "limit": limit,
        }
        try:
            selected = parse_provider(provider)
            if not access_token:
                raise InvalidParams("A Gmail access token is required")
            if not api_key:
                raise ClassificationFailed(FailureKind.INVALID_CREDENTIAL, selected)
            if limit.strip() and not limit.strip().isdigit():
                raise InvalidEmailLimit()
            resolved_limit = resolve_limit(int(limit) if limit.strip() else None, settings)

            gmail = gmail_factory(access_token)
            emails = await run_in_threadpool(gmail.fetch_emails, resolved_limit)
            outcome = await scheduler.classify(emails, api_key, selected)
        except RequestError as e:
            logger.error(f"Dashboard run failed: {e.message}")
            return templates.TemplateResponse(
                request,
                "index.html",
                {**form_state, "error": e.message},
                status_code=e.status_code,
            )

        return templates.TemplateResponse(
            request,
            "results.html",
            {
                "outcome": outcome,
                "styles": CATEGORY_STYLES,
                "plain_body": sanitize_email_body,
            },
        )

    return app


app = create_app()
