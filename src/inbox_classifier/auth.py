"""Google OAuth authentication.

Objective:
    Provide the small OAuth layer the web app needs to read a user's Gmail
    inbox: send the user to Google's consent screen, exchange the returned
    authorization code for tokens, refresh access tokens, and verify bearer
    tokens by looking up the user profile.

Responsibilities:
    - Build the authorization URL (offline access, forced consent) with a
      ``google_auth_oauthlib`` web-server :class:`Flow`.
    - Exchange authorization codes through the same flow.
    - Refresh access tokens with ``google.oauth2`` :class:`Credentials`.
    - Resolve an access token to a :class:`inbox_classifier.models.GoogleUser`.

High-level call tree:
    - :class:`GoogleOAuth`
        - :meth:`GoogleOAuth.build_auth_url`
            - :meth:`GoogleOAuth._flow`
        - :meth:`GoogleOAuth.exchange_code`
            - :meth:`GoogleOAuth._flow`
            - :func:`tokens_from_credentials`
        - :meth:`GoogleOAuth.refresh_access_token`
            - :func:`tokens_from_credentials`
        - :meth:`GoogleOAuth.get_user_info`
    - :func:`parse_bearer_token` (Authorization header parsing)

Operational notes:
    - Tokens are never stored server-side; they are handed to the browser,
      which sends the access token back as ``Authorization: Bearer ...``.
    - The consent request and the callback are served by different requests,
      so the flow is rebuilt per call and PKCE verifiers are not generated.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

import requests
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow

from .config import Settings
from .errors import (
    InvalidAuthToken,
    InvalidOAuthCode,
    InvalidRefreshToken,
    NoTokenProvided,
    OAuthTokenExchangeFailed,
)
from .models import GoogleUser, OAuthTokens

logger = logging.getLogger(__name__)

AUTH_ENDPOINT = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
USERINFO_ENDPOINT = "https://www.googleapis.com/oauth2/v2/userinfo"

# Google adds "openid" to the granted scopes of userinfo requests.
SCOPES = [
    "openid",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
    "https://www.googleapis.com/auth/gmail.readonly",
]


def parse_bearer_token(authorization: Optional[str]) -> str:
    """Extract the token from an ``Authorization: Bearer <token>`` header.

    Args:
        authorization: Raw header value.

    Returns:
        str: Access token.

    Raises:
        NoTokenProvided: If the header is missing or not a Bearer header.
        InvalidAuthToken: If the Bearer header carries no token.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise NoTokenProvided()

    token = authorization[len("Bearer "):].strip()
    if not token:
        raise InvalidAuthToken()
    return token


def tokens_from_credentials(credentials: Credentials) -> OAuthTokens:
    """Convert google-auth credentials into the token payload sent to the browser."""
    expires_in = None
    if credentials.expiry is not None:
        now = datetime.now(timezone.utc).replace(tzinfo=None)
        expires_in = max(0, int((credentials.expiry - now).total_seconds()))

    return OAuthTokens(
        access_token=credentials.token,
        refresh_token=credentials.refresh_token,
        expires_in=expires_in,
        scope=" ".join(credentials.scopes or []),
        id_token=credentials.id_token,
    )


class GoogleOAuth:
    """
    Google OAuth 2.0 web-server flow.

    Attributes:
        settings: Application settings with client ID/secret.
    """

    def __init__(self, settings: Settings, timeout: float = 30) -> None:
        self.settings = settings
        self.timeout = timeout

    def _flow(self, redirect_uri: Optional[str] = None) -> Flow:
        client_config = {
            "web": {
                "client_id": self.settings.google_client_id,
                "client_secret": self.settings.google_client_secret,
                "auth_uri": AUTH_ENDPOINT,
                "token_uri": TOKEN_ENDPOINT,
            }
        }
        return Flow.from_client_config(
            client_config,
            scopes=SCOPES,
            redirect_uri=redirect_uri or self.settings.google_redirect_uri,
            autogenerate_code_verifier=False,
        )

    def build_auth_url(self, redirect_uri: Optional[str] = None) -> str:
        """Build the Google consent-screen URL.

        Args:
            redirect_uri: Callback URL (defaults to ``google_redirect_uri``).

        Returns:
            str: Authorization URL.
        """
        auth_url, _ = self._flow(redirect_uri).authorization_url(
            access_type="offline", prompt="consent"
        )
        logger.info("Generated OAuth URL")
        return auth_url

    def exchange_code(self, code: str, redirect_uri: Optional[str] = None) -> OAuthTokens:
        """Exchange an authorization code for tokens.

        Args:
            code: Authorization code from the callback.
            redirect_uri: Callback URL used for the authorization request.

        Returns:
            OAuthTokens: Access (and usually refresh) token.

        Raises:
            InvalidOAuthCode: If ``code`` is empty.
            OAuthTokenExchangeFailed: If the exchange failed.
        """
        if not code:
            raise InvalidOAuthCode()

        flow = self._flow(redirect_uri)
        try:
            flow.fetch_token(code=code, timeout=self.timeout)
        except Exception as e:
            logger.error(f"OAuth code exchange failed: {e}")
            raise OAuthTokenExchangeFailed() from e

        return tokens_from_credentials(flow.credentials)

    def refresh_access_token(self, refresh_token: str) -> OAuthTokens:
        """Obtain a new access token from a refresh token.

        Raises:
            InvalidRefreshToken: If the token is empty or was rejected.
        """
        if not refresh_token:
            raise InvalidRefreshToken()

        credentials = Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=TOKEN_ENDPOINT,
            client_id=self.settings.google_client_id,
            client_secret=self.settings.google_client_secret,
        )
        try:
            credentials.refresh(GoogleAuthRequest())
        except GoogleAuthError as e:
            logger.error(f"Token refresh failed: {e}")
            raise InvalidRefreshToken() from e

        logger.info("Access token refreshed")
        return tokens_from_credentials(credentials)

    def get_user_info(self, access_token: str) -> GoogleUser:
        """Resolve ``access_token`` to the Google user it belongs to.

        This doubles as token verification.

        Raises:
            InvalidAuthToken: If the token is rejected or carries no email.
        """
        try:
            response = requests.get(
                USERINFO_ENDPOINT,
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            user = GoogleUser.model_validate(response.json())
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Authentication error: {e}")
            raise InvalidAuthToken() from e

        if not user.email:
            raise InvalidAuthToken()
        return user
