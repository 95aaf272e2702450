"""Application configuration and settings.

Objective:
    Provide a single source of truth for runtime configuration used across the
    application (Google OAuth, classification backends, fetch limits).

Responsibilities:
    - Define the canonical set of email categories (:class:`EmailCategory`).
    - Define the supported classification backends (:class:`Provider`).
    - Load environment-driven settings via :class:`Settings` (Pydantic
      BaseSettings).

High-level call tree:
    - :func:`get_settings` -> returns :class:`Settings`
    - :class:`Settings`
        - :meth:`Settings.api_key_for`

Operational notes:
    - ``Settings`` loads from ``.env`` by default via ``pydantic-settings``.
    - The classification API key is normally supplied per request by the
      user. The ``groq_api_key`` / ``gemini_api_key`` settings only serve as a
      fallback for the CLI.
"""

from enum import Enum
from typing import Optional
import logging

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Prefix shared by Google AI Studio (Gemini) API keys
GEMINI_KEY_PREFIX = "AIzaSy"


class EmailCategory(str, Enum):
    """Closed set of categories a message can be assigned to.

    These values are referenced by:
    - the LLM prompt
    - response normalization
    - the histogram and the dashboard

    ``GENERAL`` is the fallback whenever classification cannot produce a
    recognized category.
    """

    IMPORTANT = "Important"
    PROMOTIONAL = "Promotional"
    SOCIAL = "Social"
    MARKETING = "Marketing"
    SPAM = "Spam"
    GENERAL = "General"


class Provider(str, Enum):
    """Interchangeable classification backends."""

    GROQ = "groq"
    GEMINI = "gemini"

    @property
    def display_name(self) -> str:
        """Human-friendly backend name used in user-facing messages."""
        return {Provider.GROQ: "Groq", Provider.GEMINI: "Gemini"}[self]


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    The settings model is flat and human-editable via `.env`.
    Most fields map directly to environment variables.

    Attributes:
        google_client_id: Google OAuth client ID.
        google_client_secret: Google OAuth client secret.
        google_redirect_uri: Redirect URI registered for the OAuth client.
        frontend_url: Where the OAuth callback sends the user afterwards.
        groq_model: Groq model used for classification.
        gemini_model: Gemini model used for classification.
        classification_body_limit: Body characters sent to the model.
        default_email_limit: Messages fetched when no limit is given.
        log_level: Logging level.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Google OAuth Configuration
    google_client_id: str = Field(default="", description="Google OAuth client ID")
    google_client_secret: str = Field(
        default="", description="Google OAuth client secret"
    )
    google_redirect_uri: str = Field(
        default="http://localhost:8000/api/auth/google/callback",
        description="OAuth redirect URI (must match the Google console entry)",
    )
    frontend_url: str = Field(
        default="http://localhost:3000",
        description="Frontend base URL the OAuth callback redirects to",
    )

    # Classification backends
    groq_api_key: Optional[str] = Field(
        default=None, description="Fallback Groq API key (CLI only)"
    )
    gemini_api_key: Optional[str] = Field(
        default=None, description="Fallback Gemini API key (CLI only)"
    )
    groq_model: str = Field(
        default="llama-3.3-70b-versatile", description="Groq model name"
    )
    gemini_model: str = Field(
        default="gemini-2.0-flash", description="Gemini model name"
    )
    classification_temperature: float = Field(
        default=0.3, ge=0.0, le=2.0, description="Sampling temperature"
    )
    classification_max_tokens: int = Field(
        default=10, ge=1, description="Maximum tokens in the model answer"
    )
    classification_body_limit: int = Field(
        default=1500, ge=0, description="Body characters included in the prompt"
    )
    classification_timeout_seconds: float = Field(
        default=30.0, gt=0, description="Per-message backend call timeout"
    )

    # Fetch Settings
    default_email_limit: int = Field(
        default=15, ge=1, le=50, description="Messages fetched per request by default"
    )
    log_level: str = Field(default="INFO", description="Logging level")

    def api_key_for(self, provider: Provider) -> Optional[str]:
        """Return the configured fallback API key for ``provider``."""
        if provider == Provider.GEMINI:
            return self.gemini_api_key
        return self.groq_api_key


def get_settings() -> Settings:
    """
    Load and return application settings.

    For tests, construct a :class:`Settings` instance directly or pass a
    mocked settings object.

    Returns:
        Settings: Application settings instance.

    Raises:
        ValidationError: If an environment variable has an invalid value.
    """
    return Settings()
