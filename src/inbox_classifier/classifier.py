"""AI-assisted per-message classification.

Objective:
    Convert one :class:`inbox_classifier.models.EmailMessage` into one
    :class:`inbox_classifier.config.EmailCategory` with a single LLM call.
    Two interchangeable backends are provided, one per
    :class:`inbox_classifier.config.Provider`.

Core strategy:
    1. Sanitize the body and keep the first ``classification_body_limit``
       characters, to bound prompt size.
    2. Render the classification prompt from a template file on disk.
    3. Call the backend and normalize its one-word answer to a category.
       Unrecognized answers become ``General``.
    4. Translate provider errors: credential, rate-limit and outage signals
       become fatal :class:`inbox_classifier.errors.ClassifierError`
       subclasses; everything else propagates unchanged and is handled as a
       per-message failure by the scheduler.

High-level call tree:
    - :func:`get_classifier` -> :class:`GroqClassifier` | :class:`GeminiClassifier`
        - :meth:`classify_one`
            - :func:`build_prompt`
                - :func:`load_prompt_template`
                - :func:`inbox_classifier.sanitizer.prepare_body_for_prompt`
            - Groq chat completion / Gemini generate_content
            - :func:`normalize_category`
            - :func:`translate_status_error` (on provider errors)

Operational notes:
    - The prompt lives in ``src/inbox_classifier/prompts/classification_prompt.md``.
    - A fresh SDK client is created per call; the API key is never stored on
      the classifier instance.
    - SDK-level retries are disabled. Pacing is owned by the scheduler.
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Optional, Protocol

import groq
from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types
from groq import AsyncGroq

from .config import GEMINI_KEY_PREFIX, EmailCategory, Provider, Settings
from .errors import (
    ClassifierError,
    CredentialTypeMismatch,
    InvalidCredential,
    MalformedResult,
    ProviderError,
    RateLimited,
)
from .models import EmailMessage
from .sanitizer import prepare_body_for_prompt

logger = logging.getLogger(__name__)

PROMPT_PATH = Path(__file__).resolve().parent / "prompts" / "classification_prompt.md"

FALLBACK_PROMPT = """Classify the following email into exactly one category: {categories}.

From: {sender}
Subject: {subject}
Snippet: {snippet}
Body: {body}

Respond with ONLY the category name in uppercase. Default to GENERAL if unsure.
"""

_CATEGORY_BY_NAME = {category.value.upper(): category for category in EmailCategory}


class EmailClassifier(Protocol):
    """Capability shared by all backends: label one message."""

    provider: Provider

    async def classify_one(self, email: EmailMessage, api_key: str) -> EmailCategory:
        ...


@lru_cache(maxsize=1)
def load_prompt_template() -> str:
    """Load the classification prompt template from disk.

    Falls back to a short inline prompt if the file cannot be read.

    Returns:
        str: Prompt template text.
    """
    try:
        return PROMPT_PATH.read_text(encoding="utf-8")
    except OSError as e:
        logger.warning(f"Failed to load prompt file: {e}")
        return FALLBACK_PROMPT


def build_prompt(
    email: EmailMessage, body_limit: int = 1500, template: Optional[str] = None
) -> str:
    """Render the classification prompt for ``email``.

    Placeholders are substituted with ``str.replace`` rather than
    ``str.format`` because message content routinely contains braces.

    Args:
        email: Message to classify.
        body_limit: Maximum number of body characters to include.
        template: Template override (defaults to :func:`load_prompt_template`).

    Returns:
        str: Prompt text.
    """
    replacements = {
        "{categories}": ", ".join(c.value.upper() for c in EmailCategory),
        "{sender}": email.sender,
        "{subject}": email.subject,
        "{snippet}": email.snippet,
        "{body}": prepare_body_for_prompt(email.body, body_limit),
    }

    rendered = template if template is not None else load_prompt_template()
    for key, value in replacements.items():
        rendered = rendered.replace(key, value)
    return rendered


def normalize_category(
    raw_text: Optional[str], email_id: str = "", provider: Optional[Provider] = None
) -> EmailCategory:
    """Map a model answer to a category.

    Matching is case-insensitive after trimming whitespace, quotes and
    trailing punctuation. Anything else maps to ``General`` and is logged.

    Args:
        raw_text: Raw model answer.
        email_id: Message ID, for logs.
        provider: Backend that produced the answer, for logs.

    Returns:
        EmailCategory: Normalized category.
    """
    cleaned = (raw_text or "").strip().strip("\"'`*.!").strip().upper()
    category = _CATEGORY_BY_NAME.get(cleaned)
    if category is None:
        logger.warning(
            "Invalid category returned (provider=%s, email_id=%s, category=%r), defaulting to General",
            provider.value if provider else "?",
            email_id,
            cleaned[:50],
        )
        return EmailCategory.GENERAL
    return category


def is_gemini_key(api_key: str) -> bool:
    return api_key.startswith(GEMINI_KEY_PREFIX)


def translate_status_error(
    provider: Provider,
    status_code: Optional[int],
    api_key: str,
    message: str = "",
    error_code: Optional[str] = None,
) -> Optional[ClassifierError]:
    """Translate a provider HTTP error into a fatal classifier error.

    Rules, in order:
        - 401, an ``invalid_api_key`` code, or a Gemini "API key" message:
          :class:`CredentialTypeMismatch` when the key is shaped like the other
          provider's key, else :class:`InvalidCredential`.
        - 429: :class:`RateLimited`.
        - 5xx: :class:`ProviderError`.
        - Anything else is not fatal: returns None.

    Args:
        provider: Backend that raised the error.
        status_code: HTTP status of the failed call.
        api_key: Key used for the call (only its shape is inspected).
        message: Provider error message.
        error_code: Provider-specific error code, when available.

    Returns:
        Optional[ClassifierError]: The fatal error, or None.
    """
    detail = f"{status_code}: {message}"[:300]

    gemini_key_message = provider == Provider.GEMINI and "api key" in message.lower()
    if status_code == 401 or error_code == "invalid_api_key" or gemini_key_message:
        wrong_shape = is_gemini_key(api_key) if provider == Provider.GROQ else not is_gemini_key(api_key)
        if wrong_shape:
            return CredentialTypeMismatch(provider, detail)
        return InvalidCredential(provider, detail)

    if status_code == 429:
        return RateLimited(provider, detail)

    if status_code is not None and status_code >= 500:
        return ProviderError(provider, detail)

    return None


def _groq_error_code(body: Any) -> Optional[str]:
    """Extract the provider error code from a Groq error body."""
    if not isinstance(body, dict):
        return None
    inner = body.get("error", body)
    if isinstance(inner, dict) and inner.get("code") is not None:
        return str(inner["code"])
    return None


class GroqClassifier:
    """
    Classification backend using Groq chat completions.

    Attributes:
        settings: Application settings (model, temperature, limits).
        provider: Always :attr:`Provider.GROQ`.
    """

    provider = Provider.GROQ

    def __init__(
        self,
        settings: Settings,
        client_factory: Optional[Callable[[str], Any]] = None,
    ) -> None:
        """
        Initialize the backend.

        Args:
            settings: Application settings.
            client_factory: Builds an async Groq client from an API key.
                Defaults to :class:`groq.AsyncGroq` with retries disabled.
        """
        self.settings = settings
        self._client_factory = client_factory or self._default_client

    def _default_client(self, api_key: str) -> AsyncGroq:
        return AsyncGroq(
            api_key=api_key,
            max_retries=0,
            timeout=self.settings.classification_timeout_seconds,
        )

    async def classify_one(self, email: EmailMessage, api_key: str) -> EmailCategory:
        """
        Classify a single message.

        Args:
            email: Message to classify.
            api_key: Groq API key.

        Returns:
            EmailCategory: Category for the message.

        Raises:
            ClassifierError: On credential, rate-limit or outage errors.
            MalformedResult: If the model returned no text.
        """
        prompt = build_prompt(email, self.settings.classification_body_limit)
        client = self._client_factory(api_key)

        try:
            response = await client.chat.completions.create(
                model=self.settings.groq_model,
                messages=[{"role": "user", "content": prompt}],
                temperature=self.settings.classification_temperature,
                max_tokens=self.settings.classification_max_tokens,
            )
        except groq.APIStatusError as e:
            fatal = translate_status_error(
                self.provider, e.status_code, api_key, str(e), _groq_error_code(e.body)
            )
            if fatal is not None:
                raise fatal from e
            raise
        finally:
            await client.close()

        if not response.choices:
            raise MalformedResult(f"Groq returned no choices for email {email.id}")

        response_text = (response.choices[0].message.content or "").strip()
        logger.debug(f"Groq response for {email.id}: {response_text}")
        if not response_text:
            raise MalformedResult(f"Groq returned an empty answer for email {email.id}")

        return normalize_category(response_text, email.id, self.provider)


class GeminiClassifier:
    """
    Classification backend using Google Gemini (``google-genai`` SDK).

    Attributes:
        settings: Application settings (model, temperature, limits).
        provider: Always :attr:`Provider.GEMINI`.
    """

    provider = Provider.GEMINI

    def __init__(
        self,
        settings: Settings,
        client_factory: Optional[Callable[[str], Any]] = None,
    ) -> None:
        self.settings = settings
        self._client_factory = client_factory or self._default_client

    def _default_client(self, api_key: str) -> genai.Client:
        return genai.Client(
            api_key=api_key,
            http_options=genai_types.HttpOptions(
                timeout=int(self.settings.classification_timeout_seconds * 1000)
            ),
        )

    async def classify_one(self, email: EmailMessage, api_key: str) -> EmailCategory:
        """
        Classify a single message.

        Args:
            email: Message to classify.
            api_key: Gemini API key.

        Returns:
            EmailCategory: Category for the message.

        Raises:
            ClassifierError: On credential, rate-limit or outage errors.
            MalformedResult: If the model returned no text.
        """
        prompt = build_prompt(email, self.settings.classification_body_limit)
        client = self._client_factory(api_key)

        try:
            response = await client.aio.models.generate_content(
                model=self.settings.gemini_model,
                contents=prompt,
                config=genai_types.GenerateContentConfig(
                    temperature=self.settings.classification_temperature,
                    max_output_tokens=self.settings.classification_max_tokens,
                ),
            )
        except genai_errors.APIError as e:
            fatal = translate_status_error(
                self.provider, e.code, api_key, str(e), e.status
            )
            if fatal is not None:
                raise fatal from e
            raise
        finally:
            await client.aio.aclose()

        response_text = (response.text or "").strip()
        logger.debug(f"Gemini response for {email.id}: {response_text}")
        if not response_text:
            raise MalformedResult(f"Gemini returned an empty answer for email {email.id}")

        return normalize_category(response_text, email.id, self.provider)


def get_classifier(provider: Provider, settings: Settings) -> EmailClassifier:
    """Return the backend for ``provider``.

    Args:
        provider: Backend selector.
        settings: Application settings.

    Returns:
        EmailClassifier: Backend instance.
    """
    if provider == Provider.GEMINI:
        return GeminiClassifier(settings)
    return GroqClassifier(settings)
