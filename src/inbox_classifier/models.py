"""Pydantic data models used across the application.

Objective:
    Centralize all strongly-typed data structures representing:
    - Inbox messages returned by the Gmail collaborator
    - Classification outputs produced by the batch scheduler
    - Google OAuth tokens and user profiles used by the web glue

Design notes:
    - Message models use Pydantic aliases to match the JSON wire shape
      exchanged with the browser (e.g. ``threadId`` -> :attr:`EmailMessage.thread_id`,
      ``from`` -> :attr:`EmailMessage.sender`).
    - ``model_config = ConfigDict(populate_by_name=True)`` allows constructing
      models with either alias names or pythonic field names.
    - Messages and classification results are frozen: the scheduler only
      ever reads messages and creates new labeled records.

High-level structure:
    - Message primitives:
        - :class:`EmailMessage`
        - :class:`ClassifiedEmail`
    - Scheduling primitives:
        - :class:`BatchPlan`
        - :class:`ClassificationOutcome`
    - OAuth primitives:
        - :class:`OAuthTokens`
        - :class:`GoogleUser`
        - :class:`AuthenticatedUser`
"""

import math
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .config import EmailCategory, Provider


class EmailMessage(BaseModel):
    """
    Inbox message as produced by :class:`inbox_classifier.gmail_client.GmailClient`.

    Attributes:
        id: Gmail message ID.
        thread_id: Gmail thread ID.
        sender: Raw ``From`` header.
        recipient: Raw ``To`` header.
        subject: Decoded subject line.
        snippet: Gmail snippet (short plain-text preview).
        body: Full body (HTML preferred over plain text).
        date: Raw ``Date`` header.
        labels: Gmail label IDs.
    """

    id: str
    thread_id: str = Field(default="", alias="threadId")
    sender: str = Field(default="", alias="from")
    recipient: str = Field(default="", alias="to")
    subject: str = ""
    snippet: str = ""
    body: str = ""
    date: str = ""
    labels: list[str] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class ClassifiedEmail(EmailMessage):
    """
    Message plus its assigned category.

    Attributes:
        category: Assigned category (``General`` on fallback).
        confidence: Optional confidence scalar reported by the backend.
    """

    category: EmailCategory
    confidence: Optional[float] = None

    @classmethod
    def from_email(
        cls,
        email: EmailMessage,
        category: EmailCategory,
        confidence: Optional[float] = None,
    ) -> "ClassifiedEmail":
        """Label ``email`` with ``category``."""
        fields = email.model_dump(include=set(EmailMessage.model_fields))
        return cls(**fields, category=category, confidence=confidence)


class BatchPlan(BaseModel):
    """
    Batch size and inter-batch delay chosen for one classification run.

    Derived from the input count by
    :func:`inbox_classifier.scheduler.select_batch_plan`; never persisted.

    Attributes:
        batch_size: Messages dispatched concurrently per batch.
        delay_ms: Pause between two consecutive batches, in milliseconds.
    """

    batch_size: int = Field(ge=1)
    delay_ms: int = Field(default=0, ge=0)

    model_config = ConfigDict(frozen=True)

    @property
    def delay_seconds(self) -> float:
        return self.delay_ms / 1000

    def batch_count(self, total: int) -> int:
        """Number of batches needed for ``total`` messages."""
        if total <= 0:
            return 0
        return math.ceil(total / self.batch_size)


class ClassificationOutcome(BaseModel):
    """
    Result of classifying a sequence of messages.

    Attributes:
        classified_emails: Labeled messages, in input order.
        stats: Histogram of categories; always holds all six categories.
        provider: Backend that produced the labels.
    """

    classified_emails: list[ClassifiedEmail] = Field(default_factory=list)
    stats: dict[EmailCategory, int] = Field(
        default_factory=lambda: {category: 0 for category in EmailCategory}
    )
    provider: Provider = Provider.GROQ

    @property
    def count(self) -> int:
        return len(self.classified_emails)

    @classmethod
    def empty(cls, provider: Provider) -> "ClassificationOutcome":
        """Outcome for an empty input: no messages, zero histogram."""
        return cls(provider=provider)

    def stats_by_name(self) -> dict[str, int]:
        """Histogram keyed by category display names (JSON friendly)."""
        return {category.value: count for category, count in self.stats.items()}


class OAuthTokens(BaseModel):
    """Tokens returned by the Google OAuth token endpoint."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    scope: str = ""
    token_type: str = "Bearer"
    id_token: Optional[str] = None


class GoogleUser(BaseModel):
    """Subset of the Google ``userinfo`` payload used by the app."""

    email: str
    name: str = ""
    picture: Optional[str] = None


class AuthenticatedUser(GoogleUser):
    """Google user together with the bearer token that authenticated them."""

    access_token: str
