"""Gmail REST API client for inbox retrieval.

Objective:
    Provide a thin wrapper around the Gmail endpoints used by this project.
    This module centralizes HTTP request construction, the bearer token
    header, and parsing of Gmail message payloads into
    :class:`inbox_classifier.models.EmailMessage`.

Responsibilities:
    - Issue authenticated HTTP requests to Gmail (via :mod:`requests`).
    - List inbox messages and fetch their full payloads.
    - Walk multipart MIME payloads and decode base64url bodies.
    - Fetch the mailbox profile.

High-level call tree:
    - Public API:
        - :meth:`GmailClient.fetch_emails` -> returns :class:`EmailMessage`
        - :meth:`GmailClient.get_user_profile`
    - Internal helpers:
        - :meth:`GmailClient._make_request` (auth + error handling)
        - :func:`parse_gmail_message`
            - :func:`extract_body`
            - :func:`decode_body_data`

Gmail endpoints used:
    - ``GET /users/me/messages?q=in:inbox&maxResults=N``
    - ``GET /users/me/messages/{id}?format=full``
    - ``GET /users/me/profile``

Error handling:
    - HTTP 401 becomes :class:`inbox_classifier.errors.InvalidAuthToken`.
    - Any other failure while fetching becomes
      :class:`inbox_classifier.errors.EmailFetchFailed`.
"""

import base64
import binascii
import logging
from typing import Any, Optional
from urllib.parse import quote

import requests

from .errors import EmailFetchFailed, GmailApiError, InvalidAuthToken, InvalidEmailLimit
from .models import EmailMessage
from .sanitizer import decode_html_entities

logger = logging.getLogger(__name__)

MAX_EMAIL_LIMIT = 50


def decode_body_data(data: str) -> str:
    """Decode a base64url Gmail body part to text.

    Gmail omits base64 padding; it is restored before decoding. Undecodable
    data yields an empty string.

    Args:
        data: base64url-encoded body data.

    Returns:
        str: Decoded text with HTML entities decoded.
    """
    if not data:
        return ""

    try:
        padded = data + "=" * (-len(data) % 4)
        decoded = base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError) as e:
        logger.error(f"Error decoding email body: {e}")
        return ""

    return decode_html_entities(decoded)


def extract_body(parts: list[dict[str, Any]]) -> str:
    """Extract the message body from MIME parts.

    HTML parts are preferred over plain-text parts; nested multiparts are
    walked recursively.

    Args:
        parts: Gmail ``payload.parts`` list.

    Returns:
        str: HTML body if present, else plain-text body, else ``""``.
    """
    html_body = ""
    plain_body = ""

    for part in parts:
        mime_type = part.get("mimeType", "")
        data = (part.get("body") or {}).get("data")

        if mime_type == "text/html" and data:
            html_body += decode_body_data(data)
        elif mime_type == "text/plain" and data:
            plain_body += decode_body_data(data)
        elif part.get("parts"):
            nested = extract_body(part["parts"])
            if "<html" in nested or "<body" in nested:
                html_body += nested
            else:
                plain_body += nested

    return html_body or plain_body


def parse_gmail_message(message: dict[str, Any]) -> EmailMessage:
    """Parse a ``format=full`` Gmail message resource.

    Args:
        message: Gmail message resource.

    Returns:
        EmailMessage: Parsed message.
    """
    payload = message.get("payload") or {}
    headers = {
        h.get("name", "").lower(): h.get("value", "")
        for h in payload.get("headers", [])
    }

    if payload.get("parts"):
        body = extract_body(payload["parts"])
    else:
        body = decode_body_data((payload.get("body") or {}).get("data", ""))

    return EmailMessage(
        id=message["id"],
        thread_id=message.get("threadId", ""),
        sender=headers.get("from", ""),
        recipient=headers.get("to", ""),
        subject=decode_html_entities(headers.get("subject", "")),
        snippet=decode_html_entities(message.get("snippet", "")),
        body=body,
        date=headers.get("date", ""),
        labels=message.get("labelIds", []),
    )


class GmailClient:
    """
    Client for reading a Gmail inbox with an OAuth access token.

    The access token is supplied by the caller (the browser holds it);
    the client does not refresh or persist it.

    Attributes:
        access_token: OAuth bearer token with ``gmail.readonly`` scope.
    """

    GMAIL_BASE_URL = "https://gmail.googleapis.com/gmail/v1"

    def __init__(self, access_token: str, timeout: float = 30) -> None:
        self.access_token = access_token
        self.timeout = timeout

    def _make_request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
    ) -> dict:
        """Make an authenticated request to the Gmail API.

        Args:
            method: HTTP method.
            endpoint: API endpoint path.
            params: Query parameters.

        Returns:
            dict: Response JSON data.

        Raises:
            requests.HTTPError: If request fails.
        """
        url = f"{self.GMAIL_BASE_URL}{endpoint}"
        headers = {"Authorization": f"Bearer {self.access_token}"}

        response = requests.request(
            method=method,
            url=url,
            headers=headers,
            params=params,
            timeout=self.timeout,
        )

        if not response.ok:
            logger.error(f"Gmail API error: {response.status_code} - {response.text}")
            response.raise_for_status()

        return response.json()

    def fetch_emails(self, limit: int = 15) -> list[EmailMessage]:
        """Fetch the most recent inbox messages.

        Args:
            limit: Maximum number of messages (1-50).

        Returns:
            list[EmailMessage]: Messages in Gmail's listing order.

        Raises:
            InvalidEmailLimit: If ``limit`` is out of range.
            InvalidAuthToken: If Gmail rejected the access token.
            EmailFetchFailed: On any other failure.
        """
        if limit < 1 or limit > MAX_EMAIL_LIMIT:
            raise InvalidEmailLimit()

        logger.info(f"Fetching {limit} emails from Gmail")

        try:
            listing = self._make_request(
                "GET",
                "/users/me/messages",
                params={"maxResults": limit, "q": "in:inbox"},
            )

            message_refs = listing.get("messages", [])
            if not message_refs:
                logger.info("No messages found")
                return []

            emails = []
            for ref in message_refs:
                safe_id = quote(ref["id"], safe="")
                message = self._make_request(
                    "GET", f"/users/me/messages/{safe_id}", params={"format": "full"}
                )
                emails.append(parse_gmail_message(message))

        except requests.HTTPError as e:
            if e.response is not None and e.response.status_code == 401:
                raise InvalidAuthToken() from e
            raise EmailFetchFailed() from e
        except (requests.RequestException, KeyError, ValueError) as e:
            logger.error(f"Error fetching emails: {e}")
            raise EmailFetchFailed() from e

        logger.info(f"Successfully fetched {len(emails)} emails")
        return emails

    def get_user_profile(self) -> dict:
        """Return the Gmail profile (email address, message totals).

        Raises:
            GmailApiError: If the profile cannot be fetched.
        """
        try:
            return self._make_request("GET", "/users/me/profile")
        except requests.RequestException as e:
            logger.error(f"Error fetching user profile: {e}")
            raise GmailApiError() from e
