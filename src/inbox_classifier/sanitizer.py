"""Email body sanitization.

Objective:
    Convert raw message content returned by Gmail (often HTML) into a compact,
    safe plain-text representation suitable for LLM prompting and display.

Responsibilities:
    - Decode HTML entities left in headers, snippets and bodies.
    - Strip potentially dangerous HTML elements (e.g., ``<script>``).
    - Convert HTML to markdown-ish text to preserve some structure.
    - Normalize and compress whitespace.
    - Truncate bodies to the prompt budget.

High-level call tree:
    - :func:`prepare_body_for_prompt`
        - :func:`sanitize_email_body`
            - :func:`looks_like_html`
            - :func:`html_to_markdown` (HTML input)
            - :func:`clean_text`
    - :func:`decode_html_entities` (Gmail parsing)

Security notes:
    Sanitization is meant to keep raw HTML/script content out of prompts, and
    to reduce noise/tokens sent to the LLM.
"""

import html
import re

from bs4 import BeautifulSoup
from markdownify import markdownify as md

_HTML_MARKERS = re.compile(r"<(html|body|div|p|br|table|span|a)\b", re.IGNORECASE)


def decode_html_entities(text: str) -> str:
    """Decode named and numeric HTML entities (``&amp;``, ``&#39;``, ``&#x27;``).

    Gmail returns subjects and snippets with entities escaped.

    Args:
        text: Raw text.

    Returns:
        str: Text with entities decoded; ``&nbsp;`` becomes a plain space.
    """
    if not text:
        return ""

    return html.unescape(text).replace("\xa0", " ")


def looks_like_html(text: str) -> bool:
    """Return True when ``text`` contains common HTML structure tags."""
    return bool(text) and bool(_HTML_MARKERS.search(text))


def html_to_markdown(html_content: str) -> str:
    """Convert HTML to markdown-like plain text.

    Performs an HTML cleanup using BeautifulSoup before calling
    ``markdownify``, removing scripts, styles and document metadata
    (head/meta/link).

    Args:
        html_content: Raw HTML string.

    Returns:
        str: Markdown formatted text.
    """
    if not html_content:
        return ""

    soup = BeautifulSoup(html_content, "html.parser")
    for element in soup(["script", "style", "head", "meta", "link"]):
        element.decompose()

    return md(str(soup), heading_style="ATX")


def clean_text(text: str) -> str:
    """Normalize and compact plain text.

    Removes:
    - HTML tags
    - Markdown links and images
    - Table separators
    - Horizontal rules
    - URLs and quoted reply lines
    - Multiple newlines and spaces
    - Special characters (except essential punctuation)

    Args:
        text: Raw text to clean.

    Returns:
        str: Cleaned text.
    """
    if not text:
        return ""

    # Remove any remaining HTML tags
    text = re.sub(r"<[^>]*>", "", text)

    # Remove Markdown images like ![alt](image-link)
    text = re.sub(r"!\[[^\]]*\]\([^)]*\)", "", text)

    # Remove Markdown links like [text](link)
    text = re.sub(r"\[([^\]]*)\]\([^)]*\)", r"\1", text)

    # Remove table separators "|"
    text = re.sub(r"\|", " ", text)

    # Remove horizontal rules "---" or more
    text = re.sub(r"-{3,}", "", text)

    # Remove URLs
    text = re.sub(r"https?://\S+", "", text)

    # Remove quoted reply text (lines starting with >)
    text = re.sub(r"^>.*$", "", text, flags=re.MULTILINE)

    text = re.sub(r"\n+", " ", text)

    # Remove special characters except essential ones
    text = re.sub(r"[^\w\s.,!?@:;'\"-]", "", text)

    text = re.sub(r"\s{2,}", " ", text)

    return text.strip()


def sanitize_email_body(body_content: str) -> str:
    """Sanitize a message body for AI processing or plain-text display.

    Behavior:
        - HTML bodies are converted to markdown-like text via
          :func:`html_to_markdown`, then normalized via :func:`clean_text`.
        - Plain-text bodies are normalized via :func:`clean_text`.

    Args:
        body_content: Raw message body.

    Returns:
        str: Sanitized text.
    """
    if not body_content:
        return ""

    if looks_like_html(body_content):
        return clean_text(html_to_markdown(body_content))
    return clean_text(body_content)


def prepare_body_for_prompt(body_content: str, max_length: int = 1500) -> str:
    """Sanitize ``body_content`` and keep its first ``max_length`` characters.

    Args:
        body_content: Raw message body.
        max_length: Character budget for the prompt.

    Returns:
        str: Prompt-ready body text.
    """
    return sanitize_email_body(body_content)[:max_length]
