"""Inbox Classifier package.

Objective:
    Provide a Python implementation of an inbox classification workflow:
    - Authorize access to a Gmail inbox with Google OAuth.
    - Fetch a bounded set of inbox messages through the Gmail REST API.
    - Classify each message into one of six categories with an LLM
      (Groq or Google Gemini), in paced concurrent batches.
    - Present the labeled messages and a category histogram in a browser.

Key modules:
    - :mod:`inbox_classifier.config`:
        Settings, the category enumeration and the provider enumeration.
    - :mod:`inbox_classifier.classifier`:
        Prompt construction, Groq/Gemini calls, response normalization and
        provider error translation.
    - :mod:`inbox_classifier.scheduler`:
        Batch planning, concurrent per-batch fan-out, failure isolation.
    - :mod:`inbox_classifier.gmail_client`:
        Gmail REST wrapper and MIME payload parsing.
    - :mod:`inbox_classifier.auth`:
        Google OAuth authorization URL, code exchange, token verification.
    - :mod:`inbox_classifier.cli` / :mod:`inbox_classifier.webapp`:
        User-facing entrypoints.
"""

__version__ = "0.1.0"
