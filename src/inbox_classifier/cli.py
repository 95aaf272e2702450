"""Command-line interface (CLI) entrypoint.

Objective:
    Provide a human-friendly CLI wrapper around
    :class:`inbox_classifier.scheduler.BatchScheduler`.

Responsibilities:
    - Parse arguments (message source, provider, API key, limit, verbosity).
    - Configure logging (including suppressing noisy HTTP request logs).
    - Load messages from Gmail or from a JSON file, classify them, and print a
      readable summary grouped by category.

High-level call tree:
    - :func:`main`
        - :func:`setup_logging`
            - installs :class:`_HttpxRequestInfoToDebugFilter`
        - :func:`load_emails`
            - :meth:`GmailClient.fetch_emails` (``--token``)
            - JSON file parsing (``--input``)
        - :meth:`BatchScheduler.classify`
        - :func:`print_results`

Operational notes:
    - This module supports being run both as a package module
      (``python -m inbox_classifier.cli``) and as a script
      (``python src/inbox_classifier/cli.py``). The import fallback handles
      the script case.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

try:
    from .config import EmailCategory, Provider, Settings, get_settings
    from .errors import InvalidEmailLimit, RequestError
    from .gmail_client import MAX_EMAIL_LIMIT, GmailClient
    from .models import ClassificationOutcome, EmailMessage
    from .scheduler import BatchScheduler
except ImportError:  # pragma: no cover
    src_root = Path(__file__).resolve().parents[1]
    if str(src_root) not in sys.path:
        sys.path.insert(0, str(src_root))

    from inbox_classifier.config import EmailCategory, Provider, Settings, get_settings
    from inbox_classifier.errors import InvalidEmailLimit, RequestError
    from inbox_classifier.gmail_client import MAX_EMAIL_LIMIT, GmailClient
    from inbox_classifier.models import ClassificationOutcome, EmailMessage
    from inbox_classifier.scheduler import BatchScheduler

CATEGORY_ICONS = {
    EmailCategory.IMPORTANT: "⚠️",
    EmailCategory.PROMOTIONAL: "🎁",
    EmailCategory.SOCIAL: "👥",
    EmailCategory.MARKETING: "📢",
    EmailCategory.SPAM: "🚫",
    EmailCategory.GENERAL: "📧",
}


class _HttpxRequestInfoToDebugFilter(logging.Filter):
    """Filter to suppress noisy httpx "HTTP Request:" INFO logs.

    Both LLM SDKs log each HTTP request at INFO level through httpx. This
    filter hides those messages unless the root logger is in DEBUG mode.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        """Determine whether a log record should be emitted.

        Args:
            record: Log record emitted by the logging framework.

        Returns:
            bool: True to allow emission, False to suppress.
        """
        msg = record.getMessage()
        if record.name.startswith("httpx") and msg.startswith("HTTP Request:"):
            return logging.getLogger().isEnabledFor(logging.DEBUG)
        return True


def setup_logging(level: str = "INFO") -> None:
    """
    Configure logging for the application.

    This sets the root logger level and installs the
    :class:`_HttpxRequestInfoToDebugFilter` on all root handlers.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR).
    """
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    root_logger = logging.getLogger()
    downgrade_filter = _HttpxRequestInfoToDebugFilter()
    for handler in root_logger.handlers:
        handler.addFilter(downgrade_filter)


def load_emails_file(path: Path) -> list[EmailMessage]:
    """Load messages from a JSON file.

    Accepts either a list of messages or an object with an ``emails`` key
    (the shape returned by ``GET /api/emails``).

    Args:
        path: JSON file path.

    Returns:
        list[EmailMessage]: Parsed messages.
    """
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("data", data).get("emails", [])
    return [EmailMessage.model_validate(item) for item in data]


def load_emails(
    settings: Settings,
    token: Optional[str] = None,
    input_path: Optional[Path] = None,
    limit: Optional[int] = None,
) -> list[EmailMessage]:
    """Load messages from ``input_path`` if given, else from Gmail.

    Raises:
        InvalidEmailLimit: If ``limit`` is outside 1..50.
    """
    if limit is not None and not 1 <= limit <= MAX_EMAIL_LIMIT:
        raise InvalidEmailLimit()

    if input_path is not None:
        emails = load_emails_file(input_path)
        return emails[:limit] if limit is not None else emails

    return GmailClient(token or "").fetch_emails(limit or settings.default_email_limit)


def print_results(outcome: ClassificationOutcome, verbose: bool = False) -> None:
    """
    Print classification results to console.

    Output format:
        - Group messages by category (in category order).
        - Display sender and subject for each message.
        - Optionally print the snippet when ``verbose=True``.
        - Finish with the category histogram.

    Args:
        outcome: Classification outcome.
        verbose: If True, print detailed information.
    """
    if not outcome.classified_emails:
        print("\nNo emails classified.")
        return

    print(f"\n{'='*60}")
    print(f"CLASSIFICATION RESULTS: {outcome.count} emails ({outcome.provider.display_name})")
    print(f"{'='*60}\n")

    for category in EmailCategory:
        items = [e for e in outcome.classified_emails if e.category == category]
        if not items:
            continue

        print(f"\n{CATEGORY_ICONS[category]} {category.value} ({len(items)} emails)")
        print("-" * 40)

        for item in items:
            subject = item.subject[:50] + "..." if len(item.subject) > 50 else item.subject
            prefix = f"{item.sender} " if item.sender else ""
            print(f"  {prefix}{subject}")

            if verbose and item.snippet:
                print(f"      {item.snippet[:100]}")

    summary = ", ".join(f"{c.value}: {n}" for c, n in outcome.stats.items())
    print(f"\n{'='*60}")
    print(f"SUMMARY: {summary}")
    print(f"{'='*60}\n")


def main(args: Optional[list[str]] = None) -> int:
    """
    Main CLI entry point.

    Pass an explicit ``args`` list instead of relying on ``sys.argv`` to call
    it from tests.

    Args:
        args: Command line arguments (uses sys.argv if None).

    Returns:
        int: Exit code (0 for success, 1 for error).
    """
    parser = argparse.ArgumentParser(
        description="Inbox Classifier - AI-powered Gmail triage",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --token ya29...                 Classify the 15 latest inbox emails
  %(prog)s --token ya29... --limit 40      Classify 40 emails
  %(prog)s --input emails.json -p gemini   Classify emails saved as JSON
        """,
    )

    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument(
        "--token",
        "-t",
        type=str,
        help="Gmail OAuth access token (gmail.readonly scope)",
    )
    source.add_argument(
        "--input",
        "-i",
        type=Path,
        help="JSON file with emails to classify",
    )

    parser.add_argument(
        "--provider",
        "-p",
        type=str,
        default=Provider.GROQ.value,
        choices=[p.value for p in Provider],
        help="Classification backend",
    )

    parser.add_argument(
        "--api-key",
        "-k",
        type=str,
        default=None,
        help="Backend API key (defaults to GROQ_API_KEY / GEMINI_API_KEY)",
    )

    parser.add_argument(
        "--limit",
        "-l",
        type=int,
        default=None,
        help="Maximum number of emails to classify (1-50)",
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose output",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (defaults to LOG_LEVEL)",
    )

    parsed_args = parser.parse_args(args)

    settings = get_settings()
    log_level = "DEBUG" if parsed_args.verbose else (parsed_args.log_level or settings.log_level)
    setup_logging(log_level)

    logger = logging.getLogger(__name__)

    try:
        provider = Provider(parsed_args.provider)
        api_key = parsed_args.api_key or settings.api_key_for(provider) or ""

        print(f"\n🚀 Starting Inbox Classifier ({provider.display_name})...\n")

        emails = load_emails(
            settings,
            token=parsed_args.token,
            input_path=parsed_args.input,
            limit=parsed_args.limit,
        )

        scheduler = BatchScheduler(settings=settings)
        outcome = asyncio.run(scheduler.classify(emails, api_key, provider))

        print_results(outcome, verbose=parsed_args.verbose)
        return 0

    except RequestError as e:
        logger.error(f"Classification run failed: {e.message}")
        print(f"\n❌ Error: {e.message}\n")
        return 1

    except Exception as e:
        logger.exception("Fatal error")
        print(f"\n❌ Error: {e}\n")
        return 1


if __name__ == "__main__":
    sys.exit(main())
