"""Batch classification scheduler.

Objective:
    Classify an ordered sequence of messages through a rate-limited,
    latency-variable LLM backend, returning one label per message (in input
    order) plus a category histogram.

Scheduling policy:
    - The batch size and the inter-batch delay are a pure function of the
      input count (:func:`select_batch_plan`).
    - Batches run strictly one after another. Inside a batch, every message
      is classified concurrently and the batch completes only when all of
      them have resolved.
    - The delay is applied between batches only: never before the first
      batch, never after the last one.

Failure isolation:
    - Credential, key-type, rate-limit and outage errors
      (:class:`inbox_classifier.errors.ClassifierError`) abort the whole run
      with :class:`inbox_classifier.errors.ClassificationFailed`. Calls of the
      current batch that have not started yet are skipped; no partial result
      is returned.
    - Any other per-message error labels that message ``General`` and the
      run continues.

High-level call tree:
    - :func:`classify_emails` convenience wrapper
    - :class:`BatchScheduler`
        - :meth:`BatchScheduler.classify`
            - :func:`select_batch_plan`
            - :func:`partition`
            - :meth:`BatchScheduler._classify_batch`
                - :meth:`BatchScheduler._classify_isolated` (one per message)
                    - :meth:`inbox_classifier.classifier.EmailClassifier.classify_one`
            - :func:`compute_stats`
"""

import asyncio
import logging
import math
from typing import Awaitable, Callable, Optional, Sequence, Union

from .classifier import EmailClassifier, get_classifier
from .config import EmailCategory, Provider, Settings, get_settings
from .errors import ClassificationCancelled, ClassificationFailed, ClassifierError, FailureKind
from .models import BatchPlan, ClassificationOutcome, ClassifiedEmail, EmailMessage

logger = logging.getLogger(__name__)

ClassifierFactory = Callable[[Provider, Settings], EmailClassifier]
SleepFunc = Callable[[float], Awaitable[None]]


def select_batch_plan(count: int) -> BatchPlan:
    """Choose batch size and inter-batch delay for ``count`` messages.

    | count  | batch size   | delay (ms) |
    |--------|--------------|------------|
    | 1-5    | count        | 0          |
    | 6-10   | count        | 500        |
    | 11-15  | ceil(count/2)| 800        |
    | 16-25  | 10           | 1000       |
    | 26-40  | 10           | 1200       |
    | 41+    | 8            | 1500       |

    Args:
        count: Number of messages to classify.

    Returns:
        BatchPlan: Plan for the run.

    Raises:
        ValueError: If ``count`` is not positive.
    """
    if count <= 0:
        raise ValueError(f"Cannot plan batches for {count} messages")

    if count <= 5:
        return BatchPlan(batch_size=count, delay_ms=0)
    if count <= 10:
        return BatchPlan(batch_size=count, delay_ms=500)
    if count <= 15:
        return BatchPlan(batch_size=math.ceil(count / 2), delay_ms=800)
    if count <= 25:
        return BatchPlan(batch_size=10, delay_ms=1000)
    if count <= 40:
        return BatchPlan(batch_size=10, delay_ms=1200)
    return BatchPlan(batch_size=8, delay_ms=1500)


def partition(emails: Sequence[EmailMessage], batch_size: int) -> list[list[EmailMessage]]:
    """Split ``emails`` into contiguous, order-preserving batches."""
    return [list(emails[i : i + batch_size]) for i in range(0, len(emails), batch_size)]


def compute_stats(classified: Sequence[ClassifiedEmail]) -> dict[EmailCategory, int]:
    """Count messages per category; every category is present."""
    stats = {category: 0 for category in EmailCategory}
    for email in classified:
        stats[email.category] += 1
    return stats


class BatchScheduler:
    """
    Classifies message sequences in paced, concurrent batches.

    The scheduler holds no per-run state: the API key and provider are passed
    to :meth:`classify` on every call, so a single instance can serve
    concurrent, independent runs.

    Attributes:
        settings: Application settings handed to the backends.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        classifier_factory: ClassifierFactory = get_classifier,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        """
        Initialize the scheduler.

        Args:
            settings: Application settings (loads from env if None).
            classifier_factory: Builds the backend for a provider. Tests pass a
                factory returning a fake backend.
            sleep: Coroutine used for the inter-batch delay.
        """
        self.settings = settings or get_settings()
        self._classifier_factory = classifier_factory
        self._sleep = sleep

    async def classify(
        self,
        emails: Sequence[EmailMessage],
        api_key: str,
        provider: Union[Provider, str] = Provider.GROQ,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ClassificationOutcome:
        """Classify ``emails`` and build the outcome.

        Args:
            emails: Messages to classify, in display order.
            api_key: Backend API key.
            provider: Backend selector.
            cancel_event: When set, the run stops before starting the next
                batch.

        Returns:
            ClassificationOutcome: Labels in input order plus the histogram.

        Raises:
            ValueError: If ``provider`` is unknown.
            ClassificationFailed: If the key is missing or a fatal backend
                error occurred.
            ClassificationCancelled: If ``cancel_event`` was set.
        """
        provider = Provider(provider)

        if not api_key:
            raise ClassificationFailed(FailureKind.INVALID_CREDENTIAL, provider)

        if not emails:
            return ClassificationOutcome.empty(provider)

        classifier = self._classifier_factory(provider, self.settings)
        plan = select_batch_plan(len(emails))
        batches = partition(emails, plan.batch_size)

        logger.info(
            "Classifying %s emails using %s (batch_size=%s, delay=%sms, batches=%s)",
            len(emails),
            provider.value.upper(),
            plan.batch_size,
            plan.delay_ms,
            len(batches),
        )

        labels: list[Optional[EmailCategory]] = [None] * len(emails)
        failures: list[str] = []
        aborted = asyncio.Event()

        start = 0
        for batch_number, batch in enumerate(batches, 1):
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Classification cancelled before batch %s/%s", batch_number, len(batches))
                raise ClassificationCancelled()

            logger.info(f"Processing batch {batch_number}/{len(batches)} ({len(batch)} emails)")
            batch_labels = await self._classify_batch(classifier, batch, api_key, aborted, failures)
            labels[start : start + len(batch)] = batch_labels
            start += len(batch)

            if batch_number < len(batches) and plan.delay_ms > 0:
                logger.info(f"Waiting {plan.delay_ms}ms before next batch...")
                await self._sleep(plan.delay_seconds)

        classified = [
            ClassifiedEmail.from_email(email, label or EmailCategory.GENERAL)
            for email, label in zip(emails, labels)
        ]

        logger.info(f"Successfully classified {len(classified)} emails using {provider.value.upper()}")
        if failures:
            logger.warning(
                f"Some emails had classification errors: {len(failures)} out of {len(emails)}"
            )

        return ClassificationOutcome(
            classified_emails=classified,
            stats=compute_stats(classified),
            provider=provider,
        )

    async def _classify_batch(
        self,
        classifier: EmailClassifier,
        batch: list[EmailMessage],
        api_key: str,
        aborted: asyncio.Event,
        failures: list[str],
    ) -> list[EmailCategory]:
        """Classify one batch concurrently and wait for every message.

        Returns:
            list[EmailCategory]: Labels in batch order.

        Raises:
            ClassificationFailed: For the first fatal error, by batch position.
        """
        results = await asyncio.gather(
            *(
                self._classify_isolated(classifier, email, api_key, aborted, failures)
                for email in batch
            ),
            return_exceptions=True,
        )

        for result in results:
            if isinstance(result, ClassifierError):
                logger.error(
                    "Aborting classification with %s: %s (%s)",
                    result.provider.value.upper(),
                    result.kind.value,
                    result.detail,
                )
                raise ClassificationFailed.from_error(result) from result
            if isinstance(result, BaseException):
                raise result

        return [label or EmailCategory.GENERAL for label in results]

    async def _classify_isolated(
        self,
        classifier: EmailClassifier,
        email: EmailMessage,
        api_key: str,
        aborted: asyncio.Event,
        failures: list[str],
    ) -> Optional[EmailCategory]:
        """Classify one message, turning non-fatal errors into ``General``.

        Returns None without calling the backend once the run was aborted.
        """
        if aborted.is_set():
            return None

        try:
            return await classifier.classify_one(email, api_key)
        except ClassifierError:
            aborted.set()
            raise
        except Exception as e:
            logger.warning(f"Failed to classify email {email.id}, using General category: {e}")
            failures.append(email.id)
            return EmailCategory.GENERAL


async def classify_emails(
    emails: Sequence[EmailMessage],
    api_key: str,
    provider: Union[Provider, str] = Provider.GROQ,
    settings: Optional[Settings] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> ClassificationOutcome:
    """Convenience wrapper around :meth:`BatchScheduler.classify`.

    Args:
        emails: Messages to classify.
        api_key: Backend API key.
        provider: Backend selector.
        settings: Application settings (loads from env if None).
        cancel_event: Optional cancellation flag checked between batches.

    Returns:
        ClassificationOutcome: Labels in input order plus the histogram.
    """
    scheduler = BatchScheduler(settings=settings)
    return await scheduler.classify(emails, api_key, provider, cancel_event=cancel_event)
