"""
Backend capability interface.

The reconciliation core talks to the messaging backend only through
`SubscriptionBackend`. Implementations translate their SDK errors into the
three error classes below so the core can decide what to retry:

- TransientBackendError: throttling, 5xx, connection/read timeouts (retry)
- PermanentBackendError: anything a retry will not fix (no retry)
- ResourceNotFound: the addressed resource does not exist (permanent, but
  callers may treat it as success, e.g. unsubscribe of a deleted handle)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, List, Optional


@dataclass
class BackendError(Exception):
    """Backend call failure with context. `attempts` is filled in by the retry policy."""
    operation: str
    code: str = ""
    message: str = ""
    attempts: int = 0

    def __str__(self) -> str:
        base = f"{type(self).__name__}(op={self.operation}"
        if self.code:
            base += f", code={self.code}"
        base += ")"
        if self.message:
            base += f": {self.message}"
        return base


class TransientBackendError(BackendError):
    """Retryable failure."""


class PermanentBackendError(BackendError):
    """Non-retryable failure."""


class ResourceNotFound(PermanentBackendError):
    """The queue, topic or subscription does not exist."""


@dataclass(frozen=True)
class QueueLookup:
    name: str
    url: str
    arn: str


@dataclass(frozen=True)
class SubscriptionRecord:
    """One subscription as listed by the backend."""
    topic_arn: str
    handle: str
    protocol: str
    endpoint: str


@dataclass
class SubscriptionPage:
    records: List[SubscriptionRecord] = field(default_factory=list)
    next_token: Optional[str] = None


class SubscriptionBackend:
    """
    Abstract backend. Subclasses must implement every method below.

    Methods are called from worker threads; implementations must be safe to
    call concurrently (boto3 clients are).
    """

    queue_protocol: str = "sqs"

    def iter_topic_arns(self) -> Iterator[str]:
        """Yield the ARN of every topic in the account/region (all pages)."""
        raise NotImplementedError

    def lookup_queue(self, name: str) -> QueueLookup:
        """Return URL and ARN for a queue name. Raises ResourceNotFound."""
        raise NotImplementedError

    def list_subscriptions(self, topic_arn: str, next_token: Optional[str] = None) -> SubscriptionPage:
        """Return one page of subscriptions attached to a topic."""
        raise NotImplementedError

    def subscribe(self, topic_arn: str, protocol: str, endpoint: str) -> str:
        """Create (or return the existing) subscription; returns its handle."""
        raise NotImplementedError

    def unsubscribe(self, handle: str) -> None:
        """Delete a subscription by handle. Raises ResourceNotFound if already gone."""
        raise NotImplementedError
