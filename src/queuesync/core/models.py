"""
Reconciliation data model.

Refs compare by native identifier (ARN) only; names and URLs ride along for
logging and reporting. Everything here is immutable: states, plans and reports
are built once per run and handed from phase to phase read-only.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar, Dict, FrozenSet, Iterator, List, Optional, Tuple, Union

QUEUE_PROTOCOL = "sqs"

SubscriptionHandle = str
Pair = Tuple["QueueRef", "TopicRef"]


def name_from_arn(arn: str) -> str:
    return arn.rsplit(":", 1)[-1] if arn else ""


@dataclass(frozen=True)
class TopicRef:
    arn: str
    name: str = field(default="", compare=False)

    @property
    def label(self) -> str:
        return self.name or name_from_arn(self.arn)

    def __str__(self) -> str:
        return self.label


@dataclass(frozen=True)
class QueueRef:
    arn: str
    name: str = field(default="", compare=False)
    url: str = field(default="", compare=False)

    @property
    def label(self) -> str:
        return self.name or name_from_arn(self.arn)

    def __str__(self) -> str:
        return self.label


@dataclass(frozen=True)
class SubscriptionEndpoint:
    target: QueueRef
    protocol: str = QUEUE_PROTOCOL


@dataclass(frozen=True)
class DesiredEdge:
    queue: QueueRef
    topic: TopicRef

    @property
    def pair(self) -> Pair:
        return (self.queue, self.topic)

    @property
    def endpoint(self) -> SubscriptionEndpoint:
        return SubscriptionEndpoint(target=self.queue)


@dataclass(frozen=True)
class ActualEdge:
    queue: QueueRef
    topic: TopicRef
    handle: SubscriptionHandle

    @property
    def pair(self) -> Pair:
        return (self.queue, self.topic)


@dataclass(frozen=True)
class DesiredState:
    """Validated desired topology: queue->topic edges plus the unsubscribed bucket."""
    edges: FrozenSet[DesiredEdge] = frozenset()
    unsubscribed: FrozenSet[TopicRef] = frozenset()

    def pairs(self) -> FrozenSet[Pair]:
        return frozenset(e.pair for e in self.edges)

    @property
    def in_scope_topics(self) -> FrozenSet[TopicRef]:
        """Every topic mentioned anywhere in the configuration."""
        return frozenset(e.topic for e in self.edges) | self.unsubscribed


@dataclass(frozen=True)
class ExcludedSubscription:
    """A live non-queue subscription on an in-scope topic (reported, never touched)."""
    topic: TopicRef
    handle: SubscriptionHandle
    protocol: str
    endpoint: str


@dataclass(frozen=True)
class ActualSnapshot:
    """
    Live queue subscriptions for the in-scope topics, and nothing else.

    `pending` holds queue subscriptions the backend has not confirmed yet; they
    have no usable handle, count as present and are never deleted.
    """
    topics: FrozenSet[TopicRef] = frozenset()
    edges: FrozenSet[ActualEdge] = frozenset()
    pending: FrozenSet[ActualEdge] = frozenset()
    excluded: Tuple[ExcludedSubscription, ...] = ()

    def pairs(self) -> FrozenSet[Pair]:
        return frozenset(e.pair for e in self.edges)


# ---------- Plan ----------

@dataclass(frozen=True)
class Create:
    queue: QueueRef
    topic: TopicRef
    protocol: str = QUEUE_PROTOCOL

    kind: ClassVar[str] = "create"

    @property
    def sort_key(self) -> Tuple[str, ...]:
        return (self.queue.label, self.topic.label, "", self.queue.arn, self.topic.arn)

    def describe(self) -> str:
        return f"subscribe queue={self.queue.label} topic={self.topic.label}"


@dataclass(frozen=True)
class Delete:
    handle: SubscriptionHandle
    queue: QueueRef = field(compare=False)
    topic: TopicRef = field(compare=False)

    kind: ClassVar[str] = "delete"

    @property
    def sort_key(self) -> Tuple[str, ...]:
        return (self.queue.label, self.topic.label, self.handle)

    def describe(self) -> str:
        return f"unsubscribe queue={self.queue.label} topic={self.topic.label} handle={self.handle}"


Operation = Union[Create, Delete]


@dataclass(frozen=True)
class ReconciliationPlan:
    """Ordered operations: every Delete precedes every Create."""
    operations: Tuple[Operation, ...] = ()

    @property
    def deletes(self) -> Tuple[Delete, ...]:
        return tuple(op for op in self.operations if isinstance(op, Delete))

    @property
    def creates(self) -> Tuple[Create, ...]:
        return tuple(op for op in self.operations if isinstance(op, Create))

    @property
    def is_empty(self) -> bool:
        return not self.operations

    def __len__(self) -> int:
        return len(self.operations)

    def __iter__(self) -> Iterator[Operation]:
        return iter(self.operations)


# ---------- Report ----------

CREATED = "CREATED"
DELETED = "DELETED"
ALREADY_ABSENT = "ALREADY_ABSENT"
FAILED = "FAILED"

SUCCESS_STATUSES = frozenset({CREATED, DELETED, ALREADY_ABSENT})


@dataclass(frozen=True)
class OperationOutcome:
    operation: Operation
    status: str
    attempts: int = 1
    error_kind: str = ""   # transient | permanent | timeout | exception
    error: str = ""
    handle: str = ""       # handle returned by a create, or the deleted one

    @property
    def ok(self) -> bool:
        return self.status in SUCCESS_STATUSES

    @property
    def retries(self) -> int:
        return max(0, self.attempts - 1)


@dataclass(frozen=True)
class ReconciliationReport:
    """Outcome of every operation of one plan, in plan order."""
    outcomes: Tuple[OperationOutcome, ...] = ()

    def outcome_for(self, operation: Operation) -> Optional[OperationOutcome]:
        for outcome in self.outcomes:
            if outcome.operation == operation:
                return outcome
        return None

    def as_mapping(self) -> Dict[Operation, OperationOutcome]:
        return {o.operation: o for o in self.outcomes}

    @property
    def counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for o in self.outcomes:
            counts[o.status] = counts.get(o.status, 0) + 1
        return counts

    @property
    def failures(self) -> List[OperationOutcome]:
        return [o for o in self.outcomes if not o.ok]

    @property
    def succeeded(self) -> bool:
        return not self.failures
