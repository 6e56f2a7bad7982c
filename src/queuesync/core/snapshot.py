"""
Actual state snapshot: live subscriptions of the in-scope topics only.

Topics are listed in parallel (bounded pool, one task per topic, every page
followed). Workers only fetch raw records; turning endpoints into QueueRefs
happens afterwards on the calling thread. Any topic that cannot be listed
aborts the whole snapshot: a partial view would make missing edges look like
drift.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import Dict, Iterable, List, Optional

from .backend import BackendError, SubscriptionRecord
from .errors import BackendUnavailable
from .models import ActualEdge, ActualSnapshot, ExcludedSubscription, TopicRef
from .resolver import IdentifierResolver
from .retry import Deadline, DeadlineExceeded, RetryExhausted, RetryPolicy


def _is_confirmed(handle: str) -> bool:
    return handle.startswith("arn:")


def build_actual_snapshot(
    topics: Iterable[TopicRef],
    resolver: IdentifierResolver,
    *,
    retry: Optional[RetryPolicy] = None,
    concurrency: int = 4,
    deadline: Optional[Deadline] = None,
    logger: Optional[logging.LoggerAdapter] = None,
) -> ActualSnapshot:
    log = logger or logging.getLogger("qs.snapshot")
    backend = resolver.backend
    policy = retry or resolver.retry
    budget = deadline if deadline is not None else resolver.deadline
    ordered = sorted(set(topics), key=lambda t: (t.label, t.arn))
    if not ordered:
        return ActualSnapshot()

    def list_topic(topic: TopicRef) -> List[SubscriptionRecord]:
        records: List[SubscriptionRecord] = []
        token: Optional[str] = None
        while True:
            page, _ = policy.run(
                lambda tok=token: backend.list_subscriptions(topic.arn, tok),
                what=f"list subscriptions {topic.label}",
                deadline=budget,
                logger=log,
            )
            records.extend(page.records)
            token = page.next_token
            if not token:
                return records

    listed: Dict[TopicRef, List[SubscriptionRecord]] = {}
    workers = max(1, min(int(concurrency), len(ordered)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="qs-list") as pool:
        futures: Dict[Future, TopicRef] = {pool.submit(list_topic, t): t for t in ordered}
        for fut in as_completed(futures):
            topic = futures[fut]
            try:
                listed[topic] = fut.result()
            except (RetryExhausted, DeadlineExceeded, BackendError) as e:
                for other in futures:
                    other.cancel()
                raise BackendUnavailable(f"Cannot list subscriptions of topic '{topic.label}': {e}") from e

    edges = set()
    pending = set()
    excluded: List[ExcludedSubscription] = []
    for topic in ordered:
        for rec in listed[topic]:
            if rec.protocol != backend.queue_protocol:
                excluded.append(ExcludedSubscription(topic, rec.handle, rec.protocol, rec.endpoint))
                continue
            edge = ActualEdge(queue=resolver.queue_from_arn(rec.endpoint), topic=topic, handle=rec.handle)
            if _is_confirmed(rec.handle):
                edges.add(edge)
            else:
                pending.add(edge)

    if excluded:
        log.info("Ignoring %d non-queue subscription(s) on in-scope topics", len(excluded))
    if pending:
        log.warning("%d queue subscription(s) still pending confirmation", len(pending))
    log.info("Actual state: %d topic(s), %d queue subscription(s)", len(ordered), len(edges))

    return ActualSnapshot(
        topics=frozenset(ordered),
        edges=frozenset(edges),
        pending=frozenset(pending),
        excluded=tuple(excluded),
    )
