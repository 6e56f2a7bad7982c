"""
Identifier resolver: declared names -> backend identifiers, cached per run.

- Queues are looked up by name (the backend has a native name index).
- Topics have no such index: the full topic listing is fetched once and
  matched on the ARN's last segment.
- Queue ARNs seen on subscriptions are turned back into QueueRefs by
  construction, without a backend call.

A name resolved twice returns the very same Ref object.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from .backend import BackendError, ResourceNotFound, SubscriptionBackend
from .errors import Ambiguous, BackendUnavailable, NotFound
from .models import QueueRef, TopicRef, name_from_arn
from .naming import EnvName
from .retry import Deadline, DeadlineExceeded, RetryExhausted, RetryPolicy


class IdentifierResolver:
    def __init__(
        self,
        backend: SubscriptionBackend,
        *,
        env: EnvName = EnvName.UNKNOWN,
        retry: Optional[RetryPolicy] = None,
        deadline: Optional[Deadline] = None,
        logger: Optional[logging.LoggerAdapter] = None,
    ) -> None:
        self.backend = backend
        self.env = env
        self.retry = retry or RetryPolicy()
        self.deadline = deadline
        self.log = logger or logging.getLogger("qs.resolver")
        self._topics: Dict[str, TopicRef] = {}
        self._queues: Dict[str, QueueRef] = {}
        self._queues_by_arn: Dict[str, QueueRef] = {}
        self._topic_index: Optional[Dict[str, List[str]]] = None

    # ------------- Public API -------------

    def resolve_topic(self, name: str) -> TopicRef:
        physical = self.env.topic_name(name)
        cached = self._topics.get(physical)
        if cached is not None:
            return cached

        candidates = self._load_topic_index().get(physical, [])
        if not candidates:
            raise NotFound(f"Topic '{physical}' not found", name=name, kind="topic")
        if len(candidates) > 1:
            raise Ambiguous(
                f"Topic '{physical}' matches {len(candidates)} ARNs: {', '.join(sorted(candidates))}",
                name=name,
                kind="topic",
            )

        ref = TopicRef(arn=candidates[0], name=physical)
        self._topics[physical] = ref
        self.log.debug("Resolved topic %s -> %s", physical, ref.arn)
        return ref

    def resolve_queue(self, name: str) -> QueueRef:
        physical = self.env.queue_name(name)
        cached = self._queues.get(physical)
        if cached is not None:
            return cached

        try:
            found = self._call(
                lambda: self.backend.lookup_queue(physical), f"lookup queue {physical}", not_found_ok=True
            )
        except ResourceNotFound as e:
            raise NotFound(f"Queue '{physical}' not found", name=name, kind="queue") from e

        ref = self._queues_by_arn.get(found.arn) or QueueRef(arn=found.arn, name=physical, url=found.url)
        self._queues[physical] = ref
        self._queues_by_arn.setdefault(found.arn, ref)
        self.log.debug("Resolved queue %s -> %s", physical, ref.arn)
        return ref

    def queue_from_arn(self, arn: str) -> QueueRef:
        """QueueRef for a subscription endpoint; reuses the declared ref when known."""
        ref = self._queues_by_arn.get(arn)
        if ref is None:
            ref = QueueRef(arn=arn, name=name_from_arn(arn))
            self._queues_by_arn[arn] = ref
        return ref

    # ------------- Internal -------------

    def _load_topic_index(self) -> Dict[str, List[str]]:
        if self._topic_index is None:
            arns = self._call(lambda: list(self.backend.iter_topic_arns()), "list topics")
            index: Dict[str, List[str]] = {}
            for arn in arns:
                index.setdefault(name_from_arn(arn), []).append(arn)
            self._topic_index = index
            self.log.debug("Topic index loaded: %d topic(s)", len(arns))
        return self._topic_index

    def _call(self, fn, what: str, *, not_found_ok: bool = False):
        """Run `fn` under the retry policy; ResourceNotFound only escapes when `not_found_ok`."""
        try:
            result, _ = self.retry.run(fn, what=what, deadline=self.deadline, logger=self.log)
        except ResourceNotFound as e:
            if not_found_ok:
                raise
            raise BackendUnavailable(f"{what}: {e}") from e
        except (RetryExhausted, DeadlineExceeded) as e:
            raise BackendUnavailable(f"{what}: {e}") from e
        except BackendError as e:
            raise BackendUnavailable(f"{what}: {e}") from e
        return result
