"""
Desired state builder.

Validates the declaration by name first (no backend call can happen before a
conflict is reported), then resolves every queue and topic.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Set, Tuple, TypeVar

from .errors import ConfigConflict, ResolutionError
from .models import DesiredEdge, DesiredState, QueueRef, TopicRef
from .resolver import IdentifierResolver
from .topology import UNSUBSCRIBED, Topology

R = TypeVar("R")


def check_declaration(topology: Topology) -> None:
    """Name-level invariants. Raises ConfigConflict."""
    seen: Set[str] = set()
    repeated: List[str] = []
    for queue, _ in topology.queues:
        if queue in seen and queue not in repeated:
            repeated.append(queue)
        seen.add(queue)
    if repeated:
        raise ConfigConflict(f"Queue(s) declared more than once: {', '.join(repeated)}")

    unsubscribed = set(topology.unsubscribed)
    clashes: List[Tuple[str, str]] = sorted(
        (topic, queue)
        for queue, topics in topology.queues
        for topic in topics
        if topic in unsubscribed
    )
    if clashes:
        detail = ", ".join(f"{t} (queue {q})" for t, q in clashes)
        raise ConfigConflict(f"Topic(s) both subscribed and listed under '{UNSUBSCRIBED}': {detail}")


def _resolve(fn: Callable[[str], R], name: str, where: str) -> R:
    try:
        return fn(name)
    except ResolutionError as e:
        raise type(e)(f"{e} (declared {where})", name=name, kind=e.kind) from e


def build_desired_state(
    topology: Topology,
    resolver: IdentifierResolver,
    *,
    logger: Optional[logging.LoggerAdapter] = None,
) -> DesiredState:
    log = logger or logging.getLogger("qs.desired")
    check_declaration(topology)

    edges: Set[DesiredEdge] = set()
    owners: Dict[QueueRef, str] = {}
    for queue_name, topics in topology.queues:
        queue = _resolve(resolver.resolve_queue, queue_name, f"as queue '{queue_name}'")
        previous = owners.get(queue)
        if previous is not None:
            raise ConfigConflict(
                f"Queues '{previous}' and '{queue_name}' resolve to the same queue {queue.arn}"
            )
        owners[queue] = queue_name
        for topic_name in topics:
            topic = _resolve(resolver.resolve_topic, topic_name, f"under queue '{queue_name}'")
            edges.add(DesiredEdge(queue=queue, topic=topic))

    unsubscribed: Set[TopicRef] = {
        _resolve(resolver.resolve_topic, name, f"under '{UNSUBSCRIBED}'")
        for name in topology.unsubscribed
    }

    clash = sorted(t.label for t in {e.topic for e in edges} & unsubscribed)
    if clash:
        raise ConfigConflict(f"Topic(s) both subscribed and listed under '{UNSUBSCRIBED}': {', '.join(clash)}")

    state = DesiredState(edges=frozenset(edges), unsubscribed=frozenset(unsubscribed))
    log.info(
        "Desired state: %d queue(s), %d edge(s), %d unsubscribed topic(s)",
        len(owners), len(state.edges), len(state.unsubscribed),
    )
    return state
