"""
Diff engine: desired vs actual -> ordered reconciliation plan.

- create: desired pairs not present (pending subscriptions count as present),
  never for a topic in the unsubscribed bucket
- delete: (a) live pairs on in-scope topics that are not desired, plus
  (b) every live pair on an unsubscribed topic, computed on its own so the
  bucket wins even if the desired state contradicts it
- deletes first, then creates; each group sorted by queue, topic, handle

Pure: no backend access, inputs are not modified.
"""

from __future__ import annotations

from typing import Dict, List, Set

from .models import ActualSnapshot, Create, Delete, DesiredState, Operation, ReconciliationPlan


def diff(desired: DesiredState, actual: ActualSnapshot) -> ReconciliationPlan:
    wanted = desired.pairs()
    scope = desired.in_scope_topics
    present = actual.pairs() | frozenset(e.pair for e in actual.pending)

    deletes: Dict[str, Delete] = {}
    for edge in actual.edges:
        if edge.topic in scope and edge.pair not in wanted:
            deletes[edge.handle] = Delete(handle=edge.handle, queue=edge.queue, topic=edge.topic)

    for edge in actual.edges:
        if edge.topic in desired.unsubscribed:
            deletes.setdefault(edge.handle, Delete(handle=edge.handle, queue=edge.queue, topic=edge.topic))

    creates: Set[Create] = {
        Create(queue=edge.queue, topic=edge.topic, protocol=edge.endpoint.protocol)
        for edge in desired.edges
        if edge.pair not in present and edge.topic not in desired.unsubscribed
    }

    ops: List[Operation] = []
    ops.extend(sorted(deletes.values(), key=lambda op: op.sort_key))
    ops.extend(sorted(creates, key=lambda op: op.sort_key))
    return ReconciliationPlan(operations=tuple(ops))
