"""
Reconciler: orchestrates one invocation.

  check declaration -> resolve desired -> snapshot in-scope topics -> diff -> apply

`dry_run=True` stops after the diff and returns the plan without a report.
An empty topology is a no-op and never touches the backend.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .backend import SubscriptionBackend
from .desired import build_desired_state, check_declaration
from .diff import diff
from .executor import Executor
from .models import ActualSnapshot, DesiredState, ReconciliationPlan, ReconciliationReport
from .resolver import IdentifierResolver
from .retry import Deadline, RetryPolicy
from .snapshot import build_actual_snapshot
from .topology import Topology


@dataclass(frozen=True)
class ReconciliationResult:
    topology: Topology
    desired: DesiredState
    snapshot: ActualSnapshot
    plan: ReconciliationPlan
    report: Optional[ReconciliationReport] = None

    @property
    def applied(self) -> bool:
        return self.report is not None

    @property
    def succeeded(self) -> bool:
        return self.report is None or self.report.succeeded


def reconcile(
    topology: Topology,
    backend: SubscriptionBackend,
    *,
    dry_run: bool = False,
    concurrency: int = 4,
    retry: Optional[RetryPolicy] = None,
    timeout_sec: float = 0,
    deadline: Optional[Deadline] = None,
    logger: Optional[logging.LoggerAdapter] = None,
) -> ReconciliationResult:
    """
    Run one reconciliation pass.

    Raises ConfigConflict / ResolutionError / BackendUnavailable for fatal
    problems; per-operation failures are only reported.
    """
    log = logger or logging.getLogger("qs.reconciler")

    # Before any backend call.
    check_declaration(topology)

    if topology.is_empty:
        log.warning("Topology from %s is empty; nothing to reconcile", topology.source or "-")
        empty_plan = ReconciliationPlan()
        return ReconciliationResult(
            topology=topology,
            desired=DesiredState(),
            snapshot=ActualSnapshot(),
            plan=empty_plan,
            report=None if dry_run else ReconciliationReport(),
        )

    policy = retry or RetryPolicy()
    budget = deadline or Deadline(timeout_sec)

    resolver = IdentifierResolver(backend, env=topology.env, retry=policy, deadline=budget, logger=log)
    desired = build_desired_state(topology, resolver, logger=log)
    snapshot = build_actual_snapshot(
        desired.in_scope_topics, resolver, retry=policy, concurrency=concurrency, deadline=budget, logger=log
    )
    plan = diff(desired, snapshot)
    if plan.is_empty:
        log.info("Plan: already in sync, nothing to change")
    else:
        log.info("Plan: %d delete(s), %d create(s)", len(plan.deletes), len(plan.creates))

    if dry_run:
        log.info("Dry run: no changes applied")
        return ReconciliationResult(topology, desired, snapshot, plan)

    executor = Executor(backend, retry=policy, concurrency=concurrency, deadline=budget, logger=log)
    report = executor.apply(plan)
    return ReconciliationResult(topology, desired, snapshot, plan, report)
