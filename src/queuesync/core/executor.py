"""
Executor: applies a reconciliation plan and reports every outcome.

Lifecycle per run:
  deletes (parallel, bounded) -> creates (parallel, bounded) -> report

- Operation-level isolation: a failed operation never stops its siblings.
- Delete of a handle the backend no longer knows is a success (ALREADY_ABSENT).
- Transient errors are retried by the RetryPolicy; what is left after retries
  (or after the run deadline) is reported, not raised.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Dict, Optional, Sequence, Tuple

from .backend import BackendError, ResourceNotFound, SubscriptionBackend
from .models import (
    ALREADY_ABSENT,
    CREATED,
    DELETED,
    FAILED,
    Create,
    Delete,
    Operation,
    OperationOutcome,
    ReconciliationPlan,
    ReconciliationReport,
)
from .retry import Deadline, DeadlineExceeded, RetryExhausted, RetryPolicy


class ReportCollector:
    """Thread-safe accumulator; outcomes are keyed by plan position."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._outcomes: Dict[int, OperationOutcome] = {}

    def record(self, index: int, outcome: OperationOutcome) -> None:
        with self._lock:
            self._outcomes[index] = outcome

    def __len__(self) -> int:
        with self._lock:
            return len(self._outcomes)

    def build(self) -> ReconciliationReport:
        with self._lock:
            return ReconciliationReport(outcomes=tuple(self._outcomes[i] for i in sorted(self._outcomes)))


class Executor:
    def __init__(
        self,
        backend: SubscriptionBackend,
        *,
        retry: Optional[RetryPolicy] = None,
        concurrency: int = 4,
        deadline: Optional[Deadline] = None,
        logger: Optional[logging.LoggerAdapter] = None,
    ) -> None:
        self.backend = backend
        self.retry = retry or RetryPolicy()
        self.concurrency = max(1, int(concurrency))
        self.deadline = deadline
        self.log = logger or logging.getLogger("qs.executor")

    def apply(self, plan: ReconciliationPlan) -> ReconciliationReport:
        collector = ReportCollector()
        indexed = list(enumerate(plan.operations))
        deletes = [(i, op) for i, op in indexed if isinstance(op, Delete)]
        creates = [(i, op) for i, op in indexed if isinstance(op, Create)]

        # A pair that is both deleted and created is always deleted first.
        self._run_phase("delete", deletes, collector)
        self._run_phase("create", creates, collector)

        report = collector.build()
        self.log.info(
            "Apply finished: %d operation(s), %d failed",
            len(report.outcomes), len(report.failures),
        )
        return report

    # ------------- Internal -------------

    def _run_phase(self, phase: str, batch: Sequence[Tuple[int, Operation]], collector: ReportCollector) -> None:
        if not batch:
            return
        self.log.debug("Applying %d %s operation(s)", len(batch), phase)
        workers = min(self.concurrency, len(batch))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"qs-{phase}") as pool:
            futures = [pool.submit(self._execute_and_record, i, op, collector) for i, op in batch]
            wait(futures)
        # Surface programming errors from the worker wrapper itself.
        for fut in futures:
            fut.result()
        self.log.debug("%s phase done: %d outcome(s) recorded so far", phase.capitalize(), len(collector))

    def _execute_and_record(self, index: int, op: Operation, collector: ReportCollector) -> None:
        outcome = self._execute(op)
        collector.record(index, outcome)
        if outcome.ok:
            self.log.info("%s: %s (attempts=%d)", op.describe(), outcome.status, outcome.attempts)
        else:
            self.log.error(
                "%s: %s [%s] after %d attempt(s): %s",
                op.describe(), outcome.status, outcome.error_kind, outcome.attempts, outcome.error,
            )

    def _execute(self, op: Operation) -> OperationOutcome:
        try:
            if isinstance(op, Delete):
                _, attempts = self.retry.run(
                    lambda: self.backend.unsubscribe(op.handle),
                    what=op.describe(), deadline=self.deadline, logger=self.log,
                )
                return OperationOutcome(op, DELETED, attempts=attempts, handle=op.handle)

            handle, attempts = self.retry.run(
                lambda: self.backend.subscribe(op.topic.arn, op.protocol, op.queue.arn),
                what=op.describe(), deadline=self.deadline, logger=self.log,
            )
            return OperationOutcome(op, CREATED, attempts=attempts, handle=handle or "")

        except ResourceNotFound as e:
            if isinstance(op, Delete):
                return OperationOutcome(op, ALREADY_ABSENT, attempts=max(1, e.attempts), handle=op.handle)
            return self._failed(op, "permanent", e, max(1, e.attempts))
        except RetryExhausted as e:
            return self._failed(op, "transient", e.last_error, e.attempts)
        except DeadlineExceeded as e:
            reason = str(e) if e.attempts else "not attempted before the run deadline"
            return OperationOutcome(op, FAILED, attempts=e.attempts, error_kind="timeout", error=reason)
        except BackendError as e:
            return self._failed(op, "permanent", e, max(1, e.attempts))
        except Exception as e:
            self.log.exception("Unexpected error while applying %s", op.describe())
            return OperationOutcome(op, FAILED, attempts=1, error_kind="exception", error=str(e))

    @staticmethod
    def _failed(op: Operation, kind: str, err: BackendError, attempts: int) -> OperationOutcome:
        return OperationOutcome(op, FAILED, attempts=attempts, error_kind=kind, error=str(err))
