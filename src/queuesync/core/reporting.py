"""
Reporting helpers (table or JSON) for plans and reconciliation reports.

`print_rows` keeps the columns that carry data and prints a compact table on
stdout. JSON output is also supported for machine consumption.
"""
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, TextIO

from .models import (
    ALREADY_ABSENT,
    CREATED,
    DELETED,
    FAILED,
    Create,
    Operation,
    ReconciliationPlan,
    ReconciliationReport,
)

PLANNED = "PLANNED"

_COLUMNS = ["action", "queue", "topic", "handle", "status", "attempts", "retries", "error_kind", "error"]
_MANDATORY = {"action", "queue", "topic", "status"}
_SUMMARY_KEYS = [CREATED, DELETED, ALREADY_ABSENT, FAILED]


def _base_row(op: Operation) -> Dict[str, Any]:
    return {
        "action": op.kind,
        "queue": op.queue.label,
        "topic": op.topic.label,
        "queue_arn": op.queue.arn,
        "topic_arn": op.topic.arn,
        "handle": "" if isinstance(op, Create) else op.handle,
    }


def plan_rows(plan: ReconciliationPlan) -> List[Dict[str, Any]]:
    rows = []
    for op in plan:
        row = _base_row(op)
        row["status"] = PLANNED
        rows.append(row)
    return rows


def report_rows(report: ReconciliationReport) -> List[Dict[str, Any]]:
    rows = []
    for outcome in report.outcomes:
        row = _base_row(outcome.operation)
        row.update(
            handle=outcome.handle or row["handle"],
            status=outcome.status,
            attempts=outcome.attempts,
            retries=outcome.retries,
            error_kind=outcome.error_kind,
            error=outcome.error,
        )
        rows.append(row)
    return rows


def summarize_counts(counts: Dict[str, int]) -> str:
    return " | ".join(f"{k}={counts.get(k, 0)}" for k in _SUMMARY_KEYS)


def plan_counts(plan: ReconciliationPlan) -> Dict[str, int]:
    return {"CREATE": len(plan.creates), "DELETE": len(plan.deletes)}


def print_rows(rows: List[Dict[str, Any]], fmt: str = "table", out: Optional[TextIO] = None) -> None:
    """Render rows as a table (default) or JSON."""
    if fmt == "json":
        print(json.dumps(rows, indent=2), file=out)
        return
    if not rows:
        print("(no changes)", file=out)
        return

    def _present(v: Any) -> bool:
        return not (v is None or v == "")

    cols = [c for c in _COLUMNS if c in _MANDATORY or any(_present(r.get(c)) for r in rows)]

    def _fmt(v: Any, col: str) -> str:
        s = "" if v is None else str(v)
        if col == "handle" and len(s) > 24:
            return f"…{s[-23:]}"
        if col == "error" and len(s) > 120:
            return s[:119] + "…"
        return s or "—"

    widths = {c: len(c) for c in cols}
    for r in rows:
        for c in cols:
            widths[c] = max(widths[c], len(_fmt(r.get(c), c)))

    print("| " + " | ".join(c.ljust(widths[c]) for c in cols) + " |", file=out)
    print("| " + " | ".join("-" * widths[c] for c in cols) + " |", file=out)
    for r in rows:
        print("| " + " | ".join(_fmt(r.get(c), c).ljust(widths[c]) for c in cols) + " |", file=out)
