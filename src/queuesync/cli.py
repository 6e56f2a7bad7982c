"""
Command-line interface for queuesync.

Usage (examples):
  - Show the plan for a local file, no changes:
      qsync plan --yaml-file ./topology.yml --aws-region eu-west-1

  - Reconcile from the in-cluster ConfigMap:
      qsync apply --namespace orders --env-name production

  - Against LocalStack:
      qsync apply --json-file ./topology.json --env-name local --aws-region us-east-1
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Any, Dict, Iterable, Optional

from botocore.exceptions import BotoCoreError

from .core.aws_backend import AwsBackend
from .core.backend import SubscriptionBackend
from .core.config import AppConfig, load_config
from .core.errors import BackendUnavailable, ConfigError, QueueSyncError, ResolutionError
from .core.logging_setup import build_logger
from .core.naming import EnvName
from .core.reconciler import ReconciliationResult, reconcile
from .core.reporting import plan_counts, plan_rows, print_rows, report_rows, summarize_counts
from .core.retry import RetryPolicy
from .core.sources import load_topology

EXIT_OK = 0
EXIT_GENERIC_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_RESOLUTION_ERROR = 3
EXIT_BACKEND_ERROR = 4
EXIT_OPERATIONS_FAILED = 5


def _make_backend(cfg: AppConfig, env: EnvName, logger: logging.LoggerAdapter) -> SubscriptionBackend:
    try:
        return AwsBackend.from_settings(cfg.aws, env=env, logger=logger)
    except BotoCoreError as e:
        raise ConfigError(f"Cannot build AWS clients: {e}") from e


def _cli_overrides(args: argparse.Namespace, *, dry_run: bool) -> Dict[str, Any]:
    """Only flags given on the command line override lower layers."""
    mapping = {
        "app": {
            "concurrency": args.concurrency,
            "timeout_sec": args.timeout_sec,
        },
        "aws": {
            "region": args.aws_region,
            "endpoint_url": args.aws_endpoint,
            "access_key_id": args.aws_access_key_id,
            "secret_access_key": args.aws_secret_access_key,
            "role_arn": args.aws_role_arn,
            "profile": args.aws_profile,
        },
        "retry": {"max_attempts": args.max_attempts},
        "source": {
            "env_name": args.env_name,
            "json_file": args.json_file,
            "yaml_file": args.yaml_file,
            "json_data": args.json_data,
            "yaml_data": args.yaml_data,
            "namespace": args.namespace,
            "configmap": args.configmap,
            "kube_context": args.kube_context,
        },
        "logging": {
            "base_dir": args.logs_dir,
            "console_level": args.console_level,
            "file_level": args.file_level,
        },
    }
    out: Dict[str, Any] = {"app": {"dry_run": dry_run}}
    for section, values in mapping.items():
        given = {k: v for k, v in values.items() if v is not None}
        if given:
            out.setdefault(section, {}).update(given)
    return out


def _build_arg_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)

    src = common.add_argument_group("topology source (first match wins)")
    src.add_argument("--json-file", help="Topology JSON file")
    src.add_argument("--yaml-file", help="Topology YAML file")
    src.add_argument("--json-data", help="Topology as an inline JSON string")
    src.add_argument("--yaml-data", help="Topology as an inline YAML string")
    src.add_argument("--namespace", help="ConfigMap namespace (default: in-cluster namespace)")
    src.add_argument("--configmap", help="ConfigMap name (default: sns-sqs-config)")
    src.add_argument("--kube-context", help="kubeconfig context to use")
    src.add_argument("--env-name", help="Environment (local, qa, dev, prod); suffixes resource names")

    aws = common.add_argument_group("aws")
    aws.add_argument("--aws-region", help="AWS region")
    aws.add_argument("--aws-endpoint", help="Endpoint URL override (e.g. LocalStack)")
    aws.add_argument("--aws-role-arn", help="Role to assume before any call")
    aws.add_argument("--aws-access-key-id", help="Static access key id")
    aws.add_argument("--aws-secret-access-key", help="Static secret access key")
    aws.add_argument("--aws-profile", help="Named profile from the shared credentials file")

    run = common.add_argument_group("run")
    run.add_argument("--concurrency", type=int, help="Worker threads for listing and applying")
    run.add_argument("--timeout-sec", type=float, help="Deadline for the whole run (0 = none)")
    run.add_argument("--max-attempts", type=int, help="Attempts per backend call on transient errors")
    run.add_argument("--format", default="table", choices=["table", "json"], help="Output format")
    run.add_argument("--run-id", help="Run identifier used in logs")

    logs = common.add_argument_group("logging")
    logs.add_argument("--logs-dir", help="Logs base directory")
    logs.add_argument("--console-level", help="Console log level (INFO..CRITICAL)")
    logs.add_argument("--file-level", help="File log level (DEBUG..CRITICAL)")

    p = argparse.ArgumentParser(prog="qsync", description="Reconcile SNS topic -> SQS queue subscriptions")
    sub = p.add_subparsers(dest="cmd", required=True)
    sub.add_parser("plan", parents=[common], help="Show the operations an apply would run (no changes)")
    sub.add_parser("apply", parents=[common], help="Reconcile subscriptions with the declared topology")
    return p


def _render(result: ReconciliationResult, fmt: str, logger: logging.LoggerAdapter) -> int:
    if result.report is None:
        counts = plan_counts(result.plan)
        print_rows(plan_rows(result.plan), fmt)
        summary = " | ".join(f"{k}={v}" for k, v in counts.items())
        logger.info("Plan summary: %s", summary)
        if fmt != "json":
            print(summary)
        return EXIT_OK

    counts = result.report.counts
    print_rows(report_rows(result.report), fmt)
    summary = summarize_counts(counts)
    logger.info("Apply summary: %s", summary)
    if fmt != "json":
        print(summary)
    return EXIT_OK if result.succeeded else EXIT_OPERATIONS_FAILED


def _run(args: argparse.Namespace) -> int:
    dry_run = args.cmd == "plan"
    overrides = _cli_overrides(args, dry_run=dry_run)
    if args.run_id:
        overrides["app"]["run_id"] = args.run_id
    cfg = load_config(overrides)

    logger = build_logger(
        run_id=cfg.run_id,
        action=args.cmd,
        base_dir=cfg.logging.base_dir,
        console_level=cfg.logging.console_level,
        file_level=cfg.logging.file_level,
        extra={"env": cfg.source.env_name, "region": cfg.aws.region},
    )
    logger.info("Starting qsync %s (dry_run=%s)", args.cmd, cfg.app.dry_run)

    try:
        topology = load_topology(cfg.source, logger=logger)
        backend = SubscriptionBackend() if topology.is_empty else _make_backend(cfg, topology.env, logger)
        result = reconcile(
            topology,
            backend,
            dry_run=cfg.app.dry_run,
            concurrency=cfg.app.concurrency,
            retry=RetryPolicy(
                max_attempts=cfg.retry.max_attempts,
                backoff_base_sec=cfg.retry.backoff_base_sec,
                backoff_max_sec=cfg.retry.backoff_max_sec,
            ),
            timeout_sec=cfg.app.timeout_sec,
            logger=logger,
        )
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return EXIT_CONFIG_ERROR
    except ResolutionError as e:
        logger.error("Resolution error: %s", e)
        return EXIT_RESOLUTION_ERROR
    except BackendUnavailable as e:
        logger.error("Backend unavailable: %s", e)
        return EXIT_BACKEND_ERROR

    return _render(result, args.format, logger)


def main(argv: Optional[Iterable[str]] = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    try:
        return _run(args)
    except ConfigError as e:
        # Raised before the logger exists (bad config file / env values).
        print(f"qsync: configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except QueueSyncError as e:
        print(f"qsync: {e}", file=sys.stderr)
        return EXIT_GENERIC_ERROR
    except Exception as e:  # pragma: no cover (unexpected)
        logging.getLogger("qs").exception("Unexpected error")
        print(f"qsync: unexpected error: {e}", file=sys.stderr)
        return EXIT_GENERIC_ERROR


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
