"""
AWS implementation of SubscriptionBackend (SNS topics -> SQS queues) over boto3.

- botocore's own retries are disabled (max_attempts=1); RetryPolicy owns retries.
- Error mapping:
    throttling codes, 5xx, connect/read timeouts  -> TransientBackendError
    NotFound / NonExistentQueue / QueueDoesNotExist -> ResourceNotFound
    anything else                                   -> PermanentBackendError
- Endpoint override for LocalStack; `http://aws.localstack` when the
  environment is `local` and no endpoint is configured.
- Optional role assumption through STS.

Usage:
    backend = AwsBackend.from_settings(cfg.aws, env=EnvName.PROD)
    backend.lookup_queue("orders-production")
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Callable, Dict, Iterator, Optional, TypeVar

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from .backend import (
    BackendError,
    PermanentBackendError,
    QueueLookup,
    ResourceNotFound,
    SubscriptionBackend,
    SubscriptionPage,
    SubscriptionRecord,
    TransientBackendError,
)
from .config import AwsSection
from .errors import BackendUnavailable
from .naming import EnvName

T = TypeVar("T")

LOCALSTACK_ENDPOINT = "http://aws.localstack"

TRANSIENT_CODES = frozenset({
    "Throttling",
    "Throttled",
    "RequestThrottled",
    "AWS.SimpleQueueService.RequestThrottled",
    "KMSThrottling",
    "KmsThrottled",
    "ThrottlingException",
    "ThrottledException",
    "RequestLimitExceeded",
    "TooManyRequestsException",
    "InternalError",
    "InternalFailure",
    "ServiceUnavailable",
    "RequestTimeout",
})

NOT_FOUND_CODES = frozenset({
    "NotFound",
    "NotFoundException",
    "AWS.SimpleQueueService.NonExistentQueue",
    "QueueDoesNotExist",
})

_NETWORK_ERRORS = (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError, ConnectionClosedError)


def client_config() -> Config:
    return Config(retries={"max_attempts": 1, "mode": "standard"}, connect_timeout=10, read_timeout=30)


def translate_error(operation: str, err: Exception) -> BackendError:
    """Map a botocore exception onto the backend error classes."""
    if isinstance(err, ClientError):
        info = err.response.get("Error", {}) or {}
        code = str(info.get("Code", ""))
        message = str(info.get("Message", "")) or str(err)
        status = int((err.response.get("ResponseMetadata", {}) or {}).get("HTTPStatusCode", 0) or 0)
        if code in NOT_FOUND_CODES:
            return ResourceNotFound(operation, code, message)
        if code in TRANSIENT_CODES or status == 429 or status >= 500:
            return TransientBackendError(operation, code or str(status), message)
        return PermanentBackendError(operation, code, message)
    if isinstance(err, _NETWORK_ERRORS):
        return TransientBackendError(operation, type(err).__name__, str(err))
    return PermanentBackendError(operation, type(err).__name__, str(err))


class AwsBackend(SubscriptionBackend):
    """SNS/SQS backend. boto3 clients are thread-safe; the instance is shared by workers."""

    queue_protocol = "sqs"

    def __init__(self, sns: Any, sqs: Any, *, logger: Optional[logging.LoggerAdapter] = None) -> None:
        self.sns = sns
        self.sqs = sqs
        self.log = logger or logging.getLogger("qs.aws")

    @classmethod
    def from_settings(
        cls,
        aws: AwsSection,
        *,
        env: EnvName = EnvName.UNKNOWN,
        session: Optional[boto3.session.Session] = None,
        logger: Optional[logging.LoggerAdapter] = None,
    ) -> "AwsBackend":
        log = logger or logging.getLogger("qs.aws")
        endpoint = aws.endpoint_url or (LOCALSTACK_ENDPOINT if env.is_local else "")
        client_kwargs: Dict[str, Any] = {"config": client_config()}
        if endpoint:
            client_kwargs["endpoint_url"] = endpoint

        session = session or boto3.session.Session(
            profile_name=aws.profile or None,
            region_name=aws.region or None,
            aws_access_key_id=aws.access_key_id or None,
            aws_secret_access_key=aws.secret_access_key or None,
        )
        if aws.role_arn:
            session = _assume_role(session, aws.role_arn, client_kwargs, log)

        log.debug(
            "AWS clients: region=%s endpoint=%s role=%s",
            session.region_name or "-", endpoint or "-", aws.role_arn or "-",
        )
        return cls(
            session.client("sns", **client_kwargs),
            session.client("sqs", **client_kwargs),
            logger=log,
        )

    # ------------- SubscriptionBackend -------------

    def iter_topic_arns(self) -> Iterator[str]:
        token: Optional[str] = None
        while True:
            kwargs = {"NextToken": token} if token else {}
            resp = self._call("sns:ListTopics", lambda: self.sns.list_topics(**kwargs))
            for topic in resp.get("Topics", []):
                yield topic["TopicArn"]
            token = resp.get("NextToken")
            if not token:
                return

    def lookup_queue(self, name: str) -> QueueLookup:
        url = self._call("sqs:GetQueueUrl", lambda: self.sqs.get_queue_url(QueueName=name))["QueueUrl"]
        attrs = self._call(
            "sqs:GetQueueAttributes",
            lambda: self.sqs.get_queue_attributes(QueueUrl=url, AttributeNames=["QueueArn"]),
        )
        return QueueLookup(name=name, url=url, arn=attrs["Attributes"]["QueueArn"])

    def list_subscriptions(self, topic_arn: str, next_token: Optional[str] = None) -> SubscriptionPage:
        kwargs: Dict[str, Any] = {"TopicArn": topic_arn}
        if next_token:
            kwargs["NextToken"] = next_token
        resp = self._call(
            "sns:ListSubscriptionsByTopic",
            lambda: self.sns.list_subscriptions_by_topic(**kwargs),
        )
        records = [
            SubscriptionRecord(
                topic_arn=s.get("TopicArn", topic_arn),
                handle=s["SubscriptionArn"],
                protocol=s.get("Protocol", ""),
                endpoint=s.get("Endpoint", ""),
            )
            for s in resp.get("Subscriptions", [])
        ]
        return SubscriptionPage(records=records, next_token=resp.get("NextToken") or None)

    def subscribe(self, topic_arn: str, protocol: str, endpoint: str) -> str:
        resp = self._call(
            "sns:Subscribe",
            lambda: self.sns.subscribe(
                TopicArn=topic_arn, Protocol=protocol, Endpoint=endpoint, ReturnSubscriptionArn=True
            ),
        )
        return resp.get("SubscriptionArn", "")

    def unsubscribe(self, handle: str) -> None:
        self._call("sns:Unsubscribe", lambda: self.sns.unsubscribe(SubscriptionArn=handle))

    # ------------- Internal -------------

    def _call(self, operation: str, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except (ClientError, BotoCoreError) as e:
            err = translate_error(operation, e)
            self.log.debug("%s failed: %s", operation, err)
            raise err from e


def _assume_role(
    session: boto3.session.Session,
    role_arn: str,
    client_kwargs: Dict[str, Any],
    log: logging.LoggerAdapter,
) -> boto3.session.Session:
    sts = session.client("sts", **client_kwargs)
    try:
        creds = sts.assume_role(
            RoleArn=role_arn, RoleSessionName=f"queuesync-{uuid.uuid4().hex[:12]}"
        )["Credentials"]
    except (ClientError, BotoCoreError) as e:
        raise BackendUnavailable(f"Cannot assume role {role_arn}: {translate_error('sts:AssumeRole', e)}") from e
    log.info("Assumed role %s", role_arn)
    return boto3.session.Session(
        region_name=session.region_name,
        aws_access_key_id=creds["AccessKeyId"],
        aws_secret_access_key=creds["SecretAccessKey"],
        aws_session_token=creds["SessionToken"],
    )
