import boto3
import pytest
from botocore.exceptions import ClientError, EndpointConnectionError
from botocore.stub import Stubber

from queuesync.core.aws_backend import LOCALSTACK_ENDPOINT, AwsBackend, translate_error
from queuesync.core.backend import PermanentBackendError, ResourceNotFound, TransientBackendError
from queuesync.core.config import AwsSection
from queuesync.core.executor import Executor
from queuesync.core.models import CREATED, Create, QueueRef, ReconciliationPlan, TopicRef
from queuesync.core.naming import EnvName
from queuesync.core.retry import RetryPolicy

REGION = "us-east-1"
T_ARN = "arn:aws:sns:us-east-1:123456789012:orders-created"
Q_ARN = "arn:aws:sqs:us-east-1:123456789012:orders-queue"
Q_URL = "https://sqs.us-east-1.amazonaws.com/123456789012/orders-queue"


def _session():
    return boto3.session.Session(
        region_name=REGION, aws_access_key_id="testing", aws_secret_access_key="testing"
    )


@pytest.fixture
def stubbed():
    session = _session()
    backend = AwsBackend(session.client("sns"), session.client("sqs"))
    sns, sqs = Stubber(backend.sns), Stubber(backend.sqs)
    sns.activate()
    sqs.activate()
    yield backend, sns, sqs
    sns.deactivate()
    sqs.deactivate()


def test_iter_topic_arns_follows_next_token(stubbed):
    backend, sns, _ = stubbed
    other = "arn:aws:sns:us-east-1:123456789012:other"
    sns.add_response("list_topics", {"Topics": [{"TopicArn": T_ARN}], "NextToken": "p2"}, {})
    sns.add_response("list_topics", {"Topics": [{"TopicArn": other}]}, {"NextToken": "p2"})

    assert list(backend.iter_topic_arns()) == [T_ARN, other]
    sns.assert_no_pending_responses()


def test_lookup_queue(stubbed):
    backend, _, sqs = stubbed
    sqs.add_response("get_queue_url", {"QueueUrl": Q_URL}, {"QueueName": "orders-queue"})
    sqs.add_response(
        "get_queue_attributes",
        {"Attributes": {"QueueArn": Q_ARN}},
        {"QueueUrl": Q_URL, "AttributeNames": ["QueueArn"]},
    )

    found = backend.lookup_queue("orders-queue")

    assert (found.name, found.url, found.arn) == ("orders-queue", Q_URL, Q_ARN)


def test_lookup_missing_queue_is_resource_not_found(stubbed):
    backend, _, sqs = stubbed
    sqs.add_client_error(
        "get_queue_url",
        service_error_code="AWS.SimpleQueueService.NonExistentQueue",
        service_message="The specified queue does not exist.",
        http_status_code=400,
    )
    with pytest.raises(ResourceNotFound):
        backend.lookup_queue("ghost")


def test_list_subscriptions_page(stubbed):
    backend, sns, _ = stubbed
    handle = f"{T_ARN}:6b0e71bd-7e97-4d97-80ce-4a0994e55286"
    sns.add_response(
        "list_subscriptions_by_topic",
        {
            "Subscriptions": [
                {"SubscriptionArn": handle, "Owner": "123456789012", "Protocol": "sqs",
                 "Endpoint": Q_ARN, "TopicArn": T_ARN},
                {"SubscriptionArn": "PendingConfirmation", "Owner": "123456789012", "Protocol": "email",
                 "Endpoint": "ops@example.com", "TopicArn": T_ARN},
            ],
            "NextToken": "next",
        },
        {"TopicArn": T_ARN, "NextToken": "prev"},
    )

    page = backend.list_subscriptions(T_ARN, "prev")

    assert page.next_token == "next"
    assert [(r.handle, r.protocol, r.endpoint) for r in page.records] == [
        (handle, "sqs", Q_ARN),
        ("PendingConfirmation", "email", "ops@example.com"),
    ]


def test_subscribe_and_unsubscribe(stubbed):
    backend, sns, _ = stubbed
    handle = f"{T_ARN}:11111111-2222-3333-4444-555555555555"
    sns.add_response(
        "subscribe",
        {"SubscriptionArn": handle},
        {"TopicArn": T_ARN, "Protocol": "sqs", "Endpoint": Q_ARN, "ReturnSubscriptionArn": True},
    )
    sns.add_response("unsubscribe", {}, {"SubscriptionArn": handle})
    sns.add_client_error("unsubscribe", service_error_code="NotFound", http_status_code=404)

    assert backend.subscribe(T_ARN, "sqs", Q_ARN) == handle
    backend.unsubscribe(handle)
    with pytest.raises(ResourceNotFound):
        backend.unsubscribe(handle)


def test_throttling_is_transient(stubbed):
    backend, sns, _ = stubbed
    sns.add_client_error("subscribe", service_error_code="Throttling", http_status_code=400)
    with pytest.raises(TransientBackendError) as e:
        backend.subscribe(T_ARN, "sqs", Q_ARN)
    assert e.value.operation == "sns:Subscribe" and e.value.code == "Throttling"


def test_sns_throttled_subscribe_is_retried_by_the_executor(stubbed):
    backend, sns, _ = stubbed
    handle = T_ARN + ":1111"
    sns.add_client_error("subscribe", service_error_code="Throttled", http_status_code=429)
    sns.add_response(
        "subscribe",
        {"SubscriptionArn": handle},
        {"TopicArn": T_ARN, "Protocol": "sqs", "Endpoint": Q_ARN, "ReturnSubscriptionArn": True},
    )
    op = Create(QueueRef(Q_ARN, "orders-queue"), TopicRef(T_ARN, "orders-created"))
    policy = RetryPolicy(max_attempts=3, backoff_base_sec=0.1, sleep=lambda _: None)

    report = Executor(backend, retry=policy, concurrency=1).apply(ReconciliationPlan((op,)))

    outcome = report.outcomes[0]
    assert outcome.status == CREATED
    assert outcome.attempts == 2 and outcome.handle == handle
    sns.assert_no_pending_responses()


@pytest.mark.parametrize("code,status,expected", [
    ("InternalError", 500, TransientBackendError),
    ("Whatever", 503, TransientBackendError),
    ("ThrottlingException", 400, TransientBackendError),
    ("Throttled", 429, TransientBackendError),
    ("RequestThrottled", 403, TransientBackendError),
    ("AWS.SimpleQueueService.RequestThrottled", 403, TransientBackendError),
    ("KMSThrottling", 400, TransientBackendError),
    ("KmsThrottled", 400, TransientBackendError),
    ("SomethingNew", 429, TransientBackendError),
    ("AuthorizationError", 403, PermanentBackendError),
    ("InvalidParameter", 400, PermanentBackendError),
    ("QueueDoesNotExist", 400, ResourceNotFound),
    ("NotFound", 404, ResourceNotFound),
])
def test_translate_client_errors(code, status, expected):
    err = ClientError(
        {"Error": {"Code": code, "Message": "m"}, "ResponseMetadata": {"HTTPStatusCode": status}},
        "Subscribe",
    )
    translated = translate_error("sns:Subscribe", err)
    assert type(translated) is expected


def test_translate_network_errors():
    translated = translate_error("sns:ListTopics", EndpointConnectionError(endpoint_url="http://x"))
    assert isinstance(translated, TransientBackendError)


def test_from_settings_local_env_uses_localstack():
    backend = AwsBackend.from_settings(AwsSection(region=REGION), env=EnvName.LOCAL, session=_session())
    assert backend.sns.meta.endpoint_url == LOCALSTACK_ENDPOINT
    assert backend.sqs.meta.endpoint_url == LOCALSTACK_ENDPOINT
    assert backend.sns.meta.config.retries["max_attempts"] == 1


def test_from_settings_explicit_endpoint_wins():
    backend = AwsBackend.from_settings(
        AwsSection(region=REGION, endpoint_url="http://localhost:4566"), env=EnvName.LOCAL, session=_session()
    )
    assert backend.sns.meta.endpoint_url == "http://localhost:4566"
