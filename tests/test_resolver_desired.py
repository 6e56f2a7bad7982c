import pytest

from fake_backend import ACCOUNT, FakeBackend, queue_arn, topic_arn

from queuesync.core.backend import ResourceNotFound, TransientBackendError
from queuesync.core.desired import build_desired_state, check_declaration
from queuesync.core.errors import Ambiguous, BackendUnavailable, ConfigConflict, NotFound
from queuesync.core.models import DesiredEdge, QueueRef, TopicRef
from queuesync.core.naming import EnvName
from queuesync.core.resolver import IdentifierResolver
from queuesync.core.retry import Deadline, RetryPolicy
from queuesync.core.topology import Topology


def _policy(attempts=3):
    return RetryPolicy(max_attempts=attempts, backoff_base_sec=0.0, sleep=lambda s: None)


def _resolver(backend, env=EnvName.UNKNOWN, attempts=3):
    return IdentifierResolver(backend, env=env, retry=_policy(attempts))


# ---------- resolver ----------

def test_resolving_twice_returns_cached_object():
    backend = FakeBackend(topics=["orders-created"], queues=["orders-queue"])
    r = _resolver(backend)

    q1 = r.resolve_queue("orders-queue")
    q2 = r.resolve_queue("orders-queue")
    t1 = r.resolve_topic("orders-created")
    t2 = r.resolve_topic("orders-created")

    assert q1 is q2 and t1 is t2
    assert q1.arn == queue_arn("orders-queue")
    assert t1.arn == topic_arn("orders-created")
    assert backend.calls_to("lookup_queue") == ["orders-queue"]
    assert len(backend.calls_to("list_topics")) == 1


def test_topic_index_is_loaded_once_for_many_topics():
    backend = FakeBackend(topics=["a", "b", "c"])
    r = _resolver(backend)
    for name in ("a", "b", "c", "a"):
        r.resolve_topic(name)
    assert len(backend.calls_to("list_topics")) == 1


def test_not_found():
    backend = FakeBackend(topics=["a"], queues=["q"])
    r = _resolver(backend)
    with pytest.raises(NotFound) as e:
        r.resolve_topic("missing")
    assert e.value.kind == "topic" and e.value.name == "missing"
    with pytest.raises(NotFound) as e:
        r.resolve_queue("nope")
    assert e.value.kind == "queue"


def test_ambiguous_topic():
    backend = FakeBackend()
    backend.add_topic("shared")
    backend.add_topic("shared", account="999999999999")
    with pytest.raises(Ambiguous) as e:
        _resolver(backend).resolve_topic("shared")
    assert "2 ARNs" in str(e.value)


def test_env_suffixes_are_applied():
    backend = FakeBackend(topics=["orders-prod"], queues=["orders-production"])
    r = _resolver(backend, env=EnvName.PROD)
    assert r.resolve_topic("orders").name == "orders-prod"
    assert r.resolve_queue("orders").name == "orders-production"


def test_transient_errors_are_retried_then_surface_as_unavailable():
    backend = FakeBackend(queues=["q"])
    backend.fail("lookup_queue", TransientBackendError("sqs:GetQueueUrl", "Throttling"))
    assert _resolver(backend).resolve_queue("q").arn == queue_arn("q")

    backend = FakeBackend(queues=["q"])
    backend.fail("lookup_queue", *[TransientBackendError("sqs:GetQueueUrl", "Throttling")] * 3)
    with pytest.raises(BackendUnavailable):
        _resolver(backend, attempts=3).resolve_queue("q")
    assert len(backend.calls_to("lookup_queue")) == 3


def _expired_deadline():
    ticks = iter([0.0])
    return Deadline(5, clock=lambda: next(ticks, 100.0))


def test_resolution_after_the_deadline_is_unavailable():
    backend = FakeBackend(topics=["t"], queues=["q"])
    r = IdentifierResolver(backend, retry=_policy(), deadline=_expired_deadline())

    with pytest.raises(BackendUnavailable) as e:
        r.resolve_topic("t")
    assert "deadline exceeded" in str(e.value)
    with pytest.raises(BackendUnavailable):
        r.resolve_queue("q")
    assert backend.calls == []


def test_not_found_while_listing_topics_is_unavailable():
    backend = FakeBackend(topics=["t"])
    backend.fail("list_topics", ResourceNotFound("sns:ListTopics", "NotFound", "gone"), key="")

    with pytest.raises(BackendUnavailable) as e:
        _resolver(backend).resolve_topic("t")
    assert "list topics" in str(e.value)


def test_queue_from_arn_reuses_declared_ref():
    backend = FakeBackend(queues=["q"])
    r = _resolver(backend)
    declared = r.resolve_queue("q")
    assert r.queue_from_arn(queue_arn("q")) is declared
    other = r.queue_from_arn(f"arn:aws:sqs:us-east-1:{ACCOUNT}:elsewhere")
    assert other.label == "elsewhere"
    assert r.queue_from_arn(other.arn) is other


# ---------- desired state ----------

def test_desired_state_edges_and_unsubscribed():
    backend = FakeBackend(topics=["orders-created", "orders-cancelled", "legacy-topic"], queues=["orders-queue"])
    topo = Topology.from_yaml(
        "orders-queue:\n  topics: [orders-created, orders-cancelled]\n"
        "unsubscribed:\n  topics: [legacy-topic]\n"
    )
    state = build_desired_state(topo, _resolver(backend))

    q = QueueRef(queue_arn("orders-queue"))
    assert state.edges == {
        DesiredEdge(q, TopicRef(topic_arn("orders-created"))),
        DesiredEdge(q, TopicRef(topic_arn("orders-cancelled"))),
    }
    assert state.unsubscribed == {TopicRef(topic_arn("legacy-topic"))}
    assert TopicRef(topic_arn("legacy-topic")) in state.in_scope_topics
    assert {e.queue for e in state.edges} == {q}


def test_conflict_is_reported_before_any_backend_call():
    backend = FakeBackend(topics=["t"], queues=["q"])
    topo = Topology.from_yaml("q:\n  topics: [t]\nunsubscribed:\n  topics: [t]\n")
    with pytest.raises(ConfigConflict) as e:
        build_desired_state(topo, _resolver(backend))
    assert "t (queue q)" in str(e.value)
    assert backend.calls == []


def test_repeated_queue_is_a_conflict():
    topo = Topology.from_json('{"q": {"topics": ["a"]}, "q": {"topics": ["b"]}}')
    with pytest.raises(ConfigConflict):
        check_declaration(topo)


def test_two_names_for_one_queue_is_a_conflict():
    backend = FakeBackend(topics=["t"])
    arn = backend.add_queue("q")
    backend.add_queue("q-alias", arn=arn)
    topo = Topology.from_yaml("q:\n  topics: [t]\nq-alias:\n  topics: [t]\n")
    with pytest.raises(ConfigConflict):
        build_desired_state(topo, _resolver(backend))


def test_resolution_error_names_the_declaration():
    backend = FakeBackend(topics=["t"], queues=["q"])
    topo = Topology.from_yaml("q:\n  topics: [t, ghost]\n")
    with pytest.raises(NotFound) as e:
        build_desired_state(topo, _resolver(backend))
    assert e.value.name == "ghost"
    assert "under queue 'q'" in str(e.value)
