"""In-memory SNS/SQS stand-in used by the tests."""

import itertools
import threading
from typing import Dict, List, Optional, Tuple

from queuesync.core.backend import (
    QueueLookup,
    ResourceNotFound,
    SubscriptionBackend,
    SubscriptionPage,
    SubscriptionRecord,
)

REGION = "us-east-1"
ACCOUNT = "123456789012"


def topic_arn(name: str, account: str = ACCOUNT) -> str:
    return f"arn:aws:sns:{REGION}:{account}:{name}"


def queue_arn(name: str, account: str = ACCOUNT) -> str:
    return f"arn:aws:sqs:{REGION}:{account}:{name}"


class FakeBackend(SubscriptionBackend):
    def __init__(self, topics=(), queues=(), page_size: int = 100) -> None:
        self.page_size = page_size
        self.topic_arns: List[str] = []
        self.queues: Dict[str, str] = {}
        self.subs: Dict[str, SubscriptionRecord] = {}
        self.calls: List[Tuple[str, str]] = []
        self._failures: Dict[Tuple[str, Optional[str]], List[Exception]] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        for t in topics:
            self.add_topic(t)
        for q in queues:
            self.add_queue(q)

    # ----- setup helpers -----

    def add_topic(self, name: str, account: str = ACCOUNT) -> str:
        arn = topic_arn(name, account)
        self.topic_arns.append(arn)
        return arn

    def add_queue(self, name: str, arn: Optional[str] = None) -> str:
        self.queues[name] = arn or queue_arn(name)
        return self.queues[name]

    def add_subscription(self, topic: str, endpoint: str, protocol: str = "sqs", handle: Optional[str] = None) -> str:
        t_arn = topic if topic.startswith("arn:") else topic_arn(topic)
        if protocol == "sqs" and not endpoint.startswith("arn:"):
            endpoint = queue_arn(endpoint)
        handle = handle or f"{t_arn}:sub-{next(self._ids)}"
        self.subs[handle] = SubscriptionRecord(t_arn, handle, protocol, endpoint)
        return handle

    def fail(self, method: str, *errors: Exception, key: Optional[str] = None) -> None:
        """Queue errors raised by the next calls of `method` (optionally only for one key)."""
        self._failures.setdefault((method, key), []).extend(errors)

    def queue_pairs(self):
        return {(r.endpoint, r.topic_arn) for r in self.subs.values() if r.protocol == "sqs"}

    def calls_to(self, method: str) -> List[str]:
        return [arg for m, arg in self.calls if m == method]

    # ----- internals -----

    def _enter(self, method: str, key: str) -> None:
        with self._lock:
            self.calls.append((method, key))
            for k in ((method, key), (method, None)):
                queued = self._failures.get(k)
                if queued:
                    raise queued.pop(0)

    # ----- SubscriptionBackend -----

    def iter_topic_arns(self):
        self._enter("list_topics", "")
        return iter(list(self.topic_arns))

    def lookup_queue(self, name: str) -> QueueLookup:
        self._enter("lookup_queue", name)
        arn = self.queues.get(name)
        if arn is None:
            raise ResourceNotFound("sqs:GetQueueUrl", "AWS.SimpleQueueService.NonExistentQueue", name)
        return QueueLookup(name=name, url=f"https://sqs.{REGION}.amazonaws.com/{ACCOUNT}/{name}", arn=arn)

    def list_subscriptions(self, topic_arn: str, next_token: Optional[str] = None) -> SubscriptionPage:
        self._enter("list_subscriptions", topic_arn)
        if topic_arn not in self.topic_arns:
            raise ResourceNotFound("sns:ListSubscriptionsByTopic", "NotFound", topic_arn)
        with self._lock:
            records = [r for r in self.subs.values() if r.topic_arn == topic_arn]
        start = int(next_token or 0)
        end = start + self.page_size
        return SubscriptionPage(records=records[start:end], next_token=str(end) if end < len(records) else None)

    def subscribe(self, topic_arn: str, protocol: str, endpoint: str) -> str:
        self._enter("subscribe", f"{endpoint}|{topic_arn}")
        with self._lock:
            for r in self.subs.values():
                if (r.topic_arn, r.protocol, r.endpoint) == (topic_arn, protocol, endpoint):
                    return r.handle
            handle = f"{topic_arn}:sub-{next(self._ids)}"
            self.subs[handle] = SubscriptionRecord(topic_arn, handle, protocol, endpoint)
        return handle

    def unsubscribe(self, handle: str) -> None:
        self._enter("unsubscribe", handle)
        with self._lock:
            if self.subs.pop(handle, None) is None:
                raise ResourceNotFound("sns:Unsubscribe", "NotFound", handle)
