"""
Environment-aware physical names.

Clusters annotated with an environment get suffixed resource names, e.g.
`orders` -> topic `orders-prod`, queue `orders-production`. Without a known
environment names are used as declared.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

_ALIASES = {
    "L": "LOCAL", "LOCAL": "LOCAL",
    "Q": "QA", "QA": "QA", "QE": "QA",
    "D": "DEV", "DEV": "DEV", "DEVELOPMENT": "DEV",
    "P": "PROD", "PROD": "PROD", "PRODUCTION": "PROD",
}

_TOPIC_SUFFIX = {"QA": "qa", "DEV": "dev", "PROD": "prod", "LOCAL": "local"}
_QUEUE_SUFFIX = {"QA": "qa", "DEV": "development", "PROD": "production", "LOCAL": "local"}


class EnvName(Enum):
    QA = "QA"
    DEV = "DEV"
    PROD = "PROD"
    LOCAL = "LOCAL"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: Optional[str]) -> "EnvName":
        if not value:
            return cls.UNKNOWN
        return cls(_ALIASES.get(str(value).strip().upper(), "UNKNOWN"))

    @property
    def is_local(self) -> bool:
        return self is EnvName.LOCAL

    @property
    def is_unknown(self) -> bool:
        return self is EnvName.UNKNOWN

    def topic_name(self, name: str) -> str:
        if self.is_unknown:
            return name
        return f"{name}-{_TOPIC_SUFFIX[self.value]}"

    def queue_name(self, name: str) -> str:
        if self.is_unknown:
            return name
        return f"{name}-{_QUEUE_SUFFIX[self.value]}"
