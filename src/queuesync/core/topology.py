"""
Declared queue/topic topology documents (JSON or YAML).

Shape (both formats):

    <queue-name>:
      topics: [<topic-name>, ...]
    unsubscribed:
      topics: [<topic-name>, ...]

Parsers keep every top-level key in document order, duplicates included, so
the desired-state builder can report a repeated queue instead of silently
keeping the last one.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Iterable, List, Tuple

import yaml

from .errors import ConfigConflict, TopologyError
from .naming import EnvName

UNSUBSCRIBED = "unsubscribed"


class _Pairs(list):
    """A mapping kept as an ordered list of (key, value) pairs."""


def _json_pairs_hook(pairs: List[Tuple[Any, Any]]) -> _Pairs:
    return _Pairs(pairs)


class _PairsLoader(yaml.SafeLoader):
    """SafeLoader whose mappings keep duplicate keys."""


def _construct_pairs(loader: _PairsLoader, node: yaml.MappingNode) -> _Pairs:
    loader.flatten_mapping(node)
    return _Pairs(
        (loader.construct_object(k, deep=True), loader.construct_object(v, deep=True))
        for k, v in node.value
    )


_PairsLoader.add_constructor(yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG, _construct_pairs)


@dataclass(frozen=True)
class Topology:
    """Parsed, not yet resolved, declaration."""
    queues: Tuple[Tuple[str, Tuple[str, ...]], ...] = ()
    unsubscribed: Tuple[str, ...] = ()
    env: EnvName = EnvName.UNKNOWN
    source: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.queues and not self.unsubscribed

    def with_env(self, env: EnvName) -> "Topology":
        return replace(self, env=env)

    @classmethod
    def from_mapping(cls, data: Any, *, source: str = "", env: EnvName = EnvName.UNKNOWN) -> "Topology":
        """Build from a parsed document (plain dict, or pairs from our parsers)."""
        if data is None:
            return cls(env=env, source=source)
        if isinstance(data, dict):
            entries: Iterable[Tuple[Any, Any]] = list(data.items())
        elif isinstance(data, _Pairs):
            entries = list(data)
        else:
            raise TopologyError(f"{source or 'topology'}: top-level document must be a mapping")

        queues: List[Tuple[str, Tuple[str, ...]]] = []
        unsubscribed: List[str] = []
        seen_unsubscribed = False
        for key, value in entries:
            name = str(key).strip() if key is not None else ""
            if not name:
                raise TopologyError(f"{source or 'topology'}: empty queue name")
            topics = _topics_of(name, value, source)
            if name == UNSUBSCRIBED:
                if seen_unsubscribed:
                    raise ConfigConflict(f"'{UNSUBSCRIBED}' is declared more than once")
                seen_unsubscribed = True
                unsubscribed.extend(topics)
            else:
                queues.append((name, topics))

        return cls(queues=tuple(queues), unsubscribed=tuple(unsubscribed), env=env, source=source)

    @classmethod
    def from_json(cls, text: str, *, source: str = "json", env: EnvName = EnvName.UNKNOWN) -> "Topology":
        try:
            data = json.loads(text, object_pairs_hook=_json_pairs_hook) if text.strip() else None
        except json.JSONDecodeError as e:
            raise TopologyError(f"Couldn't deserialize JSON topology ({source}): {e}") from e
        return cls.from_mapping(data, source=source, env=env)

    @classmethod
    def from_yaml(cls, text: str, *, source: str = "yaml", env: EnvName = EnvName.UNKNOWN) -> "Topology":
        try:
            data = yaml.load(text, Loader=_PairsLoader)
        except yaml.YAMLError as e:
            raise TopologyError(f"Couldn't deserialize YAML topology ({source}): {e}") from e
        return cls.from_mapping(data, source=source, env=env)

    @classmethod
    def from_file(cls, path: str, *, fmt: str = "", env: EnvName = EnvName.UNKNOWN) -> "Topology":
        """Read a file; format from `fmt` or the extension (.json, anything else is YAML)."""
        p = Path(path)
        if not p.is_file():
            raise TopologyError(f"Topology file not found: {path}")
        text = p.read_text(encoding="utf-8")
        kind = (fmt or ("json" if p.suffix.lower() == ".json" else "yaml")).lower()
        if kind == "json":
            return cls.from_json(text, source=str(p), env=env)
        return cls.from_yaml(text, source=str(p), env=env)


def _topics_of(queue: str, value: Any, source: str) -> Tuple[str, ...]:
    where = f"{source or 'topology'}: '{queue}'"
    if value is None:
        return ()
    if isinstance(value, _Pairs):
        value = dict(value)
    if not isinstance(value, dict):
        raise TopologyError(f"{where} must map to {{topics: [...]}}")

    topics = value.get("topics")
    if topics is None:
        return ()
    if isinstance(topics, str) or not isinstance(topics, list):
        raise TopologyError(f"{where}.topics must be a list of topic names")

    out: List[str] = []
    for t in topics:
        if not isinstance(t, str):
            raise TopologyError(f"{where}.topics contains a non-string entry: {t!r}")
        t = t.strip()
        if t and t not in out:
            out.append(t)
    return tuple(out)
