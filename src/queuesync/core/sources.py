"""
Topology source selection.

First configured source wins: json_file, yaml_file, json_data, yaml_data,
then the Kubernetes ConfigMap. An explicit `env_name` overrides the
environment found in the ConfigMap annotation.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from .config import SourceSection
from .configmap import DEFAULT_CONFIGMAP, load_from_configmap
from .naming import EnvName
from .topology import Topology


def load_topology(
    source: SourceSection,
    *,
    api: Any = None,
    logger: Optional[logging.LoggerAdapter] = None,
) -> Topology:
    log = logger or logging.getLogger("qs.sources")

    if source.json_file:
        topology = Topology.from_file(source.json_file, fmt="json")
    elif source.yaml_file:
        topology = Topology.from_file(source.yaml_file, fmt="yaml")
    elif source.json_data:
        topology = Topology.from_json(source.json_data, source="--json-data")
    elif source.yaml_data:
        topology = Topology.from_yaml(source.yaml_data, source="--yaml-data")
    else:
        topology = load_from_configmap(
            source.configmap or DEFAULT_CONFIGMAP,
            source.namespace or None,
            kube_context=source.kube_context or None,
            api=api,
            logger=log,
        )

    if source.env_name:
        topology = topology.with_env(EnvName.parse(source.env_name))
    if source.env_name and topology.env.is_unknown:
        log.warning("Unrecognized environment name '%s'; names are used as declared", source.env_name)

    log.info(
        "Topology from %s: %d queue(s), %d unsubscribed topic(s), env=%s",
        topology.source or "-", len(topology.queues), len(topology.unsubscribed), topology.env.value,
    )
    return topology
