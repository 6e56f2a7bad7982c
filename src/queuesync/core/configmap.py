"""
Topology from a Kubernetes ConfigMap.

The ConfigMap (default name `sns-sqs-config`) carries the document under the
data key `json` or `yaml` (first match wins) and, optionally, the environment
under the annotation `app-env`. A missing ConfigMap, or one without a
recognized key, is not an error: the run becomes a no-op with a warning.

The `kubernetes` client is an optional dependency (extra `k8s`).
"""

from __future__ import annotations

import logging
import os
from typing import Any, Optional

from .errors import ConfigError
from .naming import EnvName
from .topology import Topology

DEFAULT_CONFIGMAP = "sns-sqs-config"
ENV_ANNOTATION = "app-env"
_SA_NAMESPACE_FILE = "/var/run/secrets/kubernetes.io/serviceaccount/namespace"


def current_namespace(default: str = "default") -> str:
    """Namespace of the running pod, or `default` outside a cluster."""
    try:
        with open(_SA_NAMESPACE_FILE, "r", encoding="utf-8") as f:
            ns = f.read().strip()
    except OSError:
        return default
    return ns or default


def _core_api(kube_context: Optional[str]) -> Any:
    try:
        from kubernetes import client, config  # lazy import so dependency stays optional
    except Exception as e:
        raise ConfigError(
            "Reading the topology from a ConfigMap requires the 'kubernetes' package "
            "(e.g. `pip install queuesync[k8s]`), or pass --json-file/--yaml-file instead."
        ) from e

    if kube_context:
        config.load_kube_config(context=kube_context)
    else:
        try:
            config.load_incluster_config()
        except config.ConfigException:
            config.load_kube_config()
    return client.CoreV1Api()


def load_from_configmap(
    name: str = DEFAULT_CONFIGMAP,
    namespace: Optional[str] = None,
    *,
    kube_context: Optional[str] = None,
    api: Any = None,
    logger: Optional[logging.LoggerAdapter] = None,
) -> Topology:
    log = logger or logging.getLogger("qs.configmap")
    ns = namespace or current_namespace()
    source = f"configmap {ns}/{name}"
    core = api if api is not None else _core_api(kube_context)

    try:
        cm = core.read_namespaced_config_map(name=name, namespace=ns)
    except Exception as e:
        if getattr(e, "status", None) == 404:
            log.warning("No ConfigMap '%s' in namespace '%s'; nothing to reconcile", name, ns)
            return Topology(source=source)
        raise ConfigError(f"Failed to read {source}: {e}") from e

    metadata = getattr(cm, "metadata", None)
    annotations = (getattr(metadata, "annotations", None) or {}) if metadata is not None else {}
    env = EnvName.parse(annotations.get(ENV_ANNOTATION))

    data = getattr(cm, "data", None) or {}
    if not data:
        log.warning("ConfigMap %s has no data element; nothing to reconcile", source)
        return Topology(env=env, source=source)

    if "json" in data:
        return Topology.from_json(data["json"], source=f"{source}[json]", env=env)
    if "yaml" in data:
        return Topology.from_yaml(data["yaml"], source=f"{source}[yaml]", env=env)

    log.warning("ConfigMap %s has no 'json' or 'yaml' key; nothing to reconcile", source)
    return Topology(env=env, source=source)
