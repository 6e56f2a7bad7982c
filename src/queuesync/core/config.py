from __future__ import annotations

import os
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import yaml
from dotenv import find_dotenv, load_dotenv

from .errors import ConfigError


# ---------- Typed sections ----------

@dataclass
class AppSection:
    run_id: Optional[str] = None
    dry_run: bool = False
    concurrency: int = 4
    timeout_sec: float = 0       # whole-run deadline; 0 disables it


@dataclass
class AwsSection:
    region: str = ""
    endpoint_url: str = ""
    access_key_id: str = ""
    secret_access_key: str = ""  # secret – never log in clear text
    role_arn: str = ""
    profile: str = ""


@dataclass
class RetrySection:
    max_attempts: int = 5
    backoff_base_sec: float = 0.2
    backoff_max_sec: float = 5.0


@dataclass
class SourceSection:
    env_name: str = ""
    json_file: str = ""
    yaml_file: str = ""
    json_data: str = ""
    yaml_data: str = ""
    namespace: str = ""
    configmap: str = "sns-sqs-config"
    kube_context: str = ""


@dataclass
class LoggingSection:
    base_dir: str = "logs"
    console_level: str = "INFO"   # INFO..CRITICAL
    file_level: str = "DEBUG"     # DEBUG..CRITICAL


@dataclass
class AppConfig:
    """Typed configuration object built by `load_config`."""
    app: AppSection
    aws: AwsSection
    retry: RetrySection
    source: SourceSection
    logging: LoggingSection

    @property
    def run_id(self) -> str:
        """Stable run identifier, generated on first access when not provided."""
        if not self.app.run_id:
            self.app.run_id = uuid.uuid4().hex[:12]
        return self.app.run_id


# ---------- Defaults ----------

_DEFAULT_FILES: Tuple[str, ...] = (
    "./queuesync.yml",
    os.path.expanduser("~/.config/queuesync/config.yml"),
    "/etc/queuesync/config.yml",
)

_DEFAULTS: Dict[str, Any] = {
    "app": {"run_id": None, "dry_run": False, "concurrency": 4, "timeout_sec": 0},
    "aws": {
        "region": "",
        "endpoint_url": "",
        "access_key_id": "",
        "secret_access_key": "",
        "role_arn": "",
        "profile": "",
    },
    "retry": {"max_attempts": 5, "backoff_base_sec": 0.2, "backoff_max_sec": 5.0},
    "source": {
        "env_name": "",
        "json_file": "",
        "yaml_file": "",
        "json_data": "",
        "yaml_data": "",
        "namespace": "",
        "configmap": "sns-sqs-config",
        "kube_context": "",
    },
    "logging": {"base_dir": "logs", "console_level": "INFO", "file_level": "DEBUG"},
}

_BOOL_KEYS = {"dry_run"}
_INT_KEYS = {"concurrency", "max_attempts"}
_FLOAT_KEYS = {"timeout_sec", "backoff_base_sec", "backoff_max_sec"}


# ---------- Utilities ----------

def _deep_merge(base: Dict[str, Any], ext: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Maps merge recursively, scalars override; `ext` wins. Returns a new dict."""
    if not ext:
        return dict(base)
    out: Dict[str, Any] = dict(base)
    for k, v in ext.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _read_yaml_file(path: str) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Top-level YAML must be a mapping: {path}")
    return data


def _load_first_existing(files: Tuple[str, ...]) -> Dict[str, Any]:
    for p in files:
        if os.path.exists(p):
            return _read_yaml_file(p)
    return {}


def _env_to_dict(prefix: str = "QSYNC_") -> Dict[str, Any]:
    """QSYNC_FOO__BAR=val -> {"foo": {"bar": "val"}} (lowercased keys)."""
    out: Dict[str, Any] = {}
    plen = len(prefix)
    for key, val in os.environ.items():
        if not key.startswith(prefix):
            continue
        path = key[plen:].lower().split("__")
        cursor = out
        for part in path[:-1]:
            cursor = cursor.setdefault(part, {})
        cursor[path[-1]] = val
    return out


def _interpolate_env(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Replace values like "${VAR}" with os.environ["VAR"] (empty when unset)."""
    def repl(v: Any) -> Any:
        if isinstance(v, str) and v.startswith("${") and v.endswith("}"):
            return os.environ.get(v[2:-1], "")
        return v

    def walk(obj: Any) -> Any:
        if isinstance(obj, dict):
            return {k: walk(repl(v)) for k, v in obj.items()}
        if isinstance(obj, list):
            return [walk(x) for x in obj]
        return repl(obj)

    return walk(cfg)


def _coerce_types(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Type coercion for the known bool/int/float keys (env values arrive as strings)."""
    def to_bool(x: Any) -> bool:
        return str(x).strip().lower() in {"1", "true", "yes", "y", "on"}

    def to_number(x: Any, kind: type, key: str) -> Any:
        try:
            return kind(x)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid value for {key}: {x!r}") from e

    def walk(obj: Any, key_path: Tuple[str, ...] = ()) -> Any:
        if isinstance(obj, dict):
            return {k: walk(v, key_path + (k,)) for k, v in obj.items()}
        key = key_path[-1] if key_path else ""
        dotted = ".".join(key_path)
        if key in _BOOL_KEYS:
            return to_bool(obj)
        if key in _INT_KEYS:
            return to_number(obj, int, dotted)
        if key in _FLOAT_KEYS:
            return to_number(obj, float, dotted)
        if obj is None and key != "run_id":
            return ""
        return obj

    return walk(cfg)


def _validate(cfg: Dict[str, Any]) -> None:
    problems = []
    aws = cfg.get("aws", {})
    if bool(aws.get("access_key_id")) != bool(aws.get("secret_access_key")):
        problems.append("aws.access_key_id and aws.secret_access_key must be set together")
    if cfg.get("app", {}).get("concurrency", 1) < 1:
        problems.append("app.concurrency must be >= 1")
    if cfg.get("app", {}).get("timeout_sec", 0) < 0:
        problems.append("app.timeout_sec must be >= 0")
    retry = cfg.get("retry", {})
    if retry.get("max_attempts", 1) < 1:
        problems.append("retry.max_attempts must be >= 1")
    if retry.get("backoff_base_sec", 0) < 0 or retry.get("backoff_max_sec", 0) < 0:
        problems.append("retry backoff values must be >= 0")
    if problems:
        raise ConfigError("Invalid configuration: " + "; ".join(problems))


def _section(cls: type, data: Dict[str, Any], name: str) -> Any:
    try:
        return cls(**data)
    except TypeError as e:
        raise ConfigError(f"Unknown key in section '{name}': {e}") from e


# ---------- Public API ----------

def load_config(
    cli_overrides: Optional[Dict[str, Any]] = None,
    files: Tuple[str, ...] = _DEFAULT_FILES,
    env_prefix: str = "QSYNC_",
    dotenv: bool = True,
) -> AppConfig:
    """
    Build an AppConfig from (in precedence order):
      1) CLI overrides
      2) Environment variables (prefix QSYNC_, nested via __), after loading .env
      3) YAML file (first existing)
      4) Built-in defaults

    Also performs ${ENV_VAR} interpolation, bool/int/float coercion and
    validation. Raises ConfigError.
    """
    if dotenv:
        load_dotenv(find_dotenv(usecwd=True), override=False)

    file_cfg = _load_first_existing(files)
    env_cfg = _env_to_dict(env_prefix)

    # defaults <- file <- env <- cli
    merged = _deep_merge(_DEFAULTS, file_cfg)
    merged = _deep_merge(merged, env_cfg)
    merged = _deep_merge(merged, cli_overrides or {})

    merged = _interpolate_env(merged)
    merged = _coerce_types(merged)
    _validate(merged)

    return AppConfig(
        app=_section(AppSection, merged.get("app", {}), "app"),
        aws=_section(AwsSection, merged.get("aws", {}), "aws"),
        retry=_section(RetrySection, merged.get("retry", {}), "retry"),
        source=_section(SourceSection, merged.get("source", {}), "source"),
        logging=_section(LoggingSection, merged.get("logging", {}), "logging"),
    )
