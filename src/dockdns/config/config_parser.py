"""Configuration loading for the dockdns daemon.

Brief:
  Settings are read once at startup from three layers, later layers winning:
    - an optional YAML file
    - environment variables (MASTER_IP, LOCAL_DOCKER_NAMES, DOCKDNS_*)
    - CLI overrides passed in by the entrypoint
  The merged mapping is validated with pydantic. Any problem is reported as a
  ConfigError, which the entrypoint treats as fatal.

Inputs:
  - YAML config path, environment mapping, override mapping

Outputs:
  - DaemonConfig instance
"""

from __future__ import annotations

import ipaddress
import os
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

# Weighted by repetition: 223.5.5.5 is picked three times as often.
DEFAULT_UPSTREAM_ENDPOINTS = ["223.5.5.5", "223.5.5.5", "223.5.5.5", "223.6.6.6"]

# Environment variable -> dotted config key.
ENV_KEYS = {
    "MASTER_IP": "master_ip",
    "LOCAL_DOCKER_NAMES": "local_docker_names",
    "DOCKDNS_LISTEN_HOST": "listen.host",
    "DOCKDNS_LISTEN_PORT": "listen.port",
    "DOCKDNS_UPSTREAM_TIMEOUT_MS": "upstream.timeout_ms",
    "DOCKDNS_LOG_LEVEL": "logging.level",
}


class ConfigError(ValueError):
    """Raised when startup configuration is missing or invalid."""


class ListenConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    host: str = "0.0.0.0"
    port: int = Field(default=53, ge=0, le=65535)


class UpstreamConfig(BaseModel):
    """Brief: DNS-over-HTTPS upstream pool settings.

    Inputs:
      - endpoints: Hosts or IPs serving /dns-query. Repeat an entry to weight it.
      - timeout_ms: Per-request timeout; bounded so a stuck upstream cannot
        hold a handler thread indefinitely.
      - verify: Verify the upstream TLS certificate.
      - ca_file: Optional CA bundle used when verifying.
    """

    model_config = ConfigDict(extra="forbid")

    endpoints: List[str] = Field(
        default_factory=lambda: list(DEFAULT_UPSTREAM_ENDPOINTS), min_length=1
    )
    timeout_ms: int = Field(default=2000, ge=1, le=60000)
    verify: bool = True
    ca_file: Optional[str] = None

    @field_validator("endpoints")
    @classmethod
    def _strip_endpoints(cls, value: List[str]) -> List[str]:
        cleaned = [str(v).strip() for v in value if str(v).strip()]
        if not cleaned:
            raise ValueError("upstream.endpoints must contain at least one host")
        return cleaned


class DockerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    # None means "from the environment" (DOCKER_HOST, DOCKER_TLS_VERIFY, ...).
    url: Optional[str] = None
    timeout: Optional[float] = Field(default=None, gt=0)


class DaemonConfig(BaseModel):
    """Brief: Validated settings for one daemon process.

    Inputs:
      - master_ip: Address returned for every running-container match.
      - local_docker_names: Names answered with the caller's own address,
        as a comma-separated string or a list.
      - answer_ttl: TTL applied to synthesized answers.
      - listen, upstream, docker: nested sections.
      - logging: Mapping handed to init_logging().

    Outputs:
      - DaemonConfig instance.
    """

    model_config = ConfigDict(extra="forbid")

    master_ip: str
    local_docker_names: Optional[str] = None
    answer_ttl: int = Field(default=3600, ge=0)
    listen: ListenConfig = Field(default_factory=ListenConfig)
    upstream: UpstreamConfig = Field(default_factory=UpstreamConfig)
    docker: DockerConfig = Field(default_factory=DockerConfig)
    logging: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("master_ip", mode="before")
    @classmethod
    def _check_master_ip(cls, value: Any) -> str:
        text = str(value or "").strip()
        if not text:
            raise ValueError("MASTER_IP is not set")
        try:
            ipaddress.ip_address(text)
        except ValueError:
            raise ValueError(f"MASTER_IP {text!r} is not a valid IP address")
        return text

    @field_validator("local_docker_names", mode="before")
    @classmethod
    def _join_local_names(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        if isinstance(value, (list, tuple)):
            return ",".join(str(v) for v in value)
        return str(value)


def _set_dotted(cfg: Dict[str, Any], dotted: str, value: Any) -> None:
    """Brief: Assign value into a nested mapping using a dotted key path.

    Inputs:
      - cfg: Mapping mutated in-place.
      - dotted: Key path such as "listen.port".
      - value: Value to store at that path.

    Outputs:
      - None.
    """

    parts = dotted.split(".")
    node = cfg
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[parts[-1]] = value


def read_config_file(config_path: str) -> Dict[str, Any]:
    """Brief: Read a YAML config file into a mapping.

    Inputs:
      - config_path: Path to the YAML file.

    Outputs:
      - dict: Parsed mapping (empty for an empty file).

    Raises:
      - ConfigError: When the file cannot be read or its root is not a mapping.
    """

    try:
        with open(config_path, "r") as f:
            cfg = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"cannot read config file {config_path}: {e}")
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {config_path}: {e}")

    if not isinstance(cfg, dict):
        raise ConfigError("Configuration root must be a mapping")
    return cfg


def apply_environment(
    cfg: Dict[str, Any], environ: Optional[Mapping[str, str]] = None
) -> Dict[str, Any]:
    """Brief: Overlay recognised environment variables onto cfg.

    Inputs:
      - cfg: Mapping mutated in-place.
      - environ: Environment mapping (defaults to os.environ).

    Outputs:
      - dict: The same cfg mapping.

    Notes:
      - Empty values are treated as unset so that ``MASTER_IP=`` still fails
        the required-value check instead of overriding a file value.
    """

    env = os.environ if environ is None else environ
    for env_key, dotted in ENV_KEYS.items():
        value = env.get(env_key)
        if value is None or value == "":
            continue
        _set_dotted(cfg, dotted, value)
    return cfg


def _format_validation_error(exc: ValidationError) -> str:
    lines = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "<root>"
        lines.append(f"{loc}: {err.get('msg')}")
    return "; ".join(lines)


def load_config(
    config_path: Optional[str] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
    overrides: Optional[Dict[str, Union[str, int, None]]] = None,
) -> DaemonConfig:
    """Brief: Build the validated daemon configuration.

    Inputs:
      - config_path: Optional YAML file path.
      - environ: Optional environment mapping (defaults to os.environ).
      - overrides: Optional dotted-key overrides (e.g. from CLI flags);
        None values are skipped.

    Outputs:
      - DaemonConfig.

    Raises:
      - ConfigError: When a required value is missing or any value is invalid.

    Example:
      >>> load_config(environ={"MASTER_IP": "10.0.0.1"}).master_ip
      '10.0.0.1'
    """

    cfg: Dict[str, Any] = read_config_file(config_path) if config_path else {}
    apply_environment(cfg, environ)
    for dotted, value in (overrides or {}).items():
        if value is not None:
            _set_dotted(cfg, dotted, value)

    try:
        return DaemonConfig.model_validate(cfg)
    except ValidationError as e:
        raise ConfigError(_format_validation_error(e)) from e
