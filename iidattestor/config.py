# iidattestor/config.py
from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError

from .errors import ConfigParseFailed


_log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Env helpers
# ---------------------------------------------------------------------------


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    v = raw.strip().lower()
    return v in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _load_yaml_mapping(path: str) -> Dict[str, Any]:
    """
    Load a simple top-level mapping from YAML.

    Constraints:
      - Ignore if path is empty or missing.
      - Only accept dict at top-level.
      - Coerce non-scalar values via str() to avoid arbitrary structures.
    """
    if not path or not os.path.exists(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            doc = yaml.safe_load(f)
    except (OSError, yaml.YAMLError):
        _log.warning("failed to load YAML config from %s", path, exc_info=True)
        return {}
    if not isinstance(doc, dict):
        return {}
    out: Dict[str, Any] = {}
    for k, v in doc.items():
        if isinstance(v, (str, int, float, bool)) or v is None:
            out[str(k)] = v
        else:
            out[str(k)] = str(v)
    return out


# ---------------------------------------------------------------------------
# Settings model (process configuration snapshot)
# ---------------------------------------------------------------------------


class Settings(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    # --- Identity ---------------------------------------------------------

    service_name: str = "iid-attestor"
    version: str = "0.1.0"
    # Indicates how this config reached the process (defaults/yaml).
    config_origin: str = "defaults"

    # --- Attestation ------------------------------------------------------

    # Trust domain used when the host does not push one through configure().
    trust_domain: str = ""
    # Optional PEM/DER root certificate; empty means the embedded AWS root.
    ca_cert_path: str = ""

    # --- EC2 client -------------------------------------------------------

    aws_connect_timeout_s: float = 5.0
    aws_read_timeout_s: float = 10.0

    # --- Observability ----------------------------------------------------

    log_level: str = "INFO"
    prometheus_enabled: bool = True


# ---------------------------------------------------------------------------
# Loading / merging
# ---------------------------------------------------------------------------


def load_settings() -> Settings:
    """
    Load Settings from defaults, optional YAML, and environment variables.

    Priority:
      1. Settings defaults (in-code).
      2. YAML file pointed to by IID_CONFIG_PATH.
      3. Environment variables (IID_*), with bounds on the timeouts.
    """
    merged: Dict[str, Any] = Settings().model_dump()
    origin = "defaults"

    yaml_path = os.environ.get("IID_CONFIG_PATH", "").strip()
    yaml_doc = _load_yaml_mapping(yaml_path)
    if yaml_doc:
        tmp = dict(merged)
        tmp.update(yaml_doc)
        merged = Settings(**tmp).model_dump()  # extra="forbid" rejects typos
        origin = "yaml"

    merged["trust_domain"] = os.environ.get("IID_TRUST_DOMAIN", merged["trust_domain"]).strip()
    merged["ca_cert_path"] = os.environ.get("IID_CA_CERT_PATH", merged["ca_cert_path"]).strip()
    merged["version"] = os.environ.get("IID_VERSION", merged["version"])

    connect = _env_float("IID_AWS_CONNECT_TIMEOUT_S", merged["aws_connect_timeout_s"])
    if 0.1 <= connect <= 120.0:
        merged["aws_connect_timeout_s"] = connect

    read = _env_float("IID_AWS_READ_TIMEOUT_S", merged["aws_read_timeout_s"])
    if 0.1 <= read <= 300.0:
        merged["aws_read_timeout_s"] = read

    merged["log_level"] = os.environ.get("IID_LOG_LEVEL", merged["log_level"]).upper()
    merged["prometheus_enabled"] = _env_bool("IID_PROMETHEUS_ENABLED", merged["prometheus_enabled"])

    merged["config_origin"] = origin
    return Settings(**merged)


def read_trusted_root(settings: Settings) -> Optional[bytes]:
    """Read the configured root certificate file, or None for the embedded root."""
    if not settings.ca_cert_path:
        return None
    try:
        with open(settings.ca_cert_path, "rb") as f:
            return f.read()
    except OSError as e:
        raise ConfigParseFailed("reading the trusted root certificate", e) from e


# ---------------------------------------------------------------------------
# Plugin configuration payload
# ---------------------------------------------------------------------------


class PluginConfig(BaseModel):
    """Per-plugin configuration pushed by the host at configure time."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    trust_domain: str


def parse_plugin_config(text: str) -> PluginConfig:
    """
    Parse the host-supplied configuration block.

    The block is a YAML mapping (JSON is accepted as a YAML subset), e.g.::

        trust_domain: example.org
    """
    step = "parsing the attestor configuration"
    try:
        doc = yaml.safe_load(text or "")
    except yaml.YAMLError as e:
        raise ConfigParseFailed(step, e) from e
    if not isinstance(doc, dict):
        raise ConfigParseFailed(step, "configuration must be a mapping")
    try:
        return PluginConfig.model_validate(doc)
    except ValidationError as e:
        raise ConfigParseFailed("decoding the attestor configuration", e.errors(include_url=False)) from e


__all__ = [
    "Settings",
    "PluginConfig",
    "load_settings",
    "parse_plugin_config",
    "read_trusted_root",
]
