# FILE: iidattestor/logging.py
from __future__ import annotations

import contextvars
import datetime as _dt
import json
import logging
import os
import sys
import traceback
import uuid
from typing import Any, Dict, Mapping, Optional, Set

# ---------- Module-level config (env-driven, safe defaults) ----------
_LOG_SCHEMA = os.environ.get("IID_LOG_SCHEMA", "iid.log.v1")
_LOG_SERVICE = os.environ.get("IID_SERVICE", "iid-attestor")
_LOG_VERSION = os.environ.get("IID_VERSION", "0.1.0")
_LOG_INSTANCE = os.environ.get(
    "IID_INSTANCE", os.uname().nodename if hasattr(os, "uname") else "unknown"
)

# Max chars per field (truncate to keep JSON small)
try:
    _MAX_FIELD = max(512, int(os.environ.get("IID_LOG_MAX_FIELD", "4096")))
except ValueError:
    _MAX_FIELD = 4096

_INCLUDE_STACK = os.environ.get("IID_LOG_INCLUDE_STACK", "1") == "1"

# Attestation material must never reach the log sink, only its outcome.
_FORBIDDEN_META_KEYS = {
    "document",
    "signature",
    "payload",
    "attested_data",
    "certificate",
    "public_key",
}

# Standard LogRecord attributes that are not treated as dynamic meta
_LOG_RECORD_STD_ATTRS: Set[str] = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
    "message",
}

# ---------- Context management ----------
_log_ctx: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar(
    "iid_log_ctx", default={}
)


def bind(**fields: Any) -> None:
    """Merge fields into the current logging context."""
    cur = dict(_log_ctx.get())
    for k, v in fields.items():
        if v is None:
            continue
        cur[str(k)] = v
    _log_ctx.set(cur)


def reset() -> None:
    _log_ctx.set({})


def context() -> Dict[str, Any]:
    return dict(_log_ctx.get())


# ---------- Helpers ----------
def _ts_iso() -> str:
    # RFC3339 with milliseconds, UTC Z
    now = _dt.datetime.now(_dt.timezone.utc)
    ms = int(now.microsecond / 1000)
    base = now.replace(microsecond=0).isoformat().replace("+00:00", "")
    return f"{base}.{ms:03d}Z"


def _compact_json(obj: Dict[str, Any]) -> str:
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":"), default=str)


def _truncate(v: Any) -> Any:
    if isinstance(v, str) and len(v) > _MAX_FIELD:
        return v[:_MAX_FIELD] + "...<truncated>"
    return v


def _meta_from_record(record: logging.LogRecord, evt_keys: Set[str]) -> Optional[Dict[str, Any]]:
    """
    Collect extras passed via `extra=` that are not part of the envelope,
    dropping attestation material and truncating long strings.
    """
    meta: Dict[str, Any] = {}
    for k, v in record.__dict__.items():
        if k in _LOG_RECORD_STD_ATTRS or k in evt_keys or k.startswith("_"):
            continue
        if k.lower() in _FORBIDDEN_META_KEYS:
            continue
        meta[k] = _truncate(v)
    return meta or None


# ---------- JSON formatter ----------
class JSONFormatter(logging.Formatter):
    """
    JSON formatter with a stable envelope:

      - schema, service, version, instance
      - ts, lvl, logger, msg
      - req_id, instance_id, account_id, region, outcome, denial_kind, step
      - meta (remaining extras)
    """

    _ENVELOPE_KEYS = (
        "req_id",
        "instance_id",
        "account_id",
        "region",
        "outcome",
        "denial_kind",
        "step",
        "spiffe_id",
        "trust_domain",
        "latency_ms",
    )

    def __init__(self, *, include_stack: bool = True):
        super().__init__()
        self.include_stack = include_stack

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        ctx = context()
        evt: Dict[str, Any] = {
            "schema": _LOG_SCHEMA,
            "service": _LOG_SERVICE,
            "version": _LOG_VERSION,
            "instance": _LOG_INSTANCE,
            "ts": _ts_iso(),
            "lvl": record.levelname,
            "logger": record.name,
            "msg": str(record.getMessage()),
        }

        # Prefer bound ctx, then record.<attr>
        for name in self._ENVELOPE_KEYS:
            v = ctx.get(name, getattr(record, name, None))
            if v is not None:
                evt[name] = _truncate(v)

        if record.exc_info and self.include_stack:
            exc_type, exc_val, exc_tb = record.exc_info
            evt["exc_type"] = getattr(exc_type, "__name__", str(exc_type))
            evt["exc_message"] = str(exc_val)[:_MAX_FIELD]
            evt["stack"] = "".join(
                traceback.format_exception(exc_type, exc_val, exc_tb)
            )[:_MAX_FIELD]

        meta = _meta_from_record(record, set(evt.keys()) | set(self._ENVELOPE_KEYS))
        if meta:
            evt["meta"] = meta

        return _compact_json(evt)


# ---------- Root integration ----------
_configured = False


def _clear_handlers(logger: logging.Logger) -> None:
    for h in list(logger.handlers):
        logger.removeHandler(h)


def configure_json_logging(
    level: str = "INFO",
    *,
    include_uvicorn: bool = True,
    stream: Any = None,
    include_stack: bool = _INCLUDE_STACK,
) -> logging.Logger:
    """Configure root (+ optionally uvicorn) for JSON output."""
    global _configured
    lvl = getattr(logging, (level or "INFO").upper(), logging.INFO)
    stream = stream or sys.stderr

    h = logging.StreamHandler(stream=stream)
    h.setFormatter(JSONFormatter(include_stack=include_stack))
    h.setLevel(lvl)

    root = logging.getLogger()
    root.setLevel(lvl)
    _clear_handlers(root)
    root.addHandler(h)

    if include_uvicorn:
        for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
            lg = logging.getLogger(name)
            lg.setLevel(lvl)
            _clear_handlers(lg)
            lg.addHandler(h)
            lg.propagate = False

    _configured = True
    return root


def get_logger(name: str = "iidattestor") -> logging.Logger:
    """
    Return a logger; installs the JSON handler on root unless
    configure_json_logging() already ran.
    """
    if not _configured:
        configure_json_logging(level=os.environ.get("IID_LOG_LEVEL", "INFO"))
    return logging.getLogger(name)


# ---------- Request / event helpers ----------
def ensure_request_id(headers: Optional[Mapping[str, str]] = None) -> str:
    """Get or create a request id and bind it into the context."""
    rid = None
    if headers:
        lowered = {k.lower(): v for k, v in headers.items()}
        rid = lowered.get("x-request-id")
    if not rid:
        rid = uuid.uuid4().hex[:16]
    bind(req_id=rid)
    return rid


def log_attestation(
    logger: logging.Logger,
    *,
    valid: bool,
    instance_id: Optional[str] = None,
    account_id: Optional[str] = None,
    region: Optional[str] = None,
    spiffe_id: Optional[str] = None,
    latency_ms: Optional[float] = None,
    message: str = "attestation.accepted",
    level: int = logging.INFO,
) -> None:
    """Log a successful attestation outcome. Never carries the IID itself."""
    logger.log(
        level,
        message,
        extra={
            "outcome": "valid" if valid else "denied",
            "instance_id": instance_id,
            "account_id": account_id,
            "region": region,
            "spiffe_id": spiffe_id,
            "latency_ms": None if latency_ms is None else round(latency_ms, 3),
        },
    )


def log_security_event(
    logger: logging.Logger,
    *,
    denial_kind: str,
    step: str,
    detail: str = "",
    instance_id: Optional[str] = None,
    region: Optional[str] = None,
    message: str = "attestation.denied",
    level: int = logging.WARNING,
) -> None:
    """Unified logger for denials and other security-relevant refusals."""
    logger.log(
        level,
        message,
        extra={
            "outcome": "denied",
            "denial_kind": denial_kind,
            "step": step,
            "detail": _truncate(detail),
            "instance_id": instance_id,
            "region": region,
        },
    )


__all__ = [
    "bind",
    "reset",
    "context",
    "configure_json_logging",
    "get_logger",
    "ensure_request_id",
    "log_attestation",
    "log_security_event",
    "JSONFormatter",
]
