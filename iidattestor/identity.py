from __future__ import annotations

from urllib.parse import quote

PLUGIN_NAME = "iid_attestor"
SPIFFE_SCHEME = "spiffe"

# RFC 3986 pchar minus the unreserved set, which quote() never escapes.
_PCHAR_SAFE = "!$&'()*+,;=:@"


def _segment(value: str) -> str:
    return quote(value, safe=_PCHAR_SAFE)


def agent_path(account_id: str, instance_id: str) -> str:
    segments = ("spire", "agent", PLUGIN_NAME, account_id, instance_id)
    return "/" + "/".join(_segment(s) for s in segments)


def spiffe_id(trust_domain: str, account_id: str, instance_id: str) -> str:
    """
    Canonical SPIFFE ID for an attested EC2 instance, e.g.
    ``spiffe://example.org/spire/agent/iid_attestor/123456789012/i-0abc``.
    """
    return f"{SPIFFE_SCHEME}://{trust_domain}{agent_path(account_id, instance_id)}"


__all__ = ["PLUGIN_NAME", "SPIFFE_SCHEME", "agent_path", "spiffe_id"]
