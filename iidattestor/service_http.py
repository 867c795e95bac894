# FILE: iidattestor/service_http.py
from __future__ import annotations

import base64
import binascii
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, Field

from .attestor import IIDAttestor
from .config import Settings, load_settings, read_trusted_root
from .errors import AttestationError
from .logging import configure_json_logging, ensure_request_id, get_logger, reset
from .provenance import Ec2InstanceDescriber, InstanceDescriber
from .schemas import AttestationResult, PluginInfo

# Guard against oversized request bodies before JSON parsing.
_MAX_BODY_BYTES = 256 * 1024


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------


class AttestRequest(BaseModel):
    attested_data_b64: str = Field(..., min_length=1, description="Base64 of the agent's attestation payload")
    attested_before: bool = Field(False, description="Whether this node already attested once")


class ConfigureRequest(BaseModel):
    configuration: str = Field(..., description="Plugin configuration block (YAML mapping)")
    trusted_root_pem: Optional[str] = Field(
        None,
        description="PEM root certificate; omitted means the embedded AWS root",
    )


class ConfigureResponse(BaseModel):
    ok: bool
    trust_domain: str


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------


def _build_attestor(settings: Settings, describer: Optional[InstanceDescriber]) -> IIDAttestor:
    if describer is None:
        describer = Ec2InstanceDescriber(
            connect_timeout_s=settings.aws_connect_timeout_s,
            read_timeout_s=settings.aws_read_timeout_s,
        )
    attestor = IIDAttestor(describer, version=settings.version)
    if settings.trust_domain:
        attestor.configure(settings.trust_domain, read_trusted_root(settings))
    return attestor


def create_app(
    *,
    settings: Optional[Settings] = None,
    attestor: Optional[IIDAttestor] = None,
    describer: Optional[InstanceDescriber] = None,
) -> FastAPI:
    """
    Build the HTTP surface the host harness talks to.

    Exposes attest / configure / plugin-info plus health, readiness and
    Prometheus metrics.
    """
    settings = settings or load_settings()
    configure_json_logging(settings.log_level)
    attestor = attestor or _build_attestor(settings, describer)
    logger = get_logger("iidattestor.http")

    app = FastAPI(title="iid-attestor", version=settings.version)
    app.state.attestor = attestor

    @app.middleware("http")
    async def body_size_and_request_id(request: Request, call_next):
        cl = request.headers.get("content-length")
        if cl is not None:
            try:
                cl_v = int(cl)
            except ValueError:
                return Response("invalid content-length", status_code=status.HTTP_400_BAD_REQUEST)
            if cl_v > _MAX_BODY_BYTES:
                return Response("body too large", status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE)
        reset()
        rid = ensure_request_id(dict(request.headers))
        response = await call_next(request)
        response.headers["X-Request-Id"] = rid
        return response

    if settings.prometheus_enabled:

        @app.get("/metrics")
        def metrics() -> Response:
            return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/healthz")
    def healthz() -> Dict[str, Any]:
        return {"ok": True, "version": settings.version}

    @app.get("/readyz")
    def readyz(response: Response) -> Dict[str, Any]:
        ready = attestor.store.configured
        if not ready:
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"ready": ready}

    @app.get("/v1/plugin-info", response_model=PluginInfo)
    def plugin_info() -> PluginInfo:
        return attestor.plugin_info()

    @app.post("/v1/configure", response_model=ConfigureResponse)
    def configure(req: ConfigureRequest) -> ConfigureResponse:
        try:
            anchor = attestor.configure_from_payload(req.configuration, req.trusted_root_pem)
        except AttestationError as e:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"kind": e.kind.value, "step": e.step, "detail": e.detail},
            ) from e
        return ConfigureResponse(ok=True, trust_domain=anchor.trust_domain)

    @app.post("/v1/attest", response_model=AttestationResult)
    def attest(req: AttestRequest) -> AttestationResult:
        try:
            payload = base64.b64decode(req.attested_data_b64, validate=True)
        except (binascii.Error, ValueError) as e:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="attested_data_b64 is not valid base64",
            ) from e
        result = attestor.attest(payload, req.attested_before)
        if not result.valid:
            logger.debug("http.attest.denied", extra={"denial_kind": result.denial.kind.value})
        return result

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(create_app(), host="127.0.0.1", port=8000)
