"""FastAPI application factory and HTTP schemas for the inquiry relay.

This module provides the REST interface of the relay:

- ``POST /forms/{form_type}``: public endpoint receiving validated submissions
- ``GET /health``: public health check (database and SMTP)
- ``/commands/*``: token-protected retry sweep controls
- ``/admin/*``: token-protected statistics and SMTP diagnostics
- ``GET /failed-deliveries`` and ``GET /metrics``: token-protected monitoring

Authentication uses the ``X-API-Token`` header. When no token is configured
the protected endpoints are open, which configuration validation refuses in
production.

Example:
    Creating and running the API application::

        from inquiry_relay.pipeline import SubmissionPipeline
        from inquiry_relay.api import create_app

        pipeline = SubmissionPipeline(load_config())
        app = create_app(pipeline, api_token="secret-token")
        uvicorn.run(app, host="0.0.0.0", port=8000)
"""

from typing import Optional, Dict, Any, List, Literal, Callable, AsyncContextManager
import logging

from fastapi import FastAPI, HTTPException, APIRouter, Depends, status, Request
from fastapi.responses import Response, JSONResponse
from fastapi.security import APIKeyHeader
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, Field

from . import templates
from .errors import TransientDeliveryFailure
from .models import DeliveryStatus
from .pipeline import SubmissionPipeline

logger = logging.getLogger(__name__)

service: SubmissionPipeline | None = None
API_TOKEN_HEADER_NAME = "X-API-Token"
api_key_scheme = APIKeyHeader(name=API_TOKEN_HEADER_NAME, auto_error=False)


async def require_token(request: Request, api_token: str | None = Depends(api_key_scheme)) -> None:
    """Validate the API token carried in the ``X-API-Token`` header.

    If a token has been configured through :func:`create_app` and a request
    provides either a missing or different value, a ``401`` error is raised.
    When no token is configured the dependency is effectively bypassed.
    """
    expected = getattr(request.app.state, "api_token", None)
    if expected is None:
        return
    if not api_token or api_token != expected:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid or missing API token")

auth_dependency = Depends(require_token)


def _service() -> SubmissionPipeline:
    if not service:
        raise HTTPException(500, "Service not initialized")
    return service


class SubmissionPayload(BaseModel):
    """Validated form submission sent by the website."""
    data: Dict[str, Any]
    locale: Optional[str] = "pl"
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    analytics_consent: bool = Field(default=False, alias="analyticsConsent")

    model_config = {"populate_by_name": True}


class SubmissionResponse(BaseModel):
    success: bool
    message: str


class CommandStatus(BaseModel):
    """Base schema shared by most responses produced by the service."""
    ok: bool
    error: Optional[str] = None


class BasicOkResponse(CommandStatus):
    pass


class SweepResponse(CommandStatus):
    fetched: int = 0
    sent: int = 0
    retried: int = 0
    failed: int = 0
    escalated: int = 0
    errors: int = 0
    skipped: int = 0


class FailedDeliveryInfo(BaseModel):
    """Queued delivery as returned by ``/failed-deliveries``. Payloads are not exposed."""
    id: int
    channel: str
    form_type: str
    locale: str
    last_error: Optional[str] = None
    retry_count: int
    status: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class FailedDeliveriesResponse(CommandStatus):
    deliveries: List[FailedDeliveryInfo]


class TestEmailPayload(BaseModel):
    to: str


class TestEmailResponse(CommandStatus):
    receipt: Optional[str] = None


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def create_app(
    svc: SubmissionPipeline,
    api_token: str | None = None,
    lifespan: Callable[[FastAPI], AsyncContextManager] | None = None
) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    svc:
        :class:`inquiry_relay.pipeline.SubmissionPipeline` implementing every
        operation.
    api_token:
        Optional secret protecting the operator endpoints through the
        ``X-API-Token`` header.
    lifespan:
        Optional lifespan context manager for startup/shutdown events.
    """
    global service
    service = svc

    api = FastAPI(title="Inquiry Relay", lifespan=lifespan)
    api.state.api_token = api_token
    commands = APIRouter(prefix="/commands", tags=["commands"], dependencies=[auth_dependency])
    admin = APIRouter(prefix="/admin", tags=["admin"], dependencies=[auth_dependency])

    @api.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Log validation errors without echoing the submitted body."""
        logger.error(f"Validation error on {request.method} {request.url.path}: {exc.errors()}")
        return JSONResponse(status_code=422, content={"detail": exc.errors()})

    @api.post("/forms/{form_type}", response_model=SubmissionResponse)
    async def submit_form(form_type: str, payload: SubmissionPayload, request: Request):
        """Admit, store and dispatch a validated form submission."""
        if form_type not in templates.SERVICE_NAMES:
            raise HTTPException(status.HTTP_404_NOT_FOUND, "Unknown form type")
        result = await _service().submit(
            payload.data,
            form_type,
            payload.locale,
            client_ip=_client_ip(request),
            session_id=payload.session_id,
            analytics_consent=payload.analytics_consent,
        )
        return JSONResponse(status_code=result.status_code, content=result.as_dict())

    @api.get("/health")
    async def health():
        """Health check endpoint for container monitoring (no authentication required)."""
        report = await _service().health()
        code = 503 if report["status"] == "unhealthy" else 200
        return JSONResponse(status_code=code, content=report)

    @commands.post("/process-failed", response_model=SweepResponse, response_model_exclude_none=True)
    async def process_failed():
        """Run one retry sweep and return its counters."""
        report = await _service().process_failed_deliveries()
        return SweepResponse(ok=True, **report.as_dict())

    @commands.post("/run-now", response_model=BasicOkResponse, response_model_exclude_none=True)
    async def run_now():
        """Wake the background retry loop."""
        _service().run_now()
        return BasicOkResponse(ok=True)

    @api.get(
        "/failed-deliveries",
        response_model=FailedDeliveriesResponse,
        response_model_exclude_none=True,
        dependencies=[auth_dependency],
    )
    async def failed_deliveries(
        status: Optional[Literal["pending", "sent", "failed"]] = None,
        limit: int = 100,
    ):
        """List queued deliveries, oldest first."""
        records = await _service().store.list_records(
            DeliveryStatus(status) if status else None, limit
        )
        deliveries = [
            FailedDeliveryInfo(
                id=r.id,
                channel=r.channel.value,
                form_type=r.payload.form_type,
                locale=r.payload.locale,
                last_error=r.last_error,
                retry_count=r.retry_count,
                status=r.status.value,
                created_at=r.created_at,
                updated_at=r.updated_at,
            )
            for r in records
        ]
        return FailedDeliveriesResponse(ok=True, deliveries=deliveries)

    @admin.get("/metrics")
    async def admin_metrics():
        """Submission averages, duplicate attempts, queue counters and hourly window metrics."""
        return {"ok": True, **await _service().stats()}

    @admin.post("/smtp/verify", response_model=BasicOkResponse, response_model_exclude_none=True)
    async def smtp_verify():
        ok = await _service().verify_smtp()
        return BasicOkResponse(ok=ok, error=None if ok else "SMTP connection failed")

    @admin.post("/smtp/send-test", response_model=TestEmailResponse, response_model_exclude_none=True)
    async def smtp_send_test(payload: TestEmailPayload):
        try:
            receipt = await _service().send_test_email(payload.to)
        except TransientDeliveryFailure as exc:
            return TestEmailResponse(ok=False, error=str(exc))
        return TestEmailResponse(ok=True, receipt=receipt)

    @api.get("/metrics", dependencies=[auth_dependency])
    async def metrics():
        """Expose Prometheus metrics collected by the relay."""
        return Response(
            content=_service().metrics.generate_latest(), media_type="text/plain; version=0.0.4"
        )

    api.include_router(commands)
    api.include_router(admin)
    return api
