"""
Lifeline: FastAPI Application Entry Point

This module exposes the safety pipeline over HTTP:
- /health, /config, /models, /metrics: service introspection
- /moderate: moderation decision only
- /triage: moderation plus oversight evaluation
- /oversight/...: human review cases and the expert roster
- /audit/...: audit queries, analytics, compliance and integrity reports

The application uses a lifespan context manager to:
1. Load configuration and configure logging
2. Build the SafetyPipeline (registry, engine, oversight, audit)
3. Initialize the scoring models and start background maintenance
4. Flush the audit trail on shutdown
"""

from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
import logging
import time

from fastapi import FastAPI, Depends, Query, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from lifeline import __version__
from lifeline.audit import AuditQueryError
from lifeline.config import Settings, get_settings, configure_logging
from lifeline.metrics import MetricsReporter
from lifeline.pipeline import SafetyPipeline
from lifeline.schemas.api import (
    ComponentHealth,
    ErrorCodes,
    ErrorResponse,
    HealthResponse,
    MetricsResponse,
    TriageResponse,
)
from lifeline.schemas.audit import (
    AuditAnalytics,
    AuditEntry,
    AuditQuery,
    ComplianceReport,
    IntegrityReport,
    QueryResult,
    TimeRange,
)
from lifeline.schemas.moderation import ModerationRequest, ModerationResult
from lifeline.schemas.oversight import (
    AssignmentResult,
    EvaluateRequest,
    ExpertProfile,
    OversightCase,
    OversightEvaluation,
    OversightMetrics,
    ResolutionResult,
    ResolveRequest,
    ReviewRequest,
    ReviewResult,
)

logger = logging.getLogger(__name__)

_start_time: float = 0.0

DEFAULT_WINDOW_HOURS = 24.0

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler for startup/shutdown events.

    On startup:
    - Loads configuration from environment
    - Configures logging
    - Builds and starts the safety pipeline

    On shutdown:
    - Stops background tasks and flushes pending audit entries
    """
    settings = get_settings()
    configure_logging(settings)

    logger.info("=" * 60)
    logger.info("Lifeline starting up...")
    logger.info("=" * 60)
    logger.info(f"Latency budget: {settings.latency_budget_ms}ms")
    logger.info(
        f"Risk thresholds: block>={settings.block_risk_threshold}, "
        f"flag>={settings.flag_risk_threshold}"
    )
    logger.info(f"LLM scoring: {'enabled' if settings.llm_scoring_enabled else 'disabled'}")
    logger.info(
        f"Semantic scoring: {'enabled' if settings.semantic_scoring_enabled else 'disabled'}"
    )
    logger.info(f"Audit storage: {settings.audit_log_dir or 'in-memory'}")
    logger.info(f"Debug mode: {'enabled' if settings.debug else 'disabled'}")

    pipeline = SafetyPipeline(settings)
    await pipeline.start()
    app.state.pipeline = pipeline

    for metadata in pipeline.registry.list_metadata():
        logger.info(f"  - {metadata.qualified_name} (weight {metadata.weight})")

    global _start_time
    _start_time = time.time()

    logger.info("=" * 60)
    logger.info("Lifeline ready to accept requests")

    yield

    logger.info("Lifeline shutting down...")
    pipeline.stop()


app = FastAPI(
    title="Lifeline",
    description="Crisis-aware content safety for peer-support chat",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_pipeline(request: Request) -> SafetyPipeline:
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(
            status_code=503,
            detail={
                "code": ErrorCodes.SERVICE_UNAVAILABLE,
                "message": "Safety pipeline is not running",
            },
        )
    return pipeline


def resolve_time_range(
    hours: float | None = Query(
        default=None, gt=0, le=24 * 366, description="Window ending now, in hours"
    ),
    start: datetime | None = Query(default=None, description="Window start (ISO 8601)"),
    end: datetime | None = Query(default=None, description="Window end (ISO 8601)"),
) -> TimeRange:
    """
    Build the reporting window from query parameters.

    Explicit start/end win over ``hours``; a missing end means now and a
    missing start means 24 hours before the end.
    """
    try:
        if start is None and end is None:
            return TimeRange.last(hours or DEFAULT_WINDOW_HOURS)
        window_end = end or datetime.now(timezone.utc)
        window_start = start or window_end - timedelta(hours=hours or DEFAULT_WINDOW_HOURS)
        return TimeRange(start=window_start, end=window_end)
    except ValidationError as e:
        raise HTTPException(
            status_code=400,
            detail={"code": ErrorCodes.INVALID_QUERY, "message": e.errors()[0]["msg"]},
        )


def _not_found(kind: str, identifier: str) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail={"code": ErrorCodes.NOT_FOUND, "message": f"{kind} not found: {identifier}"},
    )


def _invalid_query(e: Exception) -> HTTPException:
    return HTTPException(
        status_code=400,
        detail={"code": ErrorCodes.INVALID_QUERY, "message": str(e)},
    )


# =============================================================================
# SERVICE
# =============================================================================


@app.get("/")
async def root():
    """
    Root endpoint with API information.
    """
    return {
        "name": "Lifeline",
        "description": "Crisis-aware content safety for peer-support chat",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
        "config": "/config",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check pipeline health and component status.",
)
async def health_check(pipeline: SafetyPipeline = Depends(get_pipeline)):
    """
    Health check endpoint for monitoring and orchestration.

    Checks:
    - Scoring models registered and latency within budget
    - Experts on the roster
    - Audit buffer and flush failures
    - Background maintenance tasks running

    Used for Kubernetes readiness/liveness probes and load balancer health checks.
    """
    components = []
    overall_status = "healthy"

    aggregated = pipeline.metrics.get_aggregated()
    model_count = len(pipeline.registry)
    if model_count == 0:
        components.append(
            ComponentHealth(name="moderation", status="unhealthy", message="No scoring models")
        )
        overall_status = "unhealthy"
    else:
        within_budget = pipeline.engine.validate_performance()
        components.append(
            ComponentHealth(
                name="moderation",
                status="healthy" if within_budget else "degraded",
                latency_ms=aggregated.average_latency_ms,
                message=f"{model_count} models registered, {pipeline.engine.cache_size} cached results",
            )
        )
        if not within_budget:
            overall_status = "degraded"

    oversight = pipeline.oversight.metrics()
    experts = len(pipeline.oversight.list_experts())
    oversight_status = "healthy" if experts else "degraded"
    components.append(
        ComponentHealth(
            name="oversight",
            status=oversight_status,
            message=f"{experts} experts, {oversight.pending_cases} open cases",
        )
    )
    if oversight_status != "healthy" and overall_status == "healthy":
        overall_status = "degraded"

    audit = pipeline.recorder.metrics()
    audit_status = "healthy" if audit.failed_flushes == 0 else "degraded"
    components.append(
        ComponentHealth(
            name="audit",
            status=audit_status,
            latency_ms=audit.average_write_latency_ms,
            message=f"{audit.buffered_entries} buffered, {audit.failed_flushes} failed flushes",
        )
    )
    if audit_status != "healthy" and overall_status == "healthy":
        overall_status = "degraded"

    stopped = [task.name for task in pipeline.tasks if not task.running]
    components.append(
        ComponentHealth(
            name="maintenance",
            status="healthy" if not stopped else "degraded",
            message="all tasks running" if not stopped else f"stopped: {', '.join(stopped)}",
        )
    )
    if stopped and overall_status == "healthy":
        overall_status = "degraded"

    uptime = time.time() - _start_time if _start_time > 0 else 0.0

    return HealthResponse(
        status=overall_status,
        service="lifeline-safety",
        version=__version__,
        components=components,
        uptime_seconds=uptime,
    )


@app.get("/config")
async def show_config(settings: Settings = Depends(get_settings)):
    """
    Returns non-sensitive configuration values.

    API keys and the audit hashing salt are SecretStr and are NOT exposed
    in this endpoint. This is safe to call for debugging configuration issues.
    """
    return {
        "moderation": {
            "latency_budget_ms": settings.latency_budget_ms,
            "cache_ttl_seconds": settings.cache_ttl_seconds,
            "cache_max_entries": settings.cache_max_entries,
            "block_risk_threshold": settings.block_risk_threshold,
            "flag_risk_threshold": settings.flag_risk_threshold,
        },
        "scoring": {
            "llm_enabled": settings.llm_scoring_enabled,
            "llm_provider": settings.llm_provider,
            "llm_model": settings.llm_model,
            "semantic_enabled": settings.semantic_scoring_enabled,
            "embedding_model": settings.embedding_model,
            "similarity_threshold": settings.similarity_threshold,
        },
        "oversight": {
            "low_confidence_threshold": settings.low_confidence_threshold,
            "seed_default_experts": settings.seed_default_experts,
        },
        "audit": {
            "buffer_size": settings.audit_buffer_size,
            "flush_interval_seconds": settings.audit_flush_interval_seconds,
            "storage": "jsonl" if settings.audit_log_dir else "memory",
            "retention_policy": settings.retention_policy,
            "regulations": settings.audit_regulations,
        },
        "deployment": {
            "environment": settings.environment,
            "region": settings.region,
            "node_id": settings.node_id,
        },
        "server": {
            "host": settings.host,
            "port": settings.port,
            "debug": settings.debug,
        },
        "logging": {
            "level": settings.log_level,
        },
        "api_keys_configured": {
            "groq": bool(settings.groq_api_key and settings.groq_api_key.get_secret_value()),
            "openai": bool(
                settings.openai_api_key and settings.openai_api_key.get_secret_value()
            ),
        },
    }


@app.get("/models")
async def list_models(pipeline: SafetyPipeline = Depends(get_pipeline)):
    """
    List all registered scoring models with their metadata.

    The first model listed by ``primary`` is the one used outside ensemble mode.
    """
    registry = pipeline.registry
    primary = registry.primary_model()

    return {
        "models": [
            {
                "name": metadata.name,
                "version": metadata.version,
                "kind": metadata.kind.value,
                "weight": metadata.weight,
                "categories": metadata.categories,
                "timeout_ms": metadata.timeout_ms,
            }
            for metadata in registry.list_metadata()
        ],
        "primary": primary.name if primary else None,
        "total_models": len(registry),
    }


@app.get(
    "/metrics",
    response_model=MetricsResponse,
    summary="Get metrics",
    description="Retrieve aggregated moderation metrics.",
)
async def get_metrics(pipeline: SafetyPipeline = Depends(get_pipeline)):
    """
    Return aggregated moderation metrics: counts by action, crisis level
    and message type, cache hit rate, and latency against the budget.
    """
    return MetricsReporter(pipeline.metrics).generate_report()


# =============================================================================
# MODERATION
# =============================================================================


@app.post(
    "/moderate",
    response_model=ModerationResult,
    responses=_ERROR_RESPONSES,
    summary="Moderate content",
    description="Assess one message and return the moderation decision.",
)
async def moderate_content(
    request: ModerationRequest, pipeline: SafetyPipeline = Depends(get_pipeline)
):
    """
    Main content moderation endpoint.

    Returns the decision only; nothing is queued for human review. The
    engine never raises: total model failure comes back as a conservative
    system-error result rather than a 500.
    """
    return await pipeline.moderate(request)


@app.post(
    "/triage",
    response_model=TriageResponse,
    responses=_ERROR_RESPONSES,
    summary="Moderate and triage",
    description="Moderate a message and open an oversight case when warranted.",
)
async def triage_content(
    request: ModerationRequest, pipeline: SafetyPipeline = Depends(get_pipeline)
):
    return await pipeline.process(request)


# =============================================================================
# OVERSIGHT
# =============================================================================


@app.post("/oversight/evaluate", response_model=OversightEvaluation, responses=_ERROR_RESPONSES)
async def evaluate_oversight(
    body: EvaluateRequest, pipeline: SafetyPipeline = Depends(get_pipeline)
):
    """Evaluate an existing moderation result for human review."""
    return pipeline.oversight.evaluate(body.content, body.result, body.context)


@app.get("/oversight/queue", response_model=list[OversightCase])
async def oversight_queue(pipeline: SafetyPipeline = Depends(get_pipeline)):
    """Unassigned cases, next-to-serve first."""
    return pipeline.oversight.pending_cases()


@app.get("/oversight/cases/{case_id}", response_model=OversightCase, responses=_ERROR_RESPONSES)
async def get_case(case_id: str, pipeline: SafetyPipeline = Depends(get_pipeline)):
    case = pipeline.oversight.get_case(case_id)
    if case is None:
        raise _not_found("Case", case_id)
    return case


@app.post(
    "/oversight/cases/{case_id}/assign",
    response_model=AssignmentResult,
    responses=_ERROR_RESPONSES,
)
async def assign_case(case_id: str, pipeline: SafetyPipeline = Depends(get_pipeline)):
    if pipeline.oversight.get_case(case_id) is None:
        raise _not_found("Case", case_id)
    return pipeline.oversight.assign_expert(case_id)


@app.post(
    "/oversight/cases/{case_id}/review",
    response_model=ReviewResult,
    responses=_ERROR_RESPONSES,
)
async def review_case(
    case_id: str, body: ReviewRequest, pipeline: SafetyPipeline = Depends(get_pipeline)
):
    if pipeline.oversight.get_case(case_id) is None:
        raise _not_found("Case", case_id)
    return pipeline.oversight.start_review(case_id, body.expert_id)


@app.post(
    "/oversight/cases/{case_id}/resolve",
    response_model=ResolutionResult,
    responses=_ERROR_RESPONSES,
)
async def resolve_case(
    case_id: str, body: ResolveRequest, pipeline: SafetyPipeline = Depends(get_pipeline)
):
    """
    Record an expert's resolution.

    Unknown cases and experts are 404s; a case that is already resolved or
    assigned to someone else comes back as an unsuccessful ResolutionResult.
    """
    oversight = pipeline.oversight
    if oversight.get_case(case_id) is None:
        raise _not_found("Case", case_id)
    if all(expert.id != body.expert_id for expert in oversight.list_experts()):
        raise _not_found("Expert", body.expert_id)
    return oversight.resolve(case_id, body.resolution, body.expert_id)


@app.get("/oversight/experts", response_model=list[ExpertProfile])
async def list_experts(pipeline: SafetyPipeline = Depends(get_pipeline)):
    return pipeline.oversight.list_experts()


@app.post(
    "/oversight/experts",
    response_model=ExpertProfile,
    status_code=201,
    responses=_ERROR_RESPONSES,
)
async def register_expert(
    expert: ExpertProfile, pipeline: SafetyPipeline = Depends(get_pipeline)
):
    """Add or replace an expert; queued cases are offered to the new capacity."""
    try:
        return pipeline.oversight.register_expert(expert)
    except ValueError as e:
        raise HTTPException(
            status_code=400,
            detail={"code": ErrorCodes.VALIDATION_ERROR, "message": str(e)},
        )


@app.get("/oversight/metrics", response_model=OversightMetrics)
async def oversight_metrics(pipeline: SafetyPipeline = Depends(get_pipeline)):
    return pipeline.oversight.metrics()


# =============================================================================
# AUDIT
# =============================================================================


@app.post("/audit/query", response_model=QueryResult, responses=_ERROR_RESPONSES)
async def query_audit(query: AuditQuery, pipeline: SafetyPipeline = Depends(get_pipeline)):
    """
    Filter, sort and page audit entries.

    Returns 400 INVALID_QUERY when a lower bound exceeds its upper bound.
    """
    try:
        return pipeline.recorder.query(query)
    except AuditQueryError as e:
        raise _invalid_query(e)


@app.get("/audit/entries/{entry_id}", response_model=AuditEntry, responses=_ERROR_RESPONSES)
async def get_audit_entry(entry_id: str, pipeline: SafetyPipeline = Depends(get_pipeline)):
    entry = pipeline.recorder.get_entry(entry_id)
    if entry is None:
        raise _not_found("Audit entry", entry_id)
    return entry


@app.get("/audit/analytics", response_model=AuditAnalytics, responses=_ERROR_RESPONSES)
async def audit_analytics(
    time_range: TimeRange = Depends(resolve_time_range),
    pipeline: SafetyPipeline = Depends(get_pipeline),
):
    return pipeline.recorder.analytics(time_range)


@app.get(
    "/audit/compliance/{regulation}",
    response_model=ComplianceReport,
    responses=_ERROR_RESPONSES,
)
async def audit_compliance(
    regulation: str,
    time_range: TimeRange = Depends(resolve_time_range),
    pipeline: SafetyPipeline = Depends(get_pipeline),
):
    try:
        return pipeline.recorder.compliance_report(regulation, time_range)
    except AuditQueryError as e:
        raise _invalid_query(e)


@app.get("/audit/integrity", response_model=IntegrityReport, responses=_ERROR_RESPONSES)
async def audit_integrity(
    hours: float | None = Query(default=None, gt=0, description="Only check the last N hours"),
    pipeline: SafetyPipeline = Depends(get_pipeline),
):
    """Validate stored entries; without ``hours`` the whole trail is checked."""
    time_range = TimeRange.last(hours) if hours is not None else None
    return pipeline.recorder.validate_integrity(time_range)


# =============================================================================
# ERROR HANDLERS
# =============================================================================


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Handle Pydantic validation errors.

    Returns a consistent error response format with the first validation
    error's details. Oversized message content gets its own code so chat
    clients can tell it apart from malformed requests.
    """
    errors = exc.errors()
    first_error = errors[0] if errors else {}
    loc = [str(part) for part in first_error.get("loc", [])]

    code = ErrorCodes.VALIDATION_ERROR
    if first_error.get("type") == "string_too_long" and loc[-1:] == ["content"]:
        code = ErrorCodes.CONTENT_TOO_LONG

    return JSONResponse(
        status_code=422,
        content={
            "error": {
                "code": code,
                "message": first_error.get("msg", "Validation failed"),
                "field": ".".join(loc),
            }
        },
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """
    Handle HTTP exceptions with consistent format.

    Ensures all HTTP errors, including unmatched routes, return the same
    error envelope for predictable client-side error handling.
    """
    detail = exc.detail
    if isinstance(detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": detail})
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": "HTTP_ERROR", "message": str(detail)}},
    )


@app.exception_handler(Exception)
async def general_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """
    Handle unexpected exceptions.

    Logs the full exception for debugging and returns a generic error
    response to avoid leaking implementation details.
    """
    logger.exception("Unhandled exception")
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": ErrorCodes.INTERNAL_ERROR,
                "message": "An unexpected error occurred",
            }
        },
    )
