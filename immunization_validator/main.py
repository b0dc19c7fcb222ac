"""
Immunization Validator API

Validates patient immunization records against state school-entry
requirements (Massachusetts rules are bundled).

This API provides:
- Single and batch validation with tri-state compliance status
- Date (birthday/month) and interval conditions between doses
- Alternate schedules with FLEXIBLE or STRICT fallback
- Exemption handling
- Structured logging with masked patient identifiers
"""

import time
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from immunization_validator.config.config import Settings, get_settings
from immunization_validator.config.logging_config import (
    configure_logging,
    get_logger,
    log_request_context,
)
from immunization_validator.models.models import (
    BatchSummary,
    BatchValidationRequest,
    BatchValidationResponse,
    ErrorResponse,
    HealthResponse,
    HealthStatus,
    Patient,
    ResponseMode,
    ValidationResponse,
)
from immunization_validator.models.results import ComplianceStatus
from immunization_validator.services.requirements_service import get_requirements_service
from immunization_validator.services.validation_service import (
    ValidationService,
    get_validation_service,
)

# Configure logging before anything else
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Loads the requirements catalogue at startup so a broken file fails
    the process instead of the first request.
    """
    settings = get_settings()

    # Startup
    logger.info(
        "Application starting",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
        config=settings.get_safe_config_dict(),
    )
    requirements = get_requirements_service()
    logger.info("Requirements catalogue ready", states=requirements.states())

    yield

    # Shutdown
    logger.info("Application shutting down")


def create_app(settings: Settings | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Optional settings override for testing.

    Returns:
        Configured FastAPI application.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        description=__doc__,
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request logging middleware
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all requests with timing and context."""
        request_id = str(uuid4())
        start_time = time.perf_counter()

        # Bind request context for all logs in this request
        log_request_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)

        processing_time = int((time.perf_counter() - start_time) * 1000)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Processing-Time-Ms"] = str(processing_time)

        logger.info(
            "Request completed",
            status_code=response.status_code,
            processing_time_ms=processing_time,
        )

        return response

    # Exception handlers
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle request validation errors with structured response."""
        logger.warning("Request validation failed", error_count=len(exc.errors()))
        return JSONResponse(
            status_code=422,
            content=ErrorResponse(
                error="VALIDATION_ERROR",
                message="Request validation failed",
                details=[
                    {"loc": list(error.get("loc", [])), "msg": error.get("msg"), "type": error.get("type")}
                    for error in exc.errors()
                ],
                request_id=request.headers.get("X-Request-ID"),
            ).model_dump(mode="json"),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle HTTP exceptions with structured response."""
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                error=f"HTTP_{exc.status_code}",
                message=str(exc.detail),
                request_id=request.headers.get("X-Request-ID"),
            ).model_dump(mode="json"),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions."""
        logger.exception("Unhandled exception", error=str(exc))
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="INTERNAL_ERROR",
                message="An unexpected error occurred",
                request_id=request.headers.get("X-Request-ID"),
            ).model_dump(mode="json"),
        )

    # Register routes
    register_routes(app)

    return app


def register_routes(app: FastAPI) -> None:
    """Register all API routes."""

    @app.get("/", tags=["Root"])
    def root():
        """Root endpoint with API information."""
        settings = get_settings()
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "status": "operational",
            "docs": "/docs" if settings.debug else "disabled",
        }

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    def health_check(settings: Settings = Depends(get_settings)) -> HealthResponse:
        """
        Health check endpoint for monitoring.

        Returns system health status and component checks.
        """
        try:
            requirements_loaded = bool(get_requirements_service().states())
        except Exception as e:
            logger.error("Requirements catalogue unavailable", error=str(e))
            requirements_loaded = False

        checks = {
            "api": True,
            "requirements_loaded": requirements_loaded,
        }

        # Determine overall status
        if all(checks.values()):
            status = HealthStatus.HEALTHY
        elif checks["api"]:
            status = HealthStatus.DEGRADED
        else:
            status = HealthStatus.UNHEALTHY

        return HealthResponse(
            status=status,
            version=settings.app_version,
            environment=settings.environment,
            alternate_mode=settings.alternate_behavior_mode.value,
            checks=checks,
        )

    @app.get("/api/v1/validate/health", response_class=PlainTextResponse, tags=["Validation"])
    def validation_health() -> str:
        """Liveness probe for the validation endpoints."""
        return "OK"

    @app.post(
        "/api/v1/validate/single",
        response_model=ValidationResponse,
        response_model_exclude_none=True,
        tags=["Validation"],
    )
    def validate_single(
        patient: Patient,
        state: str = Query(..., min_length=1, description="State code (e.g. MA)"),
        age: int | None = Query(default=None, ge=0, le=150, description="Age in years"),
        school_year: str | None = Query(default=None, alias="schoolYear", description="School year"),
        response_mode: ResponseMode = Query(
            default=ResponseMode.SIMPLE, alias="responseMode", description="simple or detailed"
        ),
        service: ValidationService = Depends(get_validation_service),
    ) -> ValidationResponse:
        """
        Validate one patient's immunization record.

        **Status values:**
        - `valid`: every requirement is satisfied
        - `invalid`: at least one requirement is definitely not satisfied
        - `undetermined`: at least one requirement could not be evaluated
          (for example a missing birth date)
        """
        logger.info("Single validation request received", state=state, school_year=school_year)
        return service.validate(
            patient,
            state,
            age=age,
            school_year=school_year,
            include_details=response_mode is ResponseMode.DETAILED,
        )

    @app.post(
        "/api/v1/validate/batch",
        response_model=BatchValidationResponse,
        response_model_exclude_none=True,
        tags=["Validation"],
    )
    def validate_batch(
        request: BatchValidationRequest,
        service: ValidationService = Depends(get_validation_service),
    ) -> BatchValidationResponse:
        """
        Validate several patients against the same state and age/school year.

        Results are returned in the order the patients were submitted.
        """
        logger.info(
            "Batch validation request received",
            state=request.state,
            patient_count=len(request.patients),
        )
        results = service.validate_batch(
            request.patients,
            request.state,
            age=request.age,
            school_year=request.school_year,
            include_details=request.response_mode is ResponseMode.DETAILED,
        )
        return BatchValidationResponse(results=results, summary=summarize(results))


def summarize(results: list[ValidationResponse]) -> BatchSummary:
    """Count statuses across a batch."""
    return BatchSummary(
        total=len(results),
        valid=sum(1 for r in results if r.status is ComplianceStatus.VALID),
        invalid=sum(1 for r in results if r.status is ComplianceStatus.INVALID),
        undetermined=sum(1 for r in results if r.status is ComplianceStatus.UNDETERMINED),
    )


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "immunization_validator.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
