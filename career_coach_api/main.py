"""FastAPI application entrypoint for the Career Coach API."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import APIRouter, Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from career_coach_api import __version__
from career_coach_api.analysis import AnalysisOrchestrator
from career_coach_api.config import Settings, get_settings
from career_coach_api.dispatcher import (
    FallbackDispatcher,
    NoProvidersConfiguredError,
    ProviderExhaustedError,
    providers_from_settings,
)
from career_coach_api.errors import ApiError, NotFoundError, ValidationError
from career_coach_api.gemini_client import Attachment, GeminiClient
from career_coach_api.interview import InterviewOrchestrator
from career_coach_api.models import (
    AnalysisDetail,
    AnalyzeResponse,
    Application,
    ApplicationCreate,
    HealthResponse,
    Interview,
    InterviewCreate,
    InterviewDetail,
    InterviewMessage,
    MessageCreate,
    Portfolio,
    PortfolioCreate,
    Resume,
    RoadmapItem,
    RoadmapStatusUpdate,
    ScanRequest,
    ScanResponse,
)
from career_coach_api.observability import generate_trace_id, set_trace_id
from career_coach_api.output_parser import MalformedModelOutput
from career_coach_api.scan_cache import ScanCache
from career_coach_api.sql_store import SqlStore
from career_coach_api.store import MemoryStore, Store
from career_coach_api.uploads import UploadArchive

logging.basicConfig(format="%(message)s", level=get_settings().log_level)

# Configure structlog
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()

# Rate limiter
limiter = Limiter(key_func=get_remote_address)

RATE_LIMITED_MESSAGE = "The AI service is busy (rate limited). Please retry in a minute."
GENERIC_FAILURE_MESSAGE = "Analysis failed. Please try again."
NOT_CONFIGURED_MESSAGE = "AI service not configured. Please contact the administrator."
DEFAULT_FILE_NAME = "pasted-resume.txt"


def _rate_limit() -> str:
    return f"{get_settings().rate_limit_per_minute}/minute"


def build_store(settings: Settings) -> Store:
    if settings.storage_backend == "database":
        return SqlStore.from_url(settings.database_url)
    return MemoryStore()


# =============================================================================
# Dependencies
# =============================================================================


def get_store(request: Request) -> Store:
    return request.app.state.store


def get_analysis_service(request: Request) -> AnalysisOrchestrator:
    return request.app.state.analysis


def get_interview_service(request: Request) -> InterviewOrchestrator:
    return request.app.state.interviews


# =============================================================================
# Error Handlers
# =============================================================================


def _error_response(status_code: int, message: str, field: str | None = None) -> JSONResponse:
    body: dict[str, str] = {"message": message}
    if field:
        body["field"] = field
    return JSONResponse(status_code=status_code, content=body)


async def api_error_handler(_request: Request, exc: ApiError) -> JSONResponse:
    return _error_response(exc.status_code, exc.message, exc.field)


async def request_validation_handler(
    _request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Render schema validation failures as 400 with the offending field."""
    errors = exc.errors()
    if not errors:
        return _error_response(400, "Invalid request")
    first = errors[0]
    loc = [str(part) for part in first.get("loc", ())]
    if loc and loc[0] in ("body", "query", "path", "form"):
        loc = loc[1:]
    return _error_response(400, first.get("msg", "Invalid request"), ".".join(loc) or None)


async def provider_exhausted_handler(
    _request: Request, exc: ProviderExhaustedError
) -> JSONResponse:
    if exc.rate_limited:
        return _error_response(429, RATE_LIMITED_MESSAGE)
    return _error_response(500, GENERIC_FAILURE_MESSAGE)


async def not_configured_handler(
    _request: Request, _exc: NoProvidersConfiguredError
) -> JSONResponse:
    return _error_response(503, NOT_CONFIGURED_MESSAGE)


async def malformed_output_handler(_request: Request, exc: MalformedModelOutput) -> JSONResponse:
    # Raw model text stays in the logs; it may carry injected content.
    logger.error("Unusable model output", reason=exc.reason, raw_text=exc.raw_text[:4000])
    return _error_response(500, GENERIC_FAILURE_MESSAGE)


# =============================================================================
# Resume & Analysis Endpoints
# =============================================================================

router = APIRouter(prefix="/api")


@router.post("/resumes/analyze", status_code=201, response_model=AnalyzeResponse)
@limiter.limit(_rate_limit)
async def analyze_resume(
    request: Request,
    target_role: str = Form(..., alias="targetRole"),
    content: str = Form(""),
    file_name: str | None = Form(None, alias="fileName"),
    user_id: int | None = Form(None, alias="userId"),
    file: UploadFile | None = File(None),
    analysis: AnalysisOrchestrator = Depends(get_analysis_service),
) -> AnalyzeResponse:
    """
    Analyze a resume for a target role.

    - **targetRole**: The role to assess against
    - **content**: Pasted resume text (optional when a file is uploaded)
    - **file**: Uploaded resume; text files are read as content, other types
      are sent to the model as an attachment
    """
    settings: Settings = request.app.state.settings
    raw_file: bytes | None = None
    attachment: Attachment | None = None

    if file is not None and file.filename:
        raw_file = await file.read()
        if len(raw_file) > settings.max_upload_bytes:
            raise ValidationError("Uploaded file is too large", field="file")
        mime_type = file.content_type or "application/octet-stream"
        if mime_type.startswith("text/"):
            if not content.strip():
                content = raw_file.decode("utf-8", errors="replace")
        elif raw_file:
            attachment = Attachment(mime_type=mime_type, data=raw_file)
        file_name = file_name or file.filename

    logger.info(
        "Analysis request received",
        target_role=target_role,
        content_chars=len(content),
        upload_bytes=len(raw_file) if raw_file else 0,
    )

    return await analysis.analyze(
        target_role=target_role,
        file_name=file_name or DEFAULT_FILE_NAME,
        content=content,
        attachment=attachment,
        user_id=user_id,
        raw_file=raw_file,
    )


@router.post("/resumes/scan", response_model=ScanResponse)
@limiter.limit(_rate_limit)
async def scan_resume(
    request: Request,
    scan_request: ScanRequest,
    analysis: AnalysisOrchestrator = Depends(get_analysis_service),
) -> ScanResponse:
    """Infer candidate name, a suggested role and top skills to pre-fill the form."""
    return await analysis.scan(scan_request.content)


@router.get("/resumes/latest", response_model=AnalysisDetail)
async def get_latest_analysis(
    analysis: AnalysisOrchestrator = Depends(get_analysis_service),
) -> AnalysisDetail:
    """Analysis of the most recently submitted resume (no-signup flow)."""
    detail = analysis.get_latest_analysis()
    if detail is None:
        raise NotFoundError("No analyzed resume found")
    return detail


@router.get("/resumes/{resume_id}", response_model=Resume)
async def get_resume(
    resume_id: int,
    analysis: AnalysisOrchestrator = Depends(get_analysis_service),
) -> Resume:
    resume = analysis.get_resume(resume_id)
    if resume is None:
        raise NotFoundError("Resume not found")
    return resume


@router.get("/resumes/{resume_id}/analysis", response_model=AnalysisDetail)
async def get_analysis(
    resume_id: int,
    analysis: AnalysisOrchestrator = Depends(get_analysis_service),
) -> AnalysisDetail:
    detail = analysis.get_analysis(resume_id)
    if detail is None:
        raise NotFoundError("Analysis not found")
    return detail


@router.patch("/roadmap/{item_id}/status", response_model=RoadmapItem)
async def update_roadmap_status(
    item_id: int,
    update: RoadmapStatusUpdate,
    analysis: AnalysisOrchestrator = Depends(get_analysis_service),
) -> RoadmapItem:
    item = analysis.update_roadmap_status(item_id, update.status)
    if item is None:
        raise NotFoundError("Roadmap item not found")
    return item


# =============================================================================
# Interview Endpoints
# =============================================================================


@router.post("/interviews", status_code=201, response_model=Interview)
@limiter.limit(_rate_limit)
async def create_interview(
    request: Request,
    interview_request: InterviewCreate,
    interviews: InterviewOrchestrator = Depends(get_interview_service),
) -> Interview:
    """Start a mock interview; the interviewer's opening message is generated immediately."""
    return await interviews.create_interview(
        resume_id=interview_request.resume_id,
        user_id=interview_request.user_id,
    )


@router.get("/interviews/{interview_id}", response_model=InterviewDetail)
async def get_interview(
    interview_id: int,
    interviews: InterviewOrchestrator = Depends(get_interview_service),
) -> InterviewDetail:
    detail = interviews.get_interview(interview_id)
    if detail is None:
        raise NotFoundError("Interview not found")
    return detail


@router.post(
    "/interviews/{interview_id}/messages",
    status_code=201,
    response_model=InterviewMessage,
)
@limiter.limit(_rate_limit)
async def add_interview_message(
    request: Request,
    interview_id: int,
    message: MessageCreate,
    interviews: InterviewOrchestrator = Depends(get_interview_service),
) -> InterviewMessage:
    """Send the candidate's answer; returns the interviewer's reply."""
    reply = await interviews.add_message(interview_id, message.content)
    if reply is None:
        raise NotFoundError("Interview not found")
    return reply


# =============================================================================
# Portfolio & Application Endpoints
# =============================================================================


@router.post("/portfolios", status_code=201, response_model=Portfolio)
async def create_portfolio(
    portfolio: PortfolioCreate,
    store: Store = Depends(get_store),
) -> Portfolio:
    return store.create_portfolio(portfolio)


@router.get("/users/{user_id}/portfolio", response_model=Portfolio)
async def get_portfolio(user_id: int, store: Store = Depends(get_store)) -> Portfolio:
    portfolio = store.get_portfolio_by_user_id(user_id)
    if portfolio is None:
        raise NotFoundError("Portfolio not found")
    return portfolio


@router.post("/applications", status_code=201, response_model=Application)
async def create_application(
    application: ApplicationCreate,
    store: Store = Depends(get_store),
) -> Application:
    return store.create_application(application)


@router.get("/users/{user_id}/applications", response_model=list[Application])
async def list_applications(user_id: int, store: Store = Depends(get_store)) -> list[Application]:
    """Applications for a user, most recent first."""
    return store.get_applications(user_id)


# =============================================================================
# Health Endpoints
# =============================================================================

health_router = APIRouter()


@health_router.get("/health", response_model=HealthResponse)
@health_router.get("/api/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Report configuration health; no provider is called."""
    settings: Settings = request.app.state.settings
    dispatcher: FallbackDispatcher = request.app.state.dispatcher
    providers = len(dispatcher.providers)

    return HealthResponse(
        status="healthy" if providers else "degraded",
        storage_backend=settings.storage_backend,
        llm_providers=providers,
        mock_llm=settings.mock_llm,
        version=__version__,
    )


# =============================================================================
# Application Factory
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler for startup/shutdown."""
    logger.info(
        "Starting Career Coach API",
        version=__version__,
        storage_backend=app.state.settings.storage_backend,
        llm_providers=len(app.state.dispatcher.providers),
    )

    gemini_client: GeminiClient | None = app.state.gemini_client
    if gemini_client is not None:
        await gemini_client.connect()

    yield

    logger.info("Shutting down Career Coach API")
    if gemini_client is not None:
        await gemini_client.close()
    if isinstance(app.state.store, SqlStore):
        app.state.store.close()


def create_app(
    settings: Settings | None = None,
    store: Store | None = None,
    dispatcher: FallbackDispatcher | None = None,
    enable_metrics: bool = True,
) -> FastAPI:
    """Build an application with its own store and dispatcher.

    Passing ``store`` and ``dispatcher`` lets tests run isolated instances
    side by side.
    """
    settings = settings or get_settings()
    store = store if store is not None else build_store(settings)

    gemini_client: GeminiClient | None = None
    if dispatcher is None:
        gemini_client = GeminiClient(
            base_url=settings.gemini_base_url,
            max_output_tokens=settings.llm_max_output_tokens,
            temperature=settings.llm_temperature,
            timeout_seconds=settings.llm_timeout_seconds,
            mock=settings.mock_llm,
        )
        dispatcher = FallbackDispatcher(gemini_client, providers_from_settings(settings))

    archive = UploadArchive(settings.upload_dir) if settings.upload_dir else None
    scan_cache = ScanCache(settings.scan_cache_ttl, settings.scan_cache_size)

    app = FastAPI(
        title="Career Coach API",
        description="LLM-backed resume analysis, learning roadmaps and mock interviews",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.dispatcher = dispatcher
    app.state.gemini_client = gemini_client
    app.state.analysis = AnalysisOrchestrator(store, dispatcher, scan_cache, archive)
    app.state.interviews = InterviewOrchestrator(store, dispatcher)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Trace ID middleware for request correlation
    @app.middleware("http")
    async def trace_id_middleware(request: Request, call_next):
        trace_id = request.headers.get("X-Trace-ID", generate_trace_id())
        set_trace_id(trace_id)

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(trace_id=trace_id)

        response = await call_next(request)
        response.headers["X-Trace-ID"] = trace_id
        return response

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(ProviderExhaustedError, provider_exhausted_handler)
    app.add_exception_handler(NoProvidersConfiguredError, not_configured_handler)
    app.add_exception_handler(MalformedModelOutput, malformed_output_handler)

    if enable_metrics:
        Instrumentator().instrument(app).expose(app)

    app.include_router(router)
    app.include_router(health_router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "career_coach_api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
    )
