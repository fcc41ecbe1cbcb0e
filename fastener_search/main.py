"""FastAPI application entry point."""

import asyncio
import uuid
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from openai import APITimeoutError

from fastener_search.config import get_settings
from fastener_search.logging_config import (
    clear_request_id,
    get_logger,
    set_request_id,
    setup_logging,
)
from fastener_search.models.error import ErrorResponse
from fastener_search.models.query import (
    ChatRequest,
    ChatResponse,
    CompatibilityRequest,
    CompatibilityResponse,
    SearchRequest,
    SearchResponse,
    StandardSuggestionResponse,
)
from fastener_search.services.chat_service import ChatService
from fastener_search.services.search_service import SearchService, SearchServiceError

# Setup logging configuration
setup_logging()
logger = get_logger(__name__)

# Load and validate configuration at startup
settings = get_settings()

MIN_QUERY_LENGTH = 2

# Global service instances
search_service: SearchService | None = None
chat_service: ChatService | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan - startup and shutdown."""
    # Startup
    global search_service, chat_service

    logger.info("Starting Fastener Search...")
    logger.info(
        f"Configuration: default_limit={settings.default_limit}, "
        f"threshold={settings.default_threshold}/{settings.exact_standard_threshold}, "
        f"keyword_search={settings.enable_keyword_search}"
    )

    search_service = SearchService()
    await search_service.ensure_keyword_index()
    chat_service = ChatService(search_service=search_service)

    logger.info("Fastener Search started successfully")

    yield

    # Shutdown
    logger.info("Shutting down Fastener Search...")

    if search_service:
        await search_service.close()

    logger.info("Fastener Search shut down successfully")


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description="Fastener catalogue search with standard-aware hybrid ranking",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify allowed origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _is_timeout(exc: BaseException) -> bool:
    cause = exc.__cause__ or exc
    return isinstance(cause, (APITimeoutError, asyncio.TimeoutError, TimeoutError))


def _error_response(
    request: Request,
    status_code: int,
    error: str,
    detail: str,
) -> JSONResponse:
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=error,
            detail=detail,
            timestamp=datetime.now(UTC),
            request_id=request_id,
        ).model_dump(mode="json"),
    )


# Request ID and error handling middleware
@app.middleware("http")
async def request_middleware(request: Request, call_next):
    """Add request ID tracking and error handling."""
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id

    # Set request ID in logging context
    set_request_id(request_id)

    try:
        logger.info(f"Request started: {request.method} {request.url.path}")
        response = await call_next(request)
        logger.info(
            f"Request completed: {request.method} {request.url.path} - Status: {response.status_code}"
        )
        return response
    except Exception as e:
        logger.error(
            f"Unhandled exception: {str(e)}",
            exc_info=True,
            extra={"path": request.url.path},
        )
        return _error_response(
            request,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Internal Server Error",
            str(e),
        )
    finally:
        # Clear request ID from context
        clear_request_id()


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors."""
    # Extract detailed field-level errors
    errors = []
    for error in exc.errors():
        field = " -> ".join(str(loc) for loc in error["loc"])
        errors.append(f"{field}: {error['msg']}")

    detail = "; ".join(errors)

    logger.warning(
        f"Validation error: {detail}",
        extra={"path": request.url.path},
    )

    return _error_response(
        request,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation Error",
        detail,
    )


@app.exception_handler(SearchServiceError)
async def search_service_exception_handler(request: Request, exc: SearchServiceError):
    """Handle collaborator failures (embeddings, vector store, LLM)."""
    if _is_timeout(exc):
        logger.error(f"Upstream timeout: {str(exc)}")
        return _error_response(
            request,
            status.HTTP_503_SERVICE_UNAVAILABLE,
            "Service Unavailable",
            "Upstream request timed out. Please try again.",
        )

    logger.error(f"Search service error: {str(exc)}")
    return _error_response(
        request,
        status.HTTP_502_BAD_GATEWAY,
        "Search Service Error",
        str(exc),
    )


def _validate_query(query: str) -> str:
    query = query.strip()
    if len(query) < MIN_QUERY_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Query must be at least {MIN_QUERY_LENGTH} characters",
        )
    return query


# API Endpoints


@app.get("/health")
async def health_check():
    """Health check endpoint.

    Returns:
        dict: Health status and index information
    """
    indexed_chunks = None
    if search_service and search_service.bm25_index is not None:
        indexed_chunks = len(search_service.bm25_index)

    return {
        "status": "healthy" if search_service else "starting",
        "service": "Fastener Search",
        "version": settings.api_version,
        "capabilities": {
            "keyword_search": settings.enable_keyword_search,
            "attribute_filters": settings.enable_attribute_filters,
            "keyword_index_chunks": indexed_chunks,
        },
    }


@app.post(
    "/api/search",
    response_model=SearchResponse,
    summary="Search the product catalogues",
    description="Classify a technical query and return catalogue chunks ranked by hybrid score.",
)
async def search(request: SearchRequest) -> SearchResponse:
    """Search the product catalogues.

    Queries naming a standard ("DIN 933 M8") return chunks carrying that
    standard or a declared equivalent first.

    Raises:
        HTTPException: 400 for a query shorter than two characters, 503 if
            the service is not initialized
    """
    if not search_service:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Search service not initialized",
        )

    query = _validate_query(request.query)
    response = await search_service.search(request.model_copy(update={"query": query}))
    logger.info(
        f"Search '{query[:100]}' returned {response.total_results} results "
        f"in {response.metrics.execution_time_ms:.0f}ms"
    )
    return response


@app.post(
    "/api/chat",
    response_model=ChatResponse,
    summary="Ask the catalogue assistant",
    description="Answer a question from the product catalogues, in English or Spanish.",
)
async def chat(request: ChatRequest) -> ChatResponse:
    """Ask the catalogue assistant.

    Raises:
        HTTPException: 503 if the service is not initialized
    """
    if not chat_service:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Chat service not initialized",
        )

    response = await chat_service.chat(request)
    logger.info(
        f"Chat completed in {response.processing_time:.2f}s with {len(response.sources)} sources"
    )
    return response


@app.post(
    "/api/compatibility",
    response_model=CompatibilityResponse,
    summary="Find compatible products",
    description="Find nuts and washers for a bolt, bolts for a nut, and so on.",
)
async def compatibility(request: CompatibilityRequest) -> CompatibilityResponse:
    """Find products compatible with the one described by the query.

    Raises:
        HTTPException: 400 for a query shorter than two characters, 503 if
            the service is not initialized
    """
    if not search_service:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Search service not initialized",
        )

    query = _validate_query(request.query)
    return await search_service.find_compatible(request.model_copy(update={"query": query}))


@app.get(
    "/api/standards/{code}",
    response_model=StandardSuggestionResponse,
    summary="Get standard equivalents",
    description="Look up a fastener standard with its equivalent and related standards.",
)
async def standard_suggestions(code: str) -> StandardSuggestionResponse:
    """Get a standard with its equivalents.

    Args:
        code: Standard code, e.g. "DIN 933", "din933" or "ISO-4017"

    Raises:
        HTTPException: 404 if the standard is unknown
    """
    if not search_service:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Search service not initialized",
        )

    suggestion = search_service.get_standard_suggestions(code)
    if suggestion is None:
        logger.warning(f"Unknown standard: {code}")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown standard: {code}",
        )

    return StandardSuggestionResponse(
        code=suggestion.code,
        description=suggestion.description,
        product_type=suggestion.product_type,
        equivalents=list(suggestion.equivalents),
        similar=list(suggestion.similar),
    )
