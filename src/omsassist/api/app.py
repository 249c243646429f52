"""FastAPI application exposing OMS Assist services."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping, Sequence
from uuid import uuid4

import chromadb
from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from omsassist.api.schemas import (
    ChatContextOptions,
    ChatRequest,
    ChatResponse,
    ErrorResponse,
    HealthResponse,
    SyncResponse,
    TrackerResetResponse,
)
from omsassist.cache import TTLCacheStore
from omsassist.config import Settings, get_settings
from omsassist.datasource import OrderRepository, build_order_source
from omsassist.embeddings import ChromaOrderStore, EmbeddingConfig, build_embedding_backend
from omsassist.errors import DependencyError, ValidationError
from omsassist.indexing import ChangeTracker, VectorSyncService
from omsassist.metrics.observability import (
    bind_correlation_id,
    clear_correlation_id,
    configure_logging,
    get_correlation_id,
    get_logger,
)
from omsassist.retrieval import RetrievalConfig, VectorSearchService
from omsassist.routing import QueryRouter
from omsassist.services import (
    ChatPipelineConfig,
    ChatService,
    ContextBuilder,
    ContextBuilderConfig,
    RagAnswerGenerator,
    build_generator,
)
from omsassist.sessions import InMemorySessionStore


@dataclass(frozen=True)
class AppDependencies:
    cache: TTLCacheStore
    repository: OrderRepository
    sync: VectorSyncService
    router: QueryRouter
    rag: RagAnswerGenerator
    chat: ChatService


def build_dependencies(settings: Settings) -> AppDependencies:
    cache = TTLCacheStore(
        max_bytes=settings.cache_max_bytes,
        max_entries=settings.cache_max_entries,
        default_ttl=settings.cache_default_ttl_seconds,
    )
    repository = OrderRepository(
        build_order_source(settings),
        cache,
        ttl_seconds=settings.cache_orders_ttl_seconds,
    )
    embeddings = build_embedding_backend(
        EmbeddingConfig(
            provider=settings.embedding_provider,
            model=settings.embedding_model,
            dim=settings.embedding_dim,
            batch_size=settings.embedding_batch_size,
            max_tokens=settings.embedding_max_tokens,
            api_key=settings.llm_api_key,
        ),
    )
    chroma_client = None
    if settings.chroma_host:
        chroma_client = chromadb.HttpClient(
            host=settings.chroma_host,
            port=settings.chroma_port or 8000,
            ssl=settings.chroma_ssl,
        )
    store = ChromaOrderStore(
        settings.chroma_collection,
        client=chroma_client,
        persist_directory=None if chroma_client else settings.chroma_persist_dir,
    )
    sync = VectorSyncService(
        store,
        embeddings,
        ChangeTracker(settings.change_tracker_path),
        batch_size=settings.embedding_batch_size,
        timeout_seconds=settings.embedding_timeout_seconds,
        cache=cache,
    )
    retriever = VectorSearchService(
        store,
        embeddings,
        RetrievalConfig(
            top_k=settings.vector_top_k,
            min_score=settings.vector_min_score,
            rerank_lexical=settings.vector_rerank_lexical,
            lexical_blend_weight=settings.vector_lexical_blend_weight,
            timeout_seconds=settings.vector_timeout_seconds,
            results_ttl_seconds=settings.cache_vector_ttl_seconds,
        ),
        cache=cache,
    )
    router = QueryRouter(
        repository,
        retriever,
        cache,
        timezone=settings.business_timezone,
        hybrid_min_results=settings.hybrid_min_results,
        vector_top_k=settings.vector_top_k,
        result_ttl_seconds=settings.cache_orders_ttl_seconds,
    )
    rag = RagAnswerGenerator(
        router,
        build_generator(settings),
        ContextBuilder(
            ContextBuilderConfig(max_orders=settings.rag_max_orders, char_budget=settings.rag_context_char_budget)
        ),
        timezone=settings.business_timezone,
    )
    sessions = InMemorySessionStore(
        ttl_seconds=settings.session_ttl_seconds,
        max_messages=settings.session_max_messages,
        max_sessions=settings.session_max_sessions,
    )
    chat = ChatService(
        rag,
        sessions,
        ChatPipelineConfig(
            use_rag=settings.use_llm,
            max_orders=settings.rag_max_orders,
            timezone=settings.business_timezone,
        ),
    )
    return AppDependencies(cache=cache, repository=repository, sync=sync, router=router, rag=rag, chat=chat)


async def _settle(check: Callable[[], Awaitable[dict[str, Any]]], timeout: float) -> dict[str, Any]:
    return await asyncio.wait_for(check(), timeout=timeout)


def _summarize_validation_errors(errors: Sequence[Mapping[str, Any]], limit: int = 3) -> str:
    """Field path and message per error; submitted values are never echoed."""

    parts = []
    for error in errors[:limit]:
        path = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        message = str(error.get("msg", "invalid value"))
        parts.append(f"{path}: {message}" if path and error.get("type") != "json_invalid" else message)
    return "; ".join(parts) or "Malformed request body"


def create_app(*, settings: Settings | None = None, dependencies: AppDependencies | None = None) -> FastAPI:
    settings = settings or get_settings()
    deps = dependencies or build_dependencies(settings)

    configure_logging()
    logger = get_logger("api")
    app = FastAPI(title="OMS Assist API", version="0.1.0")
    app.state.dependencies = deps

    # Optional CORS
    if settings.cors_allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.cors_allow_origins),
            allow_credentials=settings.cors_allow_credentials,
            allow_methods=list(settings.cors_allow_methods),
            allow_headers=list(settings.cors_allow_headers),
        )

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):  # type: ignore[override]
        correlation_id = request.headers.get("X-Request-ID", uuid4().hex)
        request.state.correlation_id = correlation_id
        bind_correlation_id(correlation_id)
        try:
            response = await call_next(request)
        finally:
            clear_correlation_id()
        response.headers["X-Correlation-ID"] = correlation_id
        return response

    # Security dependencies
    def require_api_key(request: Request) -> None:
        expected = settings.api_key
        if not expected:
            return
        provided = request.headers.get("X-API-Key")
        if provided != expected:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")

    class RateLimiter:
        def __init__(self, requests: int, window_seconds: int) -> None:
            self.requests = requests
            self.window = window_seconds
            self._buckets: dict[str, list[float]] = {}

        def __call__(self, request: Request) -> None:
            client_ip = request.headers.get("x-forwarded-for") or (request.client.host if request.client else "unknown")
            key = f"{client_ip}:{request.url.path}"
            now = time.time()
            bucket = self._buckets.setdefault(key, [])
            cutoff = now - self.window
            while bucket and bucket[0] < cutoff:
                bucket.pop(0)
            if len(bucket) >= self.requests:
                raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="Rate limit exceeded")
            bucket.append(now)

    rate_limiter = RateLimiter(settings.rate_limit_requests, settings.rate_limit_window_seconds)

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", get_correlation_id())
        logger.info("request.invalid", correlation_id=correlation_id, detail=str(exc))
        body = ErrorResponse(message="Invalid request", details=str(exc), correlation_id=correlation_id)
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body.model_dump())

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", get_correlation_id())
        details = _summarize_validation_errors(exc.errors())
        logger.info("request.malformed", correlation_id=correlation_id, detail=details)
        body = ErrorResponse(message="Invalid request", details=details, correlation_id=correlation_id)
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body.model_dump())

    @app.exception_handler(DependencyError)
    async def handle_dependency_error(request: Request, exc: DependencyError) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", get_correlation_id())
        logger.error("dependency.error", correlation_id=correlation_id, component=exc.component, detail=str(exc))
        body = ErrorResponse(
            message="A downstream service is unavailable. Please try again shortly.",
            details=f"{exc.component} unavailable",
            correlation_id=correlation_id,
        )
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body.model_dump())

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", get_correlation_id())
        logger.error("unhandled.error", correlation_id=correlation_id, detail=str(exc))
        body = ErrorResponse(
            message="Something went wrong while handling your request.",
            details="Internal Server Error",
            correlation_id=correlation_id,
        )
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body.model_dump())

    def get_dependencies(request: Request) -> AppDependencies:
        return request.app.state.dependencies

    def get_chat(dep: AppDependencies = Depends(get_dependencies)) -> ChatService:
        return dep.chat

    def get_sync(dep: AppDependencies = Depends(get_dependencies)) -> VectorSyncService:
        return dep.sync

    @app.post("/chat", response_model=ChatResponse)
    async def chat(
        payload: ChatRequest,
        service: ChatService = Depends(get_chat),
        _rl: None = Depends(rate_limiter),
    ) -> Response:
        options = payload.context if isinstance(payload.context, ChatContextOptions) else None
        context = options.model_dump(exclude_none=True) if options else None
        result = await service.handle(payload.message, session_id=payload.sessionId, context=context)
        body = ChatResponse(
            success=result.success,
            message=result.message,
            orders=[order.to_dict() for order in result.orders],
            analytics=result.analytics,
            metadata=result.metadata,
            structuredResponse=result.structured_response,
            details=result.details,
        )
        code = status.HTTP_200_OK if result.success else status.HTTP_500_INTERNAL_SERVER_ERROR
        return JSONResponse(status_code=code, content=body.model_dump(exclude_none=True))

    @app.get("/admin/health", response_model=HealthResponse)
    async def admin_health(dep: AppDependencies = Depends(get_dependencies)) -> HealthResponse:
        start = time.perf_counter()

        async def cache_health() -> dict[str, Any]:
            return {"healthy": True, **dep.cache.stats().to_dict()}

        async def router_health() -> dict[str, Any]:
            return dep.router.health()

        checks = {
            "api": dep.repository.source.health_check,
            "vectors": dep.sync.health_check,
            "cache": cache_health,
            "rag": dep.rag.health_check,
            "queryRouter": router_health,
        }
        outcomes = await asyncio.gather(
            *(_settle(check, settings.vector_timeout_seconds) for check in checks.values()),
            return_exceptions=True,
        )
        components: dict[str, dict[str, Any]] = {}
        for name, outcome in zip(checks, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning("health.component_failed", component=name, detail=repr(outcome))
                components[name] = {"healthy": False, "error": outcome.__class__.__name__}
            else:
                components[name] = {**outcome, "healthy": bool(outcome.get("healthy", False))}
        return HealthResponse(
            overall=all(component["healthy"] for component in components.values()),
            components=components,
            timestamp=datetime.now(timezone.utc).isoformat(),
            responseTime=round((time.perf_counter() - start) * 1000, 2),
        )

    @app.get("/admin/metrics")
    async def admin_metrics(
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
    ) -> dict[str, Any]:
        return {
            "chat": dep.chat.stats(),
            "queryRouter": dep.router.stats(),
            "rag": dep.rag.stats(),
            "cache": dep.cache.stats().to_dict(),
            "dataSource": dep.repository.source.stats(),
            "sessions": dep.chat.sessions.stats(),
            "vectors": dep.sync.tracker_stats(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/metrics")
    async def metrics() -> Response:
        payload = generate_latest()
        return Response(content=payload, media_type=CONTENT_TYPE_LATEST)

    @app.post("/admin/vectors/sync", response_model=SyncResponse)
    async def sync_vectors(
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
    ) -> SyncResponse:
        orders, _ = await dep.repository.load_orders(prefer_fresh=True)
        result = await dep.sync.perform_incremental_update(orders)
        return SyncResponse(**result.to_dict())

    @app.post("/admin/vectors/rebuild", response_model=SyncResponse)
    async def rebuild_vectors(
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
    ) -> SyncResponse:
        orders, _ = await dep.repository.load_orders(prefer_fresh=True)
        result = await dep.sync.force_full_rebuild(orders)
        return SyncResponse(**result.to_dict())

    @app.post("/admin/vectors/reset-tracker", response_model=TrackerResetResponse)
    async def reset_tracker(
        sync: VectorSyncService = Depends(get_sync),
        _auth: None = Depends(require_api_key),
    ) -> TrackerResetResponse:
        return TrackerResetResponse(cleared=sync.reset_change_tracker())

    @app.get("/admin/vectors/changes")
    async def vector_changes(
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
    ) -> dict[str, Any]:
        orders, freshness = await dep.repository.load_orders()
        return {**dep.sync.pending_changes(orders), "dataFreshness": freshness}

    @app.get("/admin/vectors/stats")
    async def vector_stats(
        sync: VectorSyncService = Depends(get_sync),
        _auth: None = Depends(require_api_key),
    ) -> dict[str, Any]:
        return {**sync.tracker_stats(), **(await sync.health_check())}

    @app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        from omsassist import __version__

        return {"status": "ok", "version": __version__, "environment": settings.environment}

    @app.head("/healthz")
    async def healthcheck_head() -> Response:
        return Response(status_code=status.HTTP_200_OK)

    @app.get("/livez")
    async def liveness() -> dict[str, str]:
        return {"status": "alive"}

    return app

