"""FastAPI application entry point."""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

import database
from core.env import env_bool, env_str
from core.env_utils import load_dotenv_if_available
from core.logging import get_logger
from core.quota_constants import QuotaSettings
from llm.llm_service import LLMService
from services.auth_tokens import SupabaseTokenVerifier
from services.json_state_store import JsonStateStore
from services.payment_ledger import SqlPaymentLedger
from services.payments import get_stripe_payments_client
from services.premium_upgrade import PremiumUpgradeProcessor
from services.profile_store import SqlProfileStore
from services.prompt_generation import PromptGenerationService
from services.quota_policy import QuotaPolicy
from services.quota_reconciler import QuotaReconciler
from services.session_cache import SessionCache
from services.user_locks import KeyedLock
from web import routers
from web.deps import AppServices
from web.middleware.auth_context import auth_context_middleware

logger = get_logger(__name__)


def build_services(settings: Optional[QuotaSettings] = None) -> AppServices:
    """Wire stores, policy and clients from the environment."""
    settings = settings or QuotaSettings.from_env()
    engine = database.build_engine()
    if env_bool("DATABASE_CREATE_SCHEMA", False):
        database.create_schema(engine)
    session_factory = database.create_session_factory(engine)

    profiles = SqlProfileStore(session_factory, free_prompt_limit=settings.free_prompt_limit)
    ledger = SqlPaymentLedger(session_factory)
    policy = QuotaPolicy(settings)
    locks = KeyedLock()
    reconciler = QuotaReconciler(profiles, policy=policy, locks=locks)

    persisted = None
    cache_path = env_str("SESSION_CACHE_PATH")
    if cache_path:
        persisted = JsonStateStore(Path(cache_path), "quota", logger=logger)
    cache = SessionCache(reconciler, ttl_seconds=settings.cache_ttl_seconds, persisted=persisted)

    generation = PromptGenerationService(
        profiles,
        reconciler,
        LLMService.from_env(),
        cache=cache,
        timeout_seconds=settings.generation_timeout_seconds,
    )
    return AppServices(
        profiles=profiles,
        ledger=ledger,
        reconciler=reconciler,
        cache=cache,
        upgrades=PremiumUpgradeProcessor(profiles, ledger, policy=policy, locks=locks),
        generation=generation,
        stripe=get_stripe_payments_client(),
        engine=engine,
    )


def create_app(
    services: Optional[AppServices] = None,
    *,
    token_verifier: Optional[SupabaseTokenVerifier] = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        built_here = False
        if getattr(app.state, "services", None) is None:
            load_dotenv_if_available()
            app.state.services = build_services()
            built_here = True
        if getattr(app.state, "token_verifier", None) is None:
            app.state.token_verifier = SupabaseTokenVerifier.from_env()
            if app.state.token_verifier is None:
                logger.warning("SUPABASE_JWT_SECRET is not set; authenticated endpoints will reject requests.")
        logger.info("MetaMind API started.")
        try:
            yield
        finally:
            engine = getattr(app.state.services, "engine", None)
            if built_here and engine is not None:
                engine.dispose()

    app = FastAPI(
        title="MetaMind API",
        description="Prompt generation with free quota and one-time premium upgrades.",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.services = services
    app.state.token_verifier = token_verifier

    origins = [origin.strip() for origin in (env_str("CORS_ALLOW_ORIGINS", "") or "").split(",") if origin.strip()]
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.middleware("http")
    async def attach_auth_context(request: Request, call_next):
        """Resolve the Supabase bearer token into request.state.user."""
        return await auth_context_middleware(request, call_next)

    @app.get("/", summary="Health Check", tags=["Default"])
    def health_check():
        return {"status": "ok", "message": "MetaMind API is running."}

    @app.get("/healthz", include_in_schema=False)
    def liveness_probe(request: Request):
        """Lightweight probe that also checks database connectivity."""
        engine = getattr(getattr(request.app.state, "services", None), "engine", None)
        db_ok, db_error = routers.health.ping_database(engine)
        payload = {"status": "ok" if db_ok else "unhealthy", "database": {"ok": db_ok}}
        if db_error:
            payload["database"]["error"] = db_error
        status_code = status.HTTP_200_OK if db_ok else status.HTTP_503_SERVICE_UNAVAILABLE
        return JSONResponse(status_code=status_code, content=payload)

    @app.get("/metrics", include_in_schema=False)
    def prometheus_metrics():
        """Expose Prometheus metrics."""
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(routers.health.router, prefix="/api/v1")
    app.include_router(routers.profile.router, prefix="/api/v1")
    app.include_router(routers.prompts.router, prefix="/api/v1")
    app.include_router(routers.payments.router, prefix="/api/v1")
    return app


app = create_app()
