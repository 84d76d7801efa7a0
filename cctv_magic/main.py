import time
import uuid

from arq import create_pool
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from fastapi.staticfiles import StaticFiles

from cctv_magic.core.config import get_settings
from cctv_magic.core.exceptions import (
    AppError,
    app_exception_handler,
    generic_exception_handler,
    validation_exception_handler,
)
from cctv_magic.core.logging import bind_request_id, configure_logging, get_logger
from cctv_magic.db.init import init_db
from cctv_magic.routers import auth, checkout, generate, prompts, user, video, webhooks
from cctv_magic.services.auth_provider import SupabaseAuth
from cctv_magic.services.scheduler import PollScheduler
from cctv_magic.services.sora import SoraClient
from cctv_magic.services.stripe_gateway import StripeGateway
from cctv_magic.storage.base import get_storage
from cctv_magic.worker.tasks import get_redis_settings

settings = get_settings()
configure_logging(debug=settings.debug)
log = get_logger(__name__)

app = FastAPI(
    title="CCTV Magic API",
    version="1.0.0",
    default_response_class=ORJSONResponse,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_id_middleware(request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    bind_request_id(request_id)
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    log.info(
        "request",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(duration_ms, 2),
    )
    response.headers["X-Request-ID"] = request_id
    return response


app.add_exception_handler(AppError, app_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

# Routers
app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(generate.router, prefix="/api", tags=["generate"])
app.include_router(video.router, prefix="/api/video", tags=["video"])
app.include_router(checkout.router, prefix="/api/checkout", tags=["checkout"])
app.include_router(webhooks.router, prefix="/api/webhook", tags=["webhooks"])
app.include_router(user.router, prefix="/api/user", tags=["user"])
app.include_router(prompts.router, prefix="/api/prompts", tags=["prompts"])

if settings.storage_backend == "local" and settings.storage_public_base_url.startswith("/"):
    app.mount(
        settings.storage_public_base_url,
        StaticFiles(directory=settings.storage_local_path, check_dir=False),
        name="media",
    )


async def _connect_arq():
    redis_settings = get_redis_settings()
    redis_settings.conn_retries = 1
    try:
        return await create_pool(redis_settings)
    except Exception as e:
        log.warning("startup", msg="Redis unavailable, polling runs in-process", error=str(e))
        return None


@app.on_event("startup")
async def startup():
    if settings.sentry_dsn:
        import sentry_sdk
        sentry_sdk.init(dsn=settings.sentry_dsn, environment=settings.env, traces_sample_rate=0.1)
        log.info("startup", msg="Sentry enabled")
    await init_db()
    log.info("startup", msg="DB connected")

    provider = SoraClient(
        settings.openai_api_key,
        base_url=settings.openai_api_url,
        timeout=settings.openai_timeout_seconds,
    )
    storage = get_storage()
    arq_pool = await _connect_arq()
    app.state.video_provider = provider
    app.state.storage = storage
    app.state.payment_gateway = StripeGateway(settings.stripe_secret_key, settings.stripe_webhook_secret)
    app.state.auth_provider = SupabaseAuth(settings.supabase_url, settings.supabase_anon_key)
    app.state.arq_pool = arq_pool
    app.state.poll_scheduler = PollScheduler(
        provider,
        storage,
        max_attempts=settings.video_poll_max_attempts,
        interval=settings.video_poll_interval_seconds,
        arq_pool=arq_pool,
    )

    if not provider.configured:
        log.warning("startup", msg="OPENAI_API_KEY not set, generation disabled")
    if settings.is_production and (settings.video_webhook_skip_verification or not settings.video_webhook_secret):
        log.error("startup", msg="Video webhook signature verification is disabled in production")


@app.on_event("shutdown")
async def shutdown():
    scheduler = getattr(app.state, "poll_scheduler", None)
    if scheduler is not None:
        await scheduler.aclose()
    provider = getattr(app.state, "video_provider", None)
    if provider is not None:
        await provider.aclose()
    arq_pool = getattr(app.state, "arq_pool", None)
    if arq_pool is not None:
        await arq_pool.close()


@app.get("/health")
async def health():
    """Health check for load balancers and monitoring."""
    return {"status": "ok"}
