"""
Order Service — FastAPI application entrypoint
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from order_service.api import health, orders, realtime
from order_service.core.config import get_settings
from order_service.core.errors import OrderServiceError
from order_service.core.order_lock import OrderLockRegistry
from order_service.core.redis_client import close_redis
from order_service.db.database import Base, engine
from order_service.middleware.auth import JWTAuthMiddleware
from order_service.middleware.idempotency import IdempotencyMiddleware
from order_service.realtime.hub import BroadcastHub

settings = get_settings()

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create tables on startup
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("%s %s started", settings.SERVICE_NAME, settings.SERVICE_VERSION)
    yield
    await close_redis()
    await engine.dispose()


app = FastAPI(
    title="Order Service",
    description="Restaurant order lifecycle: transactional status transitions with realtime fan-out.",
    version=settings.SERVICE_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url=None,
)

app.state.hub = BroadcastHub()
app.state.order_locks = OrderLockRegistry()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Order matters: Auth wraps Idempotency so cached responses are keyed per restaurant
app.add_middleware(IdempotencyMiddleware)
app.add_middleware(JWTAuthMiddleware)

if settings.METRICS_ENABLED:
    Instrumentator().instrument(app).expose(app, endpoint="/metrics")


@app.exception_handler(OrderServiceError)
async def order_service_error_handler(request: Request, exc: OrderServiceError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


app.include_router(orders.router)
app.include_router(realtime.router)
app.include_router(health.router)


@app.get("/")
async def root():
    return {"service": settings.SERVICE_NAME, "version": settings.SERVICE_VERSION}
