"""
Order Service: FastAPI application entrypoint
"""
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.exc import SQLAlchemyError

from canteen.core.config import get_settings
from canteen.core.errors import OrderError
from canteen.core.redis_client import close_redis, get_redis
from canteen.db.database import connect, disconnect
from canteen.middleware.auth import JWTAuthMiddleware
from canteen.realtime.broker import InMemoryBroker, RedisBroker
from canteen.realtime.notifier import OrderNotifier
from canteen.realtime.rooms import RoomRegistry
from canteen.api import feedback, health, orders, realtime

settings = get_settings()

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await connect()

    rooms = RoomRegistry()
    if settings.BROADCAST_BACKEND == "redis":
        broker = RedisBroker(rooms, get_redis(), prefix=settings.BROADCAST_CHANNEL_PREFIX)
    else:
        broker = InMemoryBroker(rooms)
    await broker.start()

    app.state.rooms = rooms
    app.state.broker = broker
    app.state.notifier = OrderNotifier(broker)
    logger.info("%s started with %s", settings.SERVICE_NAME, type(broker).__name__)
    yield
    await broker.stop()
    await close_redis()
    await disconnect()


app = FastAPI(
    title="Canteen Order Service",
    description="Order lifecycle, OTP pickup and realtime order events for students and canteen managers.",
    version=settings.SERVICE_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url=None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(JWTAuthMiddleware)

if settings.METRICS_ENABLED:
    Instrumentator().instrument(app).expose(app, endpoint="/metrics")


# ── Error mapping ─────────────────────────────────────────────────────────────
@app.exception_handler(OrderError)
async def order_error_handler(request: Request, exc: OrderError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail, "error": exc.code})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"detail": jsonable_encoder(exc.errors()), "error": "validation_error"},
    )


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Order store failure on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error.", "error": "internal_error"})


app.include_router(orders.router)
app.include_router(feedback.router)
app.include_router(realtime.router)
app.include_router(health.router)


@app.get("/")
async def root():
    return {"service": settings.SERVICE_NAME, "version": settings.SERVICE_VERSION}


def run() -> None:
    uvicorn.run("canteen.main:app", host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())


if __name__ == "__main__":
    run()
