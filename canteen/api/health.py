"""
Order Service: Health endpoint
"""
import asyncio
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from canteen.core.config import get_settings
from canteen.core.redis_client import ping_redis
from canteen.db.database import engine
from canteen.schemas.order import HealthResponse

settings = get_settings()
router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """
    Deep health check: the order database always, Redis only when it carries
    the realtime broadcast. 200 when every dependency answers, 503 otherwise.
    """
    deps: dict[str, str] = {}
    healthy = True

    try:
        async with engine.connect() as conn:
            await asyncio.wait_for(conn.execute(text("SELECT 1")), timeout=settings.HEALTH_CHECK_TIMEOUT)
        deps["database"] = "ok"
    except Exception as e:
        deps["database"] = f"error: {str(e)[:100]}"
        healthy = False

    if settings.BROADCAST_BACKEND == "redis":
        try:
            await ping_redis()
            deps["redis"] = "ok"
        except Exception as e:
            deps["redis"] = f"error: {str(e)[:100]}"
            healthy = False

    deps["realtime"] = type(request.app.state.broker).__name__

    response = HealthResponse(
        status="healthy" if healthy else "degraded",
        service=settings.SERVICE_NAME,
        version=settings.SERVICE_VERSION,
        dependencies=deps,
    )
    return JSONResponse(content=response.model_dump(), status_code=200 if healthy else 503)
