"""
Order Service: JWT Authentication Middleware
Validates the Bearer token on every HTTP route outside PUBLIC_PATHS and
attaches the caller (id, role, manager_id) to request.state.actor.
WebSocket connections authenticate in the realtime endpoint itself.
"""
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from jose import JWTError

from canteen.core.errors import Forbidden
from canteen.core.security import actor_from_claims, decode_token

PUBLIC_PATHS = {
    "/health",
    "/metrics",
    "/",
    "/docs",
    "/openapi.json",
}


def _unauthorized(detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={"detail": detail, "error": "unauthorized"},
        headers={"WWW-Authenticate": "Bearer"},
    )


class JWTAuthMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        if request.method == "OPTIONS":
            return await call_next(request)

        if request.url.path in PUBLIC_PATHS or request.url.path.startswith("/metrics"):
            return await call_next(request)

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return _unauthorized("Missing or invalid Authorization header. Expected: Bearer <token>")

        token = auth_header.split(" ", 1)[1]
        try:
            request.state.actor = actor_from_claims(decode_token(token))
        except JWTError as exc:
            return _unauthorized(f"Invalid or expired JWT: {exc}")
        except Forbidden as exc:
            return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail, "error": exc.code})

        return await call_next(request)
