"""
Middleware for branch scoping
"""
from fastapi import Request, status
from fastapi.responses import Response
from starlette.middleware.base import BaseHTTPMiddleware
from uuid import UUID
import logging

logger = logging.getLogger(__name__)


class BranchMiddleware(BaseHTTPMiddleware):
    """
    Middleware that extracts branch_id from the X-Branch-ID header
    and sets it on request.state for use in endpoint handlers
    """

    # Paths that don't require branch context
    EXEMPT_PATHS = [
        "/docs",
        "/redoc",
        "/openapi.json",
        "/health",
    ]

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path == "/" or any(path.startswith(p) for p in self.EXEMPT_PATHS):
            return await call_next(request)

        # Skip for OPTIONS requests (CORS preflight)
        if request.method == "OPTIONS":
            return await call_next(request)

        branch_header = request.headers.get("X-Branch-ID")

        if not branch_header:
            return Response(
                content='{"detail":"Missing X-Branch-ID header"}',
                status_code=status.HTTP_400_BAD_REQUEST,
                media_type="application/json"
            )

        try:
            branch_id = UUID(branch_header)
        except ValueError:
            return Response(
                content='{"detail":"Invalid X-Branch-ID format. Must be a valid UUID"}',
                status_code=status.HTTP_400_BAD_REQUEST,
                media_type="application/json"
            )

        request.state.branch_id = branch_id
        logger.debug(f"Request to {path} with branch_id: {branch_id}")

        response = await call_next(request)
        response.headers["X-Branch-ID"] = str(branch_id)

        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add security headers for production
    """

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        return response
