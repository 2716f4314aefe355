"""Request-scoped middleware for API requests."""

from uuid import UUID, uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from api.base import error_response, ErrorCodes
from utils.tenant_context import set_tenant, clear_tenant


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assigns a unique request ID to every request, honouring one sent by the caller."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class TenantMiddleware(BaseHTTPMiddleware):
    """
    Resolves the company and acting user for a request.

    Authentication happens upstream; by the time a request reaches the ledger
    the gateway has set X-Company-ID (required) and X-User-ID (optional).
    The values go into request.state and the tenant context, and the context
    is cleared after the request completes.
    """

    PUBLIC_PATHS = ["/health", "/docs", "/openapi.json"]

    def _is_public_path(self, path: str) -> bool:
        return any(path == public or path.startswith(public) for public in self.PUBLIC_PATHS)

    @staticmethod
    def _reject(request: Request, message: str) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content=error_response(
                ErrorCodes.MISSING_TENANT,
                message,
                request_id=getattr(request.state, "request_id", None),
            ).model_dump(mode="json"),
        )

    async def dispatch(self, request: Request, call_next):
        if self._is_public_path(request.url.path):
            return await call_next(request)

        raw_company = request.headers.get("X-Company-ID")
        if not raw_company:
            return self._reject(request, "X-Company-ID header is required")

        try:
            company_id = UUID(raw_company)
            raw_actor = request.headers.get("X-User-ID")
            actor_id = UUID(raw_actor) if raw_actor else None
        except ValueError:
            return self._reject(request, "X-Company-ID and X-User-ID must be UUIDs")

        set_tenant(company_id, actor_id)
        request.state.company_id = company_id
        request.state.actor_id = actor_id

        try:
            return await call_next(request)
        finally:
            clear_tenant()
