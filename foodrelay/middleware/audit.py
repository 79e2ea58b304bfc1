from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
import logging
import time

log = logging.getLogger("foodrelay.access")

class AuditMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = time.time()
        response = await call_next(request)
        log.info(
            "%s %s -> %d (%dms) ip=%s",
            request.method,
            request.url.path,
            response.status_code,
            int((time.time() - start) * 1000),
            request.client.host if request.client else None,
        )
        return response
