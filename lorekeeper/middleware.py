"""Request audit logging for the Lorekeeper API.

Authentication and campaign membership are handled in front of this
service; here every request is only recorded on the ``audit`` logger.
"""

from __future__ import annotations

import logging
import re
import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

audit_logger = logging.getLogger("audit")

_CAMPAIGN_RE = re.compile(r"/campaigns/([^/]+)")


def campaign_from_path(path: str) -> str:
    match = _CAMPAIGN_RE.search(path)
    return match.group(1) if match else "-"


class AuditLogMiddleware(BaseHTTPMiddleware):
    """Log every request with structured fields."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start = time.time()
        client_ip = request.client.host if request.client else "unknown"

        response = await call_next(request)
        elapsed_ms = round((time.time() - start) * 1000, 1)

        audit_logger.info(
            "method=%s path=%s status=%d ip=%s campaign=%s elapsed_ms=%.1f",
            request.method,
            request.url.path,
            response.status_code,
            client_ip,
            campaign_from_path(request.url.path),
            elapsed_ms,
        )
        return response
