"""
Starlette middleware that puts the session account and a correlation id on
`request.state` for ledger routes.

The identity provider (or the gateway in front of this service) is trusted
to have authenticated the caller and to forward the account id in a header.
A missing header is not rejected here: the ledger operations themselves
raise `NotAuthenticatedError`, so the rejection is audited like any other.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Callable, Optional, Sequence

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-Id"


class AccountContextMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app: Any,
        *,
        account_header: str = "X-Account-Id",
        path_prefix: str = "/ledger",
        skip_paths: Optional[Sequence[str]] = None,
    ) -> None:
        super().__init__(app)
        self.account_header = account_header
        self.path_prefix = path_prefix.rstrip("/")
        self.skip_paths = tuple(skip_paths or ())

    def _should_apply(self, path: str) -> bool:
        if not path.startswith(self.path_prefix + "/") and path != self.path_prefix:
            return False
        for skip in self.skip_paths:
            if path == skip or path.startswith(skip.rstrip("/") + "/"):
                return False
        return True

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Any]
    ) -> Response:
        if not self._should_apply(request.url.path):
            return await call_next(request)

        account_id = (request.headers.get(self.account_header) or "").strip() or None
        correlation_id = (
            request.headers.get(CORRELATION_HEADER)
            or request.headers.get("X-Request-Id")
            or uuid.uuid4().hex
        )
        request.state.account_id = account_id
        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        if account_id is None:
            logger.debug(
                "Ledger request without account header",
                extra={"correlation_id": correlation_id},
            )
        return response
