"""FastAPI middleware — request body size limit (pure ASGI)."""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import status
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from app.config import settings
from app.routers.compilation import error_response

logger = logging.getLogger(__name__)


class BodySizeLimitMiddleware:
    """Answer 413 when a request body is larger than ``MAX_REQUEST_BODY_BYTES``.

    A declared ``Content-Length`` over the limit is rejected straight away.
    Otherwise the body is read with a running byte count (chunked uploads
    carry no length header) and replayed to the app once it is known to fit.
    """

    def __init__(self, app: ASGIApp, max_body_size: Optional[int] = None) -> None:
        self.app = app
        self.max_body_size = max_body_size

    @property
    def limit(self) -> int:
        return self.max_body_size if self.max_body_size is not None else settings.MAX_REQUEST_BODY_BYTES

    async def _reject(self, scope: Scope, receive: Receive, send: Send, size: str) -> None:
        logger.warning(
            "Rejected %s %s: body of %s bytes exceeds limit",
            scope.get("method"),
            scope.get("path"),
            size,
        )
        response = error_response("Request body too large", status.HTTP_413_REQUEST_ENTITY_TOO_LARGE)
        await response(scope, receive, send)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        limit = self.limit
        headers = dict(scope.get("headers", []))
        content_length = headers.get(b"content-length", b"").decode()
        if content_length.isdigit() and int(content_length) > limit:
            await self._reject(scope, receive, send, content_length)
            return

        buffered: List[Message] = []
        received = 0
        while True:
            message = await receive()
            buffered.append(message)
            if message["type"] != "http.request":
                break
            received += len(message.get("body", b""))
            if received > limit:
                await self._reject(scope, receive, send, f"more than {received}")
                return
            if not message.get("more_body", False):
                break

        async def replay() -> Message:
            if buffered:
                return buffered.pop(0)
            return await receive()

        await self.app(scope, replay, send)
