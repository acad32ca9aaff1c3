"""
Async HTTP client for the compilation service.

Used by other Python services (and ``verify_setup.py``) that need a PDF from
LaTeX source without talking to pdflatex themselves.  Failures never raise:
they come back as ``CompilationResult(success=False, error=...)``.
"""
from __future__ import annotations

import base64
import binascii
import dataclasses
import logging
from typing import Any, Dict, List, Optional

import httpx

from app.config import settings

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class CompilationResult:
    success: bool
    pdf_bytes: Optional[bytes] = None
    error: Optional[str] = None
    log: Optional[str] = None
    warnings: List[str] = dataclasses.field(default_factory=list)


def _error_from_response(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        data = {}
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return f"HTTP {resp.status_code}: {resp.reason_phrase}"


class LatexCompilationClient:
    """Thin wrapper over ``POST /compile`` and ``GET /health``."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or settings.LATEX_API_URL).rstrip("/")
        self.timeout = httpx.Timeout(
            timeout if timeout is not None else settings.CLIENT_TIMEOUT_SECONDS, connect=10.0
        )
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self._transport
        )

    async def compile(self, source: str, document_id: Optional[str] = None) -> CompilationResult:
        """
        Compile *source* remotely.

        Returns a CompilationResult carrying the decoded PDF on success, or the
        server's error message (``HTTP <code>: <reason>`` when it gave none).
        """
        payload: Dict[str, Any] = {"source": source, "engine": "pdflatex"}
        if document_id:
            payload["documentId"] = document_id

        try:
            async with self._client() as client:
                resp = await client.post("/compile", json=payload)
        except httpx.HTTPError as exc:
            logger.error("Error compiling LaTeX via %s: %s", self.base_url, exc)
            return CompilationResult(
                success=False, error=str(exc) or "Failed to compile LaTeX document"
            )

        if resp.is_error:
            try:
                log = resp.json().get("log")
            except (ValueError, AttributeError):
                log = None
            return CompilationResult(success=False, error=_error_from_response(resp), log=log)

        try:
            data = resp.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            logger.error("Unexpected %d response from %s/compile", resp.status_code, self.base_url)
            return CompilationResult(
                success=False,
                error=f"Invalid response from compilation service (HTTP {resp.status_code})",
            )

        if not data.get("success"):
            return CompilationResult(
                success=False,
                error=data.get("error") or "Compilation failed",
                log=data.get("log"),
                warnings=data.get("warnings") or [],
            )

        pdf_bytes = None
        if data.get("pdfBase64"):
            try:
                pdf_bytes = base64.b64decode(data["pdfBase64"], validate=True)
            except (binascii.Error, ValueError) as exc:
                return CompilationResult(success=False, error=f"Invalid PDF payload: {exc}")

        return CompilationResult(
            success=True,
            pdf_bytes=pdf_bytes,
            log=data.get("log"),
            warnings=data.get("warnings") or [],
        )

    async def health(self) -> Dict[str, Any]:
        """
        Return the ``/health`` body; a 503 still carries a JSON status.

        An unreachable service, an unexpected status or a non-JSON body gives
        ``{"status": "unreachable", "available": False, "error": ...}``.
        """
        try:
            async with self._client() as client:
                resp = await client.get("/health")
            if resp.status_code not in (200, 503):
                resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Health check against %s failed: %s", self.base_url, exc)
            return {"status": "unreachable", "available": False, "error": str(exc) or type(exc).__name__}
        if not isinstance(body, dict):
            return {"status": "unreachable", "available": False, "error": "Invalid health response"}
        return body
