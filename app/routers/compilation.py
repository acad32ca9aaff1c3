"""
Compilation endpoint.

POST /compile — typeset LaTeX source with the configured engine and return
the PDF as base64, or the error and log when no PDF could be produced.
"""
import base64
import logging
from typing import Optional

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from app.config import settings
from app.models.schemas import CompileErrorResponse, CompileRequest, CompileSuccessResponse
from app.services.latex_compiler import LatexCompiler, get_compiler
from app.services.workspace import Workspace, get_workspace
from app.utils.helpers import extract_error_message, extract_warnings

logger = logging.getLogger(__name__)

router = APIRouter()

SOURCE_REQUIRED = "LaTeX source is required"


def error_response(message: str, status_code: int, log: Optional[str] = None) -> JSONResponse:
    """JSON body ``{success: false, error, log?}`` with the given status."""
    body = CompileErrorResponse(error=message, log=log)
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(by_alias=True, exclude_none=True),
    )


def unsupported_engine_message(engine: str) -> str:
    supported = ", ".join(f"'{e}'" for e in settings.SUPPORTED_ENGINES)
    return f"Engine {engine} is not supported. Only {supported} is currently supported."


async def compile_source(
    source: str,
    compiler: LatexCompiler,
    workspace: Workspace,
    document_id: Optional[str] = None,
) -> JSONResponse:
    """
    Run one compilation in a throwaway work directory and shape the response.

    Shared by ``POST /compile`` and the saved-document compile route.
    """
    if not source:
        return error_response(SOURCE_REQUIRED, status.HTTP_400_BAD_REQUEST)

    try:
        async with workspace.work_dir() as work_dir:
            logger.info(
                "Compiling %d chars (document=%s) in %s",
                len(source),
                document_id or "-",
                work_dir.name,
            )
            outcome = await compiler.compile(source, work_dir)
    except Exception as exc:
        logger.error("Compilation error: %s", exc, exc_info=True)
        return error_response(
            str(exc) or "Internal server error during compilation",
            status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    if outcome.success and outcome.pdf_bytes:
        warnings = extract_warnings(outcome.log)
        body = CompileSuccessResponse(
            pdf_base64=base64.b64encode(outcome.pdf_bytes).decode("ascii"),
            log=outcome.log,
            warnings=warnings or None,
        )
        return JSONResponse(content=body.model_dump(by_alias=True, exclude_none=True))

    return error_response(
        extract_error_message(outcome.log, outcome.error),
        status.HTTP_400_BAD_REQUEST,
        log=outcome.log,
    )


@router.post("/compile", response_model=CompileSuccessResponse)
async def compile_latex(
    body: CompileRequest,
    compiler: LatexCompiler = Depends(get_compiler),
    workspace: Workspace = Depends(get_workspace),
) -> JSONResponse:
    """Compile LaTeX source to PDF."""
    if body.engine not in settings.SUPPORTED_ENGINES:
        return error_response(unsupported_engine_message(body.engine), status.HTTP_400_BAD_REQUEST)

    return await compile_source(body.source, compiler, workspace, body.document_id)
