"""
Health check endpoint.
"""
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
import logging

from app.models.schemas import HealthCheckResponse
from app.services.latex_compiler import LatexCompiler, get_compiler

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=HealthCheckResponse)
async def health_check(compiler: LatexCompiler = Depends(get_compiler)):
    """
    Health check endpoint to verify the typesetting engine is reachable.

    Returns:
        200 with HealthCheckResponse when the engine answers ``--version``,
        503 otherwise
    """
    engine_status = await compiler.check_available()

    if engine_status.available:
        body = HealthCheckResponse(
            status="healthy",
            engine=engine_status.engine,
            available=True,
            version=engine_status.version,
        )
        return JSONResponse(content=body.model_dump(by_alias=True, exclude_none=True))

    logger.error("Engine health check failed: %s", engine_status.error)
    body = HealthCheckResponse(
        status="unhealthy",
        engine=engine_status.engine,
        available=False,
        error=f"{engine_status.engine} is not installed or not in PATH",
    )
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=body.model_dump(by_alias=True, exclude_none=True),
    )
