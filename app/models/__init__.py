"""Database and schema models for the LaTeX compilation service."""
from app.models.database_models import LatexDocument
from app.models.schemas import (
    CompileRequest,
    CompileSuccessResponse,
    CompileErrorResponse,
    HealthCheckResponse,
    LatexDocumentWrite,
    LatexDocumentResponse,
)

__all__ = [
    # Database models
    "LatexDocument",
    # Pydantic schemas
    "CompileRequest",
    "CompileSuccessResponse",
    "CompileErrorResponse",
    "HealthCheckResponse",
    "LatexDocumentWrite",
    "LatexDocumentResponse",
]
