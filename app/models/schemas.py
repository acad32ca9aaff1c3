"""
Pydantic schemas for request/response validation.

Wire format is camelCase to match the editor front-end
(``pdfBase64``, ``documentId``, ``createdAt`` ...).
"""
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialising field names as camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Compilation Schemas
class CompileRequest(CamelModel):
    """Body of ``POST /compile``."""

    source: str = Field(..., min_length=1)
    document_id: Optional[str] = None
    engine: str = "pdflatex"


class CompileSuccessResponse(CamelModel):
    """Returned when a PDF was produced."""

    success: bool = True
    pdf_base64: str
    log: str = ""
    warnings: Optional[List[str]] = None


class CompileErrorResponse(CamelModel):
    """Returned for rejected requests and failed compilations."""

    success: bool = False
    error: str
    log: Optional[str] = None


# Health Schemas
class HealthCheckResponse(CamelModel):
    """Schema for health check endpoint."""

    status: str
    engine: str
    available: bool
    version: Optional[str] = None
    error: Optional[str] = None


# LaTeX Document Schemas
class LatexDocumentWrite(CamelModel):
    """Schema for creating or updating a saved LaTeX document."""

    title: str = Field(..., max_length=255)
    content: Optional[str] = ""

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Title must not be empty")
        return value

    @field_validator("content")
    @classmethod
    def _default_content(cls, value: Optional[str]) -> str:
        return value or ""


class LatexDocumentResponse(CamelModel):
    """Schema for saved LaTeX document responses."""

    id: UUID
    user_id: str
    title: str
    content: str = ""
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )
