"""
Saved LaTeX document endpoints.

Documents are scoped to the user named by the ``X-User-Id`` header.

Route summary
-------------
POST   /documents                 — save a new document
GET    /documents                 — list the user's documents, newest first
GET    /documents/{document_id}   — document detail
PUT    /documents/{document_id}   — update title/content
DELETE /documents/{document_id}   — delete document
POST   /documents/{document_id}/compile — compile the stored content
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies.auth import get_current_user_id, get_owned_document
from app.models.database_models import LatexDocument
from app.models.schemas import LatexDocumentResponse, LatexDocumentWrite
from app.routers.compilation import compile_source
from app.services.latex_compiler import LatexCompiler, get_compiler
from app.services.workspace import Workspace, get_workspace

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "",
    response_model=LatexDocumentResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
)
async def create_document(
    body: LatexDocumentWrite,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> LatexDocumentResponse:
    """Save a new LaTeX document for the authenticated user."""
    document = LatexDocument(user_id=user_id, title=body.title, content=body.content)
    db.add(document)
    await db.flush()
    await db.refresh(document)

    logger.info("Created document id=%s title=%r for user=%s", document.id, document.title, user_id)
    return LatexDocumentResponse.model_validate(document)


@router.get("", response_model=List[LatexDocumentResponse], response_model_by_alias=True)
async def list_documents(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> List[LatexDocumentResponse]:
    """List all documents belonging to the authenticated user, most recently updated first."""
    result = await db.execute(
        select(LatexDocument)
        .where(LatexDocument.user_id == user_id)
        .order_by(LatexDocument.updated_at.desc())
    )
    return [LatexDocumentResponse.model_validate(d) for d in result.scalars().all()]


@router.get("/{document_id}", response_model=LatexDocumentResponse, response_model_by_alias=True)
async def get_document(
    document: LatexDocument = Depends(get_owned_document),
) -> LatexDocumentResponse:
    """Get document details."""
    return LatexDocumentResponse.model_validate(document)


@router.put("/{document_id}", response_model=LatexDocumentResponse, response_model_by_alias=True)
async def update_document(
    body: LatexDocumentWrite,
    document: LatexDocument = Depends(get_owned_document),
    db: AsyncSession = Depends(get_db),
) -> LatexDocumentResponse:
    """Replace the title and content of a document."""
    document.title = body.title
    document.content = body.content
    await db.flush()
    await db.refresh(document)

    logger.info("Updated document id=%s", document.id)
    return LatexDocumentResponse.model_validate(document)


@router.delete("/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_document(
    document: LatexDocument = Depends(get_owned_document),
    db: AsyncSession = Depends(get_db),
) -> Response:
    """Delete a document."""
    await db.delete(document)
    await db.flush()

    logger.info("Deleted document id=%s", document.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{document_id}/compile", response_model=None)
async def compile_document(
    document: LatexDocument = Depends(get_owned_document),
    db: AsyncSession = Depends(get_db),
    compiler: LatexCompiler = Depends(get_compiler),
    workspace: Workspace = Depends(get_workspace),
) -> JSONResponse:
    """
    Compile the stored content of a document. Same response contract as ``POST /compile``.

    The session is closed before the engine runs so a long compile does not
    hold a pooled connection.
    """
    source = document.content or ""
    document_id = str(document.id)
    await db.close()

    return await compile_source(source, compiler, workspace, document_id)
