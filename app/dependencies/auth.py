"""
Authentication dependencies for FastAPI routes.

Extracts user identity from the X-User-Id header (set by the editor front-end
after it has authenticated the user against the BaaS).
"""
from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models.database_models import LatexDocument

logger = logging.getLogger(__name__)


async def get_current_user_id(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
) -> str:
    """Extract the authenticated user ID from the request header. Raises 401 if missing."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header.",
        )
    return x_user_id.strip()


async def get_owned_document(
    document_id: UUID,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> LatexDocument:
    """
    Verify that the given LaTeX document belongs to the current user.
    Returns the LatexDocument ORM object or raises 404.
    """
    result = await db.execute(
        select(LatexDocument).where(
            LatexDocument.id == document_id,
            LatexDocument.user_id == user_id,
        )
    )
    document = result.scalar_one_or_none()

    if document is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Document {document_id} not found.",
        )

    return document
