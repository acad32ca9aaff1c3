"""
SQLAlchemy ORM models for the LaTeX document store.
"""
import uuid

from sqlalchemy import Column, DateTime, String, Text, Uuid
from sqlalchemy.sql import func

from app.database import Base


class LatexDocument(Base):
    """A LaTeX document saved by a user from the editor."""

    __tablename__ = "latex_documents"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String(255), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    content = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
