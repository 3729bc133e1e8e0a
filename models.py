from datetime import datetime, timezone

from sqlalchemy.orm import relationship
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    true,
)
from database import Base


RESUME = "resume"
COVER_LETTER = "cover_letter"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    email = Column(String, unique=True, index=True)
    auth_sub = Column(String, unique=True, index=True, nullable=False)

    source_documents = relationship("SourceDocument", back_populates="owner")
    job_descriptions = relationship("JobDescription", back_populates="owner")
    settings = relationship("UserSettings", back_populates="owner", uselist=False)


class SourceDocument(Base):
    """A résumé or cover letter as pasted by the user (LaTeX source)."""

    __tablename__ = "source_documents"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    kind = Column(String, nullable=False, default=RESUME)
    content = Column(Text, nullable=False)
    is_current = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        # At most one current document per user and kind
        Index(
            "uq_source_documents_current",
            user_id,
            kind,
            unique=True,
            sqlite_where=is_current == true(),
            postgresql_where=is_current == true(),
        ),
    )

    owner = relationship("User", back_populates="source_documents")


class JobDescription(Base):
    __tablename__ = "job_descriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    company = Column(String, nullable=True)
    description = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    owner = relationship("User", back_populates="job_descriptions")
    optimizations = relationship("Optimization", back_populates="job_description")


class UserSettings(Base):
    __tablename__ = "user_settings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    instruction_template = Column(Text, nullable=True)
    render_credential = Column(String, nullable=True)  # secret, never returned

    owner = relationship("User", back_populates="settings")


class Optimization(Base):
    """One successful optimization run. Append-only."""

    __tablename__ = "optimizations"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    job_description_id = Column(Integer, ForeignKey("job_descriptions.id"), nullable=False)
    source_document_id = Column(Integer, ForeignKey("source_documents.id"), nullable=False)
    cover_letter_id = Column(Integer, ForeignKey("source_documents.id"), nullable=True)
    optimized_content = Column(Text, nullable=False)
    optimized_secondary_content = Column(Text, nullable=True)
    suggestions = Column(Text, nullable=False)
    ats_score = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    job_description = relationship("JobDescription", back_populates="optimizations")
    source_document = relationship("SourceDocument", foreign_keys=[source_document_id])
    cover_letter = relationship("SourceDocument", foreign_keys=[cover_letter_id])
