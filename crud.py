import uuid
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session, joinedload

import models
import schemas


# --- User CRUD ---
def get_user_by_auth_sub(db: Session, auth_sub: str):
    return db.query(models.User).filter(models.User.auth_sub == auth_sub).first()


def create_user(db: Session, user: schemas.UserCreate):
    db_user = models.User(
        email=user.email,
        auth_sub=user.auth_sub or f"local-{uuid.uuid4()}",
    )
    db.add(db_user)
    db.flush()  # Assign ID without committing
    db.refresh(db_user)
    return db_user


# --- Source document CRUD ---
def set_current_source_document(db: Session, user_id: int, kind: str, content: str):
    """Store ``content`` as the user's current document of ``kind``.

    The previous current row is unset with a conditional update in the same
    transaction as the insert, so readers never see zero or two current rows.
    """
    try:
        db.execute(
            update(models.SourceDocument)
            .where(
                models.SourceDocument.user_id == user_id,
                models.SourceDocument.kind == kind,
                models.SourceDocument.is_current.is_(True),
            )
            .values(is_current=False)
        )
        db_document = models.SourceDocument(
            user_id=user_id, kind=kind, content=content, is_current=True
        )
        db.add(db_document)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(db_document)
    return db_document


def get_current_source_document(db: Session, user_id: int, kind: str = models.RESUME):
    return (
        db.query(models.SourceDocument)
        .filter(
            models.SourceDocument.user_id == user_id,
            models.SourceDocument.kind == kind,
            models.SourceDocument.is_current.is_(True),
        )
        .first()
    )


def get_source_documents_for_user(db: Session, user_id: int, kind: str):
    """Every stored version of a document kind, newest first."""
    return (
        db.query(models.SourceDocument)
        .filter(models.SourceDocument.user_id == user_id, models.SourceDocument.kind == kind)
        .order_by(models.SourceDocument.created_at.desc(), models.SourceDocument.id.desc())
        .all()
    )


# --- Job description CRUD ---
def create_job_description(db: Session, job: schemas.JobDescriptionCreate, user_id: int):
    db_job = models.JobDescription(
        user_id=user_id,
        title=job.title,
        company=job.company or None,
        description=job.description,
    )
    db.add(db_job)
    db.commit()
    db.refresh(db_job)
    return db_job


def get_job_descriptions_for_user(db: Session, user_id: int):
    return (
        db.query(models.JobDescription)
        .filter(models.JobDescription.user_id == user_id)
        .order_by(models.JobDescription.created_at.desc())
        .all()
    )


def get_job_description(db: Session, job_description_id: int, user_id: int):
    return (
        db.query(models.JobDescription)
        .filter(
            models.JobDescription.id == job_description_id,
            models.JobDescription.user_id == user_id,
        )
        .first()
    )


# --- User settings CRUD ---
def get_user_settings(db: Session, user_id: int) -> Optional[models.UserSettings]:
    return db.query(models.UserSettings).filter(models.UserSettings.user_id == user_id).first()


def upsert_user_settings(db: Session, user_id: int, update_data: schemas.UserSettingsUpdate):
    """Create the settings row on first save, otherwise update the given fields."""
    db_settings = get_user_settings(db, user_id)
    if db_settings is None:
        db_settings = models.UserSettings(user_id=user_id)

    fields = update_data.model_dump(exclude_unset=True)
    for name, value in fields.items():
        setattr(db_settings, name, value)

    db.add(db_settings)  # add works for updates too
    db.commit()
    db.refresh(db_settings)
    return db_settings


# --- Optimization CRUD ---
def create_optimization(
    db: Session,
    user_id: int,
    job_description_id: int,
    source_document_id: int,
    result: schemas.OptimizationResult,
    cover_letter_id: Optional[int] = None,
):
    db_optimization = models.Optimization(
        user_id=user_id,
        job_description_id=job_description_id,
        source_document_id=source_document_id,
        cover_letter_id=cover_letter_id,
        optimized_content=result.optimized_content,
        optimized_secondary_content=result.optimized_secondary_content,
        suggestions=result.suggestions,
        ats_score=result.ats_score,
    )
    db.add(db_optimization)
    db.flush()
    return db_optimization


def get_optimizations_for_user(db: Session, user_id: int):
    """Optimization history, newest first, with the job description loaded."""
    return (
        db.query(models.Optimization)
        .options(joinedload(models.Optimization.job_description))
        .filter(models.Optimization.user_id == user_id)
        .order_by(models.Optimization.created_at.desc(), models.Optimization.id.desc())
        .all()
    )


def get_optimization(db: Session, optimization_id: int, user_id: int):
    return (
        db.query(models.Optimization)
        .filter(
            models.Optimization.id == optimization_id,
            models.Optimization.user_id == user_id,
        )
        .first()
    )


def count_optimizations_for_user(db: Session, user_id: int) -> int:
    return db.query(models.Optimization).filter(models.Optimization.user_id == user_id).count()
