from datetime import datetime
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr


DocumentKind = Literal["resume", "cover_letter"]


# --- Users ---
class UserCreate(BaseModel):
    email: Optional[str] = None
    auth_sub: str


class User(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: Optional[str] = None


# --- Source documents ---
class SourceDocumentCreate(BaseModel):
    content: str = Field(..., min_length=1)


class SourceDocument(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    kind: DocumentKind
    content: str
    is_current: bool
    created_at: datetime


# --- Job descriptions ---
class JobDescriptionCreate(BaseModel):
    title: str = Field(..., min_length=1)
    company: Optional[str] = None
    description: str = Field(..., min_length=1)


class JobDescription(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    company: Optional[str] = None
    description: str
    created_at: datetime


# --- User settings ---
class UserSettingsUpdate(BaseModel):
    instruction_template: Optional[str] = None
    render_credential: Optional[str] = None


class UserSettingsOut(BaseModel):
    instruction_template: str
    is_default_template: bool
    has_render_credential: bool


# --- Optimizations ---
class OptimizeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Optional here so the pipeline, not request validation, reports it missing
    job_description_id: Optional[Union[StrictInt, StrictStr]] = Field(default=None, alias="jobDescriptionId")


class JobDescriptionSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    title: str
    company: Optional[str] = None


class Optimization(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    job_description_id: int
    source_document_id: int
    cover_letter_id: Optional[int] = None
    optimized_content: str
    optimized_secondary_content: Optional[str] = None
    suggestions: str
    ats_score: int
    created_at: datetime


class OptimizationHistoryItem(Optimization):
    job_description: Optional[JobDescriptionSummary] = None


class OptimizationResult(BaseModel):
    """Validated fields of the language model's JSON answer."""

    optimized_content: str
    suggestions: str
    ats_score: int
    optimized_secondary_content: Optional[str] = None


# --- Rendering ---
class RenderRequest(BaseModel):
    content: Optional[str] = None
    credential: Optional[str] = None


class StoredRenderRequest(BaseModel):
    credential: Optional[str] = None


class RenderResult(BaseModel):
    success: bool
    artifactUrl: str
