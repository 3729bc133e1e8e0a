from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
import structlog

import models
import schemas
import crud
import errors
import logic
import prompts
import render_proxy
from database import create_db_and_tables, get_db
from auth import get_current_user
from settings import get_settings, Settings
from request_id_middleware import RequestIdMiddleware
from observability import init_observability


# Initialise observability before creating app
init_observability()
logger = structlog.get_logger(__name__)

# Create DB tables on startup
create_db_and_tables()

app = FastAPI(
    title="Resume Optimizer",
    description="Backend API for ATS resume optimization and LaTeX rendering",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestIdMiddleware)


# --- Error handlers: every failure is reported as {"error": message} --- #
@app.exception_handler(errors.OptimizerError)
async def optimizer_error_handler(request: Request, exc: errors.OptimizerError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": f"{location}: {message}" if location else message},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error", path=request.url.path, error_kind=type(exc).__name__)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"},
    )


@app.get("/favicon.ico", include_in_schema=False)
async def favicon():
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/health", tags=["Meta"])
def health():
    return {"status": "ok"}


# --- Authenticated current user endpoint ---
@app.get("/users/me", response_model=schemas.User, tags=["Auth"])
def get_me(current_user: models.User = Depends(get_current_user)):
    """Returns the authenticated user's database record."""
    return current_user


# --- Source documents (résumé / cover letter) ---
@app.post(
    "/documents/{kind}",
    response_model=schemas.SourceDocument,
    status_code=status.HTTP_201_CREATED,
    tags=["Documents"],
)
def set_current_document_endpoint(
    kind: schemas.DocumentKind,
    document: schemas.SourceDocumentCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not document.content.strip():
        raise errors.BadRequest("Document content cannot be empty")
    db_document = crud.set_current_source_document(
        db, user_id=current_user.id, kind=kind, content=document.content
    )
    logger.info("Stored current document", kind=kind, document_id=db_document.id, user_id=current_user.id)
    return db_document


@app.get("/documents/{kind}", response_model=List[schemas.SourceDocument], tags=["Documents"])
def list_documents_endpoint(
    kind: schemas.DocumentKind,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Every stored version of the document, newest first."""
    return crud.get_source_documents_for_user(db, user_id=current_user.id, kind=kind)


@app.get("/documents/{kind}/current", response_model=schemas.SourceDocument, tags=["Documents"])
def get_current_document_endpoint(
    kind: schemas.DocumentKind,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    db_document = crud.get_current_source_document(db, user_id=current_user.id, kind=kind)
    if db_document is None:
        raise errors.NotFound(f"No current {kind.replace('_', ' ')} found")
    return db_document


# --- Job descriptions ---
@app.post(
    "/job-descriptions",
    response_model=schemas.JobDescription,
    status_code=status.HTTP_201_CREATED,
    tags=["Job Descriptions"],
)
def create_job_description_endpoint(
    job: schemas.JobDescriptionCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return crud.create_job_description(db, job=job, user_id=current_user.id)


@app.get("/job-descriptions", response_model=List[schemas.JobDescription], tags=["Job Descriptions"])
def list_job_descriptions_endpoint(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return crud.get_job_descriptions_for_user(db, user_id=current_user.id)


@app.get("/job-descriptions/{job_description_id}", response_model=schemas.JobDescription, tags=["Job Descriptions"])
def get_job_description_endpoint(
    job_description_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    job = crud.get_job_description(db, job_description_id=job_description_id, user_id=current_user.id)
    if job is None:
        raise errors.NotFound("Job description not found")
    return job


# --- User settings ---
def _settings_out(db_settings) -> schemas.UserSettingsOut:
    template = (db_settings.instruction_template or "").strip() if db_settings else ""
    return schemas.UserSettingsOut(
        instruction_template=template or prompts.DEFAULT_INSTRUCTION_TEMPLATE,
        is_default_template=not template,
        has_render_credential=bool(db_settings and db_settings.render_credential),
    )


@app.get("/settings", response_model=schemas.UserSettingsOut, tags=["Settings"])
def get_settings_endpoint(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _settings_out(crud.get_user_settings(db, user_id=current_user.id))


@app.put("/settings", response_model=schemas.UserSettingsOut, tags=["Settings"])
def update_settings_endpoint(
    update: schemas.UserSettingsUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    db_settings = crud.upsert_user_settings(db, user_id=current_user.id, update_data=update)
    logger.info("Saved user settings", user_id=current_user.id)
    return _settings_out(db_settings)


# --- Optimization pipeline ---
@app.post("/optimize", response_model=schemas.Optimization, tags=["Optimizations"])
async def optimize_endpoint(
    request: schemas.OptimizeRequest,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return await logic.optimize_for_job(
        db, current_user, request.job_description_id, settings
    )


@app.get("/optimizations", response_model=List[schemas.OptimizationHistoryItem], tags=["Optimizations"])
def list_optimizations_endpoint(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return crud.get_optimizations_for_user(db, user_id=current_user.id)


@app.get("/optimizations/{optimization_id}", response_model=schemas.Optimization, tags=["Optimizations"])
def get_optimization_endpoint(
    optimization_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    optimization = crud.get_optimization(db, optimization_id=optimization_id, user_id=current_user.id)
    if optimization is None:
        raise errors.NotFound("Optimization not found")
    return optimization


# --- Rendering ---
@app.post("/render", response_model=schemas.RenderResult, tags=["Rendering"])
async def render_endpoint(
    request: schemas.RenderRequest,
    current_user: models.User = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
):
    return await render_proxy.render_document(request.content, request.credential, settings)


@app.post(
    "/optimizations/{optimization_id}/render",
    response_model=schemas.RenderResult,
    tags=["Rendering"],
)
async def render_optimization_endpoint(
    optimization_id: int,
    request: Optional[schemas.StoredRenderRequest] = None,
    kind: schemas.DocumentKind = Query(default="resume"),
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Render a stored optimization; the saved API key is used unless one is posted."""
    return await render_proxy.render_optimization(
        db,
        current_user,
        optimization_id,
        kind,
        settings,
        credential=request.credential if request else None,
    )


# --- Main execution --- (for running with uvicorn)
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
