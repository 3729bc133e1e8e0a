import json
import math
from typing import Any, Optional, Union

import structlog
from sqlalchemy.orm import Session

import crud
import errors
import models
import schemas
from llm_interaction import request_optimization
from observability import SERVICE_NAME, metric_scope
from prompts import compose_optimization_prompt, resolve_instruction_template
from settings import Settings

# Set up logging
logger = structlog.get_logger(__name__)

ATS_SCORE_MIN = 0
ATS_SCORE_MAX = 100

# Keys accepted for the optimized résumé text
CONTENT_KEYS = ("optimized_latex", "optimized_content")


def _first_present(data: dict, keys) -> Any:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return None


def normalize_ats_score(value: Any) -> int:
    """Coerce the model's score to an int in 0-100.

    Numbers and numeric strings (a trailing ``%`` is tolerated) are rounded;
    values outside the range are clamped. Anything else is rejected.
    """
    if isinstance(value, bool):
        raise errors.MalformedUpstreamResponse("ats_score must be numeric")
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            raise errors.MalformedUpstreamResponse("ats_score is too large")
    elif isinstance(value, str):
        try:
            number = float(value.strip().rstrip("%"))
        except ValueError:
            raise errors.MalformedUpstreamResponse(f"ats_score is not numeric: {value[:50]!r}")
    else:
        raise errors.MalformedUpstreamResponse("ats_score must be numeric")

    if math.isnan(number) or math.isinf(number):
        raise errors.MalformedUpstreamResponse("ats_score must be a finite number")

    score = int(round(number))
    if score < ATS_SCORE_MIN or score > ATS_SCORE_MAX:
        clamped = max(ATS_SCORE_MIN, min(ATS_SCORE_MAX, score))
        logger.warning("ats_score out of range, clamping", ats_score=score, clamped=clamped)
        score = clamped
    return score


def _suggestions_text(value: Union[str, list]) -> str:
    if isinstance(value, list):
        return "\n".join(f"- {item}" for item in value if str(item).strip())
    return str(value).strip()


def parse_optimization_response(raw_content: str) -> schemas.OptimizationResult:
    """Validate the model's JSON answer.

    Raises ``MalformedUpstreamResponse`` when the text is not a JSON object and
    ``IncompleteUpstreamResponse`` when a required field is missing.
    """
    try:
        data = json.loads(raw_content)
    except json.JSONDecodeError as exc:
        logger.error("Failed to parse AI response", response_excerpt=raw_content[:200])
        raise errors.MalformedUpstreamResponse(f"Failed to parse AI response JSON: {exc.msg}") from exc

    if not isinstance(data, dict):
        raise errors.MalformedUpstreamResponse("AI response JSON is not an object")

    optimized_content = _first_present(data, CONTENT_KEYS)
    suggestions = data.get("suggestions")
    ats_score = data.get("ats_score")

    missing = []
    if not isinstance(optimized_content, str) or not optimized_content.strip():
        missing.append("optimized_latex")
    if not suggestions or not _suggestions_text(suggestions):
        missing.append("suggestions")
    if ats_score is None or ats_score == "":
        missing.append("ats_score")
    if missing:
        logger.error("AI response missing fields", missing=missing)
        raise errors.IncompleteUpstreamResponse(
            f"Missing expected fields in AI response: {', '.join(missing)}"
        )

    secondary = data.get("optimized_cover_letter")
    return schemas.OptimizationResult(
        optimized_content=optimized_content,
        suggestions=_suggestions_text(suggestions),
        ats_score=normalize_ats_score(ats_score),
        optimized_secondary_content=secondary if isinstance(secondary, str) and secondary.strip() else None,
    )


def _coerce_id(value: Union[int, str]) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@metric_scope
async def optimize_for_job(
    db: Session,
    user: Optional[models.User],
    job_description_id: Union[int, str, None],
    settings: Settings,
    metrics=None,
) -> models.Optimization:
    """Run one optimization of the caller's current résumé against a job description.

    Preconditions are checked in order and the first failure is raised. On
    success exactly one Optimization row is committed; on failure none is.
    """
    metrics.set_namespace(SERVICE_NAME)
    metrics.put_metric("optimizations_requested", 1, "Count")

    try:
        # --- 1-5. Preconditions, in order --- #
        if user is None:
            raise errors.Unauthorized("Unauthorized")
        metrics.set_property("user_id", user.id)

        if job_description_id is None or job_description_id == "":
            raise errors.BadRequest("Missing jobDescriptionId")

        if not settings.openai_api_key:
            logger.error("Language model API key missing from server configuration")
            raise errors.ServiceUnavailable("OpenAI API key not configured")

        jd_id = _coerce_id(job_description_id)
        job_description = (
            crud.get_job_description(db, job_description_id=jd_id, user_id=user.id)
            if jd_id is not None
            else None
        )
        if job_description is None:
            raise errors.NotFound("Job description not found")

        resume = crud.get_current_source_document(db, user_id=user.id, kind=models.RESUME)
        if resume is None:
            raise errors.NotFound("No current resume found")

        # --- Compose and call the model --- #
        user_settings = crud.get_user_settings(db, user_id=user.id)
        cover_letter = crud.get_current_source_document(db, user_id=user.id, kind=models.COVER_LETTER)
        prompt = compose_optimization_prompt(
            resolve_instruction_template(user_settings),
            resume.content,
            job_description,
            cover_letter_content=cover_letter.content if cover_letter else None,
        )
        logger.info(
            "Optimizing resume",
            user_id=user.id,
            job_description_id=job_description.id,
            resume_id=resume.id,
            custom_template=bool(user_settings and user_settings.instruction_template),
        )

        raw_content = await request_optimization(prompt, settings)
        result = parse_optimization_response(raw_content)

        # --- Persist --- #
        try:
            optimization = crud.create_optimization(
                db,
                user_id=user.id,
                job_description_id=job_description.id,
                source_document_id=resume.id,
                cover_letter_id=cover_letter.id if cover_letter else None,
                result=result,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(optimization)
    except errors.OptimizerError as exc:
        metrics.put_metric("optimizations_failed", 1, "Count")
        logger.warning("Optimization failed", error_kind=type(exc).__name__, error=exc.message)
        raise
    except Exception:
        metrics.put_metric("optimizations_failed", 1, "Count")
        logger.exception("Optimization failed unexpectedly")
        raise

    metrics.put_metric("optimizations_completed", 1, "Count")
    metrics.set_property("optimization_id", optimization.id)
    logger.info("Optimization stored", optimization_id=optimization.id, ats_score=optimization.ats_score)
    return optimization
