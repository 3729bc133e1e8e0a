"""Proxy to the external LaTeX -> PDF rendering service.

The upstream may answer failures with an HTML page (bad gateway, rejected
key) instead of JSON, so the declared content type is checked before any
body is parsed. The caller's credential is forwarded in the ``x-api-key``
header only and never appears in messages or logs.
"""
import json
from typing import Optional

import httpx
import structlog
from sqlalchemy.orm import Session

import crud
import errors
import models
import schemas
from settings import Settings

logger = structlog.get_logger(__name__)

EXCERPT_LIMIT = 200
ARTIFACT_KEYS = ("pdfUrl", "artifactUrl")


def _excerpt(text: str, credential: str) -> str:
    if credential:
        text = text.replace(credential, "***")
    text = " ".join(text.split())
    if len(text) > EXCERPT_LIMIT:
        return text[:EXCERPT_LIMIT] + "..."
    return text


def _is_json(response: httpx.Response) -> bool:
    return "application/json" in response.headers.get("content-type", "").lower()


def _error_message(response: httpx.Response, credential: str) -> str:
    """Build a descriptive message for a non-success upstream response."""
    body = response.text
    if _is_json(response):
        try:
            data = json.loads(body)
        except ValueError:
            return f"Rendering service error (status {response.status_code}): {_excerpt(body, credential)}"
        if isinstance(data, dict):
            detail = data.get("error") or data.get("details")
            if detail:
                return f"Rendering service error (status {response.status_code}): {_excerpt(str(detail), credential)}"
        return f"Rendering service error (status {response.status_code})"

    return (
        f"Rendering service returned a non-JSON error (status {response.status_code}). "
        f"Check your API key or the service status. Response: {_excerpt(body, credential)}"
    )


async def render_document(
    content: Optional[str],
    credential: Optional[str],
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> schemas.RenderResult:
    if not content or not content.strip() or not credential or not credential.strip():
        raise errors.BadRequest("Missing latex content or API key")

    logger.info("Calling rendering service", content_length=len(content))
    try:
        async with httpx.AsyncClient(timeout=settings.render_timeout_seconds, transport=transport) as client:
            response = await client.post(
                settings.render_service_url,
                json={"latex": content},
                headers={"x-api-key": credential},
            )
    except httpx.TimeoutException as exc:
        logger.error("Rendering service timed out", timeout=settings.render_timeout_seconds)
        raise errors.Timeout(
            f"Rendering service did not respond within {settings.render_timeout_seconds:g} seconds"
        ) from exc
    except httpx.RequestError as exc:
        logger.error("Rendering service unreachable", exc_type=type(exc).__name__)
        raise errors.UpstreamError("Could not reach the rendering service") from exc

    logger.info(
        "Rendering service responded",
        status_code=response.status_code,
        content_type=response.headers.get("content-type"),
    )

    if not response.is_success:
        message = _error_message(response, credential)
        logger.error("Rendering service error", status_code=response.status_code, message=message)
        raise errors.UpstreamError(message)

    if not _is_json(response):
        raise errors.MalformedUpstreamResponse(
            f"Invalid response format from PDF service (content-type "
            f"{response.headers.get('content-type') or 'missing'})"
        )
    try:
        data = response.json()
    except ValueError as exc:
        raise errors.MalformedUpstreamResponse("Invalid response format from PDF service") from exc

    artifact_url = None
    if isinstance(data, dict):
        artifact_url = next((data[key] for key in ARTIFACT_KEYS if data.get(key)), None)
    if not isinstance(data, dict) or data.get("success") is not True or not isinstance(artifact_url, str):
        logger.error("Rendering service response missing success flag or artifact URL")
        raise errors.MalformedUpstreamResponse("Invalid response from PDF service")

    return schemas.RenderResult(success=True, artifactUrl=artifact_url)


async def render_optimization(
    db: Session,
    user: models.User,
    optimization_id: int,
    kind: str,
    settings: Settings,
    credential: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> schemas.RenderResult:
    """Render a stored optimization, using the saved credential when none is given."""
    optimization = crud.get_optimization(db, optimization_id=optimization_id, user_id=user.id)
    if optimization is None:
        raise errors.NotFound("Optimization not found")

    if kind == models.COVER_LETTER:
        content = optimization.optimized_secondary_content
    else:
        content = optimization.optimized_content
    if not content:
        raise errors.NotFound(f"No optimized {kind.replace('_', ' ')} found")

    if not credential:
        user_settings = crud.get_user_settings(db, user_id=user.id)
        credential = user_settings.render_credential if user_settings else None
    if not credential:
        raise errors.BadRequest("Please configure your LaTeX API key in Settings")

    return await render_document(content, credential, settings, transport=transport)
