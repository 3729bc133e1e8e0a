import structlog
from functools import lru_cache
from typing import Optional

import openai
from openai import AsyncOpenAI

import errors
from prompts import SYSTEM_PROMPT
from settings import Settings


logger = structlog.get_logger(__name__)

# --- Application Info for OpenRouter-style gateways ---
APP_NAME = "Resume Optimizer"

MODEL_OPTS = {
    "temperature": 0.2,
    "max_tokens": 8192,
}

# Excerpt of an upstream error body kept in messages and logs
ERROR_BODY_LIMIT = 500


@lru_cache()
def _get_client(api_key: str, base_url: Optional[str], timeout: float) -> AsyncOpenAI:
    # Single attempt per user action: the SDK's own retries are disabled
    return AsyncOpenAI(
        api_key=api_key,
        base_url=base_url,
        timeout=timeout,
        max_retries=0,
        default_headers={"X-Title": APP_NAME},
    )


def get_client(settings: Settings) -> AsyncOpenAI:
    if not settings.openai_api_key:
        raise errors.ServiceUnavailable("OpenAI API key not configured")
    return _get_client(settings.openai_api_key, settings.llm_base_url, settings.llm_timeout_seconds)


async def request_optimization(prompt: str, settings: Settings) -> str:
    """Send the composed prompt and return the model's raw JSON text.

    Raises ``errors.UpstreamError`` for non-success statuses and connection
    failures, ``errors.Timeout`` when the bound is exceeded, and
    ``errors.MalformedUpstreamResponse`` when no message content comes back.
    """
    client = get_client(settings)
    messages = [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": prompt},
    ]

    logger.info("Calling language model", model=settings.llm_model, prompt_length=len(prompt))
    try:
        response = await client.chat.completions.create(
            model=settings.llm_model,
            messages=messages,
            response_format={"type": "json_object"},
            **MODEL_OPTS,
        )
    except openai.APITimeoutError as exc:
        logger.error("Language model request timed out", timeout=settings.llm_timeout_seconds)
        raise errors.Timeout(
            f"Language model did not respond within {settings.llm_timeout_seconds:g} seconds"
        ) from exc
    except openai.APIStatusError as exc:
        body = exc.response.text[:ERROR_BODY_LIMIT] if exc.response is not None else ""
        logger.error("Language model API error", status_code=exc.status_code, body=body)
        raise errors.UpstreamError(f"OpenAI API error: {exc.status_code} {body}".rstrip()) from exc
    except openai.APIConnectionError as exc:
        logger.error("Language model unreachable", exc=str(exc))
        raise errors.UpstreamError("Could not reach the language model service") from exc

    choices = getattr(response, "choices", None) or []
    message = choices[0].message if choices else None
    content = getattr(message, "content", None)
    if not content:
        logger.error("Language model returned no message content")
        raise errors.MalformedUpstreamResponse("Invalid AI response structure")

    logger.info("Language model response received", response_length=len(content))
    return content
