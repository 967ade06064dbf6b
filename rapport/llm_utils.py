"""Structured LLM calls with validation-aware retries."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Sequence, TypeVar

from mirascope import llm
from pydantic import BaseModel, ValidationError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from .logging_utils import log_error, log_llm


ModelT = TypeVar("ModelT", bound=BaseModel)
# Upper bound for one provider round trip. Callers on the reply path pass a
# much tighter timeout through generate_with_timeout().
LLM_TIMEOUT_SECONDS = 30.0


@dataclass(slots=True)
class ValidationFeedback:
    """Correction text for the model plus the issues it was built from."""

    llm_text: str
    issues: Sequence[str]


def _truncate_preview(value: Any, *, limit: int = 60) -> str:
    if value is None:
        return "null"
    text = repr(value)
    if len(text) > limit:
        return text[: limit - 3] + "..."
    return text


def inject_validation_feedback(error: ValidationError) -> ValidationFeedback:
    """Turn a pydantic ValidationError into a retry instruction.

    Each issue names the field path, the error and a short preview of what
    the model actually sent, so the next attempt can fix it in place.
    """

    issues: list[str] = []
    for err in error.errors(include_url=False):
        loc = ".".join(str(part) for part in err.get("loc", [])) or "root"
        details = f"{loc}: {err.get('msg', 'validation error')}"
        if err.get("type"):
            details += f" [type={err['type']}]"
        if "input" in err:
            details += f" | received={_truncate_preview(err.get('input'))}"
        issues.append(details)

    if not issues:
        issues.append("root: response did not match the expected schema")

    lines = [
        "Your previous JSON response did not match the required schema.",
        "Reply again with only the corrected JSON object, no prose and no code fences.",
        "Issues detected:",
    ]
    lines.extend(f"- {issue}" for issue in issues)
    return ValidationFeedback(llm_text="\n".join(lines), issues=issues)


async def call_llm_with_retries(
    *,
    system_prompt: str,
    user_prompt: str,
    llm_provider: str,
    llm_model: str,
    response_model: type[ModelT],
    max_attempts: int = 2,
    timeout_seconds: float = LLM_TIMEOUT_SECONDS,
    feedback_builder: Callable[[ValidationError], ValidationFeedback] = inject_validation_feedback,
) -> ModelT:
    """Invoke a structured LLM call, retrying only on schema violations.

    Validation feedback is appended to the original prompt rather than
    replacing it. Timeouts and provider errors are not retried; they
    propagate to the caller, which decides how to degrade.

    Raises:
        ValidationError: If every attempt returned an invalid payload
        asyncio.TimeoutError: If a single attempt exceeded ``timeout_seconds``
    """

    system_prompt = system_prompt.strip()
    base_user_prompt = user_prompt.strip()
    feedback_payload: ValidationFeedback | None = None

    def _build_prompt() -> str:
        sections = [system_prompt, base_user_prompt]
        if feedback_payload is not None:
            sections.append(feedback_payload.llm_text)
        return "\n\n".join(section for section in sections if section)

    @llm.call(provider=llm_provider, model=llm_model, response_model=response_model)
    async def _invoke(prompt: str) -> str:
        return prompt

    attempt_number = 0
    async for attempt in AsyncRetrying(
        retry=retry_if_exception_type(ValidationError),
        stop=stop_after_attempt(max_attempts),
        reraise=True,
    ):
        with attempt:
            attempt_number += 1
            if attempt_number > 1:
                log_llm(
                    f"Retry {attempt_number}/{max_attempts} for {response_model.__name__} "
                    "with schema feedback"
                )
            try:
                return await asyncio.wait_for(_invoke(_build_prompt()), timeout=timeout_seconds)
            except ValidationError as exc:
                feedback_payload = feedback_builder(exc)
                log_error(
                    f"Schema validation failed for {response_model.__name__} "
                    f"(attempt {attempt_number}/{max_attempts})"
                )
                for issue in feedback_payload.issues:
                    print(f"    - {issue}")
                raise
            except asyncio.TimeoutError:
                log_error(
                    f"LLM call timed out after {timeout_seconds:g}s for {response_model.__name__}"
                )
                raise

    raise RuntimeError("LLM retry mechanism exited unexpectedly")
