"""
Text generation collaborators for agent replies.

The conversation bus asks a TextGenerator for a reply before falling back
to the cast's template tables. Generation is optional flavour: any
failure, timeout, empty string or ``None`` means "no result" and the bus
moves on to templates.

Implementations:
- NullTextGenerator - never produces text (templates only)
- LLMTextGenerator - structured mirascope call via call_llm_with_retries()
"""

import asyncio
import json
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Mapping, Optional

from pydantic import BaseModel, Field

from .config import Config
from .llm_utils import call_llm_with_retries
from .logging_utils import log_error, log_llm


class GeneratedUtterance(BaseModel):
    """Structured response requested from the model."""

    text: str = Field(
        ...,
        max_length=400,
        description="One or two sentences spoken in character, no stage directions",
    )


class TextGenerator(ABC):
    @abstractmethod
    async def generate(
        self, agent_id: str, prompt: str, world_state: Mapping[str, Any]
    ) -> Optional[str]:
        """Return a reply for ``agent_id`` or ``None`` when nothing was produced."""


class NullTextGenerator(TextGenerator):
    async def generate(
        self, agent_id: str, prompt: str, world_state: Mapping[str, Any]
    ) -> Optional[str]:
        return None


DEFAULT_SYSTEM_PROMPT = (
    "You are {name}, a character in a text adventure. Reply to the other "
    "character in one or two short sentences, in your own voice. Do not "
    "narrate actions and do not break character."
)


class LLMTextGenerator(TextGenerator):
    """LLM-backed reply generator with a global switch and a coarse rate limit.

    Calls closer together than ``min_interval_seconds`` are skipped (return
    ``None``) rather than queued, so a burst of banter never piles up
    provider requests.
    """

    def __init__(
        self,
        llm_provider: Optional[str] = None,
        llm_model: Optional[str] = None,
        *,
        enabled: Optional[bool] = None,
        min_interval_seconds: Optional[float] = None,
        personas: Optional[Dict[str, str]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.llm_provider = llm_provider or Config.LLM_PROVIDER
        self.llm_model = llm_model or Config.LLM_MODEL
        self.enabled = Config.TEXT_GENERATION_ENABLED if enabled is None else enabled
        self.min_interval_seconds = (
            Config.TEXT_MIN_INTERVAL_SECONDS
            if min_interval_seconds is None
            else min_interval_seconds
        )
        # agent id -> system prompt; agents without one get DEFAULT_SYSTEM_PROMPT
        self.personas = dict(personas or {})
        self.clock = clock
        self._last_call: Optional[float] = None

    def system_prompt_for(self, agent_id: str) -> str:
        if agent_id in self.personas:
            return self.personas[agent_id]
        return DEFAULT_SYSTEM_PROMPT.format(name=agent_id.replace("-", " ").title())

    async def generate(
        self, agent_id: str, prompt: str, world_state: Mapping[str, Any]
    ) -> Optional[str]:
        if not self.enabled:
            return None

        now = self.clock()
        if self._last_call is not None and now - self._last_call < self.min_interval_seconds:
            log_llm(f"[TextGen] Rate limited, skipping generation for {agent_id}")
            return None
        self._last_call = now

        user_prompt = (
            f"{prompt}\n\n"
            f"World state:\n{json.dumps(dict(world_state), indent=2, default=str)}\n\n"
            "Output JSON matching the GeneratedUtterance schema."
        )
        log_llm(f"[TextGen] {agent_id} via {self.llm_provider}/{self.llm_model}")

        result = await call_llm_with_retries(
            system_prompt=self.system_prompt_for(agent_id),
            user_prompt=user_prompt,
            llm_provider=self.llm_provider,
            llm_model=self.llm_model,
            response_model=GeneratedUtterance,
        )
        text = result.text.strip()
        return text or None


async def generate_with_timeout(
    generator: Optional[TextGenerator],
    agent_id: str,
    prompt: str,
    world_state: Mapping[str, Any],
    *,
    timeout_seconds: Optional[float] = None,
) -> Optional[str]:
    """Run a generator under a hard timeout. Every failure becomes ``None``."""

    if generator is None:
        return None

    timeout = Config.TEXT_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
    try:
        text = await asyncio.wait_for(
            generator.generate(agent_id, prompt, world_state), timeout=timeout
        )
    except asyncio.TimeoutError:
        log_error(f"[TextGen] Generation for {agent_id} timed out after {timeout:g}s")
        return None
    except Exception as exc:
        log_error(f"[TextGen] Generation for {agent_id} failed: {exc}")
        return None

    if not text or not text.strip():
        return None
    return text.strip()
