from __future__ import annotations

import logging
import time

from groq import AsyncGroq

from ..errors import ProviderError
from .config import DEFAULT_LLM_CONFIG, LLMConfig

logger = logging.getLogger(__name__)


async def complete(
    system_prompt: str,
    user_message: str,
    config: LLMConfig = DEFAULT_LLM_CONFIG,
    *,
    model: str | None = None,
    temperature: float = 0.5,
    max_tokens: int | None = None,
    json_object: bool = False,
) -> str:
    """
    Run one Groq chat completion and return the raw text.

    Raises ProviderError when the LLM is disabled, the call fails or the
    model returns nothing. Callers decide how to fall back.
    """
    if not config.usable:
        raise ProviderError("LLM disabled or GROQ_API_KEY not set")

    model = model or config.model
    extra = {"response_format": {"type": "json_object"}} if json_object else {}
    started = time.perf_counter()
    try:
        async with AsyncGroq(api_key=config.api_key, timeout=config.timeout) as client:
            response = await client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_message},
                ],
                max_tokens=max_tokens or config.max_tokens,
                temperature=temperature,
                **extra,
            )
    except Exception as exc:
        raise ProviderError(f"Groq request failed: {exc}") from exc

    content = response.choices[0].message.content or ""
    elapsed_ms = round((time.perf_counter() - started) * 1000)
    logger.info("Groq %s answered in %dms (%d chars)", model, elapsed_ms, len(content))
    if not content.strip():
        raise ProviderError("Empty response from Groq")
    return content
