"""
Shared OpenAI helpers.

One AsyncOpenAI client is created per service; model names come from the
environment so deployments can swap them without code changes.
"""

import json
import logging
import os
import re
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI, OpenAIError

from socratic_math_tutor.errors import LLMError

logger = logging.getLogger(__name__)

DEFAULT_CHAT_MODEL = "gpt-4"
DEFAULT_VISION_MODEL = "gpt-4o"
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"


def chat_model() -> str:
    return os.getenv("OPENAI_MODEL", DEFAULT_CHAT_MODEL)


def vision_model() -> str:
    return os.getenv("OPENAI_VISION_MODEL", DEFAULT_VISION_MODEL)


def embedding_model() -> str:
    return os.getenv("OPENAI_EMBEDDING_MODEL", DEFAULT_EMBEDDING_MODEL)


def create_llm_client() -> AsyncOpenAI:
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        raise ValueError("OPENAI_API_KEY not found in environment variables")
    return AsyncOpenAI(api_key=api_key)


def strip_code_fences(text: str) -> str:
    """Remove a leading ```lang fence and a trailing ``` fence."""
    cleaned = re.sub(r'^```[a-zA-Z]*\s*', '', text.strip())
    cleaned = re.sub(r'```$', '', cleaned)
    return cleaned.strip()


def parse_json_response(content: str) -> Dict[str, Any]:
    """
    Parse a JSON object out of a model reply.

    Models sometimes wrap JSON in fences or prose, so the first {...}
    block is used when the whole reply does not parse.
    """
    cleaned = strip_code_fences(content)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        json_match = re.search(r'\{.*\}', cleaned, re.DOTALL)
        if not json_match:
            raise
        return json.loads(json_match.group(0))


async def complete(
    client: AsyncOpenAI,
    messages: List[Dict[str, Any]],
    max_tokens: int = 200,
    temperature: float = 0.7,
    model: Optional[str] = None,
    **kwargs,
) -> str:
    """
    Run a chat completion and return the stripped reply text.

    Raises:
        LLMError: on provider failures, keeping the provider status code
    """
    try:
        response = await client.chat.completions.create(
            model=model or chat_model(),
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature,
            **kwargs,
        )
    except OpenAIError as e:
        logger.error(f"OpenAI request failed (status {getattr(e, 'status_code', None)}): {e}")
        raise LLMError(f"OpenAI request failed: {e}", e) from e

    content = response.choices[0].message.content if response.choices else None
    return (content or "").strip()
