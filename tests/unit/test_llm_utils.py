"""
Unit Tests for OpenAI Helpers

Tests reply cleanup, JSON extraction and error wrapping.
"""

import json

import httpx
import pytest
import sys
import os
from openai import APIConnectionError, AuthenticationError, RateLimitError

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "socratic_math_tutor", "src"))

from socratic_math_tutor.errors import LLMError
from socratic_math_tutor.llm_utils import (
    chat_model,
    complete,
    create_llm_client,
    parse_json_response,
    strip_code_fences,
)


class TestReplyParsing:
    """Test suite for model reply cleanup."""

    def test_strip_code_fences(self):
        assert strip_code_fences("```json\n{\"a\": 1}\n```") == '{"a": 1}'
        assert strip_code_fences("  plain  ") == "plain"

    def test_parse_fenced_json(self):
        assert parse_json_response("```json\n{\"is_correct\": true}\n```") == {"is_correct": True}

    def test_parse_json_inside_prose(self):
        content = 'Sure! Here is the verdict: {"solution_completed": true} Hope it helps.'
        assert parse_json_response(content) == {"solution_completed": True}

    def test_parse_without_json(self):
        with pytest.raises(json.JSONDecodeError):
            parse_json_response("no json here")


class TestClientHelpers:
    """Test suite for client creation and completions."""

    def test_model_from_environment(self, monkeypatch):
        monkeypatch.setenv("OPENAI_MODEL", "gpt-4o-mini")
        assert chat_model() == "gpt-4o-mini"
        monkeypatch.delenv("OPENAI_MODEL")
        assert chat_model() == "gpt-4"

    def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(ValueError):
            create_llm_client()

    @pytest.mark.asyncio
    async def test_complete_returns_stripped_text(self, fake_llm):
        fake_llm.replies["math problem detector"] = "  YES \n"
        reply = await complete(fake_llm, [{"role": "system", "content": "You are a math problem detector."}])
        assert reply == "YES"

    @pytest.mark.asyncio
    async def test_complete_wraps_provider_errors(self, fake_llm):
        error = APIConnectionError(request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))
        fake_llm.replies["math problem detector"] = error

        with pytest.raises(LLMError) as exc_info:
            await complete(fake_llm, [{"role": "system", "content": "You are a math problem detector."}])
        assert exc_info.value.status_code == 500
        assert exc_info.value.original_error is error

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error_class,status", [(AuthenticationError, 401), (RateLimitError, 429)])
    async def test_complete_keeps_provider_status(self, fake_llm, error_class, status):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        error = error_class("provider said no", response=httpx.Response(status, request=request), body=None)
        fake_llm.replies["math problem detector"] = error

        with pytest.raises(LLMError) as exc_info:
            await complete(fake_llm, [{"role": "system", "content": "You are a math problem detector."}])
        assert exc_info.value.status_code == status
        assert exc_info.value.code == "OPENAI_ERROR"
