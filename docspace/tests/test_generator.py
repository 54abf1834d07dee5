"""
Tests for the local LLM form-field generator.

Tests cover:
- JSON extraction from raw, fenced and prose-wrapped LLM output
- {"fields": {...}} wrappers unwrapped
- Retry after a non-JSON answer; exhaustion raises FormGenerationError
- LLM exceptions count as failed attempts
- Blank pages produce no fields without calling the LLM
- Generated output still goes through the translator in the form panel
- Request logging redacts credentials
"""

import json
from unittest.mock import MagicMock

import httpx
import pytest

from docspace.agent.generator import (
    MAX_JSON_RETRIES,
    FormGenerationError,
    LLMFormFieldGenerator,
    extract_json,
)
from docspace.agent.llm_provider import build_safe_curl
from docspace.agent.prompts import MAX_PAGE_TEXT_CHARS, build_page_prompt
from docspace.panels.base import PanelStatus
from docspace.panels.form_panel import FormPanel


# --- Mock LLMs ---


class RawTextLLM:
    """Returns raw text strings (not necessarily valid JSON)."""

    def __init__(self, responses: list[str]):
        self.responses = list(responses)
        self.call_count = 0
        self.last_messages = None

    async def ainvoke(self, messages, **kwargs):
        self.call_count += 1
        self.last_messages = list(messages)
        if not self.responses:
            raise RuntimeError("No more responses")
        result = MagicMock()
        result.content = self.responses.pop(0)
        return result


class ExceptionLLM:
    """Always raises an exception."""

    def __init__(self, error_message: str = "LLM service unavailable"):
        self.error_message = error_message
        self.call_count = 0

    async def ainvoke(self, messages, **kwargs):
        self.call_count += 1
        raise ConnectionError(self.error_message)


FIELDS = {"Full Name": {"type": "text"}, "Country": {"type": "dropdown", "options": ["Peru"]}}


# =============================================================
# Test: extract_json
# =============================================================


class TestExtractJson:
    def test_plain_json(self):
        assert extract_json(json.dumps(FIELDS)) == FIELDS

    def test_markdown_fence(self):
        content = f"```json\n{json.dumps(FIELDS)}\n```"
        assert extract_json(content) == FIELDS

    def test_surrounding_prose(self):
        content = f"Here are the fields: {json.dumps(FIELDS)} Let me know!"
        assert extract_json(content) == FIELDS

    def test_garbage(self):
        assert extract_json("I cannot help with that.") is None

    def test_empty(self):
        assert extract_json("") is None


# =============================================================
# Test: Generator
# =============================================================


class TestGenerator:
    """LLMFormFieldGenerator.generate_form_fields."""

    @pytest.mark.asyncio
    async def test_returns_field_map(self, backend):
        llm = RawTextLLM([json.dumps(FIELDS)])
        generator = LLMFormFieldGenerator(llm, backend)
        assert await generator.generate_form_fields(1, 2) == FIELDS
        assert llm.call_count == 1
        assert backend.page_text in llm.last_messages[-1].content

    @pytest.mark.asyncio
    async def test_fields_wrapper_unwrapped(self, backend):
        llm = RawTextLLM([json.dumps({"fields": FIELDS})])
        generator = LLMFormFieldGenerator(llm, backend)
        assert await generator.generate_form_fields(1, 2) == FIELDS

    @pytest.mark.asyncio
    async def test_bad_then_good_succeeds(self, backend):
        llm = RawTextLLM(["Sure! The fields are a name and a country.", json.dumps(FIELDS)])
        generator = LLMFormFieldGenerator(llm, backend)
        assert await generator.generate_form_fields(1, 2) == FIELDS
        assert llm.call_count == 2
        assert "WRONG" in llm.last_messages[-1].content

    @pytest.mark.asyncio
    async def test_json_array_is_retried(self, backend):
        llm = RawTextLLM(["[1, 2, 3]", json.dumps(FIELDS)])
        generator = LLMFormFieldGenerator(llm, backend)
        assert await generator.generate_form_fields(1, 2) == FIELDS

    @pytest.mark.asyncio
    async def test_all_retries_exhausted(self, backend):
        llm = RawTextLLM(["nope"] * (MAX_JSON_RETRIES + 1))
        generator = LLMFormFieldGenerator(llm, backend)
        with pytest.raises(FormGenerationError):
            await generator.generate_form_fields(1, 2)
        assert llm.call_count == MAX_JSON_RETRIES + 1

    @pytest.mark.asyncio
    async def test_llm_exception_raises_generation_error(self, backend):
        llm = ExceptionLLM()
        generator = LLMFormFieldGenerator(llm, backend)
        with pytest.raises(FormGenerationError):
            await generator.generate_form_fields(1, 2)
        assert llm.call_count == MAX_JSON_RETRIES + 1

    @pytest.mark.asyncio
    async def test_blank_page_skips_llm(self, backend):
        backend.page_text = "  \n "
        llm = RawTextLLM([])
        generator = LLMFormFieldGenerator(llm, backend)
        assert await generator.generate_form_fields(1, 2) == {}
        assert llm.call_count == 0

    @pytest.mark.asyncio
    async def test_drives_form_panel(self, backend):
        llm = RawTextLLM([json.dumps(FIELDS)])
        panel = FormPanel(backend, 1, 2, generator=LLMFormFieldGenerator(llm, backend))
        await panel.mount()
        assert panel.status is PanelStatus.READY
        assert panel.schema.keys() == ["full_name", "country"]

    @pytest.mark.asyncio
    async def test_generation_failure_puts_panel_in_error(self, backend):
        panel = FormPanel(backend, 1, 2, generator=LLMFormFieldGenerator(ExceptionLLM(), backend))
        await panel.mount()
        assert panel.status is PanelStatus.ERROR


# =============================================================
# Test: Prompts and request logging
# =============================================================


class TestPrompts:
    def test_page_prompt_includes_text(self):
        assert build_page_prompt("  Name: ____  ") == "Text Content:\nName: ____"

    def test_long_page_truncated(self):
        prompt = build_page_prompt("x" * (MAX_PAGE_TEXT_CHARS + 500))
        assert "truncated" in prompt
        assert "x" * MAX_PAGE_TEXT_CHARS in prompt
        assert "x" * (MAX_PAGE_TEXT_CHARS + 1) not in prompt


class TestSafeCurl:
    def test_authorization_redacted(self):
        request = httpx.Request(
            "POST",
            "https://llm.test/v1/chat/completions",
            headers={"Authorization": "Bearer secret-token"},
            json={"model": "m"},
        )
        curl = build_safe_curl(request)
        assert "secret-token" not in curl
        assert "[REDACTED]" in curl
        assert curl.startswith("curl -X POST 'https://llm.test/v1/chat/completions'")
        assert '"model"' in curl

    def test_long_body_truncated(self):
        request = httpx.Request("POST", "https://llm.test/v1", content=b"a" * 5000)
        assert "[TRUNCATED]" in build_safe_curl(request)
