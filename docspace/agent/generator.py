"""
Local form-field generator.

An alternative to the backend's ``/form/generate`` endpoint: fetches the
page text from the backend and asks an LLM for the field map directly.
It implements the same ``generate_form_fields(project_id, page_number)``
contract, so the form panel cannot tell the two apart. The output is
still untrusted and goes through the field-schema translator.
"""

import json
import logging
from typing import Any

from langchain_core.messages import HumanMessage, SystemMessage

from docspace.agent.prompts import FORM_FIELDS_SYSTEM_PROMPT, JSON_RETRY_PROMPT, build_page_prompt

logger = logging.getLogger(__name__)

# Maximum retries when the LLM returns something other than a JSON object
MAX_JSON_RETRIES = 2


class FormGenerationError(Exception):
    """Raised when the LLM never produced a usable field map."""


def extract_json(content: str) -> Any | None:
    """Extract a JSON value from LLM output.

    Handles markdown code fences and prose around a ``{...}`` block.
    Returns None if nothing parses.
    """
    try:
        return json.loads(content)
    except json.JSONDecodeError:
        pass

    if "```" in content:
        for part in content.split("```"):
            stripped = part.strip()
            if stripped.startswith("json"):
                stripped = stripped[4:].strip()
            try:
                return json.loads(stripped)
            except json.JSONDecodeError:
                continue

    start = content.find("{")
    end = content.rfind("}")
    if start != -1 and end > start:
        try:
            return json.loads(content[start : end + 1])
        except json.JSONDecodeError:
            pass

    return None


def _unwrap_fields(parsed: dict) -> dict:
    """Some models wrap the map as {"fields": {...}}; unwrap that."""
    inner = parsed.get("fields")
    if len(parsed) == 1 and isinstance(inner, dict):
        return inner
    return parsed


async def call_llm_for_fields(llm: Any, messages: list) -> dict | None:
    """Call the LLM until it answers with a JSON object.

    Args:
        llm: A LangChain BaseChatModel instance.
        messages: The message list (retry prompts are appended to it).

    Returns:
        The parsed field map, or None if every attempt failed.
    """
    for attempt in range(MAX_JSON_RETRIES + 1):
        try:
            logger.info(
                "Calling LLM for form fields (attempt %d/%d)...",
                attempt + 1,
                MAX_JSON_RETRIES + 1,
            )
            response = await llm.ainvoke(messages)
            content = str(response.content).strip()
        except Exception as e:
            logger.error("LLM call failed (attempt %d): %s", attempt + 1, e)
            continue

        parsed = extract_json(content)
        if isinstance(parsed, dict):
            return _unwrap_fields(parsed)

        logger.warning(
            "LLM returned no JSON object (attempt %d/%d): %s",
            attempt + 1,
            MAX_JSON_RETRIES + 1,
            content[:300],
        )
        messages.append(HumanMessage(content=JSON_RETRY_PROMPT))

    logger.error("All %d LLM attempts failed to produce a field map", MAX_JSON_RETRIES + 1)
    return None


class LLMFormFieldGenerator:
    """Generates page form fields with a local LLM.

    Args:
        llm: A LangChain BaseChatModel instance (see llm_provider.get_llm).
        backend: Collaborator providing ``get_page_text`` (a BackendClient).
    """

    def __init__(self, llm: Any, backend: Any):
        self._llm = llm
        self._backend = backend

    async def generate_form_fields(self, project_id: int, page_number: int) -> dict:
        """Return the raw field map for a page ({} for pages with no text).

        Raises:
            FormGenerationError: If the LLM never returned a JSON object.
        """
        page_text = await self._backend.get_page_text(project_id, page_number)
        if not page_text.strip():
            logger.info("Page %s of project %s has no text; no fields generated", page_number, project_id)
            return {}

        messages = [
            SystemMessage(content=FORM_FIELDS_SYSTEM_PROMPT),
            HumanMessage(content=build_page_prompt(page_text)),
        ]
        fields = await call_llm_for_fields(self._llm, messages)
        if fields is None:
            raise FormGenerationError(
                f"Could not generate form fields for page {page_number}"
            )

        logger.info(
            "Generated %d form fields for project %s page %s",
            len(fields),
            project_id,
            page_number,
        )
        return fields
