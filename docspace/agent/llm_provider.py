"""
LLM provider factory.

Creates a LangChain BaseChatModel pointed at any OpenAI-compatible chat
completions endpoint. Only the local form-field generator uses it; the
document backend normally generates fields itself.
"""

import logging
import os

import httpx
from dotenv import load_dotenv
from langchain_core.language_models import BaseChatModel

load_dotenv()

logger = logging.getLogger(__name__)

_SENSITIVE_HEADERS = {"authorization", "x-api-key", "api-key"}
_MAX_LOGGED_BODY_CHARS = 2000


def _is_truthy(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def build_safe_curl(request: httpx.Request) -> str:
    """Render a request as a curl command with credentials redacted."""
    parts = [f"curl -X {request.method} '{request.url}'"]
    for key, value in request.headers.items():
        shown = "[REDACTED]" if key.lower() in _SENSITIVE_HEADERS else value
        parts.append(f"-H '{key}: {shown}'")

    if request.content:
        body = request.content.decode(errors="ignore")
        if len(body) > _MAX_LOGGED_BODY_CHARS:
            body = body[:_MAX_LOGGED_BODY_CHARS] + "... [TRUNCATED]"
        parts.append(f"-d '{body}'")
    return " ".join(parts)


def _log_request(request: httpx.Request) -> None:
    logger.debug("LLM request: %s", build_safe_curl(request))


async def _alog_request(request: httpx.Request) -> None:
    _log_request(request)


def _base_url(endpoint: str) -> str:
    """Strip a trailing /chat/completions; ChatOpenAI appends it itself."""
    base_url = endpoint.rstrip("/")
    for suffix in ("/chat/completions", "/completions"):
        if base_url.endswith(suffix):
            return base_url[: -len(suffix)]
    return base_url


def get_llm(**kwargs) -> BaseChatModel:
    """Create an LLM for an OpenAI-compatible endpoint.

    Environment variables (keyword arguments take precedence):
        LLM_API_ENDPOINT: Chat completions URL (required).
        LLM_API_KEY: Bearer token.
        LLM_MODEL_NAME: Model identifier (defaults to "default").
        LLM_SSL_VERIFY: Verify TLS certificates (default true).
        LOG_LLM_CURL: Log each request as a redacted curl command.

    Raises:
        ValueError: If no endpoint is configured.
    """
    from langchain_openai import ChatOpenAI

    # Field generation reads a whole page; give slow local models room
    defaults = {"temperature": 0, "max_tokens": 2048, "request_timeout": 300}
    merged = {**defaults, **kwargs}

    endpoint = merged.pop("api_endpoint", os.getenv("LLM_API_ENDPOINT"))
    if not endpoint:
        raise ValueError(
            "LLM_API_ENDPOINT env var (or api_endpoint kwarg) is required "
            "for local form generation."
        )

    verify_ssl = _is_truthy(os.getenv("LLM_SSL_VERIFY"), default=True)
    if _is_truthy(os.getenv("LOG_LLM_CURL"), default=False):
        client = httpx.Client(verify=verify_ssl, event_hooks={"request": [_log_request]})
        async_client = httpx.AsyncClient(verify=verify_ssl, event_hooks={"request": [_alog_request]})
    else:
        client = httpx.Client(verify=verify_ssl)
        async_client = httpx.AsyncClient(verify=verify_ssl)

    return ChatOpenAI(
        api_key=merged.pop("api_key", os.getenv("LLM_API_KEY")),
        model=merged.pop("model", os.getenv("LLM_MODEL_NAME", "default")),
        base_url=_base_url(endpoint),
        http_client=client,
        http_async_client=async_client,
        **merged,
    )
