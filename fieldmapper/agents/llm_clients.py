"""
FieldMapper LLM Integration

Prompt rendering, provider clients and the AI-call wrapper used by the
mapping orchestrator.

The wrapper never raises: every provider outcome is returned either as
``AiMappings`` or as an ``AiFallback`` carrying the reason the rule-based path
must be used instead.
"""

from __future__ import annotations

import json
import os
import re
import time
from collections.abc import Mapping, Sequence
from enum import Enum
from typing import Any, Literal, Union

import anthropic
import openai
import structlog
from jinja2 import BaseLoader, Environment
from pydantic import BaseModel, ValidationError

from fieldmapper.agents.field_scoring import similarity
from fieldmapper.agents.mapping_models import AiMapping, SourceField, TargetField
from fieldmapper.core.exceptions import (
    LLMConnectionError,
    LLMProviderError,
    LLMStatusError,
    ProviderNotConfiguredError,
)
from fieldmapper.core.metrics import track_llm_request

logger = structlog.get_logger(__name__)

OPENAI_KEY_VARS = ("OPENAI_API_KEY", "SANITY_STUDIO_OPENAI_API_KEY", "VITE_OPENAI_API_KEY")
OPENAI_MODEL_VARS = ("OPENAI_MODEL", "SANITY_STUDIO_OPENAI_MODEL")
DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DEFAULT_ANTHROPIC_MODEL = "claude-sonnet-4-20250514"

SUPPORTED_PROVIDERS = ("openai", "anthropic", "mock", "none")


def first_env(*names: str) -> str | None:
    """Value of the first environment variable that is set and non-empty."""
    for name in names:
        value = os.environ.get(name)
        if value:
            return value
    return None


# -----------------------------------------------------------------------------
# Prompt
# -----------------------------------------------------------------------------

MAPPING_SYSTEM_PROMPT = "You are an expert data-mapping assistant."

MAPPING_USER_PROMPT = """You suggest mappings between source fields and target content-schema fields.
Respond with JSON: {"mappings":[{"source":"sourceName","target":"targetPath","confidence":0-100,"rationale":["string"]}]}
Prefer high-confidence matches; include only likely pairs.
Source fields:
{% for field in sources %}
- {{ field.name }} ({{ field.type }}){{ field.semantic_tags | tag_list }}
{% endfor %}
Target fields:
{% for field in targets %}
- {{ field.path }} ({{ field.type }}){{ field.semantic_tags | tag_list }}
{% endfor %}
{% if existing_mappings %}
Existing mappings:
{% for source, target in existing_mappings.items() %}
- {{ source }} -> {{ target }}
{% endfor %}
{% endif %}"""


def _tag_list(tags: Sequence[str]) -> str:
    return f" [{', '.join(tags)}]" if tags else ""


_env = Environment(loader=BaseLoader(), trim_blocks=True, lstrip_blocks=True)
_env.filters["tag_list"] = _tag_list
_prompt_template = _env.from_string(MAPPING_USER_PROMPT)


def build_mapping_prompt(
    sources: Sequence[SourceField],
    targets: Sequence[TargetField],
    existing_mappings: Mapping[str, str] | None = None,
) -> str:
    """
    Render the user prompt sent to the model.

    Existing mappings are context for the model only; rule-based scoring
    never reads them.
    """
    return _prompt_template.render(
        sources=sources,
        targets=targets,
        existing_mappings=existing_mappings or {},
    ).rstrip("\n")


# -----------------------------------------------------------------------------
# LLM Clients
# -----------------------------------------------------------------------------


class BaseLLMClient:
    """Base class for chat-completion clients."""

    provider: str = "base"
    model: str = "unknown"

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        """Return the raw completion text for a system/user message pair."""
        raise NotImplementedError


class OpenAIClient(BaseLLMClient):
    """OpenAI chat-completions client."""

    provider = "openai"

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        temperature: float = 0.2,
        timeout: float | None = None,
    ):
        self.api_key = api_key or first_env(*OPENAI_KEY_VARS)
        if not self.api_key:
            raise ProviderNotConfiguredError(
                "OpenAI API key required. Set OPENAI_API_KEY environment variable."
            )

        kwargs: dict[str, Any] = {"api_key": self.api_key, "max_retries": 0}
        if timeout is not None:
            kwargs["timeout"] = timeout
        self.client = openai.OpenAI(**kwargs)
        self.model = model or first_env(*OPENAI_MODEL_VARS) or DEFAULT_OPENAI_MODEL
        self.temperature = temperature

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        """Request a JSON-object completion from OpenAI."""
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                temperature=self.temperature,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                response_format={"type": "json_object"},
            )
        except openai.APIStatusError as e:
            raise LLMStatusError(e.status_code, e.message) from e
        except openai.APIError as e:
            raise LLMConnectionError(str(e)) from e

        if not response.choices:
            return ""
        return response.choices[0].message.content or ""


class AnthropicClient(BaseLLMClient):
    """Anthropic Claude messages client."""

    provider = "anthropic"

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        temperature: float = 0.2,
        max_tokens: int = 4096,
        timeout: float | None = None,
    ):
        self.api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        if not self.api_key:
            raise ProviderNotConfiguredError(
                "Anthropic API key required. Set ANTHROPIC_API_KEY environment variable."
            )

        kwargs: dict[str, Any] = {"api_key": self.api_key, "max_retries": 0}
        if timeout is not None:
            kwargs["timeout"] = timeout
        self.client = anthropic.Anthropic(**kwargs)
        self.model = model or os.environ.get("ANTHROPIC_MODEL") or DEFAULT_ANTHROPIC_MODEL
        self.temperature = temperature
        self.max_tokens = max_tokens

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        """Request a completion from Claude."""
        try:
            message = self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                system=system_prompt,
                messages=[{"role": "user", "content": user_prompt}],
            )
        except anthropic.APIStatusError as e:
            raise LLMStatusError(e.status_code, e.message) from e
        except anthropic.APIError as e:
            raise LLMConnectionError(str(e)) from e

        return "".join(
            block.text for block in message.content if getattr(block, "type", None) == "text"
        )


class MockLLMClient(BaseLLMClient):
    """
    Deterministic client for tests and offline runs.

    Returns ``response`` verbatim when given. Otherwise reads the field lists
    back out of the prompt and pairs every source with its most similar
    target path.
    """

    provider = "mock"

    _FIELD_LINE = re.compile(r"^- (.+?) \([^()]*\)(?: \[.*\])?$")

    def __init__(self, response: str | None = None, model: str = "mock"):
        self.response = response
        self.model = model
        self.calls: list[tuple[str, str]] = []

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        self.calls.append((system_prompt, user_prompt))
        if self.response is not None:
            return self.response

        sources, targets = self._read_fields(user_prompt)
        mappings = []
        for source in sources:
            if not targets:
                break
            target = max(targets, key=lambda path: similarity(source, path.split(".")[-1]))
            score = similarity(source, target.split(".")[-1])
            mappings.append(
                {
                    "source": source,
                    "target": target,
                    "confidence": round(score * 100),
                    "rationale": ["mock name similarity"],
                }
            )
        return json.dumps({"mappings": mappings})

    def _read_fields(self, prompt: str) -> tuple[list[str], list[str]]:
        sections: dict[str, list[str]] = {"Source fields:": [], "Target fields:": []}
        current: list[str] | None = None
        for line in prompt.splitlines():
            if line in sections:
                current = sections[line]
                continue
            match = self._FIELD_LINE.match(line)
            if match and current is not None:
                current.append(match.group(1))
            elif not line.startswith("- "):
                current = None
        return sections["Source fields:"], sections["Target fields:"]


def default_model(provider: str) -> str:
    """Model name reported when no client could be constructed."""
    if provider == "anthropic":
        return os.environ.get("ANTHROPIC_MODEL") or DEFAULT_ANTHROPIC_MODEL
    if provider == "mock":
        return "mock"
    return first_env(*OPENAI_MODEL_VARS) or DEFAULT_OPENAI_MODEL


def create_llm_client(provider: str | None = None) -> BaseLLMClient:
    """
    Build the configured provider client.

    Args:
        provider: "openai", "anthropic", "mock" or "none"; defaults to
            FIELDMAPPER_LLM_PROVIDER, then "openai"

    Raises:
        ProviderNotConfiguredError: provider disabled or missing credentials
        ValueError: unknown provider name
    """
    provider = (provider or os.environ.get("FIELDMAPPER_LLM_PROVIDER") or "openai").lower()
    timeout_env = os.environ.get("FIELDMAPPER_LLM_TIMEOUT")
    timeout = float(timeout_env) if timeout_env else None

    if provider == "openai":
        if not first_env(*OPENAI_KEY_VARS):
            raise ProviderNotConfiguredError(
                "OPENAI_API_KEY missing; used rule-based suggestions"
            )
        client: BaseLLMClient = OpenAIClient(timeout=timeout)
    elif provider == "anthropic":
        if not os.environ.get("ANTHROPIC_API_KEY"):
            raise ProviderNotConfiguredError(
                "ANTHROPIC_API_KEY missing; used rule-based suggestions"
            )
        client = AnthropicClient(timeout=timeout)
    elif provider == "mock":
        client = MockLLMClient()
    elif provider == "none":
        raise ProviderNotConfiguredError("AI provider disabled; used rule-based suggestions")
    else:
        raise ValueError(f"Unknown LLM provider: {provider}")

    logger.info("llm_client_initialized", provider=client.provider, model=client.model)
    return client


# -----------------------------------------------------------------------------
# AI Call Wrapper
# -----------------------------------------------------------------------------


class FallbackReason(str, Enum):
    """Why the AI path was abandoned for rule-based ranking."""

    NOT_CONFIGURED = "not_configured"
    REQUEST_FAILED = "request_failed"
    HTTP_ERROR = "http_error"
    INVALID_JSON = "invalid_json"
    MISSING_MAPPINGS = "missing_mappings"


class AiMappings(BaseModel):
    """Usable mappings parsed from a model response."""

    kind: Literal["mappings"] = "mappings"
    mappings: list[AiMapping]
    discarded: int = 0


class AiFallback(BaseModel):
    """The model produced nothing usable."""

    kind: Literal["fallback"] = "fallback"
    reason: FallbackReason
    detail: str = ""


AiCallResult = Union[AiMappings, AiFallback]


def parse_ai_response(text: str) -> AiCallResult:
    """
    Parse a completion into mappings.

    The text must be a JSON object with a ``mappings`` list. Entries that do
    not validate as ``AiMapping`` are discarded one by one.
    """
    try:
        payload = json.loads(text)
    except (json.JSONDecodeError, TypeError) as e:
        return AiFallback(reason=FallbackReason.INVALID_JSON, detail=str(e))

    raw_mappings = payload.get("mappings") if isinstance(payload, dict) else None
    if not isinstance(raw_mappings, list):
        return AiFallback(
            reason=FallbackReason.MISSING_MAPPINGS,
            detail="response has no 'mappings' array",
        )

    mappings: list[AiMapping] = []
    discarded = 0
    for entry in raw_mappings:
        try:
            mappings.append(AiMapping.model_validate(entry))
        except ValidationError:
            discarded += 1

    if discarded:
        logger.warning("ai_mappings_discarded", discarded=discarded, kept=len(mappings))

    return AiMappings(mappings=mappings, discarded=discarded)


def request_ai_mappings(client: BaseLLMClient | None, prompt: str) -> AiCallResult:
    """
    Call the model once and classify the outcome. Never retries.

    Args:
        client: Configured provider client, or None when AI is unavailable
        prompt: Rendered user prompt

    Returns:
        AiMappings on success, AiFallback otherwise
    """
    if client is None:
        return AiFallback(reason=FallbackReason.NOT_CONFIGURED, detail="no LLM client")

    start_time = time.time()
    try:
        text = client.complete(MAPPING_SYSTEM_PROMPT, prompt)
    except LLMStatusError as e:
        logger.error("ai_call_failed", provider=client.provider, status_code=e.status_code)
        return AiFallback(reason=FallbackReason.HTTP_ERROR, detail=str(e))
    except LLMProviderError as e:
        logger.error("ai_call_failed", provider=client.provider, error=str(e))
        return AiFallback(reason=FallbackReason.REQUEST_FAILED, detail=str(e))
    except Exception as e:
        logger.error(
            "ai_call_failed",
            provider=client.provider,
            error_type=type(e).__name__,
            error=str(e),
        )
        return AiFallback(reason=FallbackReason.REQUEST_FAILED, detail=str(e))
    finally:
        track_llm_request(time.time() - start_time, model=client.model)

    return parse_ai_response(text)
