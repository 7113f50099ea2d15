"""Text-generation backends: Claude (default) and OpenAI / Azure OpenAI.

Both adapters take a :class:`GenerationRequest` and return the raw response
text.  When JSON output is requested, Claude is forced to call a tool whose
input schema matches the extraction shape, and OpenAI is put in JSON mode.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Literal, Protocol

from anthropic import AsyncAnthropic
from openai import AsyncAzureOpenAI, AsyncOpenAI

from meeting_tasks.config import Settings
from meeting_tasks.pipeline_config import LLMProvider

# Tool definition for Claude structured output
EXTRACTION_TOOL: dict[str, Any] = {
    "name": "record_action_items",
    "description": (
        "Record the technical action items extracted from a meeting transcript. "
        "Call this once with all items and a short summary."
    ),
    "input_schema": {
        "type": "object",
        "properties": {
            "actionItems": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "title": {
                            "type": "string",
                            "maxLength": 255,
                            "description": "Work item title, 5-15 words, starting with a verb.",
                        },
                        "assignedTo": {
                            "type": "string",
                            "description": "Person responsible, or 'Unassigned'.",
                        },
                        "type": {"type": "string", "enum": ["Task", "Bug", "User Story"]},
                        "priority": {"type": "string", "enum": ["High", "Medium", "Low"]},
                        "description": {"type": "string"},
                        "deadline": {
                            "type": "string",
                            "description": "Deadline if mentioned (free-form text, e.g. 'EOD').",
                        },
                    },
                    "required": ["title", "type", "priority"],
                },
            },
            "summary": {
                "type": "string",
                "description": "Brief 2-3 sentence summary of technical decisions and outcomes.",
            },
        },
        "required": ["actionItems"],
    },
}


@dataclass(frozen=True)
class GenerationRequest:
    system_instruction: str
    user_content: str
    temperature: float = 0.3
    max_output_tokens: int = 4000
    response_format: Literal["json", "text"] = "json"


class TextGenerationBackend(Protocol):
    """Anything that can turn a :class:`GenerationRequest` into text."""

    async def generate(self, request: GenerationRequest) -> str: ...

    async def close(self) -> None: ...


class AnthropicBackend:
    """Claude via the Anthropic Messages API."""

    def __init__(self, client: AsyncAnthropic, model: str) -> None:
        self.client = client
        self.model = model

    async def generate(self, request: GenerationRequest) -> str:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": request.max_output_tokens,
            "temperature": request.temperature,
            "system": request.system_instruction,
            "messages": [{"role": "user", "content": request.user_content}],
        }
        if request.response_format == "json":
            kwargs["tools"] = [EXTRACTION_TOOL]
            kwargs["tool_choice"] = {"type": "tool", "name": EXTRACTION_TOOL["name"]}

        response = await self.client.messages.create(**kwargs)
        return _response_text(response, request.response_format)

    async def close(self) -> None:
        await self.client.close()


def _response_text(response: Any, response_format: str) -> str:
    """Pull the tool input (JSON mode) or the concatenated text blocks."""
    texts: list[str] = []
    for block in response.content:
        if response_format == "json" and block.type == "tool_use":
            data = block.input
            return data if isinstance(data, str) else json.dumps(data)
        if block.type == "text":
            texts.append(block.text)
    return "".join(texts)


class OpenAIBackend:
    """Chat Completions on OpenAI or an Azure OpenAI deployment."""

    def __init__(self, client: AsyncOpenAI, model: str) -> None:
        self.client = client
        self.model = model

    async def generate(self, request: GenerationRequest) -> str:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": request.system_instruction},
                {"role": "user", "content": request.user_content},
            ],
            "temperature": request.temperature,
            "max_tokens": request.max_output_tokens,
        }
        if request.response_format == "json":
            kwargs["response_format"] = {"type": "json_object"}

        result = await self.client.chat.completions.create(**kwargs)
        content = result.choices[0].message.content if result.choices else None
        if content:
            return content
        return "{}" if request.response_format == "json" else ""

    async def close(self) -> None:
        await self.client.close()


def build_backend(settings: Settings) -> TextGenerationBackend:
    """Construct the configured backend.

    Raises:
        ValueError: If ``llm_provider`` is not a known provider.
    """
    provider = LLMProvider(settings.llm_provider)

    if provider is LLMProvider.ANTHROPIC:
        return AnthropicBackend(AsyncAnthropic(api_key=settings.anthropic_api_key), settings.llm_model)

    if settings.azure_openai_endpoint:
        client: AsyncOpenAI = AsyncAzureOpenAI(
            azure_endpoint=settings.azure_openai_endpoint,
            api_key=settings.openai_api_key,
            api_version=settings.azure_openai_api_version,
        )
        return OpenAIBackend(client, settings.azure_openai_deployment)

    return OpenAIBackend(AsyncOpenAI(api_key=settings.openai_api_key), settings.openai_model)
