from collections.abc import AsyncIterator
from typing import Any

from loguru import logger
from openai import AsyncOpenAI
from pydantic import BaseModel

from talkledger.errors import ProviderUnavailable


class ToolCall(BaseModel):
    id: str
    name: str
    arguments: str = "{}"


class Completion(BaseModel):
    text: str | None = None
    tool_calls: list[ToolCall] = []

    def assistant_message(self) -> dict[str, Any]:
        """The assistant turn to append before feeding tool results back."""
        message: dict[str, Any] = {"role": "assistant", "content": self.text or ""}
        if self.tool_calls:
            message["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {"name": tc.name, "arguments": tc.arguments},
                }
                for tc in self.tool_calls
            ]
        return message


def candidate_models(primary: str, fallbacks: list[str]) -> list[str]:
    """Primary model first, then the configured fallbacks, without duplicates."""
    ordered: list[str] = []
    for model in [primary, *fallbacks]:
        model = (model or "").strip()
        if model and model not in ordered:
            ordered.append(model)
    return ordered


class CompletionClient:
    """Thin async wrapper over an OpenAI-compatible chat completions endpoint."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 20.0,
        temperature: float = 0.2,
    ):
        # No client-level retries: a failing model hands over to the next candidate
        self.client = (
            AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0)
            if api_key
            else None
        )
        self.temperature = temperature

    @property
    def available(self) -> bool:
        return self.client is not None

    def _require_client(self) -> AsyncOpenAI:
        if self.client is None:
            raise ProviderUnavailable("No completion provider configured")
        return self.client

    async def complete(
        self,
        model: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        json_mode: bool = False,
    ) -> Completion:
        client = self._require_client()
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": self.temperature,
        }
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        response = await client.chat.completions.create(**kwargs)
        message = response.choices[0].message
        tool_calls = [
            ToolCall(id=tc.id, name=tc.function.name, arguments=tc.function.arguments or "{}")
            for tc in (message.tool_calls or [])
        ]
        logger.debug("Completion from {}: {} chars, {} tool calls", model, len(message.content or ""), len(tool_calls))
        return Completion(text=message.content, tool_calls=tool_calls)

    async def stream(self, model: str, messages: list[dict[str, Any]]) -> AsyncIterator[str]:
        """Yield text deltas; closing the generator closes the upstream response."""
        client = self._require_client()
        upstream = await client.chat.completions.create(
            model=model,
            messages=messages,
            temperature=self.temperature,
            stream=True,
        )
        try:
            async for chunk in upstream:
                if chunk.choices and chunk.choices[0].delta.content:
                    yield chunk.choices[0].delta.content
        finally:
            await upstream.close()
