"""
OpenAI Client for Azure OpenAI Service or OpenAI API
"""

import os
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from openai import AsyncOpenAI, AsyncAzureOpenAI, OpenAIError

from build_healer.errors import ModelError


@dataclass
class LLMResponse:
    content: str


class OpenAIClient:
    """Client for OpenAI operations"""

    def __init__(self, timeout: float = 120.0, client=None, model: Optional[str] = None):
        self.timeout = timeout
        self.model = model or os.getenv("OPENAI_DEPLOYMENT_NAME", "gpt-4o")

        if client is not None:
            self.client = client
            return

        self.endpoint = os.getenv("OPENAI_ENDPOINT")
        self.api_key = os.getenv("OPENAI_API_KEY")

        if not self.api_key:
            raise ValueError("OPENAI_API_KEY must be set")

        # Check if using Azure OpenAI or standard OpenAI
        if self.endpoint and "azure" in self.endpoint.lower():
            self.api_version = os.getenv("OPENAI_API_VERSION", "2024-08-01-preview")
            self.client = AsyncAzureOpenAI(
                azure_endpoint=self.endpoint,
                api_key=self.api_key,
                api_version=self.api_version,
                timeout=timeout,
            )
        else:
            self.client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.endpoint or None,
                timeout=timeout,
            )

    def _is_reasoning_model(self) -> bool:
        model = self.model.lower()
        return (
            model.startswith('o1') or
            model.startswith('o3') or
            'gpt-5' in model or
            'gpt5' in model
        )

    async def invoke(self, prompt: str, system_message: str = None, max_tokens: int = 4000) -> LLMResponse:
        """Send a prompt and return the raw text answer"""
        messages = []
        if system_message:
            messages.append({"role": "system", "content": system_message})
        messages.append({"role": "user", "content": prompt})

        request_params = {
            "model": self.model,
            "messages": messages,
        }

        # Reasoning models reject temperature and use a different token parameter
        if self._is_reasoning_model():
            request_params["max_completion_tokens"] = max_tokens
        else:
            request_params["temperature"] = 0.2
            request_params["max_tokens"] = max_tokens

        logging.info(f"Calling model {self.model} ({len(prompt)} prompt chars)")

        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(**request_params),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logging.error(f"Model call timed out after {self.timeout}s")
            raise ModelError(f"LLM call timed out after {self.timeout}s")
        except OpenAIError as e:
            logging.error(f"Error calling OpenAI: {str(e)}")
            raise ModelError(f"LLM call failed: {str(e)}")

        if not response.choices:
            raise ModelError("LLM returned an empty answer")

        choice = response.choices[0]
        # A truncated answer would be a partial file
        if getattr(choice, "finish_reason", None) == "length":
            logging.error(f"Model answer cut off at {max_tokens} tokens")
            raise ModelError(f"LLM answer truncated at the {max_tokens} token limit")

        content = choice.message.content
        if not content:
            raise ModelError("LLM returned an empty answer")
        return LLMResponse(content=content)
