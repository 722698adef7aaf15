"""LLM client abstractions used by the analysis service."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import urljoin

import httpx

from priority_inbox.core.config import LlmSettings

_MAX_ATTEMPTS = 3


class LLMError(RuntimeError):
    """Raised when the LLM provider fails to respond as expected."""


class LLMClient(Protocol):
    """Protocol describing the minimal LLM client behaviour."""

    @property
    def provider_id(self) -> str:
        """Identifier describing the backing model/provider."""
        raise NotImplementedError

    def generate(self, prompt: str) -> str:
        """Return the raw text completion for ``prompt``."""
        raise NotImplementedError

    def embed(self, text: str) -> list[float]:
        """Return an embedding vector for ``text``."""
        raise NotImplementedError


@dataclass(slots=True)
class OllamaClient:
    """Thin synchronous client for the Ollama HTTP API."""

    settings: LlmSettings

    def generate(self, prompt: str) -> str:
        """Send a JSON-mode completion request to the Ollama server."""
        options: dict[str, object] = {"temperature": self.settings.temperature}
        if self.settings.max_output_tokens is not None:
            options["num_predict"] = self.settings.max_output_tokens
        data = self._post(
            "api/generate",
            {
                "model": self.settings.model,
                "prompt": prompt,
                "stream": False,
                "format": "json",
                "options": options,
            },
        )
        result = data.get("response")
        if not isinstance(result, str):
            raise LLMError("LLM response missing 'response' field")
        return result

    def embed(self, text: str) -> list[float]:
        """Request an embedding vector for ``text``."""
        data = self._post(
            "api/embeddings",
            {"model": self.settings.embedding_model, "prompt": text},
        )
        vector = data.get("embedding")
        if not isinstance(vector, list) or not vector:
            raise LLMError("LLM response missing 'embedding' field")
        try:
            return [float(value) for value in vector]
        except (TypeError, ValueError) as exc:
            raise LLMError("LLM embedding contained non-numeric values") from exc

    @property
    def provider_id(self) -> str:
        """Return a human readable identifier for the configured model."""
        return f"ollama:{self.settings.model}"

    def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        endpoint = _resolve_endpoint(self.settings.base_url, path)
        data: dict[str, Any] | None = None
        last_error: Exception | None = None
        for attempt in range(1, _MAX_ATTEMPTS + 1):
            try:
                response = httpx.post(
                    endpoint,
                    json=payload,
                    timeout=self.settings.timeout_seconds,
                )
                response.raise_for_status()
                data = response.json()
                break
            except httpx.HTTPError as exc:  # pragma: no cover - network dependent
                last_error = exc
            except json.JSONDecodeError as exc:
                raise LLMError("LLM returned invalid JSON") from exc

            if attempt < _MAX_ATTEMPTS:
                delay = min(2**attempt, 8)
                time.sleep(delay)

        if data is None:
            raise LLMError("LLM request failed after retries") from last_error
        if not isinstance(data, dict):
            raise LLMError("LLM returned an unexpected payload")
        return data


def _resolve_endpoint(base_url: str, path: str) -> str:
    trimmed = base_url.rstrip("/") + "/"
    return urljoin(trimmed, path)


__all__ = ["LLMClient", "OllamaClient", "LLMError"]
