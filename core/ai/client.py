"""Text-completion capability used by the AI flows."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from core.utils.errors import CompletionServiceError

logger = logging.getLogger("dataweaver.ai")

DEFAULT_OLLAMA_URL = "http://127.0.0.1:11434"
DEFAULT_MODEL = "qwen3:8b"
DEFAULT_TIMEOUT_SECONDS = 60.0


class TextCompletionClient(Protocol):
    """Anything that turns a prompt into model text."""

    model: str

    def complete(self, prompt: str, *, json_output: bool = False) -> str:
        """Return the model's text response for ``prompt``."""


class OllamaCompletionClient:
    """Completion client for an Ollama ``/api/generate`` endpoint."""

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_OLLAMA_URL,
        model: str = DEFAULT_MODEL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self.last_usage: dict[str, int] = {}

    def complete(self, prompt: str, *, json_output: bool = False) -> str:
        payload: dict[str, Any] = {"model": self.model, "prompt": prompt, "stream": False}
        if json_output:
            payload["format"] = "json"

        try:
            with httpx.Client(
                base_url=self.base_url,
                timeout=self.timeout_seconds,
                transport=self._transport,
            ) as client:
                response = client.post("/api/generate", json=payload)
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPStatusError as exc:
            raise CompletionServiceError(
                f"completion service returned {exc.response.status_code}",
                status_code=exc.response.status_code,
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise CompletionServiceError(f"completion service request failed: {exc}") from exc

        if not isinstance(body, dict) or not isinstance(body.get("response"), str):
            raise CompletionServiceError("completion service returned no response text")

        self.last_usage = {
            key: int(body[key])
            for key in ("eval_count", "prompt_eval_count")
            if isinstance(body.get(key), int)
        }
        logger.debug("completion model=%s usage=%s", body.get("model", self.model), self.last_usage)
        return body["response"]
