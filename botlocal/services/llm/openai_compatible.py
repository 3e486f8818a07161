from typing import List, Optional

import httpx

from botlocal.logging_config import get_logger
from botlocal.services.llm.base import LLMError, LLMProvider, LLMResponse

logger = get_logger("llm.openai_compatible")

TRANSIENT_STATUS_CODES = {429, 500, 502, 503, 504}


class OpenAICompatibleProvider(LLMProvider):
    """Chat-completions provider for any OpenAI-compatible endpoint (Groq, OpenAI, vLLM)."""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str,
        default_model: str,
        default_timeout_seconds: float = 20.0,
        max_attempts: int = 2,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.default_model = default_model
        self.default_timeout_seconds = default_timeout_seconds
        self.max_attempts = max(1, max_attempts)

    def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        timeout_seconds: Optional[float] = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        model = model or self.default_model
        timeout = timeout_seconds if timeout_seconds is not None else self.default_timeout_seconds

        payload = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        last_error: Optional[LLMError] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return self._post(payload, model, timeout)
            except LLMError as e:
                last_error = e
                if not e.transient or attempt >= self.max_attempts:
                    raise
                logger.warning(
                    f"LLM call failed, retrying: {e}",
                    extra={"context": {"attempt": attempt, "model": model, "status_code": e.status_code}},
                )
        raise last_error

    def _post(self, payload: dict, model: str, timeout: float) -> LLMResponse:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        logger.debug(f"LLM request: model={model}, messages_count={len(payload['messages'])}")
        try:
            with httpx.Client(timeout=timeout) as client:
                response = client.post(self.base_url, headers=headers, json=payload)
        except httpx.TimeoutException as e:
            raise LLMError(f"LLM timeout after {timeout}s", transient=True) from e
        except httpx.TransportError as e:
            raise LLMError(f"LLM transport error: {e}", transient=True) from e

        if response.status_code != 200:
            logger.error(f"LLM error: {response.status_code} - {response.text[:500]}")
            raise LLMError(
                f"LLM API error: {response.status_code}",
                status_code=response.status_code,
                transient=response.status_code in TRANSIENT_STATUS_CODES,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise LLMError("LLM returned a non-JSON body") from e

        content = ""
        if data.get("choices"):
            message = data["choices"][0].get("message") or {}
            content = message.get("content") or ""
        if not content.strip():
            raise LLMError("LLM returned empty content")

        return LLMResponse(content=content, model=data.get("model", model), usage=data.get("usage"))
