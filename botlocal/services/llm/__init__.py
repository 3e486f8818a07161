from botlocal.services.llm.base import LLMError, LLMProvider, LLMResponse
from botlocal.services.llm.openai_compatible import OpenAICompatibleProvider

__all__ = ["LLMError", "LLMProvider", "LLMResponse", "OpenAICompatibleProvider"]
