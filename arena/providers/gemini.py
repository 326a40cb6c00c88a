"""Gemini decision provider (generateContent REST API)."""
from arena.core.errors import ConfigurationError, ProviderError
from arena.core.models import ProviderKind
from arena.providers.base import DecisionProvider


class GeminiProvider(DecisionProvider):
    """Decisions from a Gemini model."""

    kind = ProviderKind.GEMINI

    async def _complete(self, prompt: str) -> str:
        if not self.config.gemini_api_key:
            raise ConfigurationError("GEMINI_API_KEY is not configured")

        url = f"{self.config.gemini_endpoint}/models/{self.config.gemini_model}:generateContent"
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {"temperature": self.config.temperature},
        }
        headers = {
            "x-goog-api-key": self.config.gemini_api_key,
            "Content-Type": "application/json",
        }
        data = await self._post(url, payload, headers)

        candidates = data.get("candidates") or []
        if not candidates:
            raise ProviderError("Empty response from Gemini API")
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(part.get("text", "") for part in parts)
