"""Grok decision provider (xAI chat completions API)."""
from arena.core.errors import ConfigurationError, ProviderError
from arena.core.models import ProviderKind
from arena.providers.base import DecisionProvider


class GrokProvider(DecisionProvider):
    """Decisions from a Grok model."""

    kind = ProviderKind.GROK

    async def _complete(self, prompt: str) -> str:
        if not self.config.grok_api_key:
            raise ConfigurationError("XAI_API_KEY is not configured")

        payload = {
            "model": self.config.grok_model,
            "messages": [{"role": "user", "content": prompt}],
            "stream": False,
            "temperature": self.config.temperature,
        }
        headers = {
            "Authorization": f"Bearer {self.config.grok_api_key}",
            "Content-Type": "application/json",
        }
        data = await self._post(f"{self.config.grok_endpoint}/chat/completions", payload, headers)

        content = data.get("choices", [{}])[0].get("message", {}).get("content", "")
        if not content:
            raise ProviderError("Empty response from Grok API")
        return content
