"""Decision providers for the Trading Arena."""
from typing import Optional, Union

import httpx
import structlog

from arena.core.config import ProviderConfig
from arena.core.models import ProviderKind
from arena.providers.base import AgentContext, DecisionProvider, build_prompt, parse_decisions
from arena.providers.gemini import GeminiProvider
from arena.providers.grok import GrokProvider

logger = structlog.get_logger(__name__)

PROVIDERS = {
    ProviderKind.GEMINI: GeminiProvider,
    ProviderKind.GROK: GrokProvider,
}


def resolve_kind(kind: Union[ProviderKind, str, None]) -> ProviderKind:
    """Map a stored provider type to a supported kind; unknown types use Gemini."""
    if isinstance(kind, ProviderKind):
        return kind
    try:
        return ProviderKind(str(kind).lower())
    except ValueError:
        logger.warning("providers.unknown_kind", kind=kind, fallback=ProviderKind.GEMINI.value)
        return ProviderKind.GEMINI


def create_provider(
    kind: Union[ProviderKind, str],
    config: Optional[ProviderConfig] = None,
    client: Optional[httpx.AsyncClient] = None,
    history_depth: int = 5,
) -> DecisionProvider:
    """Factory function to create a decision provider.

    Args:
        kind: Provider kind (unknown values fall back to Gemini)
        config: Provider configuration (defaults to global)
        client: Optional shared httpx client
        history_depth: Recent turns included in prompts

    Returns:
        DecisionProvider instance
    """
    provider_class = PROVIDERS[resolve_kind(kind)]
    return provider_class(config=config, client=client, history_depth=history_depth)


__all__ = [
    "AgentContext",
    "DecisionProvider",
    "GeminiProvider",
    "GrokProvider",
    "PROVIDERS",
    "build_prompt",
    "create_provider",
    "parse_decisions",
    "resolve_kind",
]
