"""Name-keyed registry for creating embedding providers from settings."""

import logging
from collections.abc import Callable

from care_embeddings.config.provider_catalog import GEMINI, MODEL_CATALOG, OPENAI
from care_embeddings.config.settings import EmbeddingSettings
from care_embeddings.domain.embedding_provider import EmbeddingProvider
from care_embeddings.infrastructure.gemini_embedding_provider import (
    GeminiEmbeddingProvider,
    create_gemini_client,
)
from care_embeddings.infrastructure.openai_embedding_provider import (
    OpenAIEmbeddingProvider,
    create_openai_client,
)
from care_embeddings.utils.retry import RetryPolicy

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[EmbeddingSettings, RetryPolicy], EmbeddingProvider]

_REGISTRY: dict[str, ProviderFactory] = {}


def register(name: str, factory: ProviderFactory) -> None:
    """Register a provider factory under a name.

    Raises:
        ValueError: If the name is already registered
    """
    if name in _REGISTRY:
        raise ValueError(f"Provider '{name}' already registered")
    _REGISTRY[name] = factory
    logger.debug(f"Registered embedding provider '{name}'")


def list_providers() -> list[str]:
    """Return registered provider names."""
    return sorted(_REGISTRY)


def create_provider(
    name: str,
    settings: EmbeddingSettings,
    retry_policy: RetryPolicy | None = None,
) -> EmbeddingProvider:
    """Create a provider by name.

    Raises:
        KeyError: If no provider is registered under the name
    """
    if name not in _REGISTRY:
        raise KeyError(f"Unknown embedding provider '{name}'. Available: {', '.join(list_providers())}")
    return _REGISTRY[name](settings, retry_policy or retry_policy_from_settings(settings))


def create_providers(settings: EmbeddingSettings) -> dict[str, EmbeddingProvider]:
    """Create every registered provider; unconfigured ones report is_configured() False."""
    policy = retry_policy_from_settings(settings)
    return {name: create_provider(name, settings, policy) for name in list_providers()}


def retry_policy_from_settings(settings: EmbeddingSettings) -> RetryPolicy:
    """Build the retry policy from settings."""
    return RetryPolicy(
        max_attempts=settings.embedding_max_retries,
        base_delay=settings.embedding_retry_base_delay,
    )


def _create_gemini(settings: EmbeddingSettings, policy: RetryPolicy) -> EmbeddingProvider:
    client = None
    if settings.gemini_api_key:
        client = create_gemini_client(settings.gemini_api_key, timeout=settings.embedding_request_timeout)
    return GeminiEmbeddingProvider(client, MODEL_CATALOG[settings.gemini_model], retry_policy=policy)


def _create_openai(settings: EmbeddingSettings, policy: RetryPolicy) -> EmbeddingProvider:
    client = None
    if settings.openai_api_key:
        client = create_openai_client(
            settings.openai_api_key,
            project_id=settings.openai_project_id,
            org_id=settings.openai_org_id,
            timeout=settings.embedding_request_timeout,
        )
    return OpenAIEmbeddingProvider(client, MODEL_CATALOG[settings.openai_model], retry_policy=policy)


register(GEMINI, _create_gemini)
register(OPENAI, _create_openai)
