"""OpenAI embedding provider implementation."""

import logging

import openai
from openai import AsyncOpenAI

from care_embeddings.config.provider_catalog import OPENAI
from care_embeddings.domain.errors import (
    AuthenticationError,
    EmbeddingError,
    InvalidInputError,
    ProviderRequestError,
    QuotaExhaustedError,
    RateLimitedError,
    TransientProviderError,
)
from care_embeddings.domain.models import ModelSpec, TaskHint
from care_embeddings.infrastructure.base_provider import BaseEmbeddingProvider, RawEmbeddings

logger = logging.getLogger(__name__)


def create_openai_client(
    api_key: str,
    project_id: str | None = None,
    org_id: str | None = None,
    timeout: float = 60.0,
) -> AsyncOpenAI:
    """Create an async OpenAI client with SDK-level retries disabled.

    Project-scoped keys (``sk-proj-``) already carry their project, so an
    explicit project ID is dropped for them.
    """
    if project_id and api_key.startswith("sk-proj-"):
        logger.warning("Ignoring OPENAI_PROJECT_ID for a project-scoped API key")
        project_id = None
    return AsyncOpenAI(
        api_key=api_key,
        organization=org_id,
        project=project_id,
        max_retries=0,
        timeout=timeout,
    )


class OpenAIEmbeddingProvider(BaseEmbeddingProvider):
    """OpenAI implementation of EmbeddingProvider.

    Wraps the OpenAI embeddings API. Token usage is taken from the
    response, so results carry exact (not estimated) counts.
    """

    name = OPENAI

    def __init__(self, client: AsyncOpenAI | None, spec: ModelSpec, **kwargs):
        """Initialize OpenAI embedding provider.

        Args:
            client: Configured AsyncOpenAI client, None when no key is set
            spec: Catalog entry for the model (e.g. 'text-embedding-3-small')
            **kwargs: Retry policy, overflow policy and sleep for the base class
        """
        kwargs.setdefault("overflow_policy", "truncate")
        super().__init__(spec, **kwargs)
        self._client = client

    def is_configured(self) -> bool:
        """Return True if a client was created from an API key."""
        return self._client is not None

    async def _embed(
        self,
        texts: list[str],
        api_dimensions: int | None,
        task: TaskHint,
        title: str | None,
    ) -> RawEmbeddings:
        if self._client is None:
            raise AuthenticationError("OpenAI API key not configured", provider=self.name)

        kwargs = {"input": texts, "model": self._spec.name}
        if api_dimensions is not None:
            kwargs["dimensions"] = api_dimensions

        response = await self._client.embeddings.create(**kwargs)
        data = sorted(response.data, key=lambda item: item.index)
        total = response.usage.total_tokens if response.usage is not None else None
        return RawEmbeddings(vectors=[list(item.embedding) for item in data], total_tokens=total)

    def _classify(self, exc: Exception) -> EmbeddingError | None:
        if isinstance(exc, openai.RateLimitError):
            if exc.code == "insufficient_quota" or exc.type == "insufficient_quota":
                return QuotaExhaustedError(
                    "OpenAI quota exhausted",
                    provider=self.name,
                    remediation="Check billing at https://platform.openai.com/account/billing",
                )
            return RateLimitedError(f"OpenAI rate limit exceeded: {exc.message}", provider=self.name)
        if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
            return AuthenticationError(f"OpenAI rejected credentials: {exc.message}", provider=self.name)
        if isinstance(exc, openai.BadRequestError):
            return InvalidInputError(f"OpenAI rejected the request: {exc.message}", provider=self.name)
        if isinstance(exc, openai.NotFoundError):
            return ProviderRequestError(
                f"OpenAI model '{self._spec.name}' not found: {exc.message}", provider=self.name
            )
        if isinstance(exc, openai.APIConnectionError):
            # Includes APITimeoutError
            return TransientProviderError(f"OpenAI connection error: {exc}", provider=self.name, network=True)
        if isinstance(exc, openai.APIStatusError):
            if exc.status_code >= 500:
                return TransientProviderError(
                    f"OpenAI server error {exc.status_code}: {exc.message}", provider=self.name
                )
            return ProviderRequestError(
                f"OpenAI request failed with {exc.status_code}: {exc.message}", provider=self.name
            )
        return None
