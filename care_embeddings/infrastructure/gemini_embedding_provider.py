"""Gemini embedding provider implementation.

Wraps the Google GenAI embed_content API. Gemini does not report token
usage for embeddings, so usage is estimated and flagged as such.
"""

import logging

import httpx
from google import genai
from google.genai import errors, types

from care_embeddings.config.provider_catalog import GEMINI
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

TASK_TYPES = {
    TaskHint.DOCUMENT: "RETRIEVAL_DOCUMENT",
    TaskHint.QUERY: "RETRIEVAL_QUERY",
    TaskHint.SIMILARITY: "SEMANTIC_SIMILARITY",
}

# Google words per-minute throttling and daily exhaustion alike ("Quota exceeded for quota metric ...");
# only daily or billing limits are terminal
_QUOTA_MARKERS = ("per day", "perday", "billing")
_RATE_MARKERS = ("per minute", "perminute")


def create_gemini_client(api_key: str, timeout: float = 60.0) -> genai.Client:
    """Create a GenAI client; the SDK takes its timeout in milliseconds."""
    return genai.Client(api_key=api_key, http_options=types.HttpOptions(timeout=int(timeout * 1000)))


class GeminiEmbeddingProvider(BaseEmbeddingProvider):
    """Gemini implementation of EmbeddingProvider.

    Models narrower than the requested width (text-embedding-004 returns
    768) are padded to it by the base class.
    """

    name = GEMINI

    def __init__(self, client: genai.Client | None, spec: ModelSpec, **kwargs):
        """Initialize Gemini embedding provider.

        Args:
            client: Configured GenAI client, None when no key is set
            spec: Catalog entry for the model (e.g. 'gemini-embedding-001')
            **kwargs: Retry policy, overflow policy and sleep for the base class
        """
        kwargs.setdefault("overflow_policy", "reject")
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
            raise AuthenticationError("Gemini API key not configured", provider=self.name)

        config = types.EmbedContentConfig(
            task_type=TASK_TYPES[task],
            output_dimensionality=api_dimensions,
            title=title if task == TaskHint.DOCUMENT else None,
        )
        response = await self._client.aio.models.embed_content(
            model=self._spec.name,
            contents=texts,
            config=config,
        )
        embeddings = response.embeddings or []
        return RawEmbeddings(vectors=[list(embedding.values or []) for embedding in embeddings])

    def _classify(self, exc: Exception) -> EmbeddingError | None:
        if isinstance(exc, errors.APIError):
            message = exc.message or str(exc)
            code = exc.code or 0
            if code == 429:
                lowered = message.lower()
                daily = any(marker in lowered for marker in _QUOTA_MARKERS)
                if daily and not any(marker in lowered for marker in _RATE_MARKERS):
                    return QuotaExhaustedError(
                        f"Gemini quota exhausted: {message}",
                        provider=self.name,
                        remediation="Check quota and billing at https://aistudio.google.com",
                    )
                return RateLimitedError(f"Gemini rate limit exceeded: {message}", provider=self.name)
            if code in (401, 403) or (code == 400 and "api key not valid" in message.lower()):
                return AuthenticationError(f"Gemini rejected credentials: {message}", provider=self.name)
            if code == 400:
                return InvalidInputError(f"Gemini rejected the request: {message}", provider=self.name)
            if code >= 500:
                return TransientProviderError(f"Gemini server error {code}: {message}", provider=self.name)
            return ProviderRequestError(f"Gemini request failed with {code}: {message}", provider=self.name)
        if isinstance(exc, httpx.TransportError):
            # Includes timeouts
            return TransientProviderError(f"Gemini connection error: {exc}", provider=self.name, network=True)
        return None
