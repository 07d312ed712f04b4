"""Embedding provider abstraction.

Decouples the embedding logic from specific providers (Gemini, OpenAI, etc.)
"""

from typing import Protocol

from care_embeddings.domain.models import EmbeddingRequest, EmbeddingResult, ModelSpec


class EmbeddingProvider(Protocol):
    """Protocol for embedding providers.

    This allows swapping between different embedding implementations
    without changing business logic. Implementations classify every
    failure into the ``care_embeddings.domain.errors`` taxonomy and
    never write to the result cache.
    """

    name: str

    def get_model_name(self) -> str:
        """Get the model identifier used for these embeddings."""
        ...

    def get_model_spec(self) -> ModelSpec:
        """Get the catalog entry of the configured model."""
        ...

    def is_configured(self) -> bool:
        """Return True if credentials are present."""
        ...

    async def generate(self, request: EmbeddingRequest) -> EmbeddingResult:
        """Embed one text.

        Args:
            request: Text, dimensions and task hint

        Returns:
            Normalized result whose vector has the negotiated width

        Raises:
            EmbeddingError: Classified provider or input error
        """
        ...

    async def generate_batch(self, requests: list[EmbeddingRequest]) -> list[EmbeddingResult]:
        """Embed several texts in one provider call.

        Args:
            requests: Requests sharing dimensions and task hint

        Returns:
            One result per request, in input order

        Raises:
            EmbeddingError: Classified provider or input error for the whole batch
        """
        ...

    async def check_connection(self) -> bool:
        """Make a minimal request to verify credentials and connectivity."""
        ...
