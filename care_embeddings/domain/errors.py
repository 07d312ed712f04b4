"""Error taxonomy for embedding generation.

Provider SDK exceptions are translated into these types at the client
boundary so callers never depend on a specific SDK.
"""

from __future__ import annotations

from dataclasses import dataclass


class EmbeddingError(Exception):
    """Base class for all embedding pipeline errors.

    Attributes:
        provider: Name of the provider involved, if any
        retryable: Whether the operation may succeed if repeated
    """

    retryable: bool = False

    def __init__(self, message: str, provider: str | None = None):
        super().__init__(message)
        self.message = message
        self.provider = provider


class InvalidInputError(EmbeddingError):
    """Text is empty, too long under the reject policy, or the request is malformed."""


class AuthenticationError(EmbeddingError):
    """Credentials were missing or rejected (401/403)."""


class QuotaExhaustedError(EmbeddingError):
    """The provider account has no remaining quota."""

    def __init__(self, message: str, provider: str | None = None, remediation: str | None = None):
        super().__init__(message, provider)
        self.remediation = remediation or "Check billing and plan limits for the provider account."

    def __str__(self) -> str:
        return f"{self.message} ({self.remediation})"


class RateLimitedError(EmbeddingError):
    """Provider asked us to slow down (429 without quota exhaustion)."""

    retryable = True


class TransientProviderError(EmbeddingError):
    """Server-side or network failure that may clear on retry."""

    retryable = True

    def __init__(self, message: str, provider: str | None = None, network: bool = False):
        super().__init__(message, provider)
        self.network = network


class ProviderRequestError(EmbeddingError):
    """Terminal provider response not covered elsewhere (unknown model, empty vector)."""


class ProviderConfigurationError(EmbeddingError):
    """No usable provider could be resolved from configuration."""


class BudgetExceededError(EmbeddingError):
    """Generating would push spend past a daily or monthly ceiling."""

    def __init__(self, message: str, ceiling: str, projected: float, limit: float):
        super().__init__(message)
        self.ceiling = ceiling
        self.projected = projected
        self.limit = limit


class PersistenceError(EmbeddingError):
    """Writing an embedding back to the entity store failed."""


class IndexingInProgressError(EmbeddingError):
    """An indexing job is already discovering or running."""


@dataclass(frozen=True)
class ProviderAttempt:
    """One provider's failed attempt within a fallback chain."""

    provider: str
    error: str
    error_type: str


class AllProvidersFailedError(EmbeddingError):
    """Primary and fallback providers both failed."""

    def __init__(self, attempts: list[ProviderAttempt]):
        summary = "; ".join(f"{a.provider}: {a.error}" for a in attempts)
        super().__init__(f"All embedding providers failed ({summary})")
        self.attempts = attempts
