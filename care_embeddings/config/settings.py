"""Embedding settings with environment variable support.

Uses pydantic-settings for type-safe configuration management.
Automatically loads from .env file and validates all settings.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from care_embeddings.config.provider_catalog import (
    API_KEY_SETUP_URLS,
    DEFAULT_MODELS,
    GEMINI,
    MODEL_CATALOG,
    OPENAI,
    PROVIDER_NAMES,
)
from care_embeddings.domain.models import ProviderConfig

logger = logging.getLogger(__name__)

_PLACEHOLDER_KEY = re.compile(r"^your[-_].*[-_]here$", re.IGNORECASE)

MAX_BATCH_SIZE = 100
MAX_CONCURRENCY = 10


@dataclass
class ConfigReport:
    """Result of validating provider configuration.

    Attributes:
        errors: Problems that make the configuration unusable
        warnings: Problems that degrade behavior but allow running
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        """Return True when there are no errors."""
        return not self.errors


class EmbeddingSettings(BaseSettings):
    """Embedding configuration with automatic environment variable loading.

    All settings can be overridden via environment variables.
    The .env file is automatically loaded if present.

    Examples:
        >>> settings = EmbeddingSettings()
        >>> settings.resolve_primary()
        'gemini'

        >>> settings = EmbeddingSettings(embedding_provider="openai", embedding_batch_size=50)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Ignore extra env vars
        case_sensitive=False,  # Allow GEMINI_API_KEY or gemini_api_key
    )

    # Provider Selection
    embedding_provider: str | None = Field(
        default=None,
        description="Primary provider: 'gemini' or 'openai' (unset = first configured in fallback order)",
    )
    embedding_fallback: bool = Field(
        default=True,
        description="Try the fallback provider when the primary fails",
    )
    embedding_fallback_order: str = Field(
        default="gemini,openai",
        description="Comma-separated provider priority, free tier first",
    )

    # Credentials
    gemini_api_key: str | None = Field(default=None, description="Google AI Studio API key")
    openai_api_key: str | None = Field(default=None, description="OpenAI API key")
    openai_project_id: str | None = Field(default=None, description="OpenAI project ID")
    openai_org_id: str | None = Field(default=None, description="OpenAI organization ID")

    # Models
    gemini_model: str = Field(default=DEFAULT_MODELS[GEMINI], description="Gemini embedding model")
    openai_model: str = Field(default=DEFAULT_MODELS[OPENAI], description="OpenAI embedding model")
    embedding_dimensions: int = Field(
        default=1536,
        ge=64,
        le=3072,
        description="Vector width stored for every entity",
    )

    # Cache
    embedding_cache: bool = Field(default=True, description="Enable the in-memory result cache")
    embedding_cache_ttl: float = Field(default=3600.0, gt=0, description="Cache TTL in seconds")
    embedding_cache_max_entries: int = Field(default=10_000, ge=1, description="Hard cache size bound")

    # Batching
    embedding_batch_size: int = Field(default=20, ge=1, le=MAX_BATCH_SIZE, description="Base batch size")
    embedding_max_concurrency: int = Field(
        default=3, ge=1, le=MAX_CONCURRENCY, description="Max concurrent provider calls"
    )

    # Budget
    embedding_daily_budget: float = Field(default=10.0, ge=0.0, description="Daily spend ceiling (USD)")
    embedding_monthly_budget: float = Field(
        default=200.0, ge=0.0, description="Monthly spend ceiling (USD)"
    )
    embedding_warning_threshold: float = Field(
        default=0.8, ge=0.0, le=1.0, description="Fraction of a ceiling that triggers a warning"
    )

    # Retries
    embedding_max_retries: int = Field(default=3, ge=1, le=10, description="Attempts per provider call")
    embedding_retry_base_delay: float = Field(default=1.0, ge=0.0, description="Backoff base in seconds")
    embedding_request_timeout: float = Field(default=60.0, gt=0, description="Provider request timeout")

    # Storage
    data_dir: Path = Field(default=Path("./data"), description="Root data directory")

    @field_validator("data_dir", mode="before")
    @classmethod
    def validate_path(cls, v) -> Path:  # noqa: N805
        """Convert string paths to Path objects."""
        if isinstance(v, str):
            return Path(v)
        return v

    @field_validator(
        "embedding_provider",
        "gemini_api_key",
        "openai_api_key",
        "openai_project_id",
        "openai_org_id",
        mode="before",
    )
    @classmethod
    def blank_to_none(cls, v):  # noqa: N805
        """Treat empty strings from the environment as unset."""
        if isinstance(v, str) and not v.strip():
            return None
        return v.strip() if isinstance(v, str) else v

    @field_validator("embedding_provider")
    @classmethod
    def validate_provider(cls, v: str | None) -> str | None:
        """Validate the primary provider is supported."""
        if v is None:
            return v
        v = v.lower()
        if v not in PROVIDER_NAMES:
            raise ValueError(f"embedding_provider must be one of {', '.join(PROVIDER_NAMES)}, got '{v}'")
        return v

    @field_validator("embedding_fallback_order")
    @classmethod
    def validate_fallback_order(cls, v: str) -> str:
        """Validate every provider in the fallback order is supported."""
        names = [name.strip().lower() for name in v.split(",") if name.strip()]
        unknown = [name for name in names if name not in PROVIDER_NAMES]
        if unknown:
            raise ValueError(f"Unknown providers in fallback order: {', '.join(unknown)}")
        if not names:
            raise ValueError("Fallback order cannot be empty")
        return ",".join(names)

    @field_validator("gemini_api_key", "openai_api_key")
    @classmethod
    def validate_not_placeholder(cls, v: str | None) -> str | None:
        """Reject template placeholder keys such as 'your-openai-api-key-here'."""
        if v is not None and _PLACEHOLDER_KEY.match(v):
            raise ValueError("API key is still the template placeholder")
        return v

    @field_validator("openai_api_key")
    @classmethod
    def validate_openai_key(cls, v: str | None) -> str | None:
        """Validate OpenAI API key format."""
        if v is None:
            return v
        if not v.startswith("sk-"):
            raise ValueError("OpenAI API key must start with 'sk-'")
        if len(v) < 20:
            raise ValueError("OpenAI API key appears to be too short")
        return v

    @field_validator("gemini_model", "openai_model")
    @classmethod
    def validate_model(cls, v: str) -> str:
        """Validate the model is in the catalog."""
        if v not in MODEL_CATALOG:
            raise ValueError(f"Unknown embedding model '{v}'")
        return v

    @model_validator(mode="after")
    def validate_credentials(self) -> "EmbeddingSettings":
        """Fail fast when no provider can serve requests."""
        report = self.validate_providers()
        if report.errors:
            raise ValueError("; ".join(report.errors))
        return self

    @property
    def fallback_order(self) -> list[str]:
        """Return provider names in fallback priority."""
        return self.embedding_fallback_order.split(",")

    def has_credentials(self, provider: str) -> bool:
        """Return True if the provider's API key is set."""
        if provider == GEMINI:
            return self.gemini_api_key is not None
        if provider == OPENAI:
            return self.openai_api_key is not None
        return False

    def model_for(self, provider: str) -> str:
        """Return the configured model for a provider."""
        return self.gemini_model if provider == GEMINI else self.openai_model

    def resolve_primary(self) -> str | None:
        """Return the explicit primary, else the first credentialed provider."""
        if self.embedding_provider is not None:
            return self.embedding_provider
        for name in self.fallback_order:
            if self.has_credentials(name):
                return name
        return None

    def resolve_fallback(self) -> str | None:
        """Return the first credentialed provider after the primary, if fallback is on."""
        if not self.embedding_fallback:
            return None
        primary = self.resolve_primary()
        for name in self.fallback_order:
            if name != primary and self.has_credentials(name):
                return name
        return None

    def provider_configs(self) -> list[ProviderConfig]:
        """Describe every known provider as currently configured."""
        configs = []
        for name in PROVIDER_NAMES:
            spec = MODEL_CATALOG[self.model_for(name)]
            configs.append(
                ProviderConfig(
                    name=name,
                    model=spec.name,
                    default_dimensions=spec.default_dimensions,
                    supported_dimensions=spec.supported_dimensions,
                    has_credentials=self.has_credentials(name),
                    cost_per_token=spec.cost_per_million_tokens / 1_000_000,
                )
            )
        return configs

    def validate_providers(self) -> ConfigReport:
        """Check credentials and tuning values without raising.

        Returns:
            ConfigReport with fatal errors and non-fatal warnings
        """
        report = ConfigReport()

        if not any(self.has_credentials(name) for name in PROVIDER_NAMES):
            report.errors.append(
                "No embedding provider API keys configured. Set GEMINI_API_KEY or OPENAI_API_KEY."
            )
            return report

        primary = self.resolve_primary()
        if primary is not None and not self.has_credentials(primary):
            report.errors.append(
                f"Primary provider '{primary}' has no API key. "
                f"Get one at {API_KEY_SETUP_URLS[primary]}"
            )

        if self.embedding_fallback and self.resolve_fallback() is None:
            report.warnings.append("Fallback is enabled but no second provider has an API key")

        if self.openai_project_id and self.openai_api_key and self.openai_api_key.startswith("sk-proj-"):
            report.warnings.append(
                "OPENAI_PROJECT_ID is ignored because the API key is already project-scoped"
            )

        if self.embedding_daily_budget > self.embedding_monthly_budget:
            report.warnings.append("Daily budget is larger than the monthly budget")

        return report


def get_settings() -> EmbeddingSettings:
    """Load settings from the environment and .env file."""
    return EmbeddingSettings()


def env_template() -> str:
    """Render a .env template documenting every embedding setting."""
    return "\n".join(
        [
            "# Embedding providers (at least one key is required)",
            f"# Gemini key: {API_KEY_SETUP_URLS[GEMINI]}",
            "GEMINI_API_KEY=your-gemini-api-key-here",
            f"# OpenAI key: {API_KEY_SETUP_URLS[OPENAI]}",
            "OPENAI_API_KEY=your-openai-api-key-here",
            "# OPENAI_PROJECT_ID=",
            "# OPENAI_ORG_ID=",
            "",
            "# Provider selection",
            "# EMBEDDING_PROVIDER=gemini",
            "EMBEDDING_FALLBACK=true",
            "EMBEDDING_FALLBACK_ORDER=gemini,openai",
            "EMBEDDING_DIMENSIONS=1536",
            "",
            "# Cache",
            "EMBEDDING_CACHE=true",
            "EMBEDDING_CACHE_TTL=3600",
            "",
            "# Batching",
            "EMBEDDING_BATCH_SIZE=20",
            "EMBEDDING_MAX_CONCURRENCY=3",
            "",
            "# Budget (USD)",
            "EMBEDDING_DAILY_BUDGET=10.0",
            "EMBEDDING_MONTHLY_BUDGET=200.0",
            "EMBEDDING_WARNING_THRESHOLD=0.8",
            "",
        ]
    )
