"""Catalog of supported embedding models.

Costs are USD per million input tokens. Widths listed in
``supported_dimensions`` are the ones the pipeline will request; anything
larger than what the API returns natively is filled by padding.
"""

from care_embeddings.domain.models import ModelSpec

GEMINI = "gemini"
OPENAI = "openai"

PROVIDER_NAMES = (GEMINI, OPENAI)

DEFAULT_MODELS = {
    GEMINI: "gemini-embedding-001",
    OPENAI: "text-embedding-3-small",
}

API_KEY_SETUP_URLS = {
    GEMINI: "https://aistudio.google.com/app/apikey",
    OPENAI: "https://platform.openai.com/api-keys",
}

MODEL_CATALOG: dict[str, ModelSpec] = {
    spec.name: spec
    for spec in (
        ModelSpec(
            name="gemini-embedding-001",
            provider=GEMINI,
            native_dimensions=3072,
            default_dimensions=1536,
            supported_dimensions=(128, 256, 512, 768, 1536, 3072),
            max_input_chars=8000,
            cost_per_million_tokens=0.0,
            recommended_batch_size=50,
            max_batch_size=100,
        ),
        ModelSpec(
            name="text-embedding-004",
            provider=GEMINI,
            native_dimensions=768,
            default_dimensions=1536,
            supported_dimensions=(64, 128, 256, 512, 768, 1536),
            max_input_chars=30000,
            cost_per_million_tokens=0.0,
            recommended_batch_size=50,
            max_batch_size=100,
        ),
        ModelSpec(
            name="text-embedding-3-small",
            provider=OPENAI,
            native_dimensions=1536,
            default_dimensions=1536,
            supported_dimensions=(512, 1024, 1536),
            max_input_chars=8000,
            cost_per_million_tokens=0.02,
            recommended_batch_size=100,
            max_batch_size=100,
        ),
        ModelSpec(
            name="text-embedding-3-large",
            provider=OPENAI,
            native_dimensions=3072,
            default_dimensions=3072,
            supported_dimensions=(256, 1024, 1536, 3072),
            max_input_chars=8000,
            cost_per_million_tokens=0.13,
            recommended_batch_size=50,
            max_batch_size=100,
        ),
        ModelSpec(
            name="text-embedding-ada-002",
            provider=OPENAI,
            native_dimensions=1536,
            default_dimensions=1536,
            supported_dimensions=(1536,),
            max_input_chars=8000,
            cost_per_million_tokens=0.10,
            recommended_batch_size=100,
            max_batch_size=100,
            accepts_output_dimensions=False,
        ),
    )
}


def get_model_spec(model: str) -> ModelSpec | None:
    """Look up a model by name, returning None for unknown models."""
    return MODEL_CATALOG.get(model)
