"""Care Embeddings - embedding pipeline for a healthcare provider directory.

This package provides:
- A unified embedding service over Gemini and OpenAI with fallback
- Result caching, cost estimation and budget enforcement
- Concurrent batch indexing of hospitals and doctors
- Query-time semantic search with graceful degradation
"""

__version__ = "0.1.0"
