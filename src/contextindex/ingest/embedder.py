"""Embedders — text to fixed-dimension dense vectors via LiteLLM.

The pipeline and query engine depend only on the ``Embedder`` interface, so any
model can be injected. Retrying is the caller's job (contextindex.retry); a
single ``embed()`` call makes exactly one upstream request.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod

import litellm

from contextindex.config import ConfigError, EmbeddingCfg
from contextindex.db.vectors import check_dimensions
from contextindex.errors import EmbeddingUnavailable

logger = logging.getLogger(__name__)

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "voyage": "VOYAGE_API_KEY",
    "ollama": None,  # Local, no key required
}


class Embedder(ABC):
    """Maps text to a vector of exactly ``dimensions`` floats.

    Implementations must be deterministic for a fixed model version and raise
    EmbeddingUnavailable on upstream failure.
    """

    @property
    @abstractmethod
    def dimensions(self) -> int:
        """Output vector length D."""

    @abstractmethod
    def embed(self, text: str, *, timeout: float | None = None) -> list[float]:
        """Embed *text*. Raises EmbeddingUnavailable on upstream failure.

        *timeout* bounds the upstream request in seconds (None: provider default).
        """


class LiteLLMEmbedder(Embedder):
    """Embed through ``litellm.embedding()`` (provider/model format).

    Args:
        model: LiteLLM embedding model, e.g. ``openai/text-embedding-3-small``.
        dimensions: Expected output length; any other length is a fatal
            DimensionMismatchError.
    """

    def __init__(self, model: str, dimensions: int) -> None:
        self._model = model
        self._dimensions = dimensions

    @classmethod
    def from_config(cls, cfg: EmbeddingCfg) -> LiteLLMEmbedder:
        return cls(model=cfg.model, dimensions=cfg.dimensions)

    @property
    def model(self) -> str:
        return self._model

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def embed(self, text: str, *, timeout: float | None = None) -> list[float]:
        validate_api_key(self._model)
        kwargs = {"timeout": timeout} if timeout is not None else {}
        try:
            response = litellm.embedding(model=self._model, input=[text], **kwargs)
        except Exception as exc:
            logger.warning("Embedding request to %s failed: %s", self._model, exc)
            raise EmbeddingUnavailable(
                f"Embedding provider for '{self._model}' unavailable: {exc}"
            ) from exc

        vector = [float(x) for x in response.data[0]["embedding"]]
        check_dimensions(vector, self._dimensions, f"'{self._model}' output")
        return vector


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Raises:
        ConfigError: If the required key is missing from the environment.
    """
    provider = model.split("/")[0].lower() if "/" in model else "openai"
    env_var = _PROVIDER_ENV.get(provider)

    if env_var is None:
        return

    if not os.getenv(env_var):
        raise ConfigError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )
