"""Embedding model management inside the inference worker."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

import numpy as np
from sentence_transformers import SentenceTransformer

from notefinder.embedding.assets import ONNX_MODEL_FILE
from notefinder.embedding.protocol import EmbeddingMode

logger = logging.getLogger(__name__)

PREFIXES = tuple(f"{mode.value}: " for mode in EmbeddingMode)


def apply_prefix(text: str, mode: EmbeddingMode) -> str:
    """Prepend the E5 ``query: `` / ``passage: `` marker unless one is already present."""
    if text.startswith(PREFIXES):
        return text
    return f"{EmbeddingMode(mode).value}: {text}"


def _check_onnx_providers() -> list[str]:
    """Check which ONNX Runtime execution providers are available.

    Returns:
        List of available provider names.
    """
    try:
        import onnxruntime as ort
        return ort.get_available_providers()
    except ImportError:
        return []


@dataclass(slots=True)
class EmbeddingConfig:
    model_path: Path
    batch_size: int = 16
    normalize: bool = True
    onnx_model_file: str = ONNX_MODEL_FILE
    device: str | None = None


class EmbeddingModel:
    """Thin wrapper around `SentenceTransformer` running the quantized ONNX export.

    The model directory holds the Hugging Face config, tokenizer files and the
    ONNX weights; sentence-transformers adds mean pooling on top, which is
    what the E5 family expects.
    """

    def __init__(self, config: EmbeddingConfig) -> None:
        self.config = config
        self._model = self._load_model()
        self.dimension = int(self._model.get_sentence_embedding_dimension())
        self._log_backend_info()

    def _load_model(self) -> SentenceTransformer:
        return SentenceTransformer(
            str(self.config.model_path),
            backend="onnx",
            device=self.config.device,
            model_kwargs={"file_name": self.config.onnx_model_file},
        )

    def _log_backend_info(self) -> None:
        info_parts = ["Backend: onnx", f"ONNX Model: {self.config.onnx_model_file}"]
        providers = _check_onnx_providers()
        if providers:
            info_parts.append(f"ONNX Providers: {', '.join(providers)}")
        if self.config.device:
            info_parts.append(f"Device: {self.config.device}")
        info_parts.append(f"Dimension: {self.dimension}")
        logger.info(" | ".join(info_parts))

    def embed(
        self,
        texts: Sequence[str] | Iterable[str],
        mode: EmbeddingMode = EmbeddingMode.PASSAGE,
    ) -> np.ndarray:
        """Return float32 embeddings for input texts."""
        sentences = [apply_prefix(text, mode) for text in texts]
        embeddings = self._model.encode(
            sentences,
            batch_size=self.config.batch_size,
            show_progress_bar=False,
            convert_to_numpy=True,
            normalize_embeddings=self.config.normalize,
        )
        return embeddings.astype("float32", copy=False)

    def embed_one(self, text: str, mode: EmbeddingMode = EmbeddingMode.PASSAGE) -> np.ndarray:
        """Convenience wrapper for single-text embedding."""
        return self.embed([text], mode)[0]
