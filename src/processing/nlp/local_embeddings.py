import torch
from sentence_transformers import SentenceTransformer
from src.utils.constants import DEFAULT_LOCAL_EMBEDDING_MODEL, DEFAULT_EMBEDDING_MODEL
from src.utils.exceptions import EmbeddingProviderError
from src.utils.logger import get_logger


class LocalEmbeddingsGenerator:
    def __init__(self, model=DEFAULT_LOCAL_EMBEDDING_MODEL):
        # the hosted default name means nothing to sentence-transformers
        if model == DEFAULT_EMBEDDING_MODEL:
            model = DEFAULT_LOCAL_EMBEDDING_MODEL
        self.model = model
        self.device = "cuda" if torch.cuda.is_available() else "cpu"
        self.encoder = SentenceTransformer(model, device=self.device)
        self.logger = get_logger("embeddings generator")

    def embed(self, texts):
        texts = list(texts)
        if not texts:
            return []

        self.logger.info(f"Generating embeddings for {len(texts)} texts, using {self.device}")
        try:
            embeddings = self.encoder.encode(
                texts,
                batch_size=64,
                show_progress_bar=False,
                convert_to_numpy=True,
                normalize_embeddings=True,
                device=self.device
            )
        except Exception as e:
            self.logger.error(f"CRITICAL: self.encoder.encode failed. Error: {e}", exc_info=True)
            raise EmbeddingProviderError(f"local embedding failed: {e}") from e

        if len(embeddings) != len(texts):
            raise EmbeddingProviderError(
                f"embedding response mismatch: got {len(embeddings)}, expected {len(texts)}"
            )

        return [embedding.tolist() for embedding in embeddings]
