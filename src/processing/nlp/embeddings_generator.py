import litellm
from src.utils.constants import PROVIDER_TIMEOUT
from src.utils.exceptions import EmbeddingProviderError, ConfigurationError
from src.utils.logger import get_logger


class EmbeddingsGenerator:
    def __init__(self, model, timeout=PROVIDER_TIMEOUT):
        self.model = model
        self.timeout = timeout
        self.logger = get_logger("embeddings generator")

    def embed(self, texts):
        texts = list(texts)
        if not texts:
            return []

        self.logger.info(f"Generating embeddings for {len(texts)} texts, using {self.model}")
        try:
            response = litellm.embedding(model=self.model, input=texts, timeout=self.timeout)
        except Exception as e:
            self.logger.error(f"litellm.embedding failed. Error: {e}")
            raise EmbeddingProviderError(f"embedding call failed: {e}") from e

        vectors = [item["embedding"] for item in response.data]
        if len(vectors) != len(texts):
            raise EmbeddingProviderError(
                f"embedding response mismatch: got {len(vectors)}, expected {len(texts)}"
            )

        return vectors


def build_embeddings_generator(config, model=None):
    model = model or config.embedding_model

    if config.embedding_provider == "litellm":
        return EmbeddingsGenerator(model)
    if config.embedding_provider == "local":
        from src.processing.nlp.local_embeddings import LocalEmbeddingsGenerator
        return LocalEmbeddingsGenerator(model)

    raise ConfigurationError(f"Unknown embedding provider '{config.embedding_provider}'")
