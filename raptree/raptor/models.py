"""Capability interfaces consumed by tree building and retrieval.

Three independent capabilities are injected into the pipeline:

- BaseEmbeddingModel.create_embedding(text) -> vector
- BaseSummarizationModel.summarize(context, max_tokens) -> text
- BaseQAModel.answer_question(context, question) -> text

Concrete providers are swappable implementations selected in the config.
SBertEmbeddingModel runs locally through sentence-transformers (optional
extra: pip install 'raptree[sbert]').
"""

from abc import ABC, abstractmethod
from typing import Optional


class BaseEmbeddingModel(ABC):
    @abstractmethod
    def create_embedding(self, text: str) -> list[float]:
        ...


class BaseSummarizationModel(ABC):
    @abstractmethod
    def summarize(self, context: str, max_tokens: int = 150) -> str:
        ...


class BaseQAModel(ABC):
    @abstractmethod
    def answer_question(self, context: str, question: str) -> str:
        ...


class SBertEmbeddingModel(BaseEmbeddingModel):
    """Local sentence-transformers embedding model.

    Args:
        model_name: Hugging Face model id.
        device: Optional torch device ("cpu", "cuda", ...).
    """

    def __init__(
        self,
        model_name: str = "sentence-transformers/multi-qa-mpnet-base-cos-v1",
        device: Optional[str] = None,
    ):
        self.model_name = model_name
        self.device = device
        self._model = None

    def _load(self):
        if self._model is None:
            # Lazy import: torch is only needed when this provider is used
            from sentence_transformers import SentenceTransformer

            self._model = SentenceTransformer(self.model_name, device=self.device)
        return self._model

    def create_embedding(self, text: str) -> list[float]:
        return self._load().encode(text).tolist()

    def __repr__(self) -> str:
        return f"SBertEmbeddingModel(model_name={self.model_name!r})"
