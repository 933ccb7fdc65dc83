"""Error taxonomy for tree building and retrieval.

Every error names the pipeline stage it came from (chunking, embedding,
clustering, summarization, retrieval, persistence) plus the offending entity,
so callers can report a failed build or query precisely.
"""

from typing import Optional


class RaptorError(Exception):
    """Base exception for tree building and retrieval errors."""

    stage = "unknown"

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        if stage is not None:
            self.stage = stage

    def __str__(self) -> str:
        return f"[{self.stage}] {self.args[0]}"


class MissingEmbeddingError(RaptorError, KeyError):
    """Raised when a node lacks the embedding required for scoring."""

    def __init__(self, node_index: int, model_name: str, stage: str = "clustering"):
        super().__init__(
            f"Embedding for model '{model_name}' not found in node {node_index}",
            stage=stage,
        )
        self.node_index = node_index
        self.model_name = model_name


class InsufficientDataError(RaptorError, ValueError):
    """Raised when more mixture components are requested than data points."""

    stage = "clustering"

    def __init__(self, n_samples: int, n_components: int):
        super().__init__(
            f"Number of samples ({n_samples}) must be >= "
            f"number of components ({n_components})"
        )
        self.n_samples = n_samples
        self.n_components = n_components


class MissingLayerError(RaptorError, KeyError):
    """Raised when layer traversal starts from a layer absent from the tree."""

    stage = "retrieval"

    def __init__(self, layer: int):
        super().__init__(f"No nodes found for layer {layer}")
        self.layer = layer


class ExternalCapabilityError(RaptorError):
    """Raised when an embedding, summarization or QA call fails."""

    def __init__(self, message: str, node_index: Optional[int] = None):
        super().__init__(message)
        self.node_index = node_index


class EmbeddingError(ExternalCapabilityError):
    stage = "embedding"


class SummarizationError(ExternalCapabilityError):
    stage = "summarization"


class QuestionAnsweringError(ExternalCapabilityError):
    stage = "retrieval"


class TreeFormatError(RaptorError, ValueError):
    """Raised when a persisted tree cannot be reconstructed consistently."""

    stage = "persistence"


class NumericDegeneracyWarning(RuntimeWarning):
    """Zero-norm vector or singular covariance replaced by a safe default."""
