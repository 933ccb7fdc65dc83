"""RAPTOR: Recursive Abstractive Processing for Tree-Organized Retrieval.

This package implements the RAPTOR algorithm from arXiv:2401.18059 (ICLR 2024),
which builds a hierarchical tree of summaries from text chunks for
multi-level retrieval.

Key Components:
    - schemas: Dataclass definitions (Node, Tree, TreeMetadata, RetrievalResult)
    - utils: Text splitting, distances, nearest-neighbor ordering
    - gmm: Gaussian mixture fitted with EM, BIC model selection
    - clustering: UMAP dimensionality reduction + GMM soft clustering
    - tree_builder: Layer-by-layer tree construction
    - tree_retriever: Collapsed-tree and layer-traversal retrieval
    - retrieval_augmentation: Build / retrieve / answer facade

Usage:
    >>> from raptree.raptor import RetrievalAugmentation, RetrievalAugmentationConfig
    >>> ra = RetrievalAugmentation(config)
    >>> ra.add_documents(text)
    >>> ra.answer_question("What happened to Cinderella?")
"""

from raptree.raptor.clustering import ClusteringAlgorithm, RAPTORClustering
from raptree.raptor.exceptions import (
    EmbeddingError,
    ExternalCapabilityError,
    InsufficientDataError,
    MissingEmbeddingError,
    MissingLayerError,
    NumericDegeneracyWarning,
    QuestionAnsweringError,
    RaptorError,
    SummarizationError,
    TreeFormatError,
)
from raptree.raptor.gmm import GaussianMixture
from raptree.raptor.models import (
    BaseEmbeddingModel,
    BaseQAModel,
    BaseSummarizationModel,
    SBertEmbeddingModel,
)
from raptree.raptor.observer import BuildObserver, LoggingBuildObserver
from raptree.raptor.persistence import load_tree, save_tree
from raptree.raptor.retrieval_augmentation import (
    RetrievalAugmentation,
    RetrievalAugmentationConfig,
)
from raptree.raptor.schemas import Node, RetrievalResult, Tree, TreeMetadata
from raptree.raptor.tree_builder import TreeBuilder, TreeBuilderConfig
from raptree.raptor.tree_retriever import TreeRetriever, TreeRetrieverConfig

__all__ = [
    "BaseEmbeddingModel",
    "BaseQAModel",
    "BaseSummarizationModel",
    "BuildObserver",
    "ClusteringAlgorithm",
    "EmbeddingError",
    "ExternalCapabilityError",
    "GaussianMixture",
    "InsufficientDataError",
    "LoggingBuildObserver",
    "MissingEmbeddingError",
    "MissingLayerError",
    "Node",
    "NumericDegeneracyWarning",
    "QuestionAnsweringError",
    "RAPTORClustering",
    "RaptorError",
    "RetrievalAugmentation",
    "RetrievalAugmentationConfig",
    "RetrievalResult",
    "SBertEmbeddingModel",
    "SummarizationError",
    "Tree",
    "TreeBuilder",
    "TreeBuilderConfig",
    "TreeFormatError",
    "TreeMetadata",
    "TreeRetriever",
    "TreeRetrieverConfig",
    "load_tree",
    "save_tree",
]
