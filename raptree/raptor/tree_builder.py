"""Core RAPTOR tree building orchestration.

## RAG Theory: Hierarchical Tree Construction

RAPTOR builds a tree of summaries through recursive clustering:

1. **Layer 0 (Leaves)**: Token-bounded chunks of the input text
2. **Layer 1 (First Summaries)**: Summaries of clustered leaves
3. **Layer 2+ (Higher Summaries)**: Summaries of clustered summaries
4. **Termination**: When a layer is too small to reduce (<= reduction
   dimension + 1 nodes) or the configured number of layers is reached

The algorithm (per layer):
1. Cluster the current layer on the authoritative embedding
2. Concatenate each cluster's texts and summarize them
3. Embed each summary with every configured embedding model
4. The summaries become the next layer; their children are the cluster members

Node indices are reserved before any model call, so they are unique and
increasing across the whole build even when work runs on a thread pool.
"""

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional, TypeVar

from raptree.config import (
    FAILURE_MODES,
    RAPTOR_CHUNK_OVERLAP,
    RAPTOR_EMBEDDING_FAILURE,
    RAPTOR_MAX_CHUNK_TOKENS,
    RAPTOR_MAX_WORKERS,
    RAPTOR_NUM_LAYERS,
    RAPTOR_REDUCTION_DIMENSION,
    RAPTOR_SUMMARIZATION_FAILURE,
    RAPTOR_SUMMARIZATION_LENGTH,
)
from raptree.shared.files import setup_logging
from raptree.shared.tokens import get_default_tokenizer
from raptree.raptor.clustering import ClusteringAlgorithm, RAPTORClustering
from raptree.raptor.exceptions import EmbeddingError, SummarizationError
from raptree.raptor.models import BaseEmbeddingModel, BaseSummarizationModel
from raptree.raptor.observer import BuildObserver, LoggingBuildObserver
from raptree.raptor.schemas import Embeddings, Node, Tree, TreeMetadata
from raptree.raptor.utils import TokenCounter, get_text, split_text

logger = setup_logging(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class TreeBuilderConfig:
    """Settings for TreeBuilder.

    Attributes:
        summarization_model: Capability used to summarize clusters.
        embedding_models: Embedding model name -> model; every node gets one
            embedding per entry.
        cluster_embedding_model: Name of the embedding used for clustering.
            Defaults to the first entry of embedding_models.
        tokenizer: Token counter for chunking and cluster limits.
        max_tokens: Token budget per leaf chunk.
        chunk_overlap: Sentences carried over between leaf chunks.
        num_layers: Layers to attempt above the leaves.
        summarization_length: Output token budget passed to summarize().
        reduction_dimension: UMAP target dimension; also the early-stop bound.
        clustering_algorithm: Clustering strategy.
        clustering_params: Extra keyword arguments for perform_clustering
            (threshold, max_length_in_cluster, verbose).
        use_multithreading: Run leaf and summary node creation on a pool.
        max_workers: Pool size when use_multithreading is set.
        embedding_failure: "raise" aborts the build, "degrade" drops the node.
        summarization_failure: "degrade" uses an empty summary, "raise" aborts.
        observer: Receives clustering/layer/build events.
    """

    summarization_model: Optional[BaseSummarizationModel] = None
    embedding_models: dict[str, BaseEmbeddingModel] = field(default_factory=dict)
    cluster_embedding_model: Optional[str] = None
    tokenizer: Optional[TokenCounter] = None
    max_tokens: int = RAPTOR_MAX_CHUNK_TOKENS
    chunk_overlap: int = RAPTOR_CHUNK_OVERLAP
    num_layers: int = RAPTOR_NUM_LAYERS
    summarization_length: int = RAPTOR_SUMMARIZATION_LENGTH
    reduction_dimension: int = RAPTOR_REDUCTION_DIMENSION
    clustering_algorithm: Optional[ClusteringAlgorithm] = None
    clustering_params: dict[str, Any] = field(default_factory=dict)
    use_multithreading: bool = False
    max_workers: int = RAPTOR_MAX_WORKERS
    embedding_failure: str = RAPTOR_EMBEDDING_FAILURE
    summarization_failure: str = RAPTOR_SUMMARIZATION_FAILURE
    observer: Optional[BuildObserver] = None

    def __post_init__(self):
        if not isinstance(self.summarization_model, BaseSummarizationModel):
            raise ValueError(
                "summarization_model must be an instance of BaseSummarizationModel"
            )

        if not self.embedding_models:
            raise ValueError("embedding_models must contain at least one model")
        for name, model in self.embedding_models.items():
            if not isinstance(model, BaseEmbeddingModel):
                raise ValueError(
                    f"embedding model '{name}' must be an instance of BaseEmbeddingModel"
                )

        if self.cluster_embedding_model is None:
            self.cluster_embedding_model = next(iter(self.embedding_models))
        if self.cluster_embedding_model not in self.embedding_models:
            raise ValueError(
                f"cluster_embedding_model '{self.cluster_embedding_model}' "
                f"must be a key of embedding_models"
            )

        for name in ("max_tokens", "num_layers", "summarization_length",
                     "reduction_dimension", "max_workers"):
            value = getattr(self, name)
            if not isinstance(value, int) or value < 1:
                raise ValueError(f"{name} must be an integer and at least 1")

        if not isinstance(self.chunk_overlap, int) or self.chunk_overlap < 0:
            raise ValueError("chunk_overlap must be an integer and at least 0")

        for name in ("embedding_failure", "summarization_failure"):
            if getattr(self, name) not in FAILURE_MODES:
                raise ValueError(f"{name} must be one of {FAILURE_MODES}")

        if self.tokenizer is None:
            self.tokenizer = get_default_tokenizer()
        if self.clustering_algorithm is None:
            self.clustering_algorithm = RAPTORClustering()
        if not isinstance(self.clustering_algorithm, ClusteringAlgorithm):
            raise ValueError(
                "clustering_algorithm must be an instance of ClusteringAlgorithm"
            )
        if self.observer is None:
            self.observer = LoggingBuildObserver()

    def log_config(self) -> str:
        return f"""
        TreeBuilderConfig:
            Tokenizer: {self.tokenizer}
            Max Tokens: {self.max_tokens}
            Chunk Overlap: {self.chunk_overlap}
            Num Layers: {self.num_layers}
            Summarization Length: {self.summarization_length}
            Summarization Model: {self.summarization_model}
            Embedding Models: {list(self.embedding_models)}
            Cluster Embedding Model: {self.cluster_embedding_model}
            Reduction Dimension: {self.reduction_dimension}
            Clustering Algorithm: {type(self.clustering_algorithm).__name__}
            Clustering Parameters: {self.clustering_params}
            Multithreading: {self.use_multithreading} (max_workers={self.max_workers})
            Failure Modes: embedding={self.embedding_failure}, summarization={self.summarization_failure}
        """


class TreeBuilder:
    """Builds a Tree from raw text by chunking, clustering and summarizing."""

    def __init__(self, config: TreeBuilderConfig) -> None:
        self.config = config
        self.tokenizer = config.tokenizer
        self.max_tokens = config.max_tokens
        self.num_layers = config.num_layers
        self.summarization_length = config.summarization_length
        self.summarization_model = config.summarization_model
        self.embedding_models = config.embedding_models
        self.cluster_embedding_model = config.cluster_embedding_model
        self.reduction_dimension = config.reduction_dimension
        self.clustering_algorithm = config.clustering_algorithm
        self.clustering_params = config.clustering_params
        self.observer = config.observer
        self.metadata: Optional[TreeMetadata] = None

        logger.info(
            f"Successfully initialized TreeBuilder with Config {config.log_config()}"
        )

    def create_embeddings(self, text: str) -> Embeddings:
        """Embed text with every configured embedding model."""
        return {
            model_name: [float(value) for value in model.create_embedding(text)]
            for model_name, model in self.embedding_models.items()
        }

    def create_node(
        self,
        index: int,
        text: str,
        children_indices: Optional[Iterable[int]] = None,
    ) -> tuple[int, Node]:
        """Create a node with embeddings for every configured model.

        Raises:
            EmbeddingError: If an embedding model fails.
        """
        try:
            embeddings = self.create_embeddings(text)
        except Exception as e:
            raise EmbeddingError(
                f"Embedding failed for node {index}: {e}", node_index=index
            ) from e

        children = frozenset(children_indices or ())
        return index, Node(text=text, index=index, children=children, embeddings=embeddings)

    def summarize(self, context: str, max_tokens: int = 150) -> str:
        return self.summarization_model.summarize(context, max_tokens)

    def build_from_text(self, text: str) -> Tree:
        """Build the full tree for a text.

        Args:
            text: Raw input text.

        Returns:
            Immutable Tree; builder.metadata holds the build statistics.

        Raises:
            ValueError: If the text yields no chunks.
            EmbeddingError: If embedding fails and embedding_failure="raise".
            SummarizationError: If summarizing fails and
                summarization_failure="raise".
            MissingEmbeddingError: If a node lacks the clustering embedding.
        """
        start_time = time.time()

        chunks = split_text(
            text, self.tokenizer, self.max_tokens, overlap=self.config.chunk_overlap
        )
        chunks = [chunk for chunk in chunks if chunk.strip()]
        if not chunks:
            raise ValueError("Cannot build tree from empty text")

        logger.info(f"Creating leaf nodes for {len(chunks)} chunks")
        leaf_nodes = self._create_leaf_nodes(chunks)
        logger.info(f"Created {len(leaf_nodes)} leaf embeddings")

        all_nodes = dict(leaf_nodes)
        layer_to_nodes = {0: list(leaf_nodes.values())}
        metadata = TreeMetadata(levels={0: len(leaf_nodes)})

        root_nodes, num_layers = self.construct_tree(
            leaf_nodes, all_nodes, layer_to_nodes, metadata, next_index=len(chunks)
        )

        metadata.total_nodes = len(all_nodes)
        metadata.leaf_count = len(leaf_nodes)
        metadata.summary_count = len(all_nodes) - len(leaf_nodes)
        metadata.num_layers = num_layers
        metadata.build_time_seconds = time.time() - start_time
        self.metadata = metadata
        self.observer.build_finished(metadata)

        return Tree(
            all_nodes=all_nodes,
            root_nodes=root_nodes,
            leaf_nodes=leaf_nodes,
            num_layers=num_layers,
            layer_to_nodes=layer_to_nodes,
        )

    def construct_tree(
        self,
        current_level_nodes: dict[int, Node],
        all_tree_nodes: dict[int, Node],
        layer_to_nodes: dict[int, list[Node]],
        metadata: TreeMetadata,
        next_index: int,
    ) -> tuple[dict[int, Node], int]:
        """Build summary layers on top of current_level_nodes.

        Fills all_tree_nodes, layer_to_nodes and metadata in place.

        Returns:
            Tuple of (root nodes, number of layers built).
        """
        num_layers = self.num_layers

        for layer in range(self.num_layers):
            layer_start = time.time()
            node_list_current_layer = [
                current_level_nodes[index] for index in sorted(current_level_nodes)
            ]

            if not _can_continue_clustering(node_list_current_layer, self.reduction_dimension):
                num_layers = layer
                logger.info(
                    f"Stopping layer construction: {len(node_list_current_layer)} nodes "
                    f"<= reduction dimension + 1. Total layers in tree: {layer}"
                )
                break

            logger.info(f"Constructing layer {layer + 1} from {len(node_list_current_layer)} nodes")

            cluster_start = time.time()
            clusters = self.clustering_algorithm.perform_clustering(
                node_list_current_layer,
                self.cluster_embedding_model,
                tokenizer=self.tokenizer,
                reduction_dimension=self.reduction_dimension,
                **self.clustering_params,
            )
            cluster_seconds = time.time() - cluster_start
            metadata.clustering_seconds[layer + 1] = cluster_seconds
            self.observer.clustering_finished(
                layer + 1, len(node_list_current_layer), len(clusters), cluster_seconds
            )

            new_level_nodes = self._create_summary_nodes(clusters, next_index)
            next_index += len(clusters)

            if not new_level_nodes:
                num_layers = layer
                logger.warning(f"No summary nodes created for layer {layer + 1}. Stopping.")
                break

            layer_to_nodes[layer + 1] = list(new_level_nodes.values())
            all_tree_nodes.update(new_level_nodes)
            metadata.levels[layer + 1] = len(new_level_nodes)
            self.observer.layer_finished(
                layer + 1, len(new_level_nodes), time.time() - layer_start
            )

            current_level_nodes = new_level_nodes

        return current_level_nodes, num_layers

    def _create_leaf_nodes(self, chunks: list[str]) -> dict[int, Node]:
        """Leaf index i is reserved for chunk i."""
        results = self._map(
            lambda item: self._create_node_or_skip(*item), list(enumerate(chunks))
        )
        return {index: node for index, node in results if node is not None}

    def _create_summary_nodes(
        self,
        clusters: list[list[Node]],
        first_index: int,
    ) -> dict[int, Node]:
        """Summarize and embed each cluster; cluster i gets first_index + i."""

        def process(item: tuple[int, list[Node]]) -> tuple[int, Optional[Node]]:
            index, cluster = item
            node_texts = get_text(cluster)
            summarized_text = self._summarize_cluster(node_texts, index)
            logger.debug(
                f"Node texts length: {self.tokenizer.count_tokens(node_texts)}, "
                f"summarized text length: {self.tokenizer.count_tokens(summarized_text)}"
            )
            children = {node.index for node in cluster}
            return self._create_node_or_skip(index, summarized_text, children)

        items = [(first_index + i, cluster) for i, cluster in enumerate(clusters)]
        results = self._map(process, items)
        return {index: node for index, node in results if node is not None}

    def _create_node_or_skip(
        self,
        index: int,
        text: str,
        children: Optional[set[int]] = None,
    ) -> tuple[int, Optional[Node]]:
        try:
            return self.create_node(index, text, children)
        except EmbeddingError as e:
            if self.config.embedding_failure == "raise":
                logger.error(f"Embedding failed for node {index}: {e}")
                raise
            logger.warning(f"Dropping node {index}: {e}")
            return index, None

    def _summarize_cluster(self, context: str, index: int) -> str:
        try:
            return self.summarize(context, self.summarization_length)
        except Exception as e:
            if self.config.summarization_failure == "raise":
                logger.error(f"Summarization failed for node {index}: {e}")
                raise SummarizationError(
                    f"Summarization failed for node {index}: {e}", node_index=index
                ) from e
            logger.warning(f"Summarization failed for node {index}, using empty text: {e}")
            return ""

    def _map(self, func: Callable[[T], R], items: list[T]) -> list[R]:
        """Apply func to items, on a thread pool when multithreading is on."""
        if not self.config.use_multithreading or len(items) < 2:
            return [func(item) for item in items]
        with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
            return list(executor.map(func, items))


def _can_continue_clustering(nodes: list[Node], reduction_dimension: int) -> bool:
    """A layer needs more than reduction_dimension + 1 nodes to be reduced."""
    return len(nodes) > reduction_dimension + 1
