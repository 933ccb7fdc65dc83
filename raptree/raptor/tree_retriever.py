"""Context retrieval over a built RAPTOR tree.

## Query Strategies (Paper Section 2.3)

1. **Collapsed Tree** (default): Flattens all nodes into a single pool,
   ranks them by distance to the query and adds them in order until the
   token budget would be exceeded. The first node that does not fit ends
   the selection; later, smaller nodes are not considered.

2. **Tree Traversal**: Starts at start_layer and walks down num_layers
   layers. At each layer the best nodes are kept (top-k, or every node with
   similarity above the threshold) and the next candidates are their
   children.

Threshold selection compares similarity (1 - cosine distance) against the
threshold, so a higher threshold keeps fewer, closer nodes.
"""

from dataclasses import dataclass
from typing import Optional

from raptree.config import (
    DEFAULT_EMBEDDING_MODEL_NAME,
    RETRIEVER_MAX_TOKENS,
    RETRIEVER_SELECTION_MODE,
    RETRIEVER_THRESHOLD,
    RETRIEVER_TOP_K,
    SELECTION_MODES,
)
from raptree.shared.files import setup_logging
from raptree.shared.tokens import get_default_tokenizer
from raptree.raptor.exceptions import MissingLayerError
from raptree.raptor.models import BaseEmbeddingModel
from raptree.raptor.schemas import Node, RetrievalResult, Tree
from raptree.raptor.utils import (
    TokenCounter,
    distances_from_embeddings,
    get_embeddings,
    get_node_list,
    get_text,
    indices_of_nearest_neighbors_from_distances,
    reverse_mapping,
)

logger = setup_logging(__name__)


@dataclass
class TreeRetrieverConfig:
    """Settings for TreeRetriever.

    Attributes:
        embedding_model: Capability used to embed queries.
        context_embedding_model: Node embedding name used for scoring.
        tokenizer: Token counter for the context budget.
        threshold: Similarity cutoff for selection_mode="threshold".
        top_k: Nodes kept per layer (traversal) or considered (collapsed).
        selection_mode: "top_k" or "threshold".
        num_layers: Layers to traverse; None means tree.num_layers + 1.
        start_layer: Traversal start layer; None means the top layer.
    """

    embedding_model: Optional[BaseEmbeddingModel] = None
    context_embedding_model: str = DEFAULT_EMBEDDING_MODEL_NAME
    tokenizer: Optional[TokenCounter] = None
    threshold: float = RETRIEVER_THRESHOLD
    top_k: int = RETRIEVER_TOP_K
    selection_mode: str = RETRIEVER_SELECTION_MODE
    num_layers: Optional[int] = None
    start_layer: Optional[int] = None

    def __post_init__(self):
        if not isinstance(self.embedding_model, BaseEmbeddingModel):
            raise ValueError("embedding_model must be an instance of BaseEmbeddingModel")

        if not isinstance(self.context_embedding_model, str):
            raise ValueError("context_embedding_model must be a string")

        if isinstance(self.threshold, int):
            self.threshold = float(self.threshold)
        if not isinstance(self.threshold, float) or not (0 <= self.threshold <= 1):
            raise ValueError("threshold must be a float between 0 and 1")

        if not isinstance(self.top_k, int) or self.top_k < 1:
            raise ValueError("top_k must be an integer and at least 1")

        if self.selection_mode not in SELECTION_MODES:
            raise ValueError(f"selection_mode must be one of {SELECTION_MODES}")

        if self.num_layers is not None:
            if not isinstance(self.num_layers, int) or self.num_layers < 0:
                raise ValueError("num_layers must be an integer and at least 0")

        if self.start_layer is not None:
            if not isinstance(self.start_layer, int) or self.start_layer < 0:
                raise ValueError("start_layer must be an integer and at least 0")

        if self.tokenizer is None:
            self.tokenizer = get_default_tokenizer()

    def log_config(self) -> str:
        return f"""
        TreeRetrieverConfig:
            Tokenizer: {self.tokenizer}
            Threshold: {self.threshold}
            Top K: {self.top_k}
            Selection Mode: {self.selection_mode}
            Context Embedding Model: {self.context_embedding_model}
            Embedding Model: {self.embedding_model}
            Num Layers: {self.num_layers}
            Start Layer: {self.start_layer}
        """


class TreeRetriever:
    """Read-only retrieval over one Tree; safe to share across queries."""

    def __init__(self, config: TreeRetrieverConfig, tree: Tree) -> None:
        if not isinstance(tree, Tree):
            raise ValueError("tree must be an instance of Tree")

        if config.num_layers is not None and config.num_layers > tree.num_layers + 1:
            raise ValueError(
                "num_layers in config must be less than or equal to tree.num_layers + 1"
            )

        if config.start_layer is not None and config.start_layer > tree.num_layers:
            raise ValueError(
                "start_layer in config must be less than or equal to tree.num_layers"
            )

        self.tree = tree
        self.num_layers = (
            config.num_layers if config.num_layers is not None else tree.num_layers + 1
        )
        self.start_layer = (
            config.start_layer if config.start_layer is not None else tree.num_layers
        )

        if self.num_layers > self.start_layer + 1:
            raise ValueError("num_layers must be less than or equal to start_layer + 1")

        self.tokenizer = config.tokenizer
        self.top_k = config.top_k
        self.threshold = config.threshold
        self.selection_mode = config.selection_mode
        self.embedding_model = config.embedding_model
        self.context_embedding_model = config.context_embedding_model

        self.tree_node_index_to_layer = reverse_mapping(self.tree.layer_to_nodes)

        logger.info(
            f"Successfully initialized TreeRetriever with Config {config.log_config()}"
        )

    def create_embedding(self, text: str) -> list[float]:
        return self.embedding_model.create_embedding(text)

    def retrieve_information_collapse_tree(
        self, query: str, top_k: int, max_tokens: int
    ) -> tuple[list[Node], str]:
        """
        Retrieves the most relevant nodes from the whole tree, within a token budget.

        Args:
            query: The query text.
            top_k: Number of nearest nodes considered.
            max_tokens: Token budget for the selected nodes' text.

        Returns:
            Tuple of (selected nodes, context text).
        """
        query_embedding = self.create_embedding(query)

        node_list = get_node_list(self.tree.all_nodes)
        embeddings = get_embeddings(node_list, self.context_embedding_model, stage="retrieval")
        distances = distances_from_embeddings(query_embedding, embeddings)
        indices = indices_of_nearest_neighbors_from_distances(distances)

        selected_nodes = []
        total_tokens = 0
        for idx in indices[:top_k]:
            node = node_list[idx]
            node_tokens = self.tokenizer.count_tokens(node.text)

            if total_tokens + node_tokens > max_tokens:
                break

            selected_nodes.append(node)
            total_tokens += node_tokens

        return selected_nodes, get_text(selected_nodes)

    def retrieve_information(
        self, current_nodes: list[Node], query: str, num_layers: int, top_k: Optional[int] = None
    ) -> tuple[list[Node], str]:
        """
        Walks down the tree from current_nodes, keeping the best nodes per layer.

        Args:
            current_nodes: Candidate nodes of the start layer.
            query: The query text.
            num_layers: Number of layers to visit.
            top_k: Nodes kept per layer in top_k mode; defaults to config.

        Returns:
            Tuple of (selected nodes across all visited layers, context text).
        """
        top_k = top_k or self.top_k
        query_embedding = self.create_embedding(query)

        selected_nodes = []
        node_list = current_nodes

        for layer in range(num_layers):
            if not node_list:
                break

            embeddings = get_embeddings(node_list, self.context_embedding_model, stage="retrieval")
            distances = distances_from_embeddings(query_embedding, embeddings)
            indices = indices_of_nearest_neighbors_from_distances(distances)

            if self.selection_mode == "threshold":
                best_indices = [
                    index for index in indices if 1 - distances[index] > self.threshold
                ]
            else:
                best_indices = indices[:top_k]

            nodes_to_add = [node_list[idx] for idx in best_indices]
            selected_nodes.extend(nodes_to_add)

            if layer != num_layers - 1:
                child_nodes = set()
                for node in nodes_to_add:
                    child_nodes.update(node.children)

                # Unknown child indices are skipped
                node_list = [
                    self.tree.all_nodes[i] for i in sorted(child_nodes) if i in self.tree.all_nodes
                ]

        return selected_nodes, get_text(selected_nodes)

    def retrieve(
        self,
        query: str,
        start_layer: Optional[int] = None,
        num_layers: Optional[int] = None,
        top_k: Optional[int] = None,
        max_tokens: int = RETRIEVER_MAX_TOKENS,
        collapse_tree: bool = True,
    ) -> RetrievalResult:
        """
        Queries the tree and returns the selected nodes and their context.

        Args:
            query: The query text.
            start_layer: Traversal start layer (defaults to config).
            num_layers: Layers to traverse (defaults to config).
            top_k: Nodes considered/kept (defaults to config).
            max_tokens: Token budget for collapsed-tree retrieval.
            collapse_tree: Collapsed-tree search if True, else layer traversal.

        Returns:
            RetrievalResult with nodes, context and per-node layer numbers.

        Raises:
            ValueError: On invalid start_layer/num_layers/top_k/max_tokens.
            MissingLayerError: If start_layer has no nodes in the tree.
            MissingEmbeddingError: If a node lacks the scoring embedding.
        """
        if not isinstance(query, str):
            raise ValueError("query must be a string")

        if not isinstance(max_tokens, int) or max_tokens < 1:
            raise ValueError("max_tokens must be an integer and at least 1")

        top_k = self.top_k if top_k is None else top_k
        if not isinstance(top_k, int) or top_k < 1:
            raise ValueError("top_k must be an integer and at least 1")

        if collapse_tree:
            logger.info("Using collapsed_tree")
            selected_nodes, context = self.retrieve_information_collapse_tree(
                query, top_k, max_tokens
            )
        else:
            start_layer = self.start_layer if start_layer is None else start_layer
            num_layers = self.num_layers if num_layers is None else num_layers

            if not isinstance(start_layer, int) or start_layer < 0:
                raise ValueError("start_layer must be an integer and at least 0")
            if not isinstance(num_layers, int) or num_layers < 1:
                raise ValueError("num_layers must be an integer and at least 1")
            if num_layers > start_layer + 1:
                raise ValueError("num_layers must be less than or equal to start_layer + 1")

            layer_nodes = self.tree.layer_to_nodes.get(start_layer)
            if layer_nodes is None:
                raise MissingLayerError(start_layer)

            selected_nodes, context = self.retrieve_information(
                layer_nodes, query, num_layers, top_k=top_k
            )

        layer_information = [
            {
                "node_index": node.index,
                "layer_number": self.tree_node_index_to_layer.get(node.index),
            }
            for node in selected_nodes
        ]
        return RetrievalResult(
            nodes=selected_nodes, context=context, layer_information=layer_information
        )
