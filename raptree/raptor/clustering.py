"""UMAP dimensionality reduction and GMM clustering for RAPTOR.

## RAG Theory: Why UMAP + GMM?

RAPTOR uses a two-stage clustering approach:

1. **UMAP Reduction**: High-dimensional embeddings (1536 dims for ada-002)
   are difficult for a GMM to cluster. Vectors are unit-normalized so that
   Euclidean distance tracks cosine distance, then UMAP reduces them to ~10
   dimensions while preserving local and global structure.

2. **GMM Clustering**: A Gaussian mixture gives soft assignments, so a node
   can join every cluster whose responsibility exceeds the threshold.

3. **BIC for K Selection**: Mixtures with 1..min(50, n-1) components are
   fitted and the lowest BIC wins (first minimum on ties).

4. **Token-bounded clusters**: A cluster whose members' text exceeds
   max_length_in_cluster tokens is clustered again on its own, which bounds
   the input of every summary.

## Library Usage

- umap-learn: UMAP dimensionality reduction
- raptor.gmm: EM-fitted Gaussian mixture with BIC

## Data Flow

1. Input: Nodes of one layer + the name of the authoritative embedding
2. UMAP reduction: d -> min(reduction_dimension, n - 2) dimensions
3. BIC search: optimal number of components K
4. GMM soft assignment (orphans go to their most likely component)
5. Re-cluster over-long clusters (bounded depth)
6. Output: list of node clusters
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional

import numpy as np

from raptree.config import (
    RAPTOR_CLUSTER_THRESHOLD,
    RAPTOR_MAX_CLUSTERS,
    RAPTOR_MAX_RECLUSTER_DEPTH,
    RAPTOR_MAX_TOKENS_PER_CLUSTER,
    RAPTOR_MIN_RECLUSTER_SIZE,
    RAPTOR_RANDOM_SEED,
    RAPTOR_REDUCTION_DIMENSION,
    RAPTOR_UMAP_METRIC,
    RAPTOR_UMAP_MIN_DIST,
)
from raptree.shared.files import setup_logging
from raptree.shared.tokens import get_default_tokenizer
from raptree.raptor.exceptions import InsufficientDataError
from raptree.raptor.gmm import GaussianMixture
from raptree.raptor.schemas import Node
from raptree.raptor.utils import TokenCounter, get_embeddings, normalize_embeddings

logger = setup_logging(__name__)

Reducer = Callable[[np.ndarray, int], np.ndarray]


def reduce_dimensions(
    embeddings: np.ndarray,
    n_components: int,
    n_neighbors: Optional[int] = None,
    min_dist: float = RAPTOR_UMAP_MIN_DIST,
    metric: str = RAPTOR_UMAP_METRIC,
    random_state: int = RAPTOR_RANDOM_SEED,
) -> np.ndarray:
    """Apply UMAP dimensionality reduction to unit-normalized embeddings.

    Uses dynamic n_neighbors like the RAPTOR paper: sqrt(n-1), clamped to
    [2, n-1]. For small sample sizes (< 15), uses random initialization
    instead of spectral to avoid scipy sparse matrix errors.

    Args:
        embeddings: Input embeddings array of shape (n_samples, embedding_dim).
        n_components: Target dimensionality.
        n_neighbors: UMAP neighborhood size; None means floor(sqrt(n-1)).
        min_dist: UMAP minimum distance parameter.
        metric: Distance metric in the normalized space.
        random_state: Random seed for reproducibility.

    Returns:
        Reduced embeddings of shape (n_samples, n_components), input order.

    Raises:
        InsufficientDataError: If there are fewer than 3 samples.
    """
    # Lazy import to avoid loading UMAP unless needed
    from umap import UMAP

    embeddings = np.asarray(embeddings, dtype=float)
    n_samples = embeddings.shape[0]

    if n_samples < 3:
        raise InsufficientDataError(n_samples, 3)
    if n_components < 1:
        raise ValueError(f"n_components must be >= 1, got {n_components}")

    if n_neighbors is None:
        n_neighbors = int((n_samples - 1) ** 0.5)
    effective_neighbors = max(2, min(n_neighbors, n_samples - 1))

    # Spectral layout fails with scipy sparse matrix when k >= N
    init_method = "random" if n_samples < 15 else "spectral"

    logger.info(
        f"UMAP: {embeddings.shape[1]} dims -> {n_components} dims "
        f"(n_neighbors={effective_neighbors}, init={init_method})"
    )

    reducer = UMAP(
        n_neighbors=effective_neighbors,
        n_components=n_components,
        min_dist=min_dist,
        metric=metric,
        random_state=random_state,
        init=init_method,
    )
    return np.asarray(reducer.fit_transform(normalize_embeddings(embeddings)))


def standardize(embeddings: np.ndarray) -> np.ndarray:
    """Zero mean, unit variance per dimension (constant dimensions only centred)."""
    embeddings = np.asarray(embeddings, dtype=float)
    centred = embeddings - embeddings.mean(axis=0)
    std = embeddings.std(axis=0)
    return centred / np.where(std > 0, std, 1.0)


def get_optimal_clusters(
    embeddings: np.ndarray,
    max_clusters: int = RAPTOR_MAX_CLUSTERS,
    random_state: int = RAPTOR_RANDOM_SEED,
) -> int:
    """Find optimal cluster count using Bayesian Information Criterion (BIC).

    Tests component counts 1..min(max_clusters, n_samples - 1) and returns
    the one with the lowest BIC (first minimum on ties).
    """
    n_samples = len(embeddings)
    candidates = list(range(1, min(max_clusters, n_samples - 1) + 1))
    if not candidates:
        return 1

    bics = [
        GaussianMixture(n_components=n, random_state=random_state)
        .fit(embeddings)
        .bic(embeddings)
        for n in candidates
    ]
    optimal = candidates[int(np.argmin(bics))]
    logger.info(f"BIC search: K from 1 to {candidates[-1]}, optimal K={optimal}")
    return optimal


class ClusteringAlgorithm(ABC):
    """Strategy that groups one layer's nodes into clusters to summarize."""

    @abstractmethod
    def perform_clustering(
        self,
        nodes: list[Node],
        embedding_model_name: str,
        max_length_in_cluster: int = RAPTOR_MAX_TOKENS_PER_CLUSTER,
        tokenizer: Optional[TokenCounter] = None,
        reduction_dimension: int = RAPTOR_REDUCTION_DIMENSION,
        threshold: float = RAPTOR_CLUSTER_THRESHOLD,
        verbose: bool = False,
    ) -> list[list[Node]]:
        ...


class RAPTORClustering(ClusteringAlgorithm):
    """UMAP + BIC-selected GMM clustering with token-bounded re-clustering.

    Args:
        reducer: Callable (embeddings, n_components) -> reduced embeddings.
            Defaults to reduce_dimensions (UMAP).
        max_clusters: Upper bound of the BIC search.
        max_depth: Re-clustering depth after which clusters are kept whole.
        random_state: Seed shared by every mixture fit.
    """

    def __init__(
        self,
        reducer: Optional[Reducer] = None,
        max_clusters: int = RAPTOR_MAX_CLUSTERS,
        max_depth: int = RAPTOR_MAX_RECLUSTER_DEPTH,
        random_state: int = RAPTOR_RANDOM_SEED,
    ):
        self.reducer = reducer or reduce_dimensions
        self.max_clusters = max_clusters
        self.max_depth = max_depth
        self.random_state = random_state

    def perform_clustering(
        self,
        nodes: list[Node],
        embedding_model_name: str,
        max_length_in_cluster: int = RAPTOR_MAX_TOKENS_PER_CLUSTER,
        tokenizer: Optional[TokenCounter] = None,
        reduction_dimension: int = RAPTOR_REDUCTION_DIMENSION,
        threshold: float = RAPTOR_CLUSTER_THRESHOLD,
        verbose: bool = False,
        depth: int = 0,
    ) -> list[list[Node]]:
        """Cluster nodes, re-clustering any cluster over the token limit.

        Raises:
            MissingEmbeddingError: If a node lacks the named embedding.
            InsufficientDataError: If fewer than 3 nodes are given.
        """
        tokenizer = tokenizer or get_default_tokenizer()
        embeddings = np.asarray(get_embeddings(nodes, embedding_model_name), dtype=float)

        if len(nodes) < 3:
            raise InsufficientDataError(len(nodes), 3)

        labels, n_clusters = self._soft_cluster(embeddings, reduction_dimension, threshold)

        if n_clusters == 1 and depth > 0:
            # Nothing separated this subset; keep it whole
            return [list(nodes)]

        node_clusters: list[list[Node]] = []
        for label in range(n_clusters):
            cluster_nodes = [node for node, node_labels in zip(nodes, labels) if label in node_labels]
            if not cluster_nodes:
                continue

            if len(cluster_nodes) == 1:
                node_clusters.append(cluster_nodes)
                continue

            total_length = sum(tokenizer.count_tokens(node.text) for node in cluster_nodes)
            if total_length <= max_length_in_cluster:
                node_clusters.append(cluster_nodes)
                continue

            if not self._can_recluster(cluster_nodes, depth):
                logger.warning(
                    f"Keeping cluster of {len(cluster_nodes)} nodes ({total_length} tokens) "
                    f"above limit {max_length_in_cluster}: cannot split further at depth {depth}"
                )
                node_clusters.append(cluster_nodes)
                continue

            if verbose:
                logger.info(
                    f"Reclustering cluster with {len(cluster_nodes)} nodes ({total_length} tokens)"
                )
            node_clusters.extend(
                self.perform_clustering(
                    cluster_nodes,
                    embedding_model_name,
                    max_length_in_cluster=max_length_in_cluster,
                    tokenizer=tokenizer,
                    reduction_dimension=reduction_dimension,
                    threshold=threshold,
                    verbose=verbose,
                    depth=depth + 1,
                )
            )

        return node_clusters

    def _soft_cluster(
        self,
        embeddings: np.ndarray,
        reduction_dimension: int,
        threshold: float,
    ) -> tuple[list[set[int]], int]:
        """Reduce, pick K, fit and return per-node component sets."""
        n_components = min(reduction_dimension, len(embeddings) - 2)
        reduced = standardize(self.reducer(embeddings, n_components))

        n_clusters = get_optimal_clusters(
            reduced, max_clusters=self.max_clusters, random_state=self.random_state
        )
        gm = GaussianMixture(n_components=n_clusters, random_state=self.random_state)
        probabilities = gm.fit(reduced).predict_proba(reduced)

        labels = [set(np.flatnonzero(prob > threshold).tolist()) for prob in probabilities]

        orphans = [i for i, node_labels in enumerate(labels) if not node_labels]
        if orphans:
            logger.info(
                f"Assigning {len(orphans)} node(s) below threshold {threshold} "
                f"to their most likely cluster"
            )
            for i in orphans:
                labels[i] = {int(probabilities[i].argmax())}

        return labels, n_clusters

    def _can_recluster(self, cluster_nodes: list[Node], depth: int) -> bool:
        return len(cluster_nodes) >= RAPTOR_MIN_RECLUSTER_SIZE and depth < self.max_depth
