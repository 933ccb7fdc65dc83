"""Distance, selection and text-splitting helpers for RAPTOR.

## Data Flow

- split_text: raw text -> token-bounded chunks (leaf texts)
- get_embeddings / distances_from_embeddings: node vectors -> query distances
- indices_of_nearest_neighbors_from_distances: distances -> stable ranking
- get_text: selected nodes -> context string
"""

import re
import warnings
from typing import Protocol, Sequence

import numpy as np

from raptree.config import CLAUSE_DELIMITERS_PATTERN, SENTENCE_DELIMITERS
from raptree.raptor.exceptions import MissingEmbeddingError, NumericDegeneracyWarning
from raptree.raptor.schemas import Node


class TokenCounter(Protocol):
    def count_tokens(self, text: str) -> int: ...


def reverse_mapping(layer_to_nodes: dict[int, list[Node]]) -> dict[int, int]:
    """Map each node index to the layer it was built in."""
    node_to_layer = {}
    for layer, nodes in layer_to_nodes.items():
        for node in nodes:
            node_to_layer[node.index] = layer
    return node_to_layer


def split_text(
    text: str,
    tokenizer: TokenCounter,
    max_tokens: int,
    overlap: int = 0,
) -> list[str]:
    """Split text into chunks of at most max_tokens tokens.

    Sentences (split on ".", "!", "?" and newlines) are accumulated greedily.
    A sentence that alone exceeds max_tokens is split again on ",", ";" and
    ":" and its clauses are packed into chunks of their own. When a chunk is
    closed the next one starts with the last `overlap` sentences (or clauses)
    of the previous chunk, dropping the oldest ones if they would not leave
    room for the next piece.

    Args:
        text: The text to be split.
        tokenizer: Anything with count_tokens(text) -> int.
        max_tokens: Token budget per chunk.
        overlap: Number of sentences carried over between chunks.

    Returns:
        List of chunk strings in document order.
    """
    regex_pattern = "|".join(map(re.escape, SENTENCE_DELIMITERS))
    sentences = [s.strip() for s in re.split(regex_pattern, text)]
    sentences = [s for s in sentences if s]

    packer = _ChunkPacker(max_tokens, overlap)

    for sentence in sentences:
        token_count = tokenizer.count_tokens(" " + sentence)

        if token_count <= max_tokens:
            packer.add(sentence, token_count)
            continue

        # Clauses of an over-long sentence never share a chunk with other sentences
        packer.close()
        sub_sentences = [
            sub.strip() for sub in re.split(CLAUSE_DELIMITERS_PATTERN, sentence)
        ]
        for sub_sentence in filter(None, sub_sentences):
            packer.add(sub_sentence, tokenizer.count_tokens(" " + sub_sentence))
        packer.close()

    packer.close()
    return packer.chunks


class _ChunkPacker:
    """Greedy accumulator of (text, token_count) parts with sentence overlap."""

    def __init__(self, max_tokens: int, overlap: int):
        self.max_tokens = max_tokens
        self.overlap = overlap
        self.chunks: list[str] = []
        self.current: list[tuple[str, int]] = []
        # True while current holds parts not yet written to a chunk
        self.pending = False

    def add(self, part: str, token_count: int) -> None:
        if self.pending and _length(self.current) + token_count > self.max_tokens:
            self.close()
        # Carried parts must leave room for the new one
        while self.current and _length(self.current) + token_count > self.max_tokens:
            self.current.pop(0)
        self.current.append((part, token_count))
        self.pending = True

    def close(self) -> None:
        if not self.pending:
            return
        self.chunks.append(_join(self.current))
        self.current = _carry_over(self.current, self.overlap)
        self.pending = False


def _join(parts: list[tuple[str, int]]) -> str:
    return " ".join(part for part, _ in parts)


def _length(parts: list[tuple[str, int]]) -> int:
    return sum(count for _, count in parts)


def _carry_over(parts: list[tuple[str, int]], overlap: int) -> list[tuple[str, int]]:
    return list(parts[-overlap:]) if overlap > 0 else []


def cosine_distance(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine distance 1 - cos(a, b); 1.0 when either vector has zero norm."""
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        warnings.warn(
            "Zero-norm vector in cosine distance, using maximal distance 1.0",
            NumericDegeneracyWarning,
            stacklevel=2,
        )
        return 1.0
    return float(1.0 - np.dot(a, b) / (norm_a * norm_b))


def distances_from_embeddings(
    query_embedding: Sequence[float],
    embeddings: Sequence[Sequence[float]],
    distance_metric: str = "cosine",
) -> list[float]:
    """
    Calculates the distances between a query embedding and a list of embeddings.

    Args:
        query_embedding: The query embedding.
        embeddings: Embeddings to compare against the query, in order.
        distance_metric: One of "cosine", "L1", "L2", "Linf".

    Returns:
        One distance per embedding, same order as the input.
    """
    distance_metrics = {
        "cosine": cosine_distance,
        "L1": lambda a, b: float(np.sum(np.abs(np.subtract(a, b)))),
        "L2": lambda a, b: float(np.linalg.norm(np.subtract(a, b))),
        "Linf": lambda a, b: float(np.max(np.abs(np.subtract(a, b)))),
    }

    if distance_metric not in distance_metrics:
        raise ValueError(
            f"Unsupported distance metric '{distance_metric}'. "
            f"Supported metrics are: {list(distance_metrics.keys())}"
        )

    metric = distance_metrics[distance_metric]
    return [metric(query_embedding, embedding) for embedding in embeddings]


def indices_of_nearest_neighbors_from_distances(distances: Sequence[float]) -> list[int]:
    """Indices sorted by ascending distance; ties keep their input order."""
    return np.argsort(np.asarray(distances, dtype=float), kind="stable").tolist()


def normalize_embeddings(embeddings: np.ndarray) -> np.ndarray:
    """Scale each row to unit length; zero rows are left as they are."""
    embeddings = np.asarray(embeddings, dtype=float)
    norms = np.linalg.norm(embeddings, axis=1, keepdims=True)
    zero_rows = (norms == 0).ravel()
    if zero_rows.any():
        warnings.warn(
            f"{int(zero_rows.sum())} zero-norm embedding(s) left unnormalized",
            NumericDegeneracyWarning,
            stacklevel=2,
        )
    safe_norms = np.where(norms == 0, 1.0, norms)
    return embeddings / safe_norms


def get_node_list(node_dict: dict[int, Node]) -> list[Node]:
    """Nodes of a dict sorted by ascending index."""
    return [node_dict[index] for index in sorted(node_dict.keys())]


def get_embeddings(
    node_list: list[Node],
    embedding_model: str,
    stage: str = "clustering",
) -> list[list[float]]:
    """
    Extracts the named embedding from every node.

    Raises:
        MissingEmbeddingError: If a node lacks the embedding.
    """
    embeddings = []
    for node in node_list:
        if embedding_model not in node.embeddings:
            raise MissingEmbeddingError(node.index, embedding_model, stage=stage)
        embeddings.append(node.embeddings[embedding_model])
    return embeddings


def get_children(node_list: list[Node]) -> list[frozenset[int]]:
    return [node.children for node in node_list]


def get_text(node_list: list[Node]) -> str:
    """Concatenate node texts, newlines flattened, separated by blank lines."""
    return "\n\n".join(" ".join(node.text.splitlines()) for node in node_list)
