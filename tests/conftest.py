import hashlib

import pytest

from raptree.raptor.clustering import ClusteringAlgorithm
from raptree.raptor.models import BaseEmbeddingModel, BaseQAModel, BaseSummarizationModel
from raptree.raptor.observer import BuildObserver
from raptree.raptor.schemas import Node, Tree


class WordTokenizer:
    """One token per whitespace-separated word."""

    def count_tokens(self, text: str) -> int:
        return len(text.split())


class HashEmbeddingModel(BaseEmbeddingModel):
    """Deterministic 8-dim embedding derived from a hash of the text."""

    def __init__(self):
        self.calls = []

    def create_embedding(self, text: str) -> list[float]:
        self.calls.append(text)
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [byte / 255 + 0.01 for byte in digest[:8]]


class LookupEmbeddingModel(BaseEmbeddingModel):
    """Returns fixed vectors for known texts."""

    def __init__(self, vectors: dict[str, list[float]]):
        self.vectors = vectors

    def create_embedding(self, text: str) -> list[float]:
        return self.vectors[text]


class FailingEmbeddingModel(BaseEmbeddingModel):
    def __init__(self, fail_on: str):
        self.fail_on = fail_on

    def create_embedding(self, text: str) -> list[float]:
        if self.fail_on in text:
            raise RuntimeError("rate limited")
        return [1.0, 0.5]


class RecordingSummarizer(BaseSummarizationModel):
    def __init__(self):
        self.calls = []

    def summarize(self, context: str, max_tokens: int = 150) -> str:
        self.calls.append((context, max_tokens))
        return "summary of " + " ".join(context.split())


class FailingSummarizer(BaseSummarizationModel):
    def summarize(self, context: str, max_tokens: int = 150) -> str:
        raise RuntimeError("provider unavailable")


class EchoQAModel(BaseQAModel):
    def __init__(self):
        self.calls = []

    def answer_question(self, context: str, question: str) -> str:
        self.calls.append((context, question))
        return f"answer to {question}"


class PairClustering(ClusteringAlgorithm):
    """Groups consecutive nodes in pairs (the last group may be a single)."""

    def __init__(self):
        self.calls = []

    def perform_clustering(self, nodes, embedding_model_name, max_length_in_cluster=3500,
                           tokenizer=None, reduction_dimension=10, threshold=0.1,
                           verbose=False):
        self.calls.append((len(nodes), embedding_model_name, reduction_dimension, threshold))
        return [list(nodes[i:i + 2]) for i in range(0, len(nodes), 2)]


class RecordingObserver(BuildObserver):
    def __init__(self):
        self.events = []

    def clustering_finished(self, layer, input_nodes, clusters, seconds):
        self.events.append(("clustering", layer, input_nodes, clusters))

    def layer_finished(self, layer, nodes, seconds):
        self.events.append(("layer", layer, nodes))

    def build_finished(self, metadata):
        self.events.append(("build", metadata.total_nodes))


def words_text(n: int) -> str:
    """n one-word sentences: 'w0. w1. ...'."""
    return " ".join(f"w{i}." for i in range(n))


@pytest.fixture
def tokenizer():
    return WordTokenizer()


@pytest.fixture
def small_tree() -> Tree:
    """Two leaves under each of two summaries, 2-dim 'emb' embeddings.

    Layer 0: 0 "alpha one" [1, 0], 1 "alpha two" [0.9, 0.1],
             2 "beta one" [0, 1],  3 "beta\\ntwo" [0.1, 0.9]
    Layer 1: 4 "summary of alpha cluster here" {0, 1} [1, 0.05],
             5 "summary of beta cluster" {2, 3} [0.05, 1]
    """
    leaves = [
        Node("alpha one", 0, frozenset(), {"emb": [1.0, 0.0]}),
        Node("alpha two", 1, frozenset(), {"emb": [0.9, 0.1]}),
        Node("beta one", 2, frozenset(), {"emb": [0.0, 1.0]}),
        Node("beta\ntwo", 3, frozenset(), {"emb": [0.1, 0.9]}),
    ]
    parents = [
        Node("summary of alpha cluster here", 4, frozenset({0, 1}), {"emb": [1.0, 0.05]}),
        Node("summary of beta cluster", 5, frozenset({2, 3}), {"emb": [0.05, 1.0]}),
    ]
    all_nodes = {node.index: node for node in leaves + parents}
    return Tree(
        all_nodes=all_nodes,
        root_nodes={node.index: node for node in parents},
        leaf_nodes={node.index: node for node in leaves},
        num_layers=1,
        layer_to_nodes={0: leaves, 1: parents},
    )


@pytest.fixture
def query_model():
    return LookupEmbeddingModel(
        {
            "about alpha": [1.0, 0.0],
            "about beta": [0.0, 1.0],
        }
    )
