"""Dataclass schemas for the RAPTOR tree.

## RAG Theory: RAPTOR Data Model

RAPTOR builds a hierarchical tree where:
- Layer 0: Leaf nodes (token-bounded chunks of the input text)
- Layer 1+: Summary nodes (summaries of clustered nodes from the layer below)

Each node contains:
- Content: text
- Identity: an index unique within the tree, never reused
- Tree structure: child indices (empty for leaves)
- Embeddings: one vector per embedding model name

The clustering is not required to converge to a single root, so the
"roots" of a tree are simply the nodes of the last layer built.

## Persisted Schema

`Tree.to_dict()` produces a JSON-compatible object:
    allNodes / rootNodes / leafNodes: list of [index, node] pairs
    numLayers: int
    layerToNodes: list of [layer, [node, ...]] pairs
where each node is {"text", "index", "children", "embeddings"}.
`Tree.from_dict()` resolves every referenced node through allNodes, so the
four maps share the same Node objects after loading.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from raptree.raptor.exceptions import TreeFormatError

Embeddings = dict[str, list[float]]


@dataclass(frozen=True)
class Node:
    """Single node in the tree (leaf chunk or summary).

    Attributes:
        text: Node content (raw chunk for leaves, summary otherwise).
        index: Unique identifier within the tree.
        children: Indices of the nodes this one summarizes.
        embeddings: Mapping from embedding model name to vector.
    """

    text: str
    index: int
    children: frozenset[int] = field(default_factory=frozenset)
    embeddings: Embeddings = field(default_factory=dict, hash=False)

    @property
    def is_leaf(self) -> bool:
        return not self.children

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "index": self.index,
            "children": sorted(self.children),
            "embeddings": {
                name: [float(value) for value in vector]
                for name, vector in self.embeddings.items()
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Node":
        return cls(
            text=data["text"],
            index=int(data["index"]),
            children=frozenset(int(child) for child in data.get("children", [])),
            embeddings={
                name: [float(value) for value in vector]
                for name, vector in data.get("embeddings", {}).items()
            },
        )


@dataclass(frozen=True)
class Tree:
    """Immutable snapshot of the hierarchy after construction.

    Attributes:
        all_nodes: Every node keyed by index (leaves and all layers).
        root_nodes: Nodes of the last layer built, keyed by index.
        leaf_nodes: Layer-0 nodes keyed by index.
        num_layers: Number of layers built above the leaves.
        layer_to_nodes: Layer number to its ordered node list (0 = leaves).
    """

    all_nodes: dict[int, Node]
    root_nodes: dict[int, Node]
    leaf_nodes: dict[int, Node]
    num_layers: int
    layer_to_nodes: dict[int, list[Node]]

    def to_dict(self) -> dict[str, Any]:
        """Convert to the persisted schema for JSON serialization."""
        return {
            "allNodes": _serialize_node_map(self.all_nodes),
            "rootNodes": _serialize_node_map(self.root_nodes),
            "leafNodes": _serialize_node_map(self.leaf_nodes),
            "numLayers": self.num_layers,
            "layerToNodes": [
                [layer, [node.to_dict() for node in nodes]]
                for layer, nodes in sorted(self.layer_to_nodes.items())
            ],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Tree":
        """Rebuild a tree from the persisted schema.

        Raises:
            TreeFormatError: If a key or entry is malformed, or an index
                referenced by rootNodes, leafNodes or layerToNodes is absent
                from allNodes.
        """
        try:
            all_nodes = {
                int(index): Node.from_dict(node_data)
                for index, node_data in data["allNodes"]
            }

            for index, node in all_nodes.items():
                if index != node.index:
                    raise TreeFormatError(
                        f"Key {index} does not match node index {node.index}"
                    )

            def resolve(index: Any, where: str) -> Node:
                index = int(index)
                if index not in all_nodes:
                    raise TreeFormatError(f"{where} references unknown node {index}")
                return all_nodes[index]

            return cls(
                all_nodes=all_nodes,
                root_nodes={
                    int(index): resolve(index, "rootNodes")
                    for index, _ in data["rootNodes"]
                },
                leaf_nodes={
                    int(index): resolve(index, "leafNodes")
                    for index, _ in data["leafNodes"]
                },
                num_layers=int(data["numLayers"]),
                layer_to_nodes={
                    int(layer): [
                        resolve(node_data["index"], f"layerToNodes[{layer}]")
                        for node_data in nodes
                    ]
                    for layer, nodes in data["layerToNodes"]
                },
            )
        except TreeFormatError:
            raise
        except (KeyError, TypeError, ValueError) as e:
            raise TreeFormatError(f"Malformed tree data: {e}") from e


def _serialize_node_map(nodes: dict[int, Node]) -> list[list[Any]]:
    return [[index, node.to_dict()] for index, node in sorted(nodes.items())]


@dataclass
class TreeMetadata:
    """Summary statistics for one tree build.

    Attributes:
        total_nodes: Total node count (leaves + summaries).
        leaf_count: Number of leaf nodes (layer 0).
        summary_count: Number of summary nodes (layer > 0).
        num_layers: Layers actually built above the leaves.
        build_time_seconds: Time to build the tree (including model calls).
        levels: Layer number to node count at that layer.
        clustering_seconds: Layer number to time spent clustering its input.
    """

    total_nodes: int = 0
    leaf_count: int = 0
    summary_count: int = 0
    num_layers: int = 0
    build_time_seconds: float = 0.0
    levels: dict[int, int] = field(default_factory=dict)
    clustering_seconds: dict[int, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for JSON serialization."""
        return {
            "total_nodes": self.total_nodes,
            "leaf_count": self.leaf_count,
            "summary_count": self.summary_count,
            "num_layers": self.num_layers,
            "build_time_seconds": round(self.build_time_seconds, 2),
            "levels": self.levels,
            "clustering_seconds": {
                layer: round(seconds, 3)
                for layer, seconds in self.clustering_seconds.items()
            },
        }


@dataclass
class RetrievalResult:
    """Nodes selected for a query and the context assembled from them.

    Attributes:
        nodes: Selected nodes in selection order.
        context: Node texts with newlines flattened, joined by blank lines.
        layer_information: Per node, {"node_index", "layer_number"}; the
            layer is None for nodes not present in the layer map.
    """

    nodes: list[Node]
    context: str
    layer_information: list[dict[str, Optional[int]]] = field(default_factory=list)
