"""Observability sink for tree construction.

The builder reports progress through a BuildObserver instead of printing.
LoggingBuildObserver is the default; pass another subclass in
TreeBuilderConfig.observer to collect the same events elsewhere.
"""

from raptree.shared.files import setup_logging
from raptree.raptor.schemas import TreeMetadata

logger = setup_logging(__name__)


class BuildObserver:
    """No-op base; override the hooks you need."""

    def clustering_finished(
        self, layer: int, input_nodes: int, clusters: int, seconds: float
    ) -> None:
        pass

    def layer_finished(self, layer: int, nodes: int, seconds: float) -> None:
        pass

    def build_finished(self, metadata: TreeMetadata) -> None:
        pass


class LoggingBuildObserver(BuildObserver):
    def clustering_finished(
        self, layer: int, input_nodes: int, clusters: int, seconds: float
    ) -> None:
        logger.info(
            f"Layer {layer}: clustered {input_nodes} nodes into {clusters} clusters "
            f"in {seconds:.2f}s"
        )

    def layer_finished(self, layer: int, nodes: int, seconds: float) -> None:
        logger.info(f"Layer {layer}: {nodes} nodes created in {seconds:.1f}s")

    def build_finished(self, metadata: TreeMetadata) -> None:
        logger.info(
            f"Tree complete: {metadata.total_nodes} nodes "
            f"({metadata.leaf_count} leaves, {metadata.summary_count} summaries), "
            f"{metadata.num_layers} layers, {metadata.build_time_seconds:.1f}s"
        )
