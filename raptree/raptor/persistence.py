"""JSON persistence for built trees.

Writes the persisted schema produced by Tree.to_dict() and reads it back
through Tree.from_dict(), so children come back as sets and every node map
points at the same Node objects.
"""

from pathlib import Path
from typing import Union

from raptree.shared.files import read_json, setup_logging, write_json
from raptree.raptor.exceptions import TreeFormatError
from raptree.raptor.schemas import Tree

logger = setup_logging(__name__)


def save_tree(tree: Tree, output_path: Union[str, Path]) -> Path:
    """Save a tree as JSON; returns the written path."""
    path = write_json(tree.to_dict(), output_path)
    logger.info(f"Tree with {len(tree.all_nodes)} nodes saved to {path}")
    return path


def load_tree(input_path: Union[str, Path]) -> Tree:
    """Load a tree saved with save_tree.

    Raises:
        FileNotFoundError: If the file does not exist.
        TreeFormatError: If the content is not a valid persisted tree.
    """
    data = read_json(input_path)
    if not isinstance(data, dict):
        raise TreeFormatError(f"Expected a JSON object in {input_path}")
    tree = Tree.from_dict(data)
    logger.info(f"Loaded tree with {len(tree.all_nodes)} nodes from {input_path}")
    return tree
