"""raptree: recursively summarized retrieval trees (RAPTOR) over text."""

__version__ = "0.1.0"
