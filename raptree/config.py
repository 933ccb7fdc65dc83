"""Central configuration for raptree.

Contains:
- Tokenizer settings (token counting for chunking and budgets)
- Chunking parameters (token limits, overlap)
- Tree building defaults (layers, summary length, clustering)
- Mixture model settings (EM iterations, regularization)
- Retrieval defaults (top-k, threshold, token budget)
- Logging level
"""
import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from the .env file (next to this package)
load_dotenv(Path(__file__).parent / ".env")


# ============================================================================
# TOKENIZER SETTINGS
# ============================================================================

# Tokenizer model name (OpenAI compatible, resolved through tiktoken)
TOKENIZER_MODEL = os.getenv("RAPTREE_TOKENIZER_MODEL", "gpt-3.5-turbo")


# ============================================================================
# CHUNKING SETTINGS
# ============================================================================

RAPTOR_MAX_CHUNK_TOKENS = 100  # Leaf chunk size
RAPTOR_CHUNK_OVERLAP = 0  # Sentences carried into the next chunk (0 = no overlap)

# Sentence delimiters, then the secondary split for over-long sentences
SENTENCE_DELIMITERS = (".", "!", "?", "\n")
CLAUSE_DELIMITERS_PATTERN = r"[,;:]"


# ============================================================================
# TREE BUILDING SETTINGS
# ============================================================================
# RAPTOR: Recursive Abstractive Processing for Tree-Organized Retrieval
# Paper: arXiv:2401.18059 (ICLR 2024)

RAPTOR_NUM_LAYERS = 5  # Layers to attempt above the leaves
RAPTOR_SUMMARIZATION_LENGTH = 100  # Output token budget per summary

# Name under which the default embedding is stored on each node
DEFAULT_EMBEDDING_MODEL_NAME = "OpenAI"

# Thread pool size when use_multithreading is enabled
RAPTOR_MAX_WORKERS = 4

# Failure handling for external capabilities: "raise" or "degrade"
RAPTOR_EMBEDDING_FAILURE = "raise"
RAPTOR_SUMMARIZATION_FAILURE = "degrade"


# ============================================================================
# CLUSTERING SETTINGS
# ============================================================================

# UMAP dimensionality reduction parameters (from paper)
RAPTOR_REDUCTION_DIMENSION = 10  # Target dimensions for GMM
RAPTOR_UMAP_MIN_DIST = 0.0  # Tight clusters for GMM
RAPTOR_UMAP_METRIC = "euclidean"  # Inputs are unit-normalized first

# GMM clustering parameters
RAPTOR_MAX_CLUSTERS = 50  # Upper bound of the BIC search
RAPTOR_CLUSTER_THRESHOLD = 0.1  # Soft assignment threshold
RAPTOR_MAX_TOKENS_PER_CLUSTER = 3500  # Re-cluster above this summed length
RAPTOR_MAX_RECLUSTER_DEPTH = 8
RAPTOR_MIN_RECLUSTER_SIZE = 3
RAPTOR_RANDOM_SEED = 224


# ============================================================================
# MIXTURE MODEL SETTINGS
# ============================================================================

GMM_MAX_ITER = 100
GMM_TOL = 1e-3  # Log-likelihood improvement that counts as converged
GMM_REG_COVAR = 1e-6  # Added to covariance diagonals before inversion
GMM_MIN_DENSITY = 1e-10  # Density floor for degenerate components


# ============================================================================
# RETRIEVAL SETTINGS
# ============================================================================

RETRIEVER_TOP_K = 5
RETRIEVER_THRESHOLD = 0.5  # Similarity cutoff for selection_mode="threshold"
RETRIEVER_SELECTION_MODE = "top_k"  # "top_k" or "threshold"
RETRIEVER_MAX_TOKENS = 3500  # Context budget for collapsed-tree retrieval

SELECTION_MODES = ("top_k", "threshold")
FAILURE_MODES = ("raise", "degrade")


# ============================================================================
# LOGGING
# ============================================================================

LOG_LEVEL = os.getenv("RAPTREE_LOG_LEVEL", "INFO")
