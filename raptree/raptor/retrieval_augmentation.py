"""Retrieval augmentation facade: build a tree, retrieve, answer.

## Data Flow

1. add_documents(text): TreeBuilder.build_from_text -> Tree
2. retrieve(question): TreeRetriever over the current tree
3. answer_question(question): retrieve, then BaseQAModel.answer_question
4. save(path): persist the current tree as JSON
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from raptree.config import RETRIEVER_MAX_TOKENS
from raptree.shared.files import setup_logging
from raptree.raptor.exceptions import QuestionAnsweringError
from raptree.raptor.models import BaseQAModel
from raptree.raptor.persistence import load_tree, save_tree
from raptree.raptor.schemas import RetrievalResult, Tree
from raptree.raptor.tree_builder import TreeBuilder, TreeBuilderConfig
from raptree.raptor.tree_retriever import TreeRetriever, TreeRetrieverConfig

logger = setup_logging(__name__)


@dataclass
class RetrievalAugmentationConfig:
    """Settings for RetrievalAugmentation.

    Attributes:
        tree_builder_config: Builder settings (models, chunking, clustering).
        tree_retriever_config: Retriever settings (query model, selection).
        qa_model: Capability that answers a question from retrieved context.
    """

    tree_builder_config: TreeBuilderConfig
    tree_retriever_config: TreeRetrieverConfig
    qa_model: Optional[BaseQAModel] = None

    def __post_init__(self):
        if not isinstance(self.tree_builder_config, TreeBuilderConfig):
            raise ValueError("tree_builder_config must be an instance of TreeBuilderConfig")
        if not isinstance(self.tree_retriever_config, TreeRetrieverConfig):
            raise ValueError(
                "tree_retriever_config must be an instance of TreeRetrieverConfig"
            )
        if self.qa_model is not None and not isinstance(self.qa_model, BaseQAModel):
            raise ValueError("qa_model must be an instance of BaseQAModel")

    def log_config(self) -> str:
        return f"""
        RetrievalAugmentationConfig:
            {self.tree_builder_config.log_config()}
            {self.tree_retriever_config.log_config()}
            QA Model: {self.qa_model}
        """


class RetrievalAugmentation:
    """Builds a tree from documents and answers questions over it.

    Args:
        config: Builder, retriever and QA settings.
        tree: An existing Tree, or a path to a tree saved with save().
    """

    def __init__(
        self,
        config: RetrievalAugmentationConfig,
        tree: Optional[Union[Tree, str, Path]] = None,
    ):
        if isinstance(tree, (str, Path)):
            tree = load_tree(tree)
        elif tree is not None and not isinstance(tree, Tree):
            raise ValueError("tree must be an instance of Tree, a path, or None")

        self.config = config
        self.tree = tree
        self.tree_builder = TreeBuilder(config.tree_builder_config)
        self.tree_retriever_config = config.tree_retriever_config
        self.qa_model = config.qa_model
        self.retriever = TreeRetriever(self.tree_retriever_config, tree) if tree is not None else None

        logger.info(
            f"Successfully initialized RetrievalAugmentation with Config {config.log_config()}"
        )

    def add_documents(self, docs: str) -> Tree:
        """Build a new tree from docs, replacing any existing one."""
        if self.tree is not None:
            logger.warning("Overwriting existing tree")

        self.tree = self.tree_builder.build_from_text(docs)
        self.retriever = TreeRetriever(self.tree_retriever_config, self.tree)
        return self.tree

    def retrieve(
        self,
        question: str,
        start_layer: Optional[int] = None,
        num_layers: Optional[int] = None,
        top_k: Optional[int] = None,
        max_tokens: int = RETRIEVER_MAX_TOKENS,
        collapse_tree: bool = True,
    ) -> RetrievalResult:
        if self.retriever is None:
            raise ValueError(
                "The TreeRetriever instance has not been initialized. "
                "Call 'add_documents' first."
            )

        return self.retriever.retrieve(
            question,
            start_layer=start_layer,
            num_layers=num_layers,
            top_k=top_k,
            max_tokens=max_tokens,
            collapse_tree=collapse_tree,
        )

    def answer_question(
        self,
        question: str,
        top_k: Optional[int] = None,
        start_layer: Optional[int] = None,
        num_layers: Optional[int] = None,
        max_tokens: int = RETRIEVER_MAX_TOKENS,
        collapse_tree: bool = True,
        return_layer_information: bool = False,
    ):
        """Retrieve context for the question and answer it with the QA model.

        Returns:
            The answer, or (answer, layer_information) when
            return_layer_information is set.

        Raises:
            ValueError: If no QA model is configured or no tree exists.
            QuestionAnsweringError: If the QA model fails.
        """
        if self.qa_model is None:
            raise ValueError("No qa_model configured")

        result = self.retrieve(
            question,
            start_layer=start_layer,
            num_layers=num_layers,
            top_k=top_k,
            max_tokens=max_tokens,
            collapse_tree=collapse_tree,
        )

        try:
            answer = self.qa_model.answer_question(result.context, question)
        except Exception as e:
            logger.error(f"Question answering failed: {e}")
            raise QuestionAnsweringError(f"Question answering failed: {e}") from e

        if return_layer_information:
            return answer, result.layer_information
        return answer

    def save(self, path: Union[str, Path]) -> Path:
        if self.tree is None:
            raise ValueError("There is no tree to save.")
        return save_tree(self.tree, path)
