import pytest

from raptree.raptor.exceptions import MissingEmbeddingError, MissingLayerError
from raptree.raptor.schemas import Node, Tree
from raptree.raptor.tree_retriever import TreeRetriever, TreeRetrieverConfig


def make_retriever(tree, query_model, tokenizer, **overrides):
    params = dict(
        embedding_model=query_model,
        context_embedding_model="emb",
        tokenizer=tokenizer,
    )
    params.update(overrides)
    return TreeRetriever(TreeRetrieverConfig(**params), tree)


def indices(result):
    return [node.index for node in result.nodes]


class TestTreeRetrieverConfig:
    def test_integer_threshold_coerced(self, query_model):
        assert TreeRetrieverConfig(embedding_model=query_model, threshold=1).threshold == 1.0

    @pytest.mark.parametrize(
        "overrides",
        [
            {"threshold": 1.5},
            {"top_k": 0},
            {"selection_mode": "nearest"},
            {"num_layers": -1},
            {"start_layer": -1},
            {"embedding_model": None},
        ],
    )
    def test_invalid_values(self, query_model, overrides):
        params = {"embedding_model": query_model, **overrides}

        with pytest.raises(ValueError):
            TreeRetrieverConfig(**params)

    def test_layers_checked_against_tree(self, small_tree, query_model, tokenizer):
        with pytest.raises(ValueError, match="num_layers"):
            make_retriever(small_tree, query_model, tokenizer, num_layers=3)
        with pytest.raises(ValueError, match="start_layer"):
            make_retriever(small_tree, query_model, tokenizer, start_layer=2)
        with pytest.raises(ValueError, match="start_layer \\+ 1"):
            make_retriever(small_tree, query_model, tokenizer, start_layer=0, num_layers=2)

    def test_defaults_to_whole_tree(self, small_tree, query_model, tokenizer):
        retriever = make_retriever(small_tree, query_model, tokenizer)

        assert retriever.start_layer == 1
        assert retriever.num_layers == 2


class TestCollapsedTree:
    def test_ranks_all_layers_together(self, small_tree, query_model, tokenizer):
        retriever = make_retriever(small_tree, query_model, tokenizer)

        result = retriever.retrieve("about alpha", top_k=3, max_tokens=100)

        assert indices(result) == [0, 4, 1]
        assert result.context == "alpha one\n\nsummary of alpha cluster here\n\nalpha two"

    def test_stops_at_first_node_over_budget(self, small_tree, query_model, tokenizer):
        retriever = make_retriever(small_tree, query_model, tokenizer)

        # Node 4 (5 tokens) overflows; node 1 (2 tokens) would fit but is not considered
        result = retriever.retrieve("about alpha", top_k=6, max_tokens=4)

        assert indices(result) == [0]
        assert sum(tokenizer.count_tokens(node.text) for node in result.nodes) <= 4

    def test_context_flattens_newlines(self, small_tree, query_model, tokenizer):
        retriever = make_retriever(small_tree, query_model, tokenizer)

        result = retriever.retrieve("about beta", top_k=6, max_tokens=100)

        assert indices(result) == [2, 5, 3, 1, 4, 0]
        assert "beta two" in result.context
        assert "\n\n" in result.context

    def test_layer_information(self, small_tree, query_model, tokenizer):
        retriever = make_retriever(small_tree, query_model, tokenizer)

        result = retriever.retrieve("about alpha", top_k=2, max_tokens=100)

        assert result.layer_information == [
            {"node_index": 0, "layer_number": 0},
            {"node_index": 4, "layer_number": 1},
        ]

    def test_node_outside_layers_has_no_layer(self, small_tree, query_model, tokenizer):
        extra = Node("loose", 6, frozenset(), {"emb": [1.0, 0.0]})
        tree = Tree(
            all_nodes={**small_tree.all_nodes, 6: extra},
            root_nodes=small_tree.root_nodes,
            leaf_nodes=small_tree.leaf_nodes,
            num_layers=small_tree.num_layers,
            layer_to_nodes=small_tree.layer_to_nodes,
        )
        retriever = make_retriever(tree, query_model, tokenizer)

        result = retriever.retrieve("about alpha", top_k=2, max_tokens=100)

        assert result.layer_information[1] == {"node_index": 6, "layer_number": None}

    def test_missing_context_embedding(self, small_tree, query_model, tokenizer):
        retriever = make_retriever(
            small_tree, query_model, tokenizer, context_embedding_model="other"
        )

        with pytest.raises(MissingEmbeddingError) as exc_info:
            retriever.retrieve("about alpha")

        assert exc_info.value.stage == "retrieval"

    def test_tree_is_not_modified(self, small_tree, query_model, tokenizer):
        before = small_tree.to_dict()
        retriever = make_retriever(small_tree, query_model, tokenizer)

        retriever.retrieve("about alpha", top_k=6)
        retriever.retrieve("about beta", collapse_tree=False)

        assert small_tree.to_dict() == before


class TestLayerTraversal:
    def test_descends_through_best_children(self, small_tree, query_model, tokenizer):
        retriever = make_retriever(small_tree, query_model, tokenizer, top_k=1)

        result = retriever.retrieve("about alpha", collapse_tree=False)

        assert indices(result) == [4, 0]
        assert result.layer_information == [
            {"node_index": 4, "layer_number": 1},
            {"node_index": 0, "layer_number": 0},
        ]

    def test_children_of_all_selected_nodes(self, small_tree, query_model, tokenizer):
        retriever = make_retriever(small_tree, query_model, tokenizer, top_k=2)

        result = retriever.retrieve("about beta", collapse_tree=False)

        assert indices(result) == [5, 4, 2, 3]

    def test_threshold_keeps_similar_nodes(self, small_tree, query_model, tokenizer):
        retriever = make_retriever(
            small_tree, query_model, tokenizer, selection_mode="threshold", threshold=0.9
        )

        result = retriever.retrieve("about alpha", collapse_tree=False)

        assert indices(result) == [4, 0, 1]

    def test_single_layer(self, small_tree, query_model, tokenizer):
        retriever = make_retriever(small_tree, query_model, tokenizer)

        result = retriever.retrieve("about alpha", num_layers=1, top_k=1, collapse_tree=False)

        assert indices(result) == [4]

    def test_start_from_leaves(self, small_tree, query_model, tokenizer):
        retriever = make_retriever(small_tree, query_model, tokenizer)

        result = retriever.retrieve(
            "about beta", start_layer=0, num_layers=1, top_k=2, collapse_tree=False
        )

        assert indices(result) == [2, 3]

    def test_unknown_children_are_skipped(self, small_tree, query_model, tokenizer):
        parent = Node("dangling parent", 4, frozenset({0, 99}), {"emb": [1.0, 0.0]})
        tree = Tree(
            all_nodes={**small_tree.all_nodes, 4: parent},
            root_nodes={4: parent},
            leaf_nodes=small_tree.leaf_nodes,
            num_layers=1,
            layer_to_nodes={0: small_tree.layer_to_nodes[0], 1: [parent]},
        )
        retriever = make_retriever(tree, query_model, tokenizer, top_k=5)

        result = retriever.retrieve("about alpha", collapse_tree=False)

        assert indices(result) == [4, 0]

    def test_missing_start_layer(self, small_tree, query_model, tokenizer):
        retriever = make_retriever(small_tree, query_model, tokenizer)

        with pytest.raises(MissingLayerError) as exc_info:
            retriever.retrieve("about alpha", start_layer=5, num_layers=1, collapse_tree=False)

        assert exc_info.value.layer == 5

    def test_too_many_layers_for_start(self, small_tree, query_model, tokenizer):
        retriever = make_retriever(small_tree, query_model, tokenizer)

        with pytest.raises(ValueError):
            retriever.retrieve("about alpha", start_layer=0, num_layers=2, collapse_tree=False)

    @pytest.mark.parametrize("overrides", [{"top_k": 0}, {"max_tokens": 0}])
    def test_invalid_arguments(self, small_tree, query_model, tokenizer, overrides):
        retriever = make_retriever(small_tree, query_model, tokenizer)

        with pytest.raises(ValueError):
            retriever.retrieve("about alpha", **overrides)
