import dataclasses
import json

import pytest

from raptree.raptor.exceptions import TreeFormatError
from raptree.raptor.persistence import load_tree, save_tree
from raptree.raptor.schemas import Node, Tree, TreeMetadata


class TestNode:
    def test_is_frozen(self):
        node = Node("text", 0)

        with pytest.raises(dataclasses.FrozenInstanceError):
            node.text = "other"

    def test_hashable_and_usable_in_sets(self):
        first = Node("text", 0, frozenset({1}), {"emb": [1.0]})
        same = Node("text", 0, frozenset({1}), {"emb": [1.0]})

        assert hash(first) == hash(same)
        assert {first, same} == {first}

    def test_leaf_flag(self):
        assert Node("leaf", 0).is_leaf
        assert not Node("parent", 1, frozenset({0})).is_leaf

    def test_to_dict_sorts_children(self):
        node = Node("parent", 5, frozenset({3, 1, 2}), {"emb": [1, 2]})

        assert node.to_dict() == {
            "text": "parent",
            "index": 5,
            "children": [1, 2, 3],
            "embeddings": {"emb": [1.0, 2.0]},
        }


class TestTreeSerialization:
    def test_persisted_keys(self, small_tree):
        data = small_tree.to_dict()

        assert set(data) == {"allNodes", "rootNodes", "leafNodes", "numLayers", "layerToNodes"}
        assert data["numLayers"] == 1
        assert [index for index, _ in data["rootNodes"]] == [4, 5]
        assert [layer for layer, _ in data["layerToNodes"]] == [0, 1]

    def test_round_trip_is_exact(self, small_tree):
        restored = Tree.from_dict(json.loads(json.dumps(small_tree.to_dict())))

        assert restored == small_tree
        assert restored.all_nodes[3].text == "beta\ntwo"
        assert restored.all_nodes[4].children == frozenset({0, 1})
        assert restored.all_nodes[1].embeddings == {"emb": [0.9, 0.1]}

    def test_maps_share_node_objects(self, small_tree):
        restored = Tree.from_dict(small_tree.to_dict())

        assert restored.root_nodes[4] is restored.all_nodes[4]
        assert restored.leaf_nodes[0] is restored.all_nodes[0]
        assert restored.layer_to_nodes[1][1] is restored.all_nodes[5]

    def test_unknown_index_rejected(self, small_tree):
        data = small_tree.to_dict()
        data["rootNodes"].append([99, {"text": "x", "index": 99, "children": [], "embeddings": {}}])

        with pytest.raises(TreeFormatError, match="unknown node 99"):
            Tree.from_dict(data)

    def test_mismatched_key_rejected(self, small_tree):
        data = small_tree.to_dict()
        data["allNodes"][0][0] = 42

        with pytest.raises(TreeFormatError):
            Tree.from_dict(data)

    def test_layer_entry_without_index_rejected(self, small_tree):
        data = small_tree.to_dict()
        del data["layerToNodes"][1][1][0]["index"]

        with pytest.raises(TreeFormatError, match="Malformed"):
            Tree.from_dict(data)

    @pytest.mark.parametrize("entry", [[4], 4, ["four", {}]])
    def test_malformed_root_entry_rejected(self, small_tree, entry):
        data = small_tree.to_dict()
        data["rootNodes"][0] = entry

        with pytest.raises(TreeFormatError):
            Tree.from_dict(data)

    def test_missing_key_rejected(self, small_tree):
        data = small_tree.to_dict()
        del data["numLayers"]

        with pytest.raises(TreeFormatError) as exc_info:
            Tree.from_dict(data)

        assert exc_info.value.stage == "persistence"


class TestPersistence:
    def test_save_and_load(self, small_tree, tmp_path):
        path = save_tree(small_tree, tmp_path / "trees" / "tree.json")

        assert path.exists()
        assert load_tree(path) == small_tree

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_tree(tmp_path / "absent.json")

    def test_load_non_object(self, tmp_path):
        path = tmp_path / "list.json"
        path.write_text("[1, 2, 3]", encoding="utf-8")

        with pytest.raises(TreeFormatError):
            load_tree(path)


class TestTreeMetadata:
    def test_to_dict_rounds_times(self):
        metadata = TreeMetadata(
            total_nodes=6,
            leaf_count=4,
            summary_count=2,
            num_layers=1,
            build_time_seconds=1.23456,
            levels={0: 4, 1: 2},
            clustering_seconds={1: 0.123456},
        )

        data = metadata.to_dict()

        assert data["build_time_seconds"] == 1.23
        assert data["clustering_seconds"] == {1: 0.123}
        assert data["levels"] == {0: 4, 1: 2}
