"""
Unit tests for driver checkpoint variants
"""

import pytest
from core.exceptions import CheckpointError
from drivers.checkpoints import (
    CategoryTreeCheckpoint, OffsetCheckpoint, PagedCheckpoint, TermQueueCheckpoint,
    TreeLeaf, TreeNode, dump_checkpoint, expect_checkpoint, load_checkpoint,
)


class TestCheckpointStorage:
    def test_stored_form_restores_concrete_variant(self):
        checkpoint = CategoryTreeCheckpoint(
            queue=[TreeNode(url="https://shop.example/c/2", path=["Beauty"])],
            visited=["https://shop.example"],
            current_leaf=TreeLeaf(category_url="https://shop.example/c/1", next_page_index=2, page_count=4),
        )
        stored = dump_checkpoint(checkpoint)

        assert stored["kind"] == "category_tree"
        restored = load_checkpoint(stored)
        assert isinstance(restored, CategoryTreeCheckpoint)
        assert restored == checkpoint

    def test_none_passes_through(self):
        assert dump_checkpoint(None) is None
        assert load_checkpoint(None) is None
        assert expect_checkpoint(None, PagedCheckpoint) is None

    def test_unknown_kind_raises(self):
        with pytest.raises(CheckpointError):
            load_checkpoint({"kind": "cursor", "position": 3})

    def test_malformed_field_raises(self):
        with pytest.raises(CheckpointError):
            load_checkpoint({"kind": "paged", "next_page": "soon"})


class TestExpectCheckpoint:
    def test_accepts_stored_json(self):
        checkpoint = expect_checkpoint({"kind": "term_queue", "term_queue": ["b", "c"]}, TermQueueCheckpoint)
        assert checkpoint.term_queue == ["b", "c"]
        assert checkpoint.current_term is None

    def test_wrong_variant_raises_instead_of_restarting(self):
        with pytest.raises(CheckpointError) as exc_info:
            expect_checkpoint({"kind": "offset", "offset": 50}, PagedCheckpoint)
        assert exc_info.value.context["expected"] == "PagedCheckpoint"
        assert exc_info.value.context["actual"] == "OffsetCheckpoint"

    def test_returns_a_copy(self):
        original = OffsetCheckpoint(offset=25)
        copy = expect_checkpoint(original, OffsetCheckpoint)
        copy.offset = 50
        assert original.offset == 25
