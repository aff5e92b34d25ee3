"""
Resume checkpoints, one variant per driver kind.

Every variant carries a literal `kind` tag, so a checkpoint stored as plain
JSON on a job row is restored into the exact model its driver expects. The
coordinator only ever moves the JSON form around.
"""

from pydantic import BaseModel, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from typing import Annotated, Any, Dict, List, Literal, Optional, Type, TypeVar, Union
from core.exceptions import CheckpointError


class TreeNode(BaseModel):
    """A branch still to visit, with the category path leading to it"""
    url: str
    path: List[str] = Field(default_factory=list)


class TreeLeaf(BaseModel):
    """A leaf listing that is part-way through pagination"""
    category_url: str
    category: Optional[str] = None
    path: List[str] = Field(default_factory=list)
    next_page_index: int = 1
    page_count: int = 1


class CategoryTreeCheckpoint(BaseModel):
    kind: Literal["category_tree"] = "category_tree"
    queue: List[TreeNode] = Field(default_factory=list)
    visited: List[str] = Field(default_factory=list)
    current_leaf: Optional[TreeLeaf] = None


class PagedCheckpoint(BaseModel):
    kind: Literal["paged"] = "paged"
    next_page: int = 1
    consecutive_failures: int = 0


class TermQueueCheckpoint(BaseModel):
    kind: Literal["term_queue"] = "term_queue"
    current_term: Optional[str] = None
    current_page: int = 1
    total_pages_for_term: int = 0
    term_queue: List[str] = Field(default_factory=list)


class OffsetCheckpoint(BaseModel):
    kind: Literal["offset"] = "offset"
    offset: int = 0
    total: Optional[int] = None


DriverCheckpoint = Annotated[
    Union[CategoryTreeCheckpoint, PagedCheckpoint, TermQueueCheckpoint, OffsetCheckpoint],
    Field(discriminator="kind"),
]

_checkpoint_adapter = TypeAdapter(DriverCheckpoint)

C = TypeVar("C", bound=BaseModel)


def dump_checkpoint(checkpoint: Optional[BaseModel]) -> Optional[Dict[str, Any]]:
    """Serialise a checkpoint to the JSON value stored on the job"""
    if checkpoint is None:
        return None
    return checkpoint.model_dump(mode="json")


def load_checkpoint(data: Optional[Dict[str, Any]]) -> Optional[BaseModel]:
    """Restore a stored checkpoint into its concrete variant"""
    if data is None:
        return None
    try:
        return _checkpoint_adapter.validate_python(data)
    except PydanticValidationError as e:
        raise CheckpointError(
            "Stored checkpoint does not match any driver checkpoint",
            context={"checkpoint_kind": data.get("kind") if isinstance(data, dict) else type(data).__name__},
            original_exception=e
        )


def expect_checkpoint(value: Union[None, Dict[str, Any], BaseModel], variant: Type[C]) -> Optional[C]:
    """
    Return `value` as the `variant` a driver needs.

    Accepts the stored JSON form or an already-restored model. A checkpoint
    belonging to a different driver kind raises CheckpointError rather than
    silently restarting the traversal.
    """
    if value is None:
        return None
    checkpoint = load_checkpoint(value) if isinstance(value, dict) else value
    if not isinstance(checkpoint, variant):
        raise CheckpointError(
            f"Expected {variant.__name__}, got {type(checkpoint).__name__}",
            context={"expected": variant.__name__, "actual": type(checkpoint).__name__}
        )
    return checkpoint.model_copy(deep=True)
