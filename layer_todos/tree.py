"""Materialize flat todo records into a forest of TodoNode trees.

Everything here is pure: functions take records or nodes and return new
nodes, leaving their inputs alone. Forests are rebuilt from a fresh fetch
after every mutation instead of being patched.
"""
from typing import Any, Iterable, List, Mapping, Optional
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field

# Record fields carried onto every node; sub_todos is added on top.
RECORD_FIELDS = (
    'id', 'text', 'completed', 'assigned_to', 'parent_id',
    'signature', 'notes', 'in_backlog', 'created_at',
)


class TodoNode(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    text: str
    completed: bool = False
    assigned_to: Optional[str] = None
    parent_id: Optional[str] = None
    signature: Optional[str] = None
    notes: Optional[str] = None
    in_backlog: bool = False
    created_at: Optional[datetime] = None
    sub_todos: List['TodoNode'] = Field(default_factory=list, alias='subTodos')

    def record(self) -> dict:
        """This node's own fields, without children."""
        return {name: getattr(self, name) for name in RECORD_FIELDS}


def _fields(record: Any) -> dict:
    if isinstance(record, Mapping):
        return {name: record.get(name) for name in RECORD_FIELDS if name in record}
    return {name: getattr(record, name) for name in RECORD_FIELDS if hasattr(record, name)}


def build_forest(records: Iterable[Any]) -> List[TodoNode]:
    """Link flat records into root nodes, each holding its children in order.

    A record whose parent_id is missing from this batch (for example because
    the parent was filtered out of a backlog view) is promoted to a root
    rather than dropped. Root and child order follow the input order.
    """
    nodes: dict[str, TodoNode] = {}
    order: list[TodoNode] = []
    for record in records:
        node = TodoNode(**_fields(record))
        nodes[node.id] = node
        order.append(node)

    roots: list[TodoNode] = []
    for node in order:
        parent = nodes.get(node.parent_id) if node.parent_id else None
        if parent is not None and parent is not node:
            parent.sub_todos.append(node)
        else:
            roots.append(node)
    return roots


def walk(forest: Iterable[TodoNode]):
    """Yield every node in pre-order (parent before its children)."""
    stack = list(reversed(list(forest)))
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.sub_todos))


def flatten_forest(forest: Iterable[TodoNode]) -> List[dict]:
    """Inverse of build_forest: pre-order records, children dropped."""
    return [node.record() for node in walk(forest)]


def count_nodes(forest: Iterable[TodoNode]) -> int:
    return sum(1 for _ in walk(forest))


def find_node(forest: Iterable[TodoNode], todo_id: str) -> Optional[TodoNode]:
    for node in walk(forest):
        if node.id == todo_id:
            return node
    return None


def filter_by_assignees(forest: List[TodoNode], assignees: Iterable[str]) -> List[TodoNode]:
    """Keep nodes assigned to one of `assignees`, plus the ancestors of such nodes.

    Returned nodes are copies with pruned children. An empty assignee set
    means no filtering.
    """
    names = {a for a in assignees if a}
    if not names:
        return forest

    def prune(nodes: List[TodoNode]) -> List[TodoNode]:
        kept = []
        for node in nodes:
            children = prune(node.sub_todos)
            if node.assigned_to in names or children:
                kept.append(node.model_copy(update={'sub_todos': children}))
        return kept

    return prune(forest)


def hide_completed(forest: List[TodoNode]) -> List[TodoNode]:
    """Drop completed roots; completed children stay visible under open parents."""
    return [node for node in forest if not node.completed]
