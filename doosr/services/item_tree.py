from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Protocol

from doosr import repositories
from doosr.descendants import Descendant

CYCLE_LABEL = "(cycle detected)"
PREVIEW_LENGTH = 100

# Record types that own a descendant and are expanded further.
EXPANDABLE_TYPES = {"Item", "List", "Journal", "JournalPrompt"}


class TreeSource(Protocol):
    async def fetch_records(self, record_type: str, ids: list[str]) -> dict[str, dict]:
        ...

    async def fetch_descendant(self, record_type: str, record_id: str) -> Descendant | None:
        ...


class DatabaseTreeSource:
    async def fetch_records(self, record_type: str, ids: list[str]) -> dict[str, dict]:
        return await repositories.fetch_records(record_type, ids)

    async def fetch_descendant(self, record_type: str, record_id: str) -> Descendant | None:
        return await repositories.get_descendant_for(record_type, record_id)


@dataclass
class Node:
    label: str
    record_type: str | None = None
    record: dict | None = None
    children: list["Node"] = field(default_factory=list)

    @property
    def is_cycle(self) -> bool:
        return self.record is None and self.label == CYCLE_LABEL


def _preview(text: str | None) -> str:
    text = (text or "").strip()
    if len(text) <= PREVIEW_LENGTH:
        return text
    return text[: PREVIEW_LENGTH - 3] + "..."


def label_for(record_type: str, record: dict) -> str:
    if record_type in {"Item", "List"}:
        return record.get("title") or ""
    if record_type == "Note":
        return _preview(record.get("content"))
    if record_type == "JournalFragment":
        if record.get("encrypted_content"):
            return "(encrypted)"
        return _preview(record.get("content"))
    if record_type == "JournalPrompt":
        return record.get("prompt_text") or ""
    if record_type == "Journal":
        try:
            return date.fromisoformat(record.get("date") or "").strftime("%B %d, %Y")
        except ValueError:
            return record.get("date") or ""
    if record_type == "Checklist":
        return record.get("name") or ""
    return str(record.get("id") or "")


def _cycle_node() -> Node:
    return Node(label=CYCLE_LABEL)


class _TreeBuilder:
    def __init__(self, source: TreeSource):
        self.source = source
        # Both sets track the current DFS path only.
        self.descendant_path: set[str] = set()
        self.record_path: set[tuple[str, str]] = set()

    async def children_for(self, descendant: Descendant | None) -> list[Node]:
        if descendant is None:
            return []
        if descendant.id in self.descendant_path:
            return [_cycle_node()]
        self.descendant_path.add(descendant.id)
        try:
            return await self._build_children(descendant)
        finally:
            self.descendant_path.discard(descendant.id)

    async def _build_children(self, descendant: Descendant) -> list[Node]:
        references = descendant.all_records()
        if not references:
            return []

        ids_by_type: dict[str, list[str]] = {}
        for reference in references:
            for record_type, record_id in reference.items():
                ids_by_type.setdefault(record_type, []).append(record_id)
        records_by_type = {
            record_type: await self.source.fetch_records(record_type, ids)
            for record_type, ids in ids_by_type.items()
        }

        nodes: list[Node] = []
        for reference in references:
            record_type, record_id = next(iter(reference.items()))
            record = records_by_type.get(record_type, {}).get(record_id)
            if record is None:
                continue
            key = (record_type, record_id)
            if key in self.record_path:
                return [_cycle_node()]
            self.record_path.add(key)
            try:
                children: list[Node] = []
                if record_type in EXPANDABLE_TYPES:
                    child_descendant = await self.source.fetch_descendant(record_type, record_id)
                    children = await self.children_for(child_descendant)
            finally:
                self.record_path.discard(key)
            nodes.append(
                Node(
                    label=label_for(record_type, record),
                    record_type=record_type,
                    record=record,
                    children=children,
                )
            )
        return nodes


async def build_tree(
    root_descendant: Descendant | None,
    source: TreeSource | None = None,
    root_label: str = "root",
) -> Node:
    """Materialize the descendant graph under ``root_descendant`` as a tree of nodes.

    Active references come before inactive ones. References whose record no
    longer exists are skipped. A descendant met again on the current path is
    rendered as a single cycle node; a record met again on the current path
    replaces its whole sibling list with a single cycle node.
    """
    builder = _TreeBuilder(source or DatabaseTreeSource())
    children = await builder.children_for(root_descendant)
    return Node(label=root_label, children=children)


def tree_to_dict(node: Node) -> dict:
    payload = {"label": node.label, "type": node.record_type, "children": [tree_to_dict(child) for child in node.children]}
    if node.record is not None:
        payload["id"] = node.record.get("id")
        if node.record_type == "Item":
            payload["state"] = node.record.get("state")
            payload["item_type"] = node.record.get("item_type")
    if node.is_cycle:
        payload["cycle"] = True
    return payload


def flatten(node: Node) -> list[Node]:
    nodes = []
    for child in node.children:
        nodes.append(child)
        nodes.extend(flatten(child))
    return nodes
