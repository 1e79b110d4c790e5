"""Ordered, typed child references for days, items, journals and lists.

A descendant keeps two ordered lists of one-key mappings such as
``{"Item": "ab12"}`` or ``{"Note": "cd34"}``. Active references come first
when a tree is rendered; done, dropped and deferred items live in the
inactive list.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field

RECORD_TYPES = (
    "Item",
    "List",
    "Checklist",
    "Note",
    "Journal",
    "JournalPrompt",
    "JournalFragment",
)

# Types that own a descendant of their own and can be expanded in a tree.
DESCENDABLE_TYPES = ("Day", "Item", "List", "Journal", "JournalPrompt")


def make_tuple(record_type: str, record_id: str) -> dict:
    return {record_type: record_id}


def _coerce_tuple(entry) -> dict | None:
    if isinstance(entry, dict) and len(entry) == 1:
        record_type, record_id = next(iter(entry.items()))
        return {str(record_type): str(record_id)}
    if isinstance(entry, (int, str)) and not isinstance(entry, bool):
        # Rows written before typed references stored bare item ids.
        return {"Item": str(entry)}
    return None


def parse_records(raw) -> list[dict]:
    if raw is None:
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw or "[]")
        except Exception:
            return []
    if not isinstance(raw, list):
        return []
    records = []
    for entry in raw:
        coerced = _coerce_tuple(entry)
        if coerced is not None:
            records.append(coerced)
    return records


def dump_records(records: list[dict]) -> str:
    return json.dumps(records, separators=(",", ":"))


def tuple_pattern(record_type: str, record_id: str) -> str:
    """LIKE pattern matching a serialized reference inside a records column."""
    return f"%{dump_records([make_tuple(record_type, record_id)])[1:-1]}%"


def _reordered(wanted: list[dict], current: list[dict]) -> list[dict]:
    result: list[dict] = []
    for entry in wanted:
        if entry in current and entry not in result:
            result.append(entry)
    return result


@dataclass
class Descendant:
    id: str
    descendable_type: str
    descendable_id: str
    active_items: list[dict] = field(default_factory=list)
    inactive_items: list[dict] = field(default_factory=list)

    @classmethod
    def from_row(cls, row) -> "Descendant":
        return cls(
            id=row["id"],
            descendable_type=row["descendable_type"],
            descendable_id=row["descendable_id"],
            active_items=parse_records(row.get("active_items")),
            inactive_items=parse_records(row.get("inactive_items")),
        )

    def add_active_record(self, record_type: str, record_id: str) -> None:
        entry = make_tuple(record_type, record_id)
        if entry not in self.active_items:
            self.active_items = self.active_items + [entry]

    def prepend_active_record(self, record_type: str, record_id: str) -> None:
        entry = make_tuple(record_type, record_id)
        self.active_items = [entry] + [item for item in self.active_items if item != entry]

    def add_inactive_record(self, record_type: str, record_id: str) -> None:
        entry = make_tuple(record_type, record_id)
        if entry not in self.inactive_items:
            self.inactive_items = self.inactive_items + [entry]

    def remove_active_record(self, record_type: str, record_id: str) -> None:
        entry = make_tuple(record_type, record_id)
        self.active_items = [item for item in self.active_items if item != entry]

    def remove_inactive_record(self, record_type: str, record_id: str) -> None:
        entry = make_tuple(record_type, record_id)
        self.inactive_items = [item for item in self.inactive_items if item != entry]

    def remove_record(self, record_type: str, record_id: str) -> None:
        self.remove_active_record(record_type, record_id)
        self.remove_inactive_record(record_type, record_id)

    def deactivate_record(self, record_type: str, record_id: str) -> bool:
        if not self.active_record(record_type, record_id):
            return False
        self.remove_active_record(record_type, record_id)
        self.add_inactive_record(record_type, record_id)
        return True

    def activate_record(self, record_type: str, record_id: str) -> bool:
        if not self.inactive_record(record_type, record_id):
            return False
        self.remove_inactive_record(record_type, record_id)
        self.add_active_record(record_type, record_id)
        return True

    def active_record(self, record_type: str, record_id: str) -> bool:
        return make_tuple(record_type, record_id) in self.active_items

    def inactive_record(self, record_type: str, record_id: str) -> bool:
        return make_tuple(record_type, record_id) in self.inactive_items

    def contains(self, record_type: str, record_id: str) -> bool:
        return self.active_record(record_type, record_id) or self.inactive_record(record_type, record_id)

    # Item shorthands, the common case for day and section trees.
    def add_active_item(self, item_id: str) -> None:
        self.add_active_record("Item", item_id)

    def add_inactive_item(self, item_id: str) -> None:
        self.add_inactive_record("Item", item_id)

    def reorder_active(self, ordered: list[dict]) -> None:
        self.active_items = _reordered(parse_records(ordered), self.active_items)

    def reorder_inactive(self, ordered: list[dict]) -> None:
        self.inactive_items = _reordered(parse_records(ordered), self.inactive_items)

    def extract_active_ids_by_type(self, record_type: str) -> list[str]:
        return [entry[record_type] for entry in self.active_items if record_type in entry]

    def extract_inactive_ids_by_type(self, record_type: str) -> list[str]:
        return [entry[record_type] for entry in self.inactive_items if record_type in entry]

    def extract_active_item_ids(self) -> list[str]:
        return self.extract_active_ids_by_type("Item")

    def extract_inactive_item_ids(self) -> list[str]:
        return self.extract_inactive_ids_by_type("Item")

    def all_records(self) -> list[dict]:
        return self.active_items + self.inactive_items

    def is_empty(self) -> bool:
        return not self.active_items and not self.inactive_items

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "descendable_type": self.descendable_type,
            "descendable_id": self.descendable_id,
            "active_items": list(self.active_items),
            "inactive_items": list(self.inactive_items),
        }
