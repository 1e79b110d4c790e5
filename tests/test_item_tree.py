from doosr.descendants import Descendant
from doosr.services.item_tree import CYCLE_LABEL, build_tree, flatten, label_for, tree_to_dict


class FakeSource:
    def __init__(self, records: dict, descendants: dict):
        self.records = records
        self.descendants = descendants
        self.fetches = []

    async def fetch_records(self, record_type, ids):
        self.fetches.append((record_type, tuple(ids)))
        table = self.records.get(record_type, {})
        return {record_id: table[record_id] for record_id in ids if record_id in table}

    async def fetch_descendant(self, record_type, record_id):
        return self.descendants.get((record_type, record_id))


def _desc(desc_id, owner_type, owner_id, active=(), inactive=()):
    return Descendant(
        id=desc_id,
        descendable_type=owner_type,
        descendable_id=owner_id,
        active_items=list(active),
        inactive_items=list(inactive),
    )


def _item(item_id, title, state="todo"):
    return {"id": item_id, "title": title, "state": state, "item_type": "completable"}


async def test_builds_active_then_inactive_and_skips_stale_references():
    root = _desc("root", "Day", "day", active=[{"Item": "a"}, {"Item": "gone"}], inactive=[{"Item": "b"}])
    source = FakeSource({"Item": {"a": _item("a", "First"), "b": _item("b", "Done", "done")}}, {})

    tree = await build_tree(root, source=source, root_label="day")

    assert tree.label == "day"
    assert [child.label for child in tree.children] == ["First", "Done"]
    assert source.fetches == [("Item", ("a", "gone", "b"))]


async def test_nested_items_are_expanded():
    root = _desc("root", "Day", "day", active=[{"Item": "section"}])
    section_desc = _desc("sd", "Item", "section", active=[{"Item": "child"}, {"Note": "n"}])
    source = FakeSource(
        {
            "Item": {"section": _item("section", "Morning"), "child": _item("child", "Stretch")},
            "Note": {"n": {"id": "n", "content": "remember water"}},
        },
        {("Item", "section"): section_desc},
    )

    tree = await build_tree(root, source=source)
    section = tree.children[0]

    assert [child.label for child in section.children] == ["Stretch", "remember water"]
    assert [node.label for node in flatten(tree)] == ["Morning", "Stretch", "remember water"]


async def test_record_cycle_replaces_sibling_list():
    root = _desc("root", "Day", "day", active=[{"Item": "a"}])
    a_desc = _desc("ad", "Item", "a", active=[{"Item": "b"}])
    b_desc = _desc("bd", "Item", "b", active=[{"Item": "c"}, {"Item": "a"}])
    source = FakeSource(
        {"Item": {"a": _item("a", "A"), "b": _item("b", "B"), "c": _item("c", "C")}},
        {("Item", "a"): a_desc, ("Item", "b"): b_desc},
    )

    tree = await build_tree(root, source=source)
    b_node = tree.children[0].children[0]

    assert len(b_node.children) == 1
    assert b_node.children[0].label == CYCLE_LABEL
    assert b_node.children[0].is_cycle


async def test_descendant_cycle_yields_single_cycle_node():
    shared = _desc("shared", "Item", "a", active=[{"Item": "b"}])
    root = _desc("root", "Day", "day", active=[{"Item": "a"}])
    source = FakeSource(
        {"Item": {"a": _item("a", "A"), "b": _item("b", "B")}},
        {("Item", "a"): shared, ("Item", "b"): shared},
    )

    tree = await build_tree(root, source=source)
    b_node = tree.children[0].children[0]

    assert [child.label for child in b_node.children] == [CYCLE_LABEL]


async def test_same_record_in_separate_branches_is_not_a_cycle():
    root = _desc("root", "Day", "day", active=[{"Item": "x"}, {"Item": "y"}])
    x_desc = _desc("xd", "Item", "x", active=[{"Note": "n"}])
    y_desc = _desc("yd", "Item", "y", active=[{"Note": "n"}])
    source = FakeSource(
        {"Item": {"x": _item("x", "X"), "y": _item("y", "Y")}, "Note": {"n": {"id": "n", "content": "shared"}}},
        {("Item", "x"): x_desc, ("Item", "y"): y_desc},
    )

    tree = await build_tree(root, source=source)

    assert [child.children[0].label for child in tree.children] == ["shared", "shared"]
    assert not any(node.is_cycle for node in flatten(tree))


def test_labels_per_type():
    assert label_for("Journal", {"date": "2025-01-05"}) == "January 05, 2025"
    assert label_for("JournalFragment", {"encrypted_content": "xx", "content": None}) == "(encrypted)"
    assert label_for("Checklist", {"name": "Packing"}) == "Packing"
    assert label_for("Note", {"content": "x" * 150}).endswith("...")
    assert len(label_for("Note", {"content": "x" * 150})) == 100


async def test_tree_to_dict_marks_cycles():
    root = _desc("root", "Day", "day", active=[{"Item": "a"}])
    a_desc = _desc("ad", "Item", "a", active=[{"Item": "a"}])
    source = FakeSource({"Item": {"a": _item("a", "A")}}, {("Item", "a"): a_desc})

    payload = tree_to_dict(await build_tree(root, source=source))

    child = payload["children"][0]
    assert child["id"] == "a"
    assert child["state"] == "todo"
    assert child["children"][0]["cycle"] is True
