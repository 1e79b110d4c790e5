from doosr.descendants import Descendant, dump_records, parse_records, tuple_pattern


def _descendant(**kwargs) -> Descendant:
    return Descendant(id="d1", descendable_type="Day", descendable_id="day1", **kwargs)


def test_add_active_record_skips_duplicates():
    descendant = _descendant()
    descendant.add_active_record("Item", "a")
    descendant.add_active_record("Item", "a")
    descendant.add_active_record("Note", "a")
    assert descendant.active_items == [{"Item": "a"}, {"Note": "a"}]


def test_deactivate_and_activate_only_move_present_records():
    descendant = _descendant(active_items=[{"Item": "a"}], inactive_items=[{"Item": "b"}])
    assert descendant.deactivate_record("Item", "a") is True
    assert descendant.deactivate_record("Item", "missing") is False
    assert descendant.active_items == []
    assert descendant.inactive_items == [{"Item": "b"}, {"Item": "a"}]

    assert descendant.activate_record("Item", "b") is True
    assert descendant.activate_record("Item", "b") is False
    assert descendant.active_items == [{"Item": "b"}]


def test_reorder_keeps_only_known_tuples():
    descendant = _descendant(active_items=[{"Item": "a"}, {"Item": "b"}, {"List": "c"}])
    descendant.reorder_active([{"List": "c"}, {"Item": "zzz"}, {"Item": "a"}])
    assert descendant.active_items == [{"List": "c"}, {"Item": "a"}]


def test_reorder_drops_repeated_tuples():
    descendant = _descendant(active_items=[{"Item": "a"}, {"Item": "b"}], inactive_items=[{"Item": "c"}])
    descendant.reorder_active([{"Item": "a"}, {"Item": "a"}, {"Item": "b"}])
    descendant.reorder_inactive([{"Item": "c"}, {"Item": "c"}])
    assert descendant.active_items == [{"Item": "a"}, {"Item": "b"}]
    assert descendant.inactive_items == [{"Item": "c"}]


def test_extract_ids_by_type():
    descendant = _descendant(
        active_items=[{"Item": "a"}, {"Note": "n"}, {"Item": "b"}],
        inactive_items=[{"Item": "c"}, {"List": "l"}],
    )
    assert descendant.extract_active_item_ids() == ["a", "b"]
    assert descendant.extract_inactive_item_ids() == ["c"]
    assert descendant.extract_active_ids_by_type("Note") == ["n"]
    assert descendant.extract_inactive_ids_by_type("List") == ["l"]
    assert descendant.all_records()[-1] == {"List": "l"}


def test_prepend_active_record_moves_entry_to_front():
    descendant = _descendant(active_items=[{"Item": "a"}, {"Checklist": "c"}])
    descendant.prepend_active_record("Checklist", "c")
    assert descendant.active_items == [{"Checklist": "c"}, {"Item": "a"}]


def test_parse_records_reads_legacy_ids_and_drops_garbage():
    assert parse_records('[1, "abc", {"Note": "n"}, {"a": 1, "b": 2}, null]') == [
        {"Item": "1"},
        {"Item": "abc"},
        {"Note": "n"},
    ]
    assert parse_records("not json") == []
    assert parse_records(None) == []


def test_tuple_pattern_matches_serialized_column():
    column = dump_records([{"Item": "a"}, {"Note": "b"}])
    assert tuple_pattern("Note", "b").strip("%") in column
