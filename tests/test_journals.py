from datetime import date

import pytest

from doosr import repositories
from doosr.services import journals


@pytest.mark.parametrize(
    "rule, target, expected",
    [
        ({"frequency": "daily"}, date(2025, 1, 7), True),
        # 2025-01-05 is a Sunday, 2025-01-11 a Saturday
        ({"frequency": "weekly_start"}, date(2025, 1, 5), True),
        ({"frequency": "weekly_start"}, date(2025, 1, 6), False),
        ({"frequency": "weekly_end"}, date(2025, 1, 11), True),
        ({"frequency": "monthly_start"}, date(2025, 2, 1), True),
        ({"frequency": "monthly_end"}, date(2025, 2, 28), True),
        ({"frequency": "monthly_end"}, date(2024, 2, 28), False),
        ({"frequency": "day_of_month", "day_of_month": "15"}, date(2025, 3, 15), True),
        ({"frequency": "day_of_month"}, date(2025, 3, 15), False),
        ({"frequency": "every_n_days", "interval": 1}, date(2025, 3, 15), False),
        ({"frequency": "specific_weekdays", "days_of_week": [1, 3]}, date(2025, 1, 6), True),
        ({"frequency": "specific_weekdays", "days_of_week": [1, 3]}, date(2025, 1, 7), False),
        ({}, date(2025, 1, 7), False),
        ('{"frequency": "daily"}', date(2025, 1, 7), True),
        ("{broken", date(2025, 1, 7), False),
    ],
)
def test_is_scheduled(rule, target, expected):
    assert journals.is_scheduled(rule, target) is expected


def test_validate_schedule_rule():
    assert journals.validate_schedule_rule(None) == {}
    with pytest.raises(ValueError):
        journals.validate_schedule_rule({"frequency": "hourly"})
    with pytest.raises(ValueError):
        journals.validate_schedule_rule("daily")


async def test_open_creates_scheduled_prompts_once(user):
    await journals.save_template(user, {"prompt_text": "What went well?", "schedule_rule": {"frequency": "daily"}})
    await journals.save_template(
        user, {"prompt_text": "Month review", "schedule_rule": {"frequency": "monthly_start"}}
    )
    await journals.save_template(
        user, {"prompt_text": "Inactive", "schedule_rule": {"frequency": "daily"}, "active": False}
    )

    first = await journals.open_or_create(user, "2025-01-01")
    second = await journals.open_or_create(user, "2025-01-01")

    assert first["prompts_added"] is True
    assert second["prompts_added"] is False
    assert first["journal"]["id"] == second["journal"]["id"]
    prompts = await repositories.list_journal_prompts(first["journal"]["id"])
    assert sorted(prompt["prompt_text"] for prompt in prompts) == ["Month review", "What went well?"]


async def test_fragments_nest_under_prompts(user):
    journal = (await journals.open_or_create(user, "2025-01-02"))["journal"]
    prompt = await journals.add_prompt(user, journal, "Gratitude")
    fragment = await journals.add_fragment(user, journal, "coffee", journal_prompt_id=prompt["id"])

    tree = await journals.journal_tree(journal)

    assert [node.label for node in tree.children] == ["Gratitude"]
    assert tree.children[0].children[0].record_id == fragment["id"]
    assert tree.children[0].children[0].label == "coffee"


async def test_fragment_validation(user):
    journal = (await journals.open_or_create(user, "2025-01-03"))["journal"]
    with pytest.raises(ValueError):
        await journals.add_fragment(user, journal, "   ")
    with pytest.raises(LookupError):
        await journals.add_fragment(user, journal, "text", journal_prompt_id="missing")
    with pytest.raises(ValueError):
        await journals.add_prompt(user, journal, "")


async def test_delete_fragment_removes_reference(user):
    journal = (await journals.open_or_create(user, "2025-01-04"))["journal"]
    fragment = await journals.add_fragment(user, journal, "to be removed")

    await journals.delete_fragment(fragment)

    descendant = await repositories.ensure_descendant("Journal", journal["id"])
    assert descendant.active_items == []
    assert await repositories.get_user_fragment(user["id"], fragment["id"]) is None
