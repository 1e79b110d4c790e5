from datetime import date

import pytest

from doosr import repositories
from doosr.services import invoicing


def test_interpolate_description_uses_issue_date():
    text = invoicing.interpolate_description("Retainer {month} {year} ({quarter})", date(2025, 8, 14))
    assert text == "Retainer August 2025 (Q3)"
    assert invoicing.interpolate_description("  ", date(2025, 8, 14)) == "  "
    assert invoicing.interpolate_description(None) is None


def test_formatting():
    assert invoicing.format_without_currency(1234) == "12.34"
    assert invoicing.format_without_currency(5) == "0.05"
    assert invoicing.format_without_currency(None) == ""
    assert invoicing.format_currency(150000, "USD") == "USD 1500.00"
    assert invoicing.format_currency(100, None) == "EUR 1.00"


def test_compute_line_rounds_half_up():
    line = invoicing.compute_line("1.5", 999, discount_rate="10", tax_rate="23")
    # 1.5 * 999 = 1498.5 -> 1499; 10% -> 149.9 -> 150; 23% of 1349 = 310.27 -> 310
    assert line["subtotal"] == 1499
    assert line["discount_amount"] == 150
    assert line["tax_amount"] == 310
    assert line["amount"] == 1499 - 150 + 310


@pytest.mark.parametrize(
    "quantity, unit_price, discount, tax",
    [("0", 100, 0, 0), ("1", -1, 0, 0), ("1", 100, 101, 0), ("1", 100, 0, -5), ("abc", 100, 0, 0)],
)
def test_compute_line_rejects_invalid_input(quantity, unit_price, discount, tax):
    with pytest.raises(ValueError):
        invoicing.compute_line(quantity, unit_price, discount, tax)


def test_compute_totals_groups_by_kind_and_bracket():
    lines = [
        {"accounting_item_id": "a", "tax_bracket_id": "t", **invoicing.compute_line(1, 1000, 0, 20)},
        {"accounting_item_id": "b", "tax_bracket_id": "t", **invoicing.compute_line(2, 500, 0, 20)},
    ]
    totals = invoicing.compute_totals(
        lines,
        {"t": {"id": "t", "name": "Standard", "percentage": "20"}},
        {"a": "service", "b": None},
    )
    assert totals["subtotal"] == 2000
    assert totals["tax"] == 400
    assert totals["total"] == 2400
    assert totals["metadata"]["totals_by_kind"] == {"service": 1200}
    assert totals["metadata"]["totals_by_tax_bracket"]["t"]["subtotal"] == 2000


def test_display_number():
    assert invoicing.display_number(7, 2025) == "7/2025"


async def _accounting_setup(user):
    customer = await repositories.create_customer(user["id"], {"name": "Acme"})
    service = await repositories.create_accounting_item(
        user["id"],
        {"name": "Consulting", "description": "Consulting {month} {year}", "kind": "service", "unit_price": 10000},
    )
    bracket = await repositories.create_tax_bracket(user["id"], {"name": "Standard", "percentage": "23"})
    return customer, service, bracket


async def test_create_invoice_numbers_per_year(user):
    customer, service, bracket = await _accounting_setup(user)
    payload = {
        "customer_id": customer["id"],
        "issued_at": "2025-03-10",
        "items": [{"accounting_item_id": service["id"], "tax_bracket_id": bracket["id"], "quantity": "2"}],
    }

    first = await invoicing.create_invoice(user, payload)
    second = await invoicing.create_invoice(user, payload)
    next_year = await invoicing.create_invoice(user, {**payload, "issued_at": "2026-01-05"})

    assert first["display_number"] == "1/2025"
    assert second["display_number"] == "2/2025"
    assert next_year["display_number"] == "1/2026"
    assert first["state"] == "draft"
    assert first["subtotal"] == 20000
    assert first["tax"] == 4600
    assert first["total"] == 24600
    assert first["items"][0]["description"] == "Consulting March 2025"
    assert first["metadata"]["totals_by_kind"] == {"service": 24600}


async def test_create_invoice_retries_a_taken_number(user, monkeypatch):
    customer, service, bracket = await _accounting_setup(user)
    payload = {
        "customer_id": customer["id"],
        "issued_at": "2025-03-10",
        "items": [{"accounting_item_id": service["id"], "tax_bracket_id": bracket["id"]}],
    }
    await invoicing.create_invoice(user, payload)

    real_max = repositories.max_invoice_number
    reads = []

    async def stale_max(user_id, year):
        reads.append(year)
        if len(reads) == 1:
            return 0
        return await real_max(user_id, year)

    monkeypatch.setattr(repositories, "max_invoice_number", stale_max)
    second = await invoicing.create_invoice(user, payload)

    assert second["display_number"] == "2/2025"
    assert len(reads) == 2
    assert len(await repositories.list_invoices(user["id"])) == 2


async def test_create_invoice_validation(user):
    customer, service, bracket = await _accounting_setup(user)
    with pytest.raises(LookupError):
        await invoicing.create_invoice(user, {"customer_id": "missing", "items": []})
    with pytest.raises(ValueError, match="at least one item"):
        await invoicing.create_invoice(user, {"customer_id": customer["id"], "items": []})
    with pytest.raises(ValueError, match="currency"):
        await invoicing.create_invoice(user, {"customer_id": customer["id"], "currency": "GBP", "items": []})
    with pytest.raises(LookupError, match="Tax bracket"):
        await invoicing.create_invoice(
            user,
            {"customer_id": customer["id"], "items": [{"accounting_item_id": service["id"], "tax_bracket_id": "x"}]},
        )


async def test_invoice_state_moves_forward_only(user):
    customer, service, bracket = await _accounting_setup(user)
    invoice = await invoicing.create_invoice(
        user,
        {
            "customer_id": customer["id"],
            "items": [{"accounting_item_id": service["id"], "tax_bracket_id": bracket["id"]}],
        },
    )

    with pytest.raises(ValueError, match="Cannot move invoice"):
        await invoicing.transition(user, invoice, "paid")
    sent = await invoicing.transition(user, invoice, "sent")
    paid = await invoicing.transition(user, sent, "paid")

    assert paid["state"] == "paid"
    assert paid["paid_at"]
    with pytest.raises(ValueError):
        await invoicing.transition(user, paid, "draft")
    with pytest.raises(ValueError, match="Invalid invoice state"):
        await invoicing.transition(user, paid, "void")


def test_present_formats_amounts():
    payload = invoicing.present(
        {"currency": "CAD", "subtotal": 1000, "discount": 0, "tax": 130, "total": 1130,
         "items": [{"unit_price": 1000, "amount": 1130}]}
    )
    assert payload["total_formatted"] == "CAD 11.30"
    assert payload["items"][0]["unit_price_formatted"] == "CAD 10.00"
