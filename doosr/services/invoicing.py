"""Invoice numbering, line arithmetic and description tokens.

Money is stored as integer cents. Line arithmetic runs on ``Decimal`` and
rounds half-up to whole cents once per computed amount.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from sqlalchemy.exc import IntegrityError

from doosr import repositories
from doosr.clock import parse_date, today, utc_now_iso
from doosr.errors import NotFoundError

logger = logging.getLogger(__name__)

CENT = Decimal("1")
HUNDRED = Decimal("100")
NUMBER_ATTEMPTS = 3

STATE_TRANSITIONS = {
    "draft": {"sent"},
    "sent": {"paid"},
    "paid": set(),
}


def interpolate_description(description: str | None, issued_at=None) -> str | None:
    """Replace ``{month}``, ``{year}`` and ``{quarter}`` using the issue date, or today."""
    if not description or not description.strip():
        return description
    when = parse_date(issued_at) if issued_at else today()
    quarter = f"Q{(when.month - 1) // 3 + 1}"
    return (
        description.replace("{month}", when.strftime("%B"))
        .replace("{year}", str(when.year))
        .replace("{quarter}", quarter)
    )


def cents_to_units(cents) -> Decimal | None:
    if cents is None:
        return None
    return Decimal(int(cents)) / HUNDRED


def format_without_currency(cents) -> str:
    amount = cents_to_units(cents)
    if amount is None:
        return ""
    return f"{amount.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)}"


def format_currency(cents, currency: str | None = "EUR") -> str:
    formatted = format_without_currency(cents)
    if not formatted:
        return ""
    return f"{currency or 'EUR'} {formatted}"


def _decimal(value, field: str) -> Decimal:
    try:
        result = Decimal(str(value if value not in (None, "") else 0))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid {field}") from exc
    if not result.is_finite():
        raise ValueError(f"Invalid {field}")
    return result


def _round_cents(value: Decimal) -> int:
    return int(value.quantize(CENT, rounding=ROUND_HALF_UP))


def compute_line(quantity, unit_price: int, discount_rate=0, tax_rate=0) -> dict:
    """Cents for one invoice line: subtotal, discount, tax and amount."""
    quantity = _decimal(quantity, "quantity")
    discount_rate = _decimal(discount_rate, "discount rate")
    tax_rate = _decimal(tax_rate, "tax rate")
    if quantity <= 0:
        raise ValueError("Quantity must be greater than zero")
    if unit_price < 0:
        raise ValueError("Unit price cannot be negative")
    if not Decimal(0) <= discount_rate <= HUNDRED:
        raise ValueError("Discount rate must be between 0 and 100")
    if tax_rate < 0:
        raise ValueError("Tax rate cannot be negative")

    subtotal = _round_cents(quantity * Decimal(unit_price))
    discount = _round_cents(Decimal(subtotal) * discount_rate / HUNDRED)
    tax = _round_cents(Decimal(subtotal - discount) * tax_rate / HUNDRED)
    return {
        "quantity": str(quantity),
        "unit_price": int(unit_price),
        "subtotal": subtotal,
        "discount_rate": str(discount_rate),
        "discount_amount": discount,
        "tax_rate": str(tax_rate),
        "tax_amount": tax,
        "amount": subtotal - discount + tax,
    }


def compute_totals(lines: list[dict], brackets: dict[str, dict], kinds: dict[str, str | None]) -> dict:
    totals = {
        "subtotal": sum(line["subtotal"] for line in lines),
        "discount": sum(line["discount_amount"] for line in lines),
        "tax": sum(line["tax_amount"] for line in lines),
        "total": sum(line["amount"] for line in lines),
    }
    by_kind = defaultdict(int)
    by_bracket: dict[str, dict] = {}
    for line in lines:
        kind = kinds.get(line["accounting_item_id"])
        if kind:
            by_kind[kind] += line["amount"]
        bracket = brackets.get(line["tax_bracket_id"])
        if bracket is None:
            continue
        entry = by_bracket.setdefault(
            bracket["id"],
            {"name": bracket["name"], "percentage": float(bracket["percentage"]), "subtotal": 0, "tax_amount": 0},
        )
        entry["subtotal"] += line["subtotal"]
        entry["tax_amount"] += line["tax_amount"]
    totals["metadata"] = {"totals_by_kind": dict(by_kind), "totals_by_tax_bracket": by_bracket}
    return totals


async def next_number(user: dict, year: int) -> int:
    return await repositories.max_invoice_number(user["id"], year) + 1


def display_number(number: int, year: int) -> str:
    return f"{number}/{year}"


async def create_invoice(user: dict, payload: dict) -> dict:
    customer = await repositories.get_customer(user["id"], payload.get("customer_id") or "")
    if customer is None:
        raise NotFoundError("Customer not found")
    currency = payload.get("currency") or "EUR"
    if currency not in repositories.CURRENCIES:
        raise ValueError(f"Invalid currency: {currency}")

    issued_at = parse_date(payload["issued_at"]) if payload.get("issued_at") else None
    due_at = parse_date(payload["due_at"]) if payload.get("due_at") else None
    year = (issued_at or today()).year

    lines = []
    brackets: dict[str, dict] = {}
    kinds: dict[str, str | None] = {}
    for raw in payload.get("items") or []:
        accounting_item = await repositories.get_accounting_item(user["id"], raw.get("accounting_item_id") or "")
        if accounting_item is None:
            raise NotFoundError("Accounting item not found")
        bracket = await repositories.get_tax_bracket(user["id"], raw.get("tax_bracket_id") or "")
        if bracket is None:
            raise NotFoundError("Tax bracket not found")
        brackets[bracket["id"]] = bracket
        kinds[accounting_item["id"]] = accounting_item.get("kind")

        unit_price = raw.get("unit_price")
        unit_price = accounting_item["unit_price"] if unit_price is None else int(unit_price)
        description = interpolate_description(
            accounting_item.get("description") or accounting_item["name"], issued_at
        )
        line = compute_line(raw.get("quantity", 1), unit_price, raw.get("discount_rate", 0), bracket["percentage"])
        lines.append(
            {
                "accounting_item_id": accounting_item["id"],
                "tax_bracket_id": bracket["id"],
                "description": description,
                "unit": accounting_item.get("unit") or "unit",
                **line,
            }
        )
    if not lines:
        raise ValueError("An invoice needs at least one item")

    totals = compute_totals(lines, brackets, kinds)
    for attempt in range(1, NUMBER_ATTEMPTS + 1):
        number = await next_number(user, year)
        record = {
            "customer_id": customer["id"],
            "number": number,
            "year": year,
            "display_number": display_number(number, year),
            "state": "draft",
            "currency": currency,
            "issued_at": issued_at.isoformat() if issued_at else None,
            "due_at": due_at.isoformat() if due_at else None,
            "subtotal": totals["subtotal"],
            "discount": totals["discount"],
            "tax": totals["tax"],
            "total": totals["total"],
            "metadata": totals["metadata"],
        }
        try:
            invoice = await repositories.create_invoice(user["id"], record, lines)
            break
        except IntegrityError:
            if attempt == NUMBER_ATTEMPTS:
                raise
            logger.warning("Invoice number %s/%s already taken for user %s, retrying", number, year, user["id"])
    logger.info("Created invoice %s for user %s", invoice["display_number"], user["id"])
    return invoice


async def transition(user: dict, invoice: dict, new_state: str) -> dict:
    if new_state not in repositories.INVOICE_STATES:
        raise ValueError(f"Invalid invoice state: {new_state}")
    if new_state == invoice["state"]:
        return invoice
    if new_state not in STATE_TRANSITIONS[invoice["state"]]:
        raise ValueError(f"Cannot move invoice from {invoice['state']} to {new_state}")
    patch = {"state": new_state}
    if new_state == "paid":
        patch["paid_at"] = utc_now_iso()
    return await repositories.update_invoice(user["id"], invoice["id"], patch)


def present(invoice: dict) -> dict:
    currency = invoice.get("currency") or "EUR"
    payload = dict(invoice)
    for field in ("subtotal", "discount", "tax", "total"):
        payload[f"{field}_formatted"] = format_currency(invoice.get(field), currency)
    payload["items"] = [
        {
            **line,
            "unit_price_formatted": format_currency(line["unit_price"], currency),
            "amount_formatted": format_currency(line["amount"], currency),
        }
        for line in invoice.get("items") or []
    ]
    return payload