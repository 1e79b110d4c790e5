from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.encoders import jsonable_encoder

from doosr import repositories
from doosr.auth import require_user
from doosr.schemas import AccountingItemCreate, CustomerCreate, InvoiceCreate, InvoiceStateChange, TaxBracketCreate
from doosr.services import invoicing

router = APIRouter()


async def _get_invoice(user: dict, invoice_id: str) -> dict:
    invoice = await repositories.get_invoice(user["id"], invoice_id)
    if not invoice:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return invoice


@router.get("/v1/accounting/customers")
async def list_customers(user: dict = Depends(require_user)):
    return {"items": jsonable_encoder(await repositories.list_customers(user["id"]))}


@router.post("/v1/accounting/customers")
async def create_customer(payload: CustomerCreate, user: dict = Depends(require_user)):
    return jsonable_encoder(await repositories.create_customer(user["id"], payload.model_dump()))


@router.get("/v1/accounting/items")
async def list_accounting_items(user: dict = Depends(require_user)):
    return {"items": jsonable_encoder(await repositories.list_accounting_items(user["id"]))}


@router.post("/v1/accounting/items")
async def create_accounting_item(payload: AccountingItemCreate, user: dict = Depends(require_user)):
    return jsonable_encoder(await repositories.create_accounting_item(user["id"], payload.model_dump()))


@router.get("/v1/accounting/tax-brackets")
async def list_tax_brackets(user: dict = Depends(require_user)):
    return {"items": jsonable_encoder(await repositories.list_tax_brackets(user["id"]))}


@router.post("/v1/accounting/tax-brackets")
async def create_tax_bracket(payload: TaxBracketCreate, user: dict = Depends(require_user)):
    return jsonable_encoder(await repositories.create_tax_bracket(user["id"], payload.model_dump()))


@router.get("/v1/accounting/invoices")
async def list_invoices(year: Optional[int] = Query(None), user: dict = Depends(require_user)):
    return {"items": jsonable_encoder(await repositories.list_invoices(user["id"], year=year))}


@router.post("/v1/accounting/invoices")
async def create_invoice(payload: InvoiceCreate, user: dict = Depends(require_user)):
    invoice = await invoicing.create_invoice(user, payload.model_dump())
    return jsonable_encoder(invoicing.present(invoice))


@router.get("/v1/accounting/invoices/{invoice_id}")
async def get_invoice(invoice_id: str, user: dict = Depends(require_user)):
    return jsonable_encoder(invoicing.present(await _get_invoice(user, invoice_id)))


@router.post("/v1/accounting/invoices/{invoice_id}/state")
async def change_invoice_state(invoice_id: str, payload: InvoiceStateChange, user: dict = Depends(require_user)):
    invoice = await _get_invoice(user, invoice_id)
    return jsonable_encoder(invoicing.present(await invoicing.transition(user, invoice, payload.state)))


@router.delete("/v1/accounting/invoices/{invoice_id}")
async def delete_invoice(invoice_id: str, user: dict = Depends(require_user)):
    await _get_invoice(user, invoice_id)
    await repositories.delete_invoice(invoice_id)
    return {"ok": True}
