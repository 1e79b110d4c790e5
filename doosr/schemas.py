from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class DayOpen(BaseModel):
    date: date


class DayImport(BaseModel):
    target_date: date
    source_day_id: Optional[str] = None


class DayLink(BaseModel):
    record_type: str
    record_id: str


class ChecklistLink(BaseModel):
    template_id: str


class ItemCreate(BaseModel):
    title: str
    item_type: str = "completable"
    extra_data: Dict[str, Any] = Field(default_factory=dict)
    recurrence_rule: Optional[Dict[str, Any]] = None
    parent_type: Optional[str] = None
    parent_id: Optional[str] = None


class ItemPatch(BaseModel):
    title: Optional[str] = None
    item_type: Optional[str] = None
    extra_data: Optional[Dict[str, Any]] = None
    recurrence_rule: Optional[Dict[str, Any]] = None


class ItemStateChange(BaseModel):
    state: str
    deferred_to: Optional[date] = None


class ItemDefer(BaseModel):
    target_date: date


class Reparent(BaseModel):
    record_type: str = "Item"
    record_id: str
    target_type: str
    target_id: str


class Reorder(BaseModel):
    active_items: List[Dict[str, str]]


class MoveRecord(BaseModel):
    record_type: str = "Item"
    record_id: str
    direction: str = "up"


class ListCreate(BaseModel):
    title: str
    list_type: str = "private_list"
    visibility: str = "read_only"


class ListPatch(BaseModel):
    title: Optional[str] = None
    list_type: Optional[str] = None
    visibility: Optional[str] = None


class ListItemCreate(BaseModel):
    title: str
    item_type: str = "reusable"
    parent_item_id: Optional[str] = None


class NoteCreate(BaseModel):
    content: str
    parent_type: Optional[str] = None
    parent_id: Optional[str] = None


class NotePatch(BaseModel):
    content: str


class NoteLink(BaseModel):
    linked_note_id: str


class ChecklistCreate(BaseModel):
    name: str
    description: str
    kind: str = "template"
    flow: str = "sequential"
    items: List[Any] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ChecklistPatch(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    flow: Optional[str] = None
    items: Optional[List[Any]] = None
    metadata: Optional[Dict[str, Any]] = None


class JournalOpen(BaseModel):
    date: date


class JournalPromptCreate(BaseModel):
    prompt_text: str


class PromptTemplateCreate(BaseModel):
    prompt_text: str
    schedule_rule: Dict[str, Any] = Field(default_factory=dict)
    active: bool = True


class PromptTemplatePatch(BaseModel):
    prompt_text: Optional[str] = None
    schedule_rule: Optional[Dict[str, Any]] = None
    active: Optional[bool] = None


class FragmentCreate(BaseModel):
    content: str
    journal_prompt_id: Optional[str] = None


class FragmentPatch(BaseModel):
    content: str


class ProtectionEnable(BaseModel):
    password: str
    password_confirmation: str


class ProtectionConfirm(BaseModel):
    token: str
    seed_phrase: str


class PasswordPayload(BaseModel):
    password: str


class PasswordChange(BaseModel):
    current_password: str
    new_password: str
    new_password_confirmation: str


class ProtectionRecover(BaseModel):
    seed_phrase: str
    new_password: str
    new_password_confirmation: str


class SessionTimeout(BaseModel):
    minutes: int


class NotificationCreate(BaseModel):
    item_id: str
    remind_at: datetime
    channels: List[str] = Field(default_factory=lambda: ["in_app"])


class CustomerCreate(BaseModel):
    name: str
    email: Optional[str] = None
    address: Optional[str] = None


class AccountingItemCreate(BaseModel):
    name: str
    description: Optional[str] = None
    kind: Optional[str] = None
    unit: str = "unit"
    unit_price: int = 0


class TaxBracketCreate(BaseModel):
    name: str
    percentage: str
    legal_reference: Optional[str] = None


class InvoiceLine(BaseModel):
    accounting_item_id: str
    tax_bracket_id: str
    quantity: str = "1"
    discount_rate: str = "0"
    unit_price: Optional[int] = None


class InvoiceCreate(BaseModel):
    customer_id: str
    currency: str = "EUR"
    issued_at: Optional[date] = None
    due_at: Optional[date] = None
    items: List[InvoiceLine]


class InvoiceStateChange(BaseModel):
    state: str


class SettingsPatch(BaseModel):
    permanent_sections: Optional[List[str]] = None
    day_migration_settings: Optional[Dict[str, Any]] = None
    notification_preferences: Optional[Dict[str, Any]] = None
