from __future__ import annotations

from collections.abc import Mapping
from typing import Any, ClassVar

from booksync.entities.base import (
    FieldMapping,
    MappedEntity,
    Service,
    StorageRecord,
    TransformError,
    as_text,
    parse_amount,
    parse_date,
    parse_timestamp,
)

PARENT_TYPES = ("invoice", "salesorder", "purchaseorder", "bill")

# Nested or presentation-only fields that never reach storage.
_IGNORED_TRANSACTION_FIELDS: dict[str, FieldMapping | None] = {
    "line_items": None,
    "custom_fields": None,
    "billing_address": None,
    "shipping_address": None,
    "taxes": None,
    "documents": None,
    "currency_code": None,
    "exchange_rate": None,
}


def _transaction_fields(
    *, number_field: str, counterparty: str
) -> dict[str, FieldMapping | None]:
    return {
        number_field: FieldMapping(number_field),
        "date": FieldMapping("date", required=True, convert=parse_date),
        "status": FieldMapping("status"),
        f"{counterparty}_id": FieldMapping(f"{counterparty}_id", convert=as_text),
        f"{counterparty}_name": FieldMapping(f"{counterparty}_name"),
        "total": FieldMapping("total", convert=parse_amount),
        "sub_total": FieldMapping("sub_total", convert=parse_amount),
        "tax_total": FieldMapping("tax_total", convert=parse_amount),
        "last_modified_time": FieldMapping(
            "last_modified_time", convert=parse_timestamp
        ),
        "reference_number": FieldMapping("reference_number"),
        # Filled from transaction comments during historical sync.
        "email": FieldMapping("email"),
        **_IGNORED_TRANSACTION_FIELDS,
    }


class BooksTransactionEntity(MappedEntity):
    """A dated Books transaction that owns line items."""

    service: ClassVar[Service] = Service.BOOKS
    date_column: ClassVar[str | None] = "date"
    parent_type: ClassVar[str]


class InvoiceEntity(BooksTransactionEntity):
    name = "invoices"
    table_name = "zoho_books_invoices"
    source_id_field = "invoice_id"
    api_endpoint = "/invoices"
    list_key = "invoices"
    record_key = "invoice"
    parent_type = "invoice"
    field_map = _transaction_fields(
        number_field="invoice_number", counterparty="customer"
    )


class SalesOrderEntity(BooksTransactionEntity):
    name = "salesorders"
    table_name = "zoho_books_salesorders"
    source_id_field = "salesorder_id"
    api_endpoint = "/salesorders"
    list_key = "salesorders"
    record_key = "salesorder"
    parent_type = "salesorder"
    field_map = _transaction_fields(
        number_field="salesorder_number", counterparty="customer"
    )


class PurchaseOrderEntity(BooksTransactionEntity):
    name = "purchaseorders"
    table_name = "zoho_books_purchaseorders"
    source_id_field = "purchaseorder_id"
    api_endpoint = "/purchaseorders"
    list_key = "purchaseorders"
    record_key = "purchaseorder"
    parent_type = "purchaseorder"
    field_map = _transaction_fields(
        number_field="purchaseorder_number", counterparty="vendor"
    )


class BillEntity(BooksTransactionEntity):
    name = "bills"
    table_name = "zoho_books_bills"
    source_id_field = "bill_id"
    api_endpoint = "/bills"
    list_key = "bills"
    record_key = "bill"
    parent_type = "bill"
    field_map = _transaction_fields(number_field="bill_number", counterparty="vendor")


class LineItemEntity(MappedEntity):
    """Line items of every Books transaction kind, keyed by their parent row."""

    name = "line_items"
    table_name = "zoho_books_line_items"
    source_id_field = "line_item_id"
    service = Service.BOOKS
    api_endpoint = ""
    list_key = "line_items"
    field_map = {
        "item_id": FieldMapping("item_id", convert=as_text),
        "sku": FieldMapping("sku"),
        "name": FieldMapping("name"),
        "description": FieldMapping("description"),
        "quantity": FieldMapping("quantity", convert=parse_amount),
        "rate": FieldMapping("rate", convert=parse_amount),
        # item_total/total are resolved in finish_record
        "item_total": None,
        "total": None,
        "item_custom_fields": None,
        "tax_id": None,
        "tax_name": None,
        "discount": None,
        "unit": None,
    }

    @property
    def conflict_columns(self) -> tuple[str, ...]:
        return ("parent_id", "parent_type", self.id_column)

    @property
    def required_columns(self) -> tuple[str, ...]:
        return (self.id_column, "parent_id", "parent_type")

    def finish_record(
        self,
        record: StorageRecord,
        source: Mapping[str, Any],
        parent_id: int | None,
        parent_type: str | None,
    ) -> None:
        source_id = record[self.id_column]
        if parent_id is None or not parent_type:
            raise TransformError(
                f"line item {source_id}: parent_id and parent_type are required",
                source_id=source_id,
            )
        if parent_type not in PARENT_TYPES:
            raise TransformError(
                f"line item {source_id}: invalid parent_type {parent_type!r}, "
                f"expected one of {', '.join(PARENT_TYPES)}",
                source_id=source_id,
            )
        record["parent_id"] = parent_id
        record["parent_type"] = parent_type

        try:
            total = parse_amount(source.get("item_total"))
            if total is None:
                total = parse_amount(source.get("total"))
        except ValueError as e:
            raise TransformError(
                f"line item {source_id}: bad total: {e}", source_id=source_id
            ) from e
        if total is None:
            quantity = record.get("quantity")
            rate = record.get("rate")
            if quantity is not None and rate is not None:
                total = round(quantity * rate, 2)
        record["total"] = total


class ItemEntity(MappedEntity):
    name = "items"
    table_name = "zoho_books_items"
    source_id_field = "item_id"
    service = Service.BOOKS
    api_endpoint = "/items"
    list_key = "items"
    record_key = "item"
    field_map = {
        "name": FieldMapping("name", required=True),
        "status": FieldMapping("status", required=True),
        "item_type": FieldMapping("item_type", required=True),
        "product_type": FieldMapping("product_type", required=True),
        "sku": FieldMapping("sku"),
        "description": FieldMapping("description"),
        "rate": FieldMapping("rate", convert=parse_amount),
        "purchase_rate": FieldMapping("purchase_rate", convert=parse_amount),
        "stock_on_hand": FieldMapping("stock_on_hand", convert=parse_amount),
        "reorder_level": FieldMapping("reorder_level", convert=parse_amount),
        "unit": FieldMapping("unit"),
        "last_modified_time": FieldMapping(
            "last_modified_time", convert=parse_timestamp
        ),
        "custom_fields": None,
        "image_name": None,
    }


class ContactEntity(MappedEntity):
    name = "contacts"
    table_name = "zoho_books_contacts"
    source_id_field = "contact_id"
    service = Service.BOOKS
    api_endpoint = "/contacts"
    list_key = "contacts"
    record_key = "contact"
    field_map = {
        "contact_name": FieldMapping("contact_name", required=True),
        "company_name": FieldMapping("company_name"),
        "contact_type": FieldMapping("contact_type"),
        "status": FieldMapping("status"),
        "email": FieldMapping("email"),
        "phone": FieldMapping("phone"),
        "outstanding_receivable_amount": FieldMapping(
            "outstanding_receivable_amount", convert=parse_amount
        ),
        "last_modified_time": FieldMapping(
            "last_modified_time", convert=parse_timestamp
        ),
        "contact_persons": None,
        "billing_address": None,
        "shipping_address": None,
        "custom_fields": None,
    }


INVOICE = InvoiceEntity()
SALES_ORDER = SalesOrderEntity()
PURCHASE_ORDER = PurchaseOrderEntity()
BILL = BillEntity()
LINE_ITEM = LineItemEntity()
ITEM = ItemEntity()
CONTACT = ContactEntity()
