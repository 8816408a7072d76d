from __future__ import annotations

import datetime as dt
from typing import Any

from sqlalchemy import (
    TIMESTAMP,
    Date,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    declared_attr,
    mapped_column,
)

ACTIVE_ROW = "deleted_at IS NULL"


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""

    pass


def _active_index(table_name: str, *columns: str) -> Index:
    """Partial index backing the ``deleted_at IS NULL`` existence check."""
    return Index(
        f"ix_{table_name}_active",
        *columns,
        sqlite_where=text(ACTIVE_ROW),
        postgresql_where=text(ACTIVE_ROW),
    )


class CachedRecord:
    """Columns shared by every cached Zoho record."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    zoho_id: Mapped[str] = mapped_column(String, nullable=False)
    last_modified_time: Mapped[dt.datetime | None] = mapped_column(
        TIMESTAMP, nullable=True
    )
    synced_at: Mapped[dt.datetime | None] = mapped_column(TIMESTAMP, nullable=True)
    deleted_at: Mapped[dt.datetime | None] = mapped_column(TIMESTAMP, nullable=True)

    @declared_attr.directive
    def __table_args__(cls) -> tuple[Any, ...]:
        table_name = cls.__tablename__  # type: ignore[attr-defined]
        return (
            UniqueConstraint("zoho_id", name=f"uq_{table_name}_zoho_id"),
            _active_index(table_name, "zoho_id"),
        )


class BooksTransaction(CachedRecord):
    """Columns shared by invoices, sales orders, purchase orders and bills."""

    date: Mapped[dt.date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str | None] = mapped_column(String, nullable=True)
    total: Mapped[float | None] = mapped_column(Float, nullable=True)
    sub_total: Mapped[float | None] = mapped_column(Float, nullable=True)
    tax_total: Mapped[float | None] = mapped_column(Float, nullable=True)
    reference_number: Mapped[str | None] = mapped_column(String, nullable=True)
    # Comma-separated external addresses found in the transaction comments
    email: Mapped[str | None] = mapped_column(Text, nullable=True)


class Invoice(BooksTransaction, Base):
    __tablename__ = "zoho_books_invoices"

    invoice_number: Mapped[str | None] = mapped_column(String, nullable=True)
    customer_id: Mapped[str | None] = mapped_column(String, nullable=True)
    customer_name: Mapped[str | None] = mapped_column(String, nullable=True)


class SalesOrder(BooksTransaction, Base):
    __tablename__ = "zoho_books_salesorders"

    salesorder_number: Mapped[str | None] = mapped_column(String, nullable=True)
    customer_id: Mapped[str | None] = mapped_column(String, nullable=True)
    customer_name: Mapped[str | None] = mapped_column(String, nullable=True)


class PurchaseOrder(BooksTransaction, Base):
    __tablename__ = "zoho_books_purchaseorders"

    purchaseorder_number: Mapped[str | None] = mapped_column(String, nullable=True)
    vendor_id: Mapped[str | None] = mapped_column(String, nullable=True)
    vendor_name: Mapped[str | None] = mapped_column(String, nullable=True)


class Bill(BooksTransaction, Base):
    __tablename__ = "zoho_books_bills"

    bill_number: Mapped[str | None] = mapped_column(String, nullable=True)
    vendor_id: Mapped[str | None] = mapped_column(String, nullable=True)
    vendor_name: Mapped[str | None] = mapped_column(String, nullable=True)


class LineItem(CachedRecord, Base):
    """Line item of any Books transaction; replaced wholesale per parent."""

    __tablename__ = "zoho_books_line_items"
    __table_args__ = (
        UniqueConstraint(
            "parent_id",
            "parent_type",
            "zoho_id",
            name="uq_zoho_books_line_items_parent_zoho_id",
        ),
        Index("ix_zoho_books_line_items_parent", "parent_id", "parent_type"),
    )

    parent_id: Mapped[int] = mapped_column(Integer, nullable=False)
    parent_type: Mapped[str] = mapped_column(String, nullable=False)
    item_id: Mapped[str | None] = mapped_column(String, nullable=True)
    sku: Mapped[str | None] = mapped_column(String, nullable=True)
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    quantity: Mapped[float | None] = mapped_column(Float, nullable=True)
    rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    total: Mapped[float | None] = mapped_column(Float, nullable=True)


class Item(CachedRecord, Base):
    __tablename__ = "zoho_books_items"

    name: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str | None] = mapped_column(String, nullable=True)
    item_type: Mapped[str | None] = mapped_column(String, nullable=True)
    product_type: Mapped[str | None] = mapped_column(String, nullable=True)
    sku: Mapped[str | None] = mapped_column(String, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    purchase_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    stock_on_hand: Mapped[float | None] = mapped_column(Float, nullable=True)
    reorder_level: Mapped[float | None] = mapped_column(Float, nullable=True)
    unit: Mapped[str | None] = mapped_column(String, nullable=True)


class Contact(CachedRecord, Base):
    __tablename__ = "zoho_books_contacts"

    contact_name: Mapped[str] = mapped_column(String, nullable=False)
    company_name: Mapped[str | None] = mapped_column(String, nullable=True)
    contact_type: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str | None] = mapped_column(String, nullable=True)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    phone: Mapped[str | None] = mapped_column(String, nullable=True)
    outstanding_receivable_amount: Mapped[float | None] = mapped_column(
        Float, nullable=True
    )


class CrmContact(CachedRecord, Base):
    __tablename__ = "zoho_crm_contacts"

    first_name: Mapped[str | None] = mapped_column(String, nullable=True)
    last_name: Mapped[str | None] = mapped_column(String, nullable=True)
    full_name: Mapped[str | None] = mapped_column(String, nullable=True)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    phone: Mapped[str | None] = mapped_column(String, nullable=True)
    mobile: Mapped[str | None] = mapped_column(String, nullable=True)
    account_name: Mapped[str | None] = mapped_column(String, nullable=True)
    owner_id: Mapped[str | None] = mapped_column(String, nullable=True)
    created_time: Mapped[dt.datetime | None] = mapped_column(TIMESTAMP, nullable=True)


class DeskTicket(CachedRecord, Base):
    __tablename__ = "zoho_desk_tickets"

    ticket_number: Mapped[str | None] = mapped_column(String, nullable=True)
    subject: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str | None] = mapped_column(String, nullable=True)
    priority: Mapped[str | None] = mapped_column(String, nullable=True)
    channel: Mapped[str | None] = mapped_column(String, nullable=True)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    contact_id: Mapped[str | None] = mapped_column(String, nullable=True)
    department_id: Mapped[str | None] = mapped_column(String, nullable=True)
    created_time: Mapped[dt.datetime | None] = mapped_column(TIMESTAMP, nullable=True)
