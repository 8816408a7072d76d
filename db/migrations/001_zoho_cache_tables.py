"""Create the Zoho cache tables

Revision ID: 001_zoho_cache_tables
Revises:
Create Date: 2026-10-19

Creates one table per cached Zoho entity (Books transactions, line items,
items, contacts, CRM contacts and Desk tickets). Every table carries
zoho_id, last_modified_time, synced_at and deleted_at, with a partial index
on active rows for the sync existence check.
"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_zoho_cache_tables"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

ACTIVE_ROW = "deleted_at IS NULL"

TRANSACTION_TABLES = {
    "zoho_books_invoices": ("invoice_number", "customer_id", "customer_name"),
    "zoho_books_salesorders": ("salesorder_number", "customer_id", "customer_name"),
    "zoho_books_purchaseorders": ("purchaseorder_number", "vendor_id", "vendor_name"),
    "zoho_books_bills": ("bill_number", "vendor_id", "vendor_name"),
}

# Tables with the zoho_id unique key and the active-row index
CACHED_TABLES = [
    *TRANSACTION_TABLES,
    "zoho_books_items",
    "zoho_books_contacts",
    "zoho_crm_contacts",
    "zoho_desk_tickets",
]


def _cached_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("zoho_id", sa.String(), nullable=False),
        sa.Column("last_modified_time", sa.TIMESTAMP(), nullable=True),
        sa.Column("synced_at", sa.TIMESTAMP(), nullable=True),
        sa.Column("deleted_at", sa.TIMESTAMP(), nullable=True),
    ]


def _create_cached_table(name: str, *columns: sa.Column) -> None:
    op.create_table(
        name,
        *_cached_columns(),
        *columns,
        sa.UniqueConstraint("zoho_id", name=f"uq_{name}_zoho_id"),
    )
    op.create_index(
        f"ix_{name}_active",
        name,
        ["zoho_id"],
        sqlite_where=sa.text(ACTIVE_ROW),
        postgresql_where=sa.text(ACTIVE_ROW),
    )


def upgrade() -> None:
    """Create every cache table and its indexes."""
    for name, (number, party_id, party_name) in TRANSACTION_TABLES.items():
        _create_cached_table(
            name,
            sa.Column("date", sa.Date(), nullable=True),
            sa.Column("status", sa.String(), nullable=True),
            sa.Column("total", sa.Float(), nullable=True),
            sa.Column("sub_total", sa.Float(), nullable=True),
            sa.Column("tax_total", sa.Float(), nullable=True),
            sa.Column("reference_number", sa.String(), nullable=True),
            sa.Column("email", sa.Text(), nullable=True),
            sa.Column(number, sa.String(), nullable=True),
            sa.Column(party_id, sa.String(), nullable=True),
            sa.Column(party_name, sa.String(), nullable=True),
        )

    # Line items are keyed by parent, not globally by zoho_id
    op.create_table(
        "zoho_books_line_items",
        *_cached_columns(),
        sa.Column("parent_id", sa.Integer(), nullable=False),
        sa.Column("parent_type", sa.String(), nullable=False),
        sa.Column("item_id", sa.String(), nullable=True),
        sa.Column("sku", sa.String(), nullable=True),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("quantity", sa.Float(), nullable=True),
        sa.Column("rate", sa.Float(), nullable=True),
        sa.Column("total", sa.Float(), nullable=True),
        sa.UniqueConstraint(
            "parent_id",
            "parent_type",
            "zoho_id",
            name="uq_zoho_books_line_items_parent_zoho_id",
        ),
    )
    op.create_index(
        "ix_zoho_books_line_items_parent",
        "zoho_books_line_items",
        ["parent_id", "parent_type"],
    )

    _create_cached_table(
        "zoho_books_items",
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=True),
        sa.Column("item_type", sa.String(), nullable=True),
        sa.Column("product_type", sa.String(), nullable=True),
        sa.Column("sku", sa.String(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("rate", sa.Float(), nullable=True),
        sa.Column("purchase_rate", sa.Float(), nullable=True),
        sa.Column("stock_on_hand", sa.Float(), nullable=True),
        sa.Column("reorder_level", sa.Float(), nullable=True),
        sa.Column("unit", sa.String(), nullable=True),
    )
    _create_cached_table(
        "zoho_books_contacts",
        sa.Column("contact_name", sa.String(), nullable=False),
        sa.Column("company_name", sa.String(), nullable=True),
        sa.Column("contact_type", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("outstanding_receivable_amount", sa.Float(), nullable=True),
    )
    _create_cached_table(
        "zoho_crm_contacts",
        sa.Column("first_name", sa.String(), nullable=True),
        sa.Column("last_name", sa.String(), nullable=True),
        sa.Column("full_name", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("mobile", sa.String(), nullable=True),
        sa.Column("account_name", sa.String(), nullable=True),
        sa.Column("owner_id", sa.String(), nullable=True),
        sa.Column("created_time", sa.TIMESTAMP(), nullable=True),
    )
    _create_cached_table(
        "zoho_desk_tickets",
        sa.Column("ticket_number", sa.String(), nullable=True),
        sa.Column("subject", sa.Text(), nullable=True),
        sa.Column("status", sa.String(), nullable=True),
        sa.Column("priority", sa.String(), nullable=True),
        sa.Column("channel", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("contact_id", sa.String(), nullable=True),
        sa.Column("department_id", sa.String(), nullable=True),
        sa.Column("created_time", sa.TIMESTAMP(), nullable=True),
    )


def downgrade() -> None:
    """Drop every cache table."""
    op.drop_index("ix_zoho_books_line_items_parent", table_name="zoho_books_line_items")
    op.drop_table("zoho_books_line_items")
    for name in reversed(CACHED_TABLES):
        op.drop_index(f"ix_{name}_active", table_name=name)
        op.drop_table(name)
