"""Entity descriptors for every Zoho record type the cache stores."""

from __future__ import annotations

from booksync.entities.base import (
    EntityDescriptor,
    FieldMapping,
    MappedEntity,
    Service,
    SourceRecord,
    StorageRecord,
    TransformError,
    ValidationResult,
    prepare_for_write,
)
from booksync.entities.books import (
    BILL,
    CONTACT,
    INVOICE,
    ITEM,
    LINE_ITEM,
    PARENT_TYPES,
    PURCHASE_ORDER,
    SALES_ORDER,
    BooksTransactionEntity,
)
from booksync.entities.crm import CRM_CONTACT
from booksync.entities.desk import DESK_TICKET

ENTITIES: dict[str, EntityDescriptor] = {
    entity.name: entity
    for entity in (
        INVOICE,
        SALES_ORDER,
        PURCHASE_ORDER,
        BILL,
        LINE_ITEM,
        ITEM,
        CONTACT,
        CRM_CONTACT,
        DESK_TICKET,
    )
}


def get_entity(name: str) -> EntityDescriptor:
    """Resolve an entity descriptor by its name (e.g. ``invoices``)."""
    try:
        return ENTITIES[name]
    except KeyError:
        known = ", ".join(sorted(ENTITIES))
        raise ValueError(f"Unknown entity {name!r}. Expected one of: {known}") from None


__all__ = [
    "BILL",
    "CONTACT",
    "CRM_CONTACT",
    "DESK_TICKET",
    "ENTITIES",
    "INVOICE",
    "ITEM",
    "LINE_ITEM",
    "PARENT_TYPES",
    "PURCHASE_ORDER",
    "SALES_ORDER",
    "BooksTransactionEntity",
    "EntityDescriptor",
    "FieldMapping",
    "MappedEntity",
    "Service",
    "SourceRecord",
    "StorageRecord",
    "TransformError",
    "ValidationResult",
    "get_entity",
    "prepare_for_write",
]
