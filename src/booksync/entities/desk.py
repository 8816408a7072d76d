from __future__ import annotations

from booksync.entities.base import (
    FieldMapping,
    MappedEntity,
    Service,
    as_text,
    parse_timestamp,
)


class DeskTicketEntity(MappedEntity):
    name = "desk_tickets"
    table_name = "zoho_desk_tickets"
    source_id_field = "id"
    service = Service.DESK
    api_endpoint = "/tickets"
    list_key = "data"
    field_map = {
        "ticketNumber": FieldMapping("ticket_number", convert=as_text),
        "subject": FieldMapping("subject", required=True),
        "status": FieldMapping("status"),
        "priority": FieldMapping("priority"),
        "channel": FieldMapping("channel"),
        "email": FieldMapping("email"),
        "contactId": FieldMapping("contact_id", convert=as_text),
        "departmentId": FieldMapping("department_id", convert=as_text),
        "createdTime": FieldMapping("created_time", convert=parse_timestamp),
        "modifiedTime": FieldMapping("last_modified_time", convert=parse_timestamp),
        "customFields": None,
        "cf": None,
    }


DESK_TICKET = DeskTicketEntity()
