from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from booksync.entities.base import (
    FieldMapping,
    MappedEntity,
    Service,
    StorageRecord,
    parse_timestamp,
)


class CrmContactEntity(MappedEntity):
    """Zoho CRM contact. CRM wraps every response in ``data``."""

    name = "crm_contacts"
    table_name = "zoho_crm_contacts"
    source_id_field = "id"
    service = Service.CRM
    api_endpoint = "/Contacts"
    list_key = "data"
    field_map = {
        "First_Name": FieldMapping("first_name"),
        "Last_Name": FieldMapping("last_name", required=True),
        "Full_Name": FieldMapping("full_name"),
        "Email": FieldMapping("email"),
        "Phone": FieldMapping("phone"),
        "Mobile": FieldMapping("mobile"),
        "Account_Name": None,
        "Modified_Time": FieldMapping("last_modified_time", convert=parse_timestamp),
        "Created_Time": FieldMapping("created_time", convert=parse_timestamp),
        "Owner": None,
        "$approval": None,
        "$state": None,
    }

    def finish_record(
        self,
        record: StorageRecord,
        source: Mapping[str, Any],
        parent_id: int | None,
        parent_type: str | None,
    ) -> None:
        owner = source.get("Owner")
        if isinstance(owner, Mapping) and owner.get("id") is not None:
            record["owner_id"] = str(owner["id"])
        account = source.get("Account_Name")
        if isinstance(account, Mapping) and account.get("name") is not None:
            record["account_name"] = account["name"]


CRM_CONTACT = CrmContactEntity()
