from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import Enum
import re
from typing import Any, ClassVar, Protocol

SourceRecord = dict[str, Any]
StorageRecord = dict[str, Any]

_BASIC_OFFSET = re.compile(r"([+-]\d{2})(\d{2})$")


class Service(str, Enum):
    """Zoho sub-system that owns an endpoint."""

    BOOKS = "books"
    CRM = "crm"
    DESK = "desk"


class TransformError(Exception):
    """A source payload does not have the shape an entity expects."""

    def __init__(self, message: str, *, source_id: str | None = None) -> None:
        super().__init__(message)
        self.source_id = source_id


@dataclass(frozen=True, slots=True)
class ValidationResult:
    valid: bool
    missing: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True, slots=True)
class FieldMapping:
    """Where a source field lands in storage, and how it is converted."""

    column: str
    required: bool = False
    convert: Callable[[Any], Any] | None = None


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every timestamp column stores."""
    return datetime.now(UTC).replace(tzinfo=None)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a Zoho timestamp (e.g. ``2024-01-15T10:30:00+0530``) to naive UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = _BASIC_OFFSET.sub(r"\1:\2", value.strip())
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Unsupported timestamp value: {value!r}")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(UTC).replace(tzinfo=None)
    return parsed


def parse_date(value: Any) -> date | None:
    """Parse a transaction date (``yyyy-mm-dd``)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value.strip()[:10])
    raise ValueError(f"Unsupported date value: {value!r}")


def parse_amount(value: Any) -> float | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"Unsupported amount value: {value!r}")
    return float(value)


def as_text(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def prepare_for_write(record: StorageRecord, *, now: datetime) -> StorageRecord:
    """Stamp a transformed record for persistence.

    Transforms stay deterministic, so ``synced_at`` is only added here, right
    before the write. Writing a record that the source still serves also
    clears any earlier soft delete.
    """
    return {**record, "synced_at": now, "deleted_at": None}


class EntityDescriptor(Protocol):
    """Static description of one Zoho record type and its storage table."""

    name: str
    table_name: str
    source_id_field: str
    id_column: str
    service: Service
    api_endpoint: str
    date_column: str | None

    @property
    def conflict_columns(self) -> tuple[str, ...]: ...

    def transform_to_storage_record(
        self,
        source: Mapping[str, Any],
        parent_id: int | None = None,
        parent_type: str | None = None,
    ) -> StorageRecord: ...

    def validate_record(self, record: Mapping[str, Any]) -> ValidationResult: ...

    def extract_from_response(self, raw: Any) -> list[SourceRecord]: ...


class MappedEntity:
    """Entity descriptor driven by a declarative source-to-column field map.

    Subclasses declare ``field_map`` (source field -> ``FieldMapping``, or
    ``None`` to ignore a field) and the response keys that hold records.
    Only fields present in the payload are written, so a sparse list payload
    never blanks columns a detail payload filled in earlier.
    """

    name: ClassVar[str]
    table_name: ClassVar[str]
    source_id_field: ClassVar[str]
    service: ClassVar[Service]
    api_endpoint: ClassVar[str]
    field_map: ClassVar[Mapping[str, FieldMapping | None]]
    list_key: ClassVar[str | None] = None
    record_key: ClassVar[str | None] = None
    id_column: ClassVar[str] = "zoho_id"
    date_column: ClassVar[str | None] = None

    @property
    def conflict_columns(self) -> tuple[str, ...]:
        return (self.id_column,)

    @property
    def required_columns(self) -> tuple[str, ...]:
        required = [m.column for m in self.field_map.values() if m and m.required]
        return (self.id_column, *required)

    def transform_to_storage_record(
        self,
        source: Mapping[str, Any],
        parent_id: int | None = None,
        parent_type: str | None = None,
    ) -> StorageRecord:
        if not isinstance(source, Mapping):
            raise TransformError(
                f"{self.name}: expected a mapping, got {type(source).__name__}"
            )
        raw_id = source.get(self.source_id_field)
        if raw_id is None or raw_id == "":
            raise TransformError(f"{self.name}: missing {self.source_id_field}")
        source_id = str(raw_id)

        record: StorageRecord = {self.id_column: source_id}
        for source_field, mapping in self.field_map.items():
            if mapping is None or source_field not in source:
                continue
            value = source[source_field]
            if mapping.convert is not None:
                try:
                    value = mapping.convert(value)
                except (TypeError, ValueError) as e:
                    raise TransformError(
                        f"{self.name} {source_id}: bad {source_field}={value!r}: {e}",
                        source_id=source_id,
                    ) from e
            record[mapping.column] = value

        self.finish_record(record, source, parent_id, parent_type)
        return record

    def finish_record(
        self,
        record: StorageRecord,
        source: Mapping[str, Any],
        parent_id: int | None,
        parent_type: str | None,
    ) -> None:
        """Hook for derived columns."""

    def validate_record(self, record: Mapping[str, Any]) -> ValidationResult:
        missing = tuple(
            column
            for column in self.required_columns
            if record.get(column) is None or record.get(column) == ""
        )
        return ValidationResult(valid=not missing, missing=missing)

    def extract_from_response(self, raw: Any) -> list[SourceRecord]:
        if not isinstance(raw, Mapping):
            return []
        for key in (self.list_key, self.record_key, "data"):
            if key is None:
                continue
            value = raw.get(key)
            if isinstance(value, list):
                return [dict(item) for item in value if isinstance(item, Mapping)]
            if isinstance(value, Mapping):
                return [dict(value)]
        return []

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"
