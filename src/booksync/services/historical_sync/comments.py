"""External email addresses mentioned in a transaction's comments."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
import re
from typing import Any

EMAIL_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")


def _strings(payload: Any) -> Iterator[str]:
    # Leaf strings of the response, so JSON escapes like "\n" never glue
    # onto an address.
    if isinstance(payload, str):
        yield payload
    elif isinstance(payload, Mapping):
        for value in payload.values():
            yield from _strings(value)
    elif isinstance(payload, list | tuple):
        for value in payload:
            yield from _strings(value)


def extract_external_emails(
    payload: Any, *, exclude_domain: str | None = None
) -> list[str]:
    """Find email addresses anywhere in a comments response.

    Addresses are lower-cased and de-duplicated in first-seen order. Addresses
    on ``exclude_domain`` (and its subdomains) are dropped.
    """
    domain = exclude_domain.lower().lstrip("@") if exclude_domain else None

    emails: dict[str, None] = {}
    for text in _strings(payload):
        for match in EMAIL_PATTERN.findall(text):
            email = match.lower()
            host = email.rsplit("@", 1)[1]
            if domain and (host == domain or host.endswith(f".{domain}")):
                continue
            emails.setdefault(email, None)
    return list(emails)
