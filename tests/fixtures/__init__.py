from tests.fixtures.store import FlakyStore
from tests.fixtures.zoho import (
    FakeZohoClient,
    books_line_item,
    books_transaction,
    paged_list,
)

__all__ = [
    "FakeZohoClient",
    "FlakyStore",
    "books_line_item",
    "books_transaction",
    "paged_list",
]
