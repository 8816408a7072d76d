"""How each Zoho service expects list calls to be shaped.

Callers describe a list request with neutral keys (``page``, ``page_size``,
``sort_column``, ``sort_descending``); the service strategy translates them to
the parameter names that service understands. Any other key passes through
unchanged.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from booksync.entities.base import EntityDescriptor, Service
from booksync.infra.clients.zoho import ExternalClient


class ServiceStrategy:
    service: Service

    def shape_list_params(self, params: Mapping[str, Any] | None) -> dict[str, Any]:
        shaped = dict(params or {})
        page = shaped.pop("page", None)
        page_size = shaped.pop("page_size", None)
        sort_column = shaped.pop("sort_column", None)
        sort_descending = shaped.pop("sort_descending", None)
        shaped.update(self._paging(page, page_size))
        if sort_column is not None:
            shaped.update(self._sorting(sort_column, bool(sort_descending)))
        return shaped

    def _paging(self, page: int | None, page_size: int | None) -> dict[str, Any]:
        paging: dict[str, Any] = {}
        if page is not None:
            paging["page"] = page
        if page_size is not None:
            paging["per_page"] = page_size
        return paging

    def _sorting(self, column: str, descending: bool) -> dict[str, Any]:
        raise NotImplementedError

    def endpoint(self, descriptor: EntityDescriptor) -> str:
        return descriptor.api_endpoint

    def list(
        self,
        client: ExternalClient,
        descriptor: EntityDescriptor,
        params: Mapping[str, Any] | None,
        principal: str | None,
    ) -> dict[str, Any]:
        return client.get(
            self.service,
            self.endpoint(descriptor),
            self.shape_list_params(params),
            principal,
        )


class BooksStrategy(ServiceStrategy):
    service = Service.BOOKS

    def _sorting(self, column: str, descending: bool) -> dict[str, Any]:
        return {"sort_column": column, "sort_order": "D" if descending else "A"}


class CrmStrategy(ServiceStrategy):
    """CRM lists by module api name (``/Contacts``)."""

    service = Service.CRM

    def _sorting(self, column: str, descending: bool) -> dict[str, Any]:
        return {"sort_by": column, "sort_order": "desc" if descending else "asc"}

    def endpoint(self, descriptor: EntityDescriptor) -> str:
        module = descriptor.api_endpoint.strip("/")
        return f"/{module}"


class DeskStrategy(ServiceStrategy):
    """Desk pages by a 1-based ``from`` offset and a ``limit``."""

    service = Service.DESK

    def _paging(self, page: int | None, page_size: int | None) -> dict[str, Any]:
        paging: dict[str, Any] = {}
        if page_size is not None:
            paging["limit"] = page_size
            if page is not None:
                paging["from"] = (page - 1) * page_size + 1
        elif page is not None:
            raise ValueError("Desk paging needs page_size to compute the offset")
        return paging

    def _sorting(self, column: str, descending: bool) -> dict[str, Any]:
        return {"sortBy": f"-{column}" if descending else column}


_STRATEGIES: dict[Service, ServiceStrategy] = {
    Service.BOOKS: BooksStrategy(),
    Service.CRM: CrmStrategy(),
    Service.DESK: DeskStrategy(),
}


def strategy_for(service: Service) -> ServiceStrategy:
    return _STRATEGIES[Service(service)]
