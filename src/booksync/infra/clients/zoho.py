from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
import json
import os
import threading
import time
from typing import Any, Protocol, Self, cast
import urllib.error
import urllib.parse
import urllib.request

from pydantic import BaseModel

from booksync.entities.base import Service
from booksync.infra.clients.rate_limiter import RateLimiter

DEFAULT_BASE_URLS: dict[Service, str] = {
    Service.BOOKS: "https://www.zohoapis.com/books/v3",
    Service.CRM: "https://www.zohoapis.com/crm/v2",
    Service.DESK: "https://desk.zoho.com/api/v1",
}
BASE_URL_ENV: dict[Service, str] = {
    Service.BOOKS: "ZOHO_BOOKS_API_URL",
    Service.CRM: "ZOHO_CRM_API_URL",
    Service.DESK: "ZOHO_DESK_API_URL",
}
TOKEN_URL = "https://accounts.zoho.com/oauth/v2/token"
SYSTEM_PRINCIPAL = "system"

# Refresh this long before Zoho says the token expires.
TOKEN_EXPIRY_SKEW_SECONDS = 60.0


class ZohoClientError(Exception):
    """Base error for Zoho client failures."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class UpstreamNotFoundError(ZohoClientError):
    """The requested record does not exist at the source."""


class UpstreamTransientError(ZohoClientError):
    """Timeout, network failure, 5xx or rate-limit rejection."""


class UpstreamAuthError(ZohoClientError):
    """Credentials were rejected even after a token refresh."""


class ExternalClient(Protocol):
    """Read capability the sync components need from the source system."""

    def get(
        self,
        service: Service,
        endpoint: str,
        params: Mapping[str, Any] | None = None,
        principal: str | None = None,
    ) -> dict[str, Any]: ...


class ZohoBaseModel(BaseModel):
    """Shared base for Zoho response models with a short parse alias."""

    @classmethod
    def parse(cls, data: Any) -> Self:
        return cls.model_validate(data)


class TokenResponse(ZohoBaseModel):
    access_token: str
    expires_in: int = 3600
    api_domain: str | None = None
    token_type: str | None = None


class ErrorResponse(ZohoBaseModel):
    code: int | str | None = None
    message: str | None = None


def _getenv_or_die(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise ZohoClientError(f"Missing required environment variable: {name}")
    return value


def _parse_json_response(body: str) -> dict[str, Any]:
    """Parse a JSON body; an empty body (e.g. 204) parses to ``{}``."""
    if not body.strip():
        return {}
    try:
        return cast(dict[str, Any], json.loads(body))
    except json.JSONDecodeError as e:
        raise ZohoClientError(
            f"Failed to parse Zoho response as JSON: {e}: {body}"
        ) from e


def _error_message(body: str) -> str:
    try:
        parsed = ErrorResponse.parse(json.loads(body))
    except ValueError:
        return body
    return parsed.message or body


@dataclass(slots=True)
class _CachedToken:
    access_token: str
    expires_at: float


class ZohoTokenProvider:
    """OAuth access tokens from the refresh-token grant, cached per principal.

    A principal with its own refresh token in ``principal_refresh_tokens`` gets
    its own access token; everyone else shares the system token.
    """

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        principal_refresh_tokens: Mapping[str, str] | None = None,
        token_url: str = TOKEN_URL,
        timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._refresh_token = refresh_token
        self._principal_refresh_tokens = dict(principal_refresh_tokens or {})
        self._token_url = token_url
        self._timeout = timeout
        self._clock = clock
        self._cache: dict[str, _CachedToken] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_env(cls) -> ZohoTokenProvider:
        """Construct a token provider from environment variables.

        Required:
        - ZOHO_CLIENT_ID
        - ZOHO_CLIENT_SECRET
        - ZOHO_REFRESH_TOKEN
        """
        return cls(
            client_id=_getenv_or_die("ZOHO_CLIENT_ID"),
            client_secret=_getenv_or_die("ZOHO_CLIENT_SECRET"),
            refresh_token=_getenv_or_die("ZOHO_REFRESH_TOKEN"),
            token_url=os.getenv("ZOHO_TOKEN_URL", TOKEN_URL),
        )

    def _cache_key(self, principal: str | None) -> str:
        if principal is not None and principal in self._principal_refresh_tokens:
            return principal
        return SYSTEM_PRINCIPAL

    def get_token(
        self, principal: str | None = None, *, force_refresh: bool = False
    ) -> str:
        key = self._cache_key(principal)
        with self._lock:
            cached = self._cache.get(key)
            if (
                not force_refresh
                and cached is not None
                and self._clock() < cached.expires_at
            ):
                return cached.access_token

            refresh_token = self._principal_refresh_tokens.get(
                key, self._refresh_token
            )
            token = self._refresh(refresh_token)
            self._cache[key] = _CachedToken(
                access_token=token.access_token,
                expires_at=self._clock()
                + max(token.expires_in - TOKEN_EXPIRY_SKEW_SECONDS, 0.0),
            )
            return token.access_token

    def invalidate(self, principal: str | None = None) -> None:
        with self._lock:
            self._cache.pop(self._cache_key(principal), None)

    def _refresh(self, refresh_token: str) -> TokenResponse:
        data = urllib.parse.urlencode(
            {
                "refresh_token": refresh_token,
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "grant_type": "refresh_token",
            }
        ).encode("utf-8")
        req = urllib.request.Request(  # noqa: S310
            self._token_url,
            data=data,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=self._timeout) as resp:  # noqa: S310
                body = resp.read().decode("utf-8")
        except urllib.error.HTTPError as e:
            err_body = e.read().decode("utf-8", "ignore")
            if e.code >= 500:
                raise UpstreamTransientError(
                    f"Zoho token refresh failed ({e.code}): {err_body}", status=e.code
                ) from e
            raise UpstreamAuthError(
                f"Zoho token refresh rejected ({e.code}): {err_body}", status=e.code
            ) from e
        except (urllib.error.URLError, TimeoutError) as e:
            raise UpstreamTransientError(
                f"Network error refreshing Zoho token: {e}"
            ) from e

        payload = _parse_json_response(body)
        # Zoho reports refresh failures as 200 with an "error" field.
        if "error" in payload:
            raise UpstreamAuthError(f"Zoho token refresh rejected: {payload['error']}")
        return TokenResponse.parse(payload)


class ZohoClient:
    """Read-only client for the Zoho Books, CRM and Desk REST APIs."""

    def __init__(
        self,
        *,
        token_provider: ZohoTokenProvider,
        organization_id: str | None = None,
        base_urls: Mapping[Service, str] | None = None,
        rate_limiter: RateLimiter | None = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._tokens = token_provider
        self._organization_id = organization_id
        self._base_urls = {**DEFAULT_BASE_URLS, **(base_urls or {})}
        self._rate_limiter = rate_limiter or RateLimiter(1.0)
        self._timeout = timeout
        self._max_retries = max_retries
        self._backoff_seconds = backoff_seconds
        self._sleep = sleep

    @classmethod
    def from_env(cls, *, rate_limit_seconds: float = 1.0) -> ZohoClient:
        """Construct a ZohoClient from environment variables.

        Required:
        - ZOHO_CLIENT_ID, ZOHO_CLIENT_SECRET, ZOHO_REFRESH_TOKEN

        Optional:
        - ZOHO_BOOKS_ORGANIZATION_ID (sent with every Books request)
        - ZOHO_BOOKS_API_URL, ZOHO_CRM_API_URL, ZOHO_DESK_API_URL
        """
        base_urls = {
            service: url
            for service, env_name in BASE_URL_ENV.items()
            if (url := os.getenv(env_name))
        }
        return cls(
            token_provider=ZohoTokenProvider.from_env(),
            organization_id=os.getenv("ZOHO_BOOKS_ORGANIZATION_ID"),
            base_urls=base_urls,
            rate_limiter=RateLimiter(rate_limit_seconds),
        )

    def _url(
        self, service: Service, endpoint: str, params: Mapping[str, Any] | None
    ) -> str:
        base = self._base_urls[service].rstrip("/")
        path = endpoint if endpoint.startswith("/") else f"/{endpoint}"
        query = {k: v for k, v in (params or {}).items() if v is not None}
        if service is Service.BOOKS and self._organization_id:
            query.setdefault("organization_id", self._organization_id)
        if not query:
            return base + path
        return f"{base}{path}?{urllib.parse.urlencode(query)}"

    def _headers(self, service: Service, token: str) -> dict[str, str]:
        headers = {
            "Authorization": f"Zoho-oauthtoken {token}",
            "Accept": "application/json",
        }
        if service is Service.BOOKS and self._organization_id:
            headers["X-com-zoho-books-organizationid"] = self._organization_id
        return headers

    def _open(self, url: str, headers: Mapping[str, str]) -> dict[str, Any]:
        req = urllib.request.Request(  # noqa: S310
            url, headers=dict(headers), method="GET"
        )
        with urllib.request.urlopen(req, timeout=self._timeout) as resp:  # noqa: S310
            body = resp.read().decode("utf-8")
        return _parse_json_response(body)

    @staticmethod
    def _error_for_status(status: int, body: str, url: str) -> ZohoClientError:
        message = f"Zoho API error ({status}) for {url}: {_error_message(body)}"
        if status == 404:
            return UpstreamNotFoundError(message, status=status)
        if status in (401, 403):
            return UpstreamAuthError(message, status=status)
        if status == 429 or status >= 500:
            return UpstreamTransientError(message, status=status)
        return ZohoClientError(message, status=status)

    def get(
        self,
        service: Service,
        endpoint: str,
        params: Mapping[str, Any] | None = None,
        principal: str | None = None,
    ) -> dict[str, Any]:
        """GET ``endpoint`` on ``service`` and return the parsed JSON body.

        A 401 forces one token refresh before the request is retried.
        Transient failures are retried with exponential backoff.

        Raises:
            UpstreamNotFoundError: The record does not exist (404)
            UpstreamTransientError: Retries were exhausted
            UpstreamAuthError: Credentials were rejected after a refresh
            ZohoClientError: Any other client error
        """
        service = Service(service)
        url = self._url(service, endpoint, params)
        force_refresh = False
        auth_retried = False
        attempt = 0

        while True:
            token = self._tokens.get_token(principal, force_refresh=force_refresh)
            force_refresh = False
            self._rate_limiter.acquire()
            try:
                return self._open(url, self._headers(service, token))
            except urllib.error.HTTPError as e:
                err_body = e.read().decode("utf-8", "ignore")
                if e.code == 401 and not auth_retried:
                    auth_retried = True
                    force_refresh = True
                    continue
                error = self._error_for_status(e.code, err_body, url)
                if not isinstance(error, UpstreamTransientError):
                    raise error from e
                failure: ZohoClientError = error
                cause: Exception = e
            except (urllib.error.URLError, TimeoutError, ConnectionError) as e:
                failure = UpstreamTransientError(f"Network error calling Zoho: {e}")
                cause = e

            if attempt >= self._max_retries:
                raise failure from cause
            self._sleep(self._backoff_seconds * (2**attempt))
            attempt += 1
