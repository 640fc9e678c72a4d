"""REST adapter for the remote catalog.

The engine only needs something that can ``send`` a :class:`RemoteCall`
and report readiness. :class:`CatalogHttpClient` implements that contract
against a Shopify-style admin API using a :class:`requests.Session`, and
maps HTTP failures onto the sync error taxonomy so the retry manager can
tell rate limiting and transient failures apart from fatal ones.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, runtime_checkable

import requests
from requests import Response, Session

from catsync.sync.errors import (
    AuthError,
    NotFoundError,
    RateLimitError,
    RemoteError,
    TransientNetworkError,
    ValidationError,
)
from catsync.sync.resources import RemoteCall

logger = logging.getLogger(__name__)

ACCESS_TOKEN_HEADER = "X-Shopify-Access-Token"
CALL_LIMIT_HEADER = "X-Shopify-Shop-Api-Call-Limit"


@dataclass
class ReadinessReport:
    """Outcome of pre-flight checks against the remote."""

    connectivity: bool = False
    permissions: bool = False
    quota_ok: bool = False
    quota_used: Optional[int] = None
    quota_limit: Optional[int] = None
    shop_name: str = ""
    messages: list[str] = field(default_factory=list)

    @property
    def ready(self) -> bool:
        return self.connectivity and self.permissions and self.quota_ok

    def failure_reason(self) -> str:
        """First failed check, as text."""
        if self.messages:
            return self.messages[0]
        if not self.connectivity:
            return "remote not reachable"
        if not self.permissions:
            return "insufficient permissions"
        if not self.quota_ok:
            return "insufficient API quota headroom"
        return ""


@runtime_checkable
class RemoteCatalog(Protocol):
    """Remote dispatch contract required by the engine."""

    def send(self, call: RemoteCall) -> dict[str, Any]: ...

    def check_readiness(self) -> ReadinessReport: ...


def parse_call_limit(value: Optional[str]) -> tuple[Optional[int], Optional[int]]:
    """Parse a ``used/limit`` call-limit header."""
    if not value or "/" not in value:
        return None, None
    used, _, limit = value.partition("/")
    try:
        return int(used.strip()), int(limit.strip())
    except ValueError:
        return None, None


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header given in seconds."""
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class CatalogHttpClient:
    """HTTP client for the admin REST API."""

    def __init__(
        self,
        shop: str,
        *,
        api_version: str = "2023-04",
        token: Optional[str] = None,
        token_env: str = "CATSYNC_ACCESS_TOKEN",
        timeout: float = 30.0,
        min_quota_headroom: int = 5,
        session: Optional[Session] = None,
    ) -> None:
        self.shop = shop.strip().rstrip("/")
        self.api_version = api_version
        self.token = token if token is not None else os.environ.get(token_env, "")
        self.token_env = token_env
        self.timeout = timeout
        self.min_quota_headroom = min_quota_headroom
        self.session = session or requests.Session()
        self.last_call_limit: tuple[Optional[int], Optional[int]] = (None, None)

    @property
    def base_url(self) -> str:
        host = self.shop
        if not host.startswith(("http://", "https://")):
            host = f"https://{host}"
        return f"{host}/admin/api/{self.api_version}/"

    def url_for(self, endpoint: str) -> str:
        return self.base_url + endpoint.lstrip("/")

    def _headers(self) -> dict[str, str]:
        if not self.token:
            raise AuthError(f"No access token configured (set {self.token_env})")
        return {
            ACCESS_TOKEN_HEADER: self.token,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    # -------------------- request helpers --------------------
    def _raise_for_status(self, response: Response) -> None:
        status = response.status_code
        if status < 400:
            return

        detail = _error_detail(response)
        if status in (401, 403):
            raise AuthError(f"Authentication failed ({status}): {detail}", status_code=status)
        if status == 429:
            raise RateLimitError(
                f"Rate limited: {detail}",
                status_code=status,
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            )
        if status == 404:
            raise NotFoundError(f"Not found: {detail}", status_code=status)
        if status in (400, 422):
            raise ValidationError(f"Rejected ({status}): {detail}", status_code=status)
        if status >= 500:
            raise TransientNetworkError(f"Server error ({status}): {detail}", status_code=status)
        raise RemoteError(f"Request failed ({status}): {detail}", status_code=status)

    def request(self, method: str, endpoint: str, payload: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """
        Perform one request and decode its JSON body.

        Raises:
            AuthError: On 401/403 or a missing token.
            RateLimitError: On 429, carrying Retry-After.
            ValidationError: On 400/422 (NotFoundError on 404).
            TransientNetworkError: On 5xx, timeouts and connection failures.
        """
        url = self.url_for(endpoint)
        logger.debug("%s %s", method, url)
        try:
            response = self.session.request(
                method,
                url,
                json=payload,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise TransientNetworkError(f"{method} {endpoint} failed: {exc}") from exc

        self.last_call_limit = parse_call_limit(response.headers.get(CALL_LIMIT_HEADER))
        self._raise_for_status(response)

        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as exc:
            raise ValidationError(f"Invalid JSON from {endpoint}: {exc}", status_code=response.status_code) from exc
        return data if isinstance(data, dict) else {"data": data}

    # -------------------- engine contract --------------------
    def send(self, call: RemoteCall) -> dict[str, Any]:
        """Dispatch a remote call descriptor."""
        return self.request(call.method, call.endpoint, call.payload)

    def check_readiness(self) -> ReadinessReport:
        """
        Check connectivity, permissions and quota headroom.

        Connectivity is tested with ``shop.json``, write-side permissions
        with a product count, and headroom with the call-limit header.
        """
        report = ReadinessReport()

        try:
            shop = self.request("GET", "shop.json")
        except AuthError as exc:
            report.connectivity = True
            report.messages.append(str(exc))
            return report
        except RemoteError as exc:
            report.messages.append(f"Connection test failed: {exc}")
            return report

        report.connectivity = True
        report.shop_name = str((shop.get("shop") or {}).get("name", ""))

        try:
            self.request("GET", "products/count.json")
        except RemoteError as exc:
            report.messages.append(f"Permission check failed: {exc}")
            return report
        report.permissions = True

        used, limit = self.last_call_limit
        report.quota_used, report.quota_limit = used, limit
        if used is None or limit is None:
            report.quota_ok = True
        elif limit - used >= self.min_quota_headroom:
            report.quota_ok = True
        else:
            report.messages.append(f"API quota nearly exhausted ({used}/{limit})")

        return report


def _error_detail(response: Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict) and "errors" in body:
        return str(body["errors"])[:200]
    return str(body)[:200]
