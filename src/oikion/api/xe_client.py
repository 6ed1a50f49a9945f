#!/usr/bin/env python3
"""HTTP client for the XE.gr Bulk Import Tool (BIT) API.

The import API takes a ZIP archive containing a single ``request.xml``
(either an ``AddItemsRequest`` or a ``RemoveItemsRequest``) uploaded as a
multipart form together with the account username and password.

This client knows HOW to talk to XE.gr, but not WHAT to publish. It has no
knowledge of CRM properties or sync history; the gateway adapter in
``oikion.xe.adapters`` translates between packages and these calls.

Handled here:
    - XML generation and ZIP packaging (50MB limit)
    - Multipart upload via a shared aiohttp session
    - Bounded request timeout
    - Retry with exponential backoff for 5xx/429/network failures
    - Circuit breaker against portal outages
    - Typed exceptions for every failure mode

Usage:
    async with XeClient() as client:
        response = await client.add_items(credentials, package_id, "INCREMENTAL", items)
        if response.is_synchronous:
            for item in response.items:
                ...
"""
import asyncio
import io
import json
import logging
import os
import zipfile
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import aiohttp

from .exceptions import (
    APIError,
    AuthenticationError,
    ConfigurationError,
    ConnectionError,
    NetworkError,
    RateLimitError,
    ServerError,
    TimeoutError,
    ValidationError,
)
from .resilience import CircuitBreaker, retry_async

logger = logging.getLogger(__name__)

# ============================================
# Configuration
# ============================================

DEFAULT_BASE_URL = "http://import.xe.gr"
DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_CRM_PROVIDER_CODE = "OIKION_CRM"
SCHEMA_VERSION = "1.1"
MAX_ZIP_BYTES = 50 * 1024 * 1024

ADD_ENDPOINT = "/request/add"
REMOVE_ENDPOINT = "/request/remove"
STATUS_ENDPOINT = "/request/status"


@dataclass
class XeCredentials:
    """Account credentials for one agency on the portal."""

    username: str
    password: str
    auth_token: str
    store_id: str
    trademark: Optional[str] = None

    def __repr__(self) -> str:
        return f"XeCredentials(username={self.username!r}, store_id={self.store_id!r})"


@dataclass
class XeApiResponse:
    """Parsed portal response.

    ``items`` is populated when the portal answered with per-item results;
    otherwise the response is a plain acknowledgement of receipt.
    """

    package_id: str
    status_code: int
    body: str = ""
    items: list[dict[str, Any]] = field(default_factory=list)
    package_status: Optional[str] = None
    known: bool = True

    @property
    def is_synchronous(self) -> bool:
        return bool(self.items)


# ============================================
# XML Generation
# ============================================

def _text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _append_item(parent: ET.Element, item: dict[str, Any]) -> None:
    """Serialize one Unified Ad item.

    Keys starting with ``@`` become attributes, ``Field`` and ``Asset`` lists
    become repeated elements, ``Item.otherPhones`` nests ``Item.phone``
    children, everything else is a text child element.
    """
    element = ET.SubElement(parent, "Item")

    for key, value in item.items():
        if value is None:
            continue
        if key.startswith("@"):
            element.set(key[1:], _text(value))

    for key, value in item.items():
        if value is None or key.startswith("@"):
            continue

        if key == "Field":
            for fld in value:
                child = ET.SubElement(element, "Field", {"Name": fld["Name"]})
                child.text = _text(fld["Value"])
        elif key == "Asset":
            for asset in value:
                ET.SubElement(
                    element,
                    "Asset",
                    {k: _text(v) for k, v in asset.items() if v is not None},
                )
        elif key == "Item.otherPhones":
            if not value:
                continue
            phones = ET.SubElement(element, key)
            for phone in value:
                ET.SubElement(phones, "Item.phone").text = phone
        else:
            ET.SubElement(element, key).text = _text(value)


def _package_header(
    root: ET.Element,
    credentials: XeCredentials,
    package_id: str,
    timestamp: datetime,
    extra: dict[str, Optional[str]],
) -> None:
    header = {
        "Package.xeAuthToken": credentials.auth_token,
        "Package.schemaVersion": SCHEMA_VERSION,
        "Package.id": package_id,
        "Package.timestamp": timestamp.isoformat(),
        "Package.storeId": credentials.store_id,
        "Package.trademark": credentials.trademark,
        **extra,
    }
    for key, value in header.items():
        if value:
            ET.SubElement(root, key).text = value


def _to_document(root: ET.Element) -> str:
    ET.indent(root, space="  ")
    body = ET.tostring(root, encoding="unicode")
    return f'<?xml version="1.0" encoding="UTF-8"?>\n{body}'


def create_zip_package(xml: str) -> bytes:
    """Wrap ``xml`` as ``request.xml`` in a deflated ZIP archive.

    Raises:
        ValidationError: If the archive exceeds the portal's 50MB limit.
    """
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=6) as archive:
        archive.writestr("request.xml", xml.encode("utf-8"))

    data = buffer.getvalue()
    if len(data) > MAX_ZIP_BYTES:
        raise ValidationError(
            f"ZIP package exceeds {MAX_ZIP_BYTES // (1024 * 1024)}MB limit",
            details={"size_bytes": len(data)},
        )
    return data


# ============================================
# The Client
# ============================================

class XeClient:
    """Async client for the XE.gr import API.

    Use as an async context manager so the aiohttp session is closed:

        async with XeClient() as client:
            await client.remove_items(credentials, package_id, refs)

    Attributes:
        base_url: Portal base URL (XE_GR_BASE_URL, default http://import.xe.gr)
        timeout_seconds: Total timeout for a single HTTP request
        max_retries: Attempts per request for retryable failures
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
        crm_provider_code: Optional[str] = None,
        enable_circuit_breaker: bool = True,
        circuit_failure_threshold: int = 5,
        circuit_timeout: float = 60.0,
        retry_initial_delay: float = 1.0,
    ):
        """Initialize the client.

        Raises:
            ConfigurationError: If the timeout or retry settings are invalid.
        """
        self.base_url = (
            base_url or os.getenv("XE_GR_BASE_URL") or DEFAULT_BASE_URL
        ).rstrip("/")
        self.crm_provider_code = (
            crm_provider_code
            or os.getenv("XE_GR_CRM_PROVIDER_CODE")
            or DEFAULT_CRM_PROVIDER_CODE
        )

        try:
            self.timeout_seconds = float(
                timeout_seconds
                if timeout_seconds is not None
                else os.getenv("XE_GR_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS)
            )
            self.max_retries = int(
                max_retries
                if max_retries is not None
                else os.getenv("XE_GR_MAX_RETRIES", DEFAULT_MAX_RETRIES)
            )
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid XE.gr client setting: {e}",
                missing_keys=["XE_GR_TIMEOUT_SECONDS", "XE_GR_MAX_RETRIES"],
                cause=e,
            )

        if self.timeout_seconds <= 0 or self.max_retries < 1:
            raise ConfigurationError(
                "XE_GR_TIMEOUT_SECONDS must be positive and XE_GR_MAX_RETRIES at least 1"
            )

        self.retry_initial_delay = retry_initial_delay
        self._session: Optional[aiohttp.ClientSession] = None

        self._circuit_breaker: Optional[CircuitBreaker] = None
        if enable_circuit_breaker:
            self._circuit_breaker = CircuitBreaker(
                failure_threshold=circuit_failure_threshold,
                timeout=circuit_timeout,
                name="xe_gr",
            )

    # ----------------------------------------
    # Context Manager Protocol
    # ----------------------------------------

    async def __aenter__(self) -> "XeClient":
        self._session = aiohttp.ClientSession(
            connector=aiohttp.TCPConnector(limit=10, limit_per_host=10),
            timeout=aiohttp.ClientTimeout(
                total=self.timeout_seconds,
                connect=min(10.0, self.timeout_seconds),
            ),
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    # ----------------------------------------
    # Request Builders
    # ----------------------------------------

    def build_add_items_xml(
        self,
        credentials: XeCredentials,
        package_id: str,
        policy: str,
        items: list[dict[str, Any]],
        timestamp: Optional[datetime] = None,
    ) -> str:
        """Build the ``AddItemsRequest`` document."""
        root = ET.Element("AddItemsRequest")
        _package_header(
            root,
            credentials,
            package_id,
            timestamp or datetime.now(timezone.utc),
            {
                "Package.crmProviderCode": self.crm_provider_code,
                "Package.policy": policy,
            },
        )
        for item in items:
            _append_item(root, item)
        return _to_document(root)

    def build_remove_items_xml(
        self,
        credentials: XeCredentials,
        package_id: str,
        refs: list[tuple[str, str]],
        timestamp: Optional[datetime] = None,
    ) -> str:
        """Build the ``RemoveItemsRequest`` document from (type, refId) pairs."""
        root = ET.Element("RemoveItemsRequest")
        _package_header(
            root,
            credentials,
            package_id,
            timestamp or datetime.now(timezone.utc),
            {},
        )
        for item_type, ref_id in refs:
            _append_item(root, {"@type": item_type, "@refId": ref_id})
        return _to_document(root)

    # ----------------------------------------
    # High-Level Operations
    # ----------------------------------------

    async def add_items(
        self,
        credentials: XeCredentials,
        package_id: str,
        policy: str,
        items: list[dict[str, Any]],
    ) -> XeApiResponse:
        """Publish or update listings."""
        xml = self.build_add_items_xml(credentials, package_id, policy, items)
        archive = create_zip_package(xml)
        logger.info(
            f"Submitting AddItemsRequest {package_id} "
            f"({len(items)} items, {len(archive)} bytes)"
        )
        return await self._call(ADD_ENDPOINT, credentials, package_id, archive)

    async def remove_items(
        self,
        credentials: XeCredentials,
        package_id: str,
        refs: list[tuple[str, str]],
    ) -> XeApiResponse:
        """Withdraw listings by ref id."""
        xml = self.build_remove_items_xml(credentials, package_id, refs)
        archive = create_zip_package(xml)
        logger.info(f"Submitting RemoveItemsRequest {package_id} ({len(refs)} items)")
        return await self._call(REMOVE_ENDPOINT, credentials, package_id, archive)

    async def get_package_status(
        self,
        credentials: XeCredentials,
        package_id: str,
    ) -> XeApiResponse:
        """Fetch processing results of a previously submitted package.

        A 404 from the portal is returned as ``known=False`` instead of raised.
        """
        try:
            return await self._call(STATUS_ENDPOINT, credentials, package_id, None)
        except APIError as e:
            if e.status_code == 404:
                return XeApiResponse(
                    package_id=package_id,
                    status_code=404,
                    body=e.response_body or "",
                    known=False,
                )
            raise

    @property
    def circuit_status(self) -> Optional[dict[str, Any]]:
        if self._circuit_breaker:
            return self._circuit_breaker.get_status()
        return None

    # ----------------------------------------
    # Low-Level Request Methods
    # ----------------------------------------

    async def _call(
        self,
        endpoint: str,
        credentials: XeCredentials,
        package_id: str,
        archive: Optional[bytes],
    ) -> XeApiResponse:
        async def attempt() -> XeApiResponse:
            return await retry_async(
                self._post,
                endpoint,
                credentials,
                package_id,
                archive,
                max_attempts=self.max_retries,
                initial_delay=self.retry_initial_delay,
            )

        if self._circuit_breaker:
            return await self._circuit_breaker.call(attempt)
        return await attempt()

    async def _post(
        self,
        endpoint: str,
        credentials: XeCredentials,
        package_id: str,
        archive: Optional[bytes],
    ) -> XeApiResponse:
        """Make a single multipart POST (no retry logic).

        Raises:
            RuntimeError: If called outside of async context manager
            AuthenticationError: 401/403 from the portal
            APIError: Any other non-2xx status
            ConnectionError: If connection to server fails
            TimeoutError: If the request exceeds timeout_seconds
        """
        if not self._session:
            raise RuntimeError(
                "XeClient must be used as async context manager: "
                "async with XeClient(...) as client:"
            )

        url = f"{self.base_url}{endpoint}"

        form = aiohttp.FormData()
        form.add_field("username", credentials.username)
        form.add_field("password", credentials.password)
        if archive is None:
            form.add_field("packageId", package_id)
        else:
            form.add_field(
                "file",
                archive,
                filename="package.zip",
                content_type="application/zip",
            )

        try:
            async with self._session.post(url, data=form) as response:
                body = await response.text()
                if response.status >= 400:
                    raise self._create_api_error(response.status, endpoint, body)
                return self._parse_response(package_id, response.status, body)

        except aiohttp.ClientConnectionError as e:
            raise ConnectionError(
                f"Failed to connect to {self.base_url}",
                host=self.base_url,
                cause=e,
            )

        except asyncio.TimeoutError as e:
            raise TimeoutError(
                f"Request to {endpoint} timed out",
                timeout_seconds=self.timeout_seconds,
                cause=e,
            )

        except aiohttp.ClientError as e:
            raise NetworkError(
                f"Network error during POST {endpoint}: {e}",
                cause=e,
            )

    def _create_api_error(self, status: int, endpoint: str, body: str) -> APIError | AuthenticationError:
        """Create the appropriate exception for a non-2xx status."""
        if status in (401, 403):
            return AuthenticationError(
                f"Portal rejected credentials ({status})",
                details={"endpoint": endpoint, "status_code": status},
            )

        if status == 429:
            return RateLimitError(
                f"Rate limit exceeded for {endpoint}",
                retry_after=60,
                endpoint=endpoint,
                response_body=body,
            )

        if status >= 500:
            return ServerError(
                f"Server error ({status}) for POST {endpoint}",
                status_code=status,
                endpoint=endpoint,
                response_body=body,
            )

        return APIError(
            f"POST {endpoint} failed ({status})",
            status_code=status,
            endpoint=endpoint,
            response_body=body,
        )

    @staticmethod
    def _parse_response(package_id: str, status_code: int, body: str) -> XeApiResponse:
        """Interpret a 2xx body.

        JSON with an ``items`` array carries per-item results. Anything else
        (including the plain-text receipt the import endpoints normally
        return) is an acknowledgement.
        """
        response = XeApiResponse(package_id=package_id, status_code=status_code, body=body)

        stripped = body.strip()
        if not stripped.startswith("{"):
            return response

        try:
            payload = json.loads(stripped)
        except json.JSONDecodeError:
            logger.debug(f"Non-JSON response body for {package_id}")
            return response

        items = payload.get("items")
        if isinstance(items, list):
            response.items = [i for i in items if isinstance(i, dict)]
        response.package_status = payload.get("status")
        return response


__all__ = [
    "XeClient",
    "XeCredentials",
    "XeApiResponse",
    "create_zip_package",
    "DEFAULT_BASE_URL",
    "MAX_ZIP_BYTES",
]
