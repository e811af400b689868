"""HTTP client for the receiving sync API."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from receiving_sync.client.config import ClientSettings
from receiving_sync.core.errors import ErrorKind

logger = logging.getLogger(__name__)


@dataclass
class ApiResponse:
    """Envelope of one API call. Transport errors never raise."""

    success: bool
    data: Dict[str, Any] = field(default_factory=dict)
    status_code: Optional[int] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


def _path(shipment_id: str, suffix: str = "") -> str:
    return f"shipments/{quote(shipment_id, safe='')}{suffix}"


class ReceivingApiClient:
    """Async wrapper over the shipment and received-item endpoints."""

    def __init__(
        self,
        base_url: str,
        device_id: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Content-Type": "application/json"}
        if device_id:
            headers["X-Device-ID"] = device_id
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: ClientSettings, device_id: Optional[str] = None, **kwargs) -> "ReceivingApiClient":
        return cls(
            settings.api_base_url,
            device_id=device_id or settings.device_id,
            timeout=settings.timeout_seconds,
            **kwargs,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "ReceivingApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ==================== Shipments ====================

    async def upsert_shipment(self, shipment_id: str, shipment: Dict[str, Any]) -> ApiResponse:
        return await self._request("PUT", _path(shipment_id), json=shipment)

    async def get_shipment(self, shipment_id: str) -> ApiResponse:
        return await self._request("GET", _path(shipment_id))

    async def list_shipments(self) -> ApiResponse:
        return await self._request("GET", "shipments")

    async def complete_shipment(self, shipment_id: str) -> ApiResponse:
        return await self._request("POST", _path(shipment_id, "/complete"))

    async def delete_shipment(self, shipment_id: str) -> ApiResponse:
        return await self._request("DELETE", _path(shipment_id))

    async def get_summary(self, shipment_id: str, line_filter: str = "all") -> ApiResponse:
        return await self._request("GET", _path(shipment_id, "/summary"), params={"filter": line_filter})

    # ==================== Received items ====================

    async def push_scan(self, shipment_id: str, scan: Dict[str, Any]) -> ApiResponse:
        return await self._request("POST", _path(shipment_id, "/received-items"), json=scan)

    async def set_quantity(self, shipment_id: str, update: Dict[str, Any]) -> ApiResponse:
        return await self._request("PUT", _path(shipment_id, "/received-items"), json=update)

    async def upload_batch(self, shipment_id: str, records: List[Dict[str, Any]]) -> ApiResponse:
        return await self._request(
            "POST", _path(shipment_id, "/received-items/batch"), json={"receivedItems": records}
        )

    async def pull_all(self, shipment_id: str) -> ApiResponse:
        return await self._request("GET", _path(shipment_id, "/received-items"))

    async def pull_since(self, shipment_id: str, last_sync: int) -> ApiResponse:
        return await self._request(
            "GET", _path(shipment_id, "/received-items/sync"), params={"lastSync": last_sync}
        )

    # ==================== Manifests ====================

    async def parse_manifest(self, text: str) -> ApiResponse:
        return await self._request("POST", "manifests/parse", json={"text": text})

    async def _request(self, method: str, path: str, **kwargs) -> ApiResponse:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.RequestError as e:
            logger.warning(f"{method} {path} failed: {e!r}")
            return ApiResponse(
                success=False,
                error=str(e) or "Network error",
                error_kind=ErrorKind.NETWORK_FAILURE,
            )

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {"data": body}

        if response.is_success and body.get("success", True):
            return ApiResponse(success=True, data=body, status_code=response.status_code)

        error = body.get("error") or f"Server error: {response.status_code} {response.reason_phrase}"
        return ApiResponse(
            success=False,
            data=body,
            status_code=response.status_code,
            error=error,
            error_kind=ErrorKind.from_status_code(response.status_code),
        )
