"""HTTP client for the authoritative store. Every call is bounded by a timeout."""
import asyncio
import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from payflow.api.schemas import SyncSnapshot
from payflow.errors import (
    ConflictError,
    RejectedByStore,
    StoreNotConfigured,
    TransportError,
)
from payflow.sync.mirror import Operation, OperationKind

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0


def _detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    detail = body.get("detail", body) if isinstance(body, dict) else body
    if isinstance(detail, dict) and "message" in detail:
        return detail["message"]
    return str(detail)


class StoreClient:
    """
    Thin async wrapper over the store's HTTP API.

    Raises TransportError when the store cannot be reached (including a
    missing base URL), RejectedByStore/ConflictError when it answers with a
    refusal.
    """

    def __init__(
        self,
        base_url: Optional[str],
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url
        self.timeout = timeout
        self._http = None
        if base_url:
            self._http = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()

    async def _request(self, method: str, path: str, json: Optional[Any] = None) -> Optional[Any]:
        if self._http is None:
            raise StoreNotConfigured("No store URL configured")

        try:
            response = await asyncio.wait_for(
                self._http.request(method, path, json=json), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            raise TransportError(f"{method} {path} timed out after {self.timeout}s")
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {path} failed: {e}")

        if response.status_code >= 500:
            raise TransportError(f"{method} {path} returned {response.status_code}")
        if response.status_code == 409:
            raise ConflictError(_detail(response))
        if response.status_code >= 400:
            raise RejectedByStore(_detail(response), response.status_code)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def get_full_state(self) -> SyncSnapshot:
        """Pull the whole store. Any non-2xx answer counts as the store being unavailable."""
        try:
            body = await self._request("GET", "/api/sync")
        except RejectedByStore as e:
            raise TransportError(f"GET /api/sync returned {e.status_code}: {e.message}")
        try:
            return SyncSnapshot.model_validate(body)
        except ValidationError as e:
            raise TransportError(f"Store returned an unreadable snapshot: {e}")

    async def send(self, op: Operation) -> Optional[dict]:
        """Perform one outbox operation; returns the store's echo of the record."""
        if op.kind == OperationKind.CREATE_REQUEST:
            return await self._request("POST", "/api/requests", json=op.payload)
        if op.kind == OperationKind.UPDATE_REQUEST:
            return await self._request("PATCH", f"/api/requests/{op.entity_id}", json=op.payload)
        if op.kind == OperationKind.DELETE_REQUEST:
            try:
                return await self._request(
                    "DELETE", f"/api/requests/{op.entity_id}", json=op.payload or None
                )
            except RejectedByStore as e:
                # Already erased (possibly by our own earlier, unacknowledged call)
                if e.status_code == 404:
                    logger.info(f"Request {op.entity_id} already erased on the store")
                    return None
                raise
        if op.kind == OperationKind.CREATE_PROJECT:
            return await self._request("POST", "/api/projects", json=op.payload)
        if op.kind == OperationKind.CREATE_VENDOR:
            return await self._request("POST", "/api/vendors", json=op.payload)
        if op.kind == OperationKind.CREATE_AUDIT_LOG:
            return await self._request("POST", "/api/audit-logs", json=op.payload)
        raise ValueError(f"Unknown operation kind: {op.kind}")
