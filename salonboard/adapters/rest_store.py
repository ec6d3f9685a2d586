"""
HTTP client for a row-oriented scheduling backend.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

import requests

from ..domain.exceptions import StoreError
from ..domain.models import DateRange, Resource, ScheduleItem
from .rows import item_from_row, item_to_row, items_from_rows, resource_from_row

logger = logging.getLogger(__name__)


class RestSchedulingStore:
    """
    Client for the salon backend's REST endpoints.

    Endpoints:
        GET    /stylists
        GET    /schedule_items?resource_ids=a,b&from=YYYY-MM-DD&to=YYYY-MM-DD
        POST   /schedule_items            (new item, server assigns the id)
        PUT    /schedule_items/{id}
        DELETE /schedule_items/{id}

    Responses are JSON rows, either a bare list or wrapped as ``{"data": [...]}``.
    The blocking ``requests`` calls run in a worker thread for the async
    store protocol.
    """

    def __init__(
        self,
        base_url: str,
        api_token: Optional[str] = None,
        timeout: int = 30,
        timezone: str = "Europe/Berlin",
    ):
        """
        Initialize the store client.

        Args:
            base_url: Root URL of the backend API
            api_token: Optional bearer token
            timeout: Request timeout in seconds
            timezone: IANA timezone used for ``start_datetime`` columns
        """
        if not base_url:
            raise StoreError("No store base_url configured.")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.timezone = timezone
        self.headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if api_token:
            self.headers["Authorization"] = f"Bearer {api_token}"

    # --- SchedulingStoreProtocol ----------------------------------------------

    async def load_resources(self) -> List[Resource]:
        return await asyncio.to_thread(self.fetch_resources)

    async def load_items(self, resource_ids: Sequence[str], date_range: DateRange) -> List[ScheduleItem]:
        return await asyncio.to_thread(self.fetch_items, list(resource_ids), date_range)

    async def upsert_item(self, item: ScheduleItem) -> ScheduleItem:
        return await asyncio.to_thread(self.save_item, item)

    async def delete_item(self, item_id: str) -> None:
        await asyncio.to_thread(self.remove_item, item_id)

    # --- Blocking calls -------------------------------------------------------

    def fetch_resources(self) -> List[Resource]:
        """
        Get the stylist roster.

        Raises:
            StoreError: If the API call fails or returns malformed rows
        """
        rows = self._rows(self._request("GET", "/stylists"))
        try:
            return [resource_from_row(row) for row in rows]
        except ValueError as exc:
            raise StoreError(f"Malformed stylist data: {exc}") from exc

    def fetch_items(self, resource_ids: List[str], date_range: DateRange) -> List[ScheduleItem]:
        """Get active bookings and shifts of the given stylists within the range."""
        if not resource_ids:
            return []
        params = {
            "resource_ids": ",".join(resource_ids),
            "from": date_range.start.to_date_string(),
            "to": date_range.end.to_date_string(),
        }
        rows = self._rows(self._request("GET", "/schedule_items", params=params))
        return items_from_rows(rows, self.timezone)

    def save_item(self, item: ScheduleItem) -> ScheduleItem:
        """Create or update an item; returns the stored version."""
        row = item_to_row(item)
        if item.persisted:
            data = self._request("PUT", f"/schedule_items/{item.id}", json=row)
        else:
            row.pop("id")
            data = self._request("POST", "/schedule_items", json=row)

        rows = self._rows(data) if data is not None else []
        if not rows:
            if not item.persisted:
                raise StoreError("Backend did not return the created schedule item.")
            return item
        try:
            return item_from_row(rows[0], self.timezone)
        except ValueError as exc:
            raise StoreError(f"Malformed schedule item returned by backend: {exc}") from exc

    def remove_item(self, item_id: str) -> None:
        """Delete an item; an already deleted item is not an error."""
        self._request("DELETE", f"/schedule_items/{item_id}", missing_ok=True)

    # --- Internals ------------------------------------------------------------

    def _request(self, method: str, path: str, missing_ok: bool = False, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = requests.request(
                method,
                url,
                headers=self.headers,
                timeout=self.timeout,
                **kwargs,
            )
            if missing_ok and response.status_code == 404:
                logger.debug("%s %s: already gone", method, url)
                return None
            response.raise_for_status()
        except requests.exceptions.RequestException as exc:
            raise StoreError(f"{method} {url} failed: {exc}") from exc

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise StoreError(f"{method} {url} returned invalid JSON: {exc}") from exc

    @staticmethod
    def _rows(data: Any) -> List[Dict[str, Any]]:
        if isinstance(data, dict):
            data = data.get("data", [data])
        if data is None:
            return []
        if not isinstance(data, list):
            raise StoreError(f"Unexpected response payload: {data!r}")
        return data
