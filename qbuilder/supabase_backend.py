"""Utilities for interacting with a Supabase (PostgREST) database."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

import requests

from qbuilder.persistence import ChangeCallback, PersistenceError

logger = logging.getLogger(__name__)


def _error_message(response: requests.Response) -> str:
    """Extract the most useful message from an error response."""

    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        for key in ("message", "error_description", "error", "hint"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
    return f"HTTP {response.status_code}: {response.reason or 'request failed'}"


class PollingSubscription:
    """Watch a table for changes by polling a lightweight fingerprint."""

    def __init__(
        self,
        backend: "SupabaseBackend",
        table: str,
        callback: ChangeCallback,
        interval: float,
    ) -> None:
        self.backend = backend
        self.table = table
        self.callback = callback
        self.interval = interval
        self._stop = threading.Event()
        self._fingerprint: Optional[Tuple[Tuple[Any, Any], ...]] = None
        self._thread = threading.Thread(
            target=self._run, name=f"qbuilder-watch-{table}", daemon=True
        )

    def start(self) -> "PollingSubscription":
        self._fingerprint = self._safe_fingerprint()
        self._thread.start()
        return self

    def _safe_fingerprint(self) -> Optional[Tuple[Tuple[Any, Any], ...]]:
        try:
            return self.backend.fingerprint(self.table)
        except PersistenceError as error:
            logger.warning("Polling %s failed: %s", self.table, error)
            return self._fingerprint

    def poll_once(self) -> bool:
        """Check for changes once, invoking the callback when one is seen."""

        current = self._safe_fingerprint()
        if current is None or current == self._fingerprint:
            return False
        self._fingerprint = current
        logger.debug("Change detected on %s", self.table)
        self.callback(self.table)
        return True

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.poll_once()
            except Exception:
                logger.exception("Watching %s failed, retrying on the next tick", self.table)

    def unsubscribe(self) -> None:
        self._stop.set()


@dataclass
class SupabaseBackend:
    """Supabase REST wrapper exposing the persistence service operations."""

    url: str
    api_key: str
    schema: str = "public"
    timeout: int = 10
    poll_interval: float = 2.0
    session: requests.Session = field(default_factory=requests.Session, repr=False)

    def _headers(self, prefer: Optional[str] = None) -> Dict[str, str]:
        """Build request headers for the REST API."""

        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Accept-Profile": self.schema,
            "Content-Profile": self.schema,
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def _url(self, table: str) -> str:
        """Construct the REST URL for ``table``."""

        return f"{self.url.rstrip('/')}/rest/v1/{table}"

    def _request(
        self,
        method: str,
        table: str,
        operation: str,
        *,
        params: Optional[Dict[str, str]] = None,
        json: Any = None,
        prefer: Optional[str] = None,
    ) -> Any:
        try:
            response = self.session.request(
                method,
                self._url(table),
                headers=self._headers(prefer),
                params=params,
                json=json,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.error("%s on %s failed: %s", operation, table, exc)
            raise PersistenceError(str(exc), table=table, operation=operation) from exc

        if not response.ok:
            message = _error_message(response)
            logger.error("%s on %s rejected: %s", operation, table, message)
            raise PersistenceError(message, table=table, operation=operation)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            logger.error("%s on %s returned a non-JSON body", operation, table)
            raise PersistenceError(
                f"Unexpected non-JSON response (HTTP {response.status_code})",
                table=table,
                operation=operation,
            ) from exc

    @staticmethod
    def _single(rows: Any, table: str, operation: str) -> Dict[str, Any]:
        if isinstance(rows, list) and rows:
            return rows[0]
        raise PersistenceError(
            f"No {table} record returned by {operation}.", table=table, operation=operation
        )

    def select(
        self,
        table: str,
        *,
        order_by: str = "order_index",
        descending: bool = False,
        limit: Optional[int] = None,
        columns: str = "*",
    ) -> List[Dict[str, Any]]:
        """Return rows of ``table`` ordered by ``order_by``."""

        params = {
            "select": columns,
            "order": f"{order_by}.{'desc' if descending else 'asc'}",
        }
        if limit is not None:
            params["limit"] = str(limit)
        rows = self._request("GET", table, "select", params=params)
        return list(rows or [])

    def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        """Insert ``row`` and return the stored record."""

        rows = self._request(
            "POST", table, "insert", json=[row], prefer="return=representation"
        )
        return self._single(rows, table, "insert")

    def update(self, table: str, record_id: int, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Apply ``changes`` to the record ``record_id`` and return it."""

        rows = self._request(
            "PATCH",
            table,
            "update",
            params={"id": f"eq.{record_id}"},
            json=changes,
            prefer="return=representation",
        )
        return self._single(rows, table, "update")

    def delete(self, table: str, record_id: int) -> None:
        """Delete the record ``record_id``."""

        self._request("DELETE", table, "delete", params={"id": f"eq.{record_id}"})

    def delete_many(self, table: str, ids: Iterable[int]) -> None:
        """Delete every record whose id is in ``ids`` with a single request."""

        id_list = ",".join(str(record_id) for record_id in ids)
        if not id_list:
            return
        self._request("DELETE", table, "delete", params={"id": f"in.({id_list})"})

    def upsert(self, table: str, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Insert or merge ``rows`` by primary key."""

        if not rows:
            return []
        result = self._request(
            "POST",
            table,
            "upsert",
            json=rows,
            prefer="resolution=merge-duplicates,return=representation",
        )
        return list(result or [])

    def fingerprint(self, table: str) -> Tuple[Tuple[Any, Any], ...]:
        """Return ``(id, updated_at)`` pairs capturing the table's current state."""

        rows = self.select(table, order_by="id", columns="id,updated_at")
        return tuple((row.get("id"), row.get("updated_at")) for row in rows)

    def subscribe(self, table: str, callback: ChangeCallback) -> PollingSubscription:
        """Invoke ``callback`` whenever ``table`` changes."""

        logger.info("Watching %s every %.1fs", table, self.poll_interval)
        return PollingSubscription(self, table, callback, self.poll_interval).start()
