"""Contract between the questionnaire store and its persistence service."""

from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol

ChangeCallback = Callable[[str], None]


class PersistenceError(Exception):
    """Raised when the persistence service rejects or fails a request."""

    def __init__(self, message: str, *, table: str = "", operation: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.table = table
        self.operation = operation

    def __str__(self) -> str:
        return self.message


class Subscription(Protocol):
    """Handle returned when registering for change notifications."""

    def unsubscribe(self) -> None:
        ...


class PersistenceService(Protocol):
    """Operations the store needs from a relational back-end."""

    def select(
        self,
        table: str,
        *,
        order_by: str = "order_index",
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        ...

    def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        ...

    def update(self, table: str, record_id: int, changes: Dict[str, Any]) -> Dict[str, Any]:
        ...

    def delete(self, table: str, record_id: int) -> None:
        ...

    def delete_many(self, table: str, ids: Iterable[int]) -> None:
        ...

    def upsert(self, table: str, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        ...

    def subscribe(self, table: str, callback: ChangeCallback) -> Subscription:
        ...
