"""File-backed persistence service storing both tables in one JSON document."""

from __future__ import annotations

import json
import logging
import threading
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from qbuilder.models import QUESTIONS_TABLE, SECTIONS_TABLE, utc_timestamp
from qbuilder.persistence import ChangeCallback, PersistenceError

logger = logging.getLogger(__name__)

TABLES = (SECTIONS_TABLE, QUESTIONS_TABLE)


class LocalSubscription:
    """Listener registration that can be released once."""

    def __init__(self, backend: "LocalBackend", table: str, callback: ChangeCallback) -> None:
        self.backend = backend
        self.table = table
        self.callback = callback

    def unsubscribe(self) -> None:
        self.backend._remove_listener(self.table, self.callback)


class LocalBackend:
    """Persistence service that keeps records in a local JSON file."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.RLock()
        self._listeners: Dict[str, List[ChangeCallback]] = {table: [] for table in TABLES}

    def _empty_document(self) -> Dict[str, Any]:
        return {
            SECTIONS_TABLE: [],
            QUESTIONS_TABLE: [],
            "sequences": {table: 0 for table in TABLES},
        }

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return self._empty_document()
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            raise PersistenceError(f"Could not read {self.path}: {exc}") from exc

        document = self._empty_document()
        if isinstance(payload, dict):
            for table in TABLES:
                rows = payload.get(table)
                if isinstance(rows, list):
                    document[table] = rows
            sequences = payload.get("sequences")
            if isinstance(sequences, dict):
                document["sequences"].update(sequences)
        return document

    def _write(self, document: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with self.path.open("w", encoding="utf-8") as handle:
                json.dump(document, handle, indent=2)
        except OSError as exc:
            raise PersistenceError(f"Could not write {self.path}: {exc}") from exc

    @staticmethod
    def _check_table(table: str, operation: str) -> None:
        if table not in TABLES:
            raise PersistenceError(
                f"Unknown table: {table}", table=table, operation=operation
            )

    def _notify(self, table: str) -> None:
        with self._lock:
            listeners = list(self._listeners.get(table, []))
        for callback in listeners:
            callback(table)

    def _remove_listener(self, table: str, callback: ChangeCallback) -> None:
        with self._lock:
            listeners = self._listeners.get(table, [])
            if callback in listeners:
                listeners.remove(callback)

    def select(
        self,
        table: str,
        *,
        order_by: str = "order_index",
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Return rows of ``table`` ordered by ``order_by``."""

        self._check_table(table, "select")
        with self._lock:
            rows = deepcopy(self._read()[table])
        rows.sort(key=lambda row: (row.get(order_by) is None, row.get(order_by) or 0))
        if descending:
            rows.reverse()
        if limit is not None:
            rows = rows[:limit]
        return rows

    def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        """Store ``row`` with a fresh id and timestamps."""

        self._check_table(table, "insert")
        with self._lock:
            document = self._read()
            sequence = int(document["sequences"].get(table, 0)) + 1
            document["sequences"][table] = sequence
            timestamp = utc_timestamp()
            record = dict(row)
            record["id"] = sequence
            record.setdefault("created_at", timestamp)
            record["updated_at"] = record.get("updated_at") or timestamp
            document[table].append(record)
            self._write(document)
        self._notify(table)
        return deepcopy(record)

    def update(self, table: str, record_id: int, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Apply ``changes`` to ``record_id`` and return the stored record."""

        self._check_table(table, "update")
        with self._lock:
            document = self._read()
            record = next((row for row in document[table] if row.get("id") == record_id), None)
            if record is None:
                raise PersistenceError(
                    f"No {table} record with id {record_id}.", table=table, operation="update"
                )
            record.update({key: value for key, value in changes.items() if key != "id"})
            record["updated_at"] = changes.get("updated_at") or utc_timestamp()
            self._write(document)
            result = deepcopy(record)
        self._notify(table)
        return result

    def delete(self, table: str, record_id: int) -> None:
        """Remove ``record_id`` from ``table``."""

        self.delete_many(table, [record_id])

    def delete_many(self, table: str, ids: Iterable[int]) -> None:
        """Remove every record whose id is listed in ``ids``."""

        self._check_table(table, "delete")
        targets = set(ids)
        if not targets:
            return
        with self._lock:
            document = self._read()
            document[table] = [row for row in document[table] if row.get("id") not in targets]
            self._write(document)
        self._notify(table)

    def upsert(self, table: str, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Merge ``rows`` into existing records by id, inserting unknown ids."""

        self._check_table(table, "upsert")
        if not rows:
            return []
        with self._lock:
            document = self._read()
            existing = {row.get("id"): row for row in document[table]}
            timestamp = utc_timestamp()
            stored: List[Dict[str, Any]] = []
            for row in rows:
                record = existing.get(row.get("id")) if row.get("id") is not None else None
                if record is None:
                    record = dict(row)
                    sequence = int(document["sequences"].get(table, 0))
                    if record.get("id") is None:
                        record["id"] = sequence + 1
                    document["sequences"][table] = max(sequence, int(record["id"]))
                    record.setdefault("created_at", timestamp)
                    document[table].append(record)
                    existing[record["id"]] = record
                else:
                    record.update(row)
                record["updated_at"] = row.get("updated_at") or timestamp
                stored.append(deepcopy(record))
            self._write(document)
        self._notify(table)
        return stored

    def subscribe(self, table: str, callback: ChangeCallback) -> LocalSubscription:
        """Invoke ``callback`` after every write to ``table``."""

        self._check_table(table, "subscribe")
        with self._lock:
            self._listeners[table].append(callback)
        logger.debug("Listening for changes on %s", table)
        return LocalSubscription(self, table, callback)
