"""Search analytics: in-process recording plus a SQLite search log."""
import json
import sys
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Deque, Dict, Iterable, List, Optional

import aiosqlite


class SearchAnalytics:
    """Collects one record per search call.

    ``record`` is fire-and-forget: it never raises, whatever it is given.
    """

    def __init__(self, max_records: int = 1000, verbose: bool = True):
        self.verbose = verbose
        self._records: Deque[Dict[str, Any]] = deque(maxlen=max_records)

    def record(self, query: str, filters: Any, result_count: int, from_cache: bool) -> None:
        try:
            entry = {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "query": query,
                "filters": json.loads(json.dumps(filters, default=_loggable)),
                "result_count": result_count,
                "from_cache": bool(from_cache),
            }
            self._records.append(entry)
            if self.verbose:
                print(f"[Search Analytics] {json.dumps(entry)}", file=sys.stderr)
        except Exception as e:
            print(f"[Analytics] Dropped search record: {e}", file=sys.stderr)

    def drain(self) -> List[Dict[str, Any]]:
        """Return buffered records, oldest first, and clear the buffer."""
        records = list(self._records)
        self._records.clear()
        return records

    def __len__(self) -> int:
        return len(self._records)


def _loggable(value: Any) -> Any:
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    return str(value)


class SearchLogStore:
    """Async SQLite log of past searches.

    Lives next to the prompt data (default: <data_dir>/search_log.db).
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._connection: Optional[aiosqlite.Connection] = None

    async def initialize(self) -> None:
        """Initialize the database, creating the searches table if needed."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._connection = await aiosqlite.connect(self.db_path)
        self._connection.row_factory = aiosqlite.Row

        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS search_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                query TEXT NOT NULL,
                filters TEXT NOT NULL,
                result_count INTEGER NOT NULL,
                from_cache INTEGER DEFAULT 0
            )
        """)

        await self._connection.execute("""
            CREATE INDEX IF NOT EXISTS idx_search_log_timestamp
            ON search_log(timestamp DESC)
        """)

        await self._connection.commit()

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    def _require_connection(self) -> aiosqlite.Connection:
        if not self._connection:
            raise RuntimeError("SearchLogStore not initialized. Call initialize() first.")
        return self._connection

    async def record_search(self, record: Dict[str, Any]) -> int:
        """Persist a single analytics record.

        Args:
            record: Dict as produced by SearchAnalytics.record

        Returns:
            ID of the stored row
        """
        connection = self._require_connection()

        cursor = await connection.execute(
            "INSERT INTO search_log (timestamp, query, filters, result_count, from_cache) VALUES (?, ?, ?, ?, ?)",
            _row_values(record),
        )
        await connection.commit()

        return cursor.lastrowid

    async def record_many(self, records: Iterable[Dict[str, Any]]) -> int:
        """Persist several records in one transaction. Returns the count."""
        connection = self._require_connection()

        rows = [_row_values(record) for record in records]
        if not rows:
            return 0

        await connection.executemany(
            "INSERT INTO search_log (timestamp, query, filters, result_count, from_cache) VALUES (?, ?, ?, ?, ?)",
            rows,
        )
        await connection.commit()

        return len(rows)

    async def get_history(self, limit: int = 20) -> List[Dict[str, Any]]:
        """Get recent searches, newest first."""
        connection = self._require_connection()

        cursor = await connection.execute(
            "SELECT * FROM search_log ORDER BY id DESC LIMIT ?",
            (limit,),
        )
        rows = await cursor.fetchall()

        return [self._row_to_dict(row) for row in rows]

    async def clear(self) -> int:
        """Delete every logged search. Returns the number removed."""
        connection = self._require_connection()

        cursor = await connection.execute("DELETE FROM search_log")
        await connection.commit()

        return cursor.rowcount

    def _row_to_dict(self, row: aiosqlite.Row) -> Dict[str, Any]:
        """Convert a database row to a dictionary with parsed filters."""
        result = dict(row)
        try:
            result["filters"] = json.loads(result.get("filters") or "{}")
        except json.JSONDecodeError:
            result["filters"] = {}
        result["from_cache"] = bool(result.get("from_cache"))
        return result


def _row_values(record: Dict[str, Any]) -> tuple:
    return (
        record.get("timestamp") or datetime.now(timezone.utc).isoformat(),
        record.get("query", ""),
        json.dumps(record.get("filters") or {}, default=_loggable),
        int(record.get("result_count", 0)),
        1 if record.get("from_cache") else 0,
    )
