"""Generic row storage over a single named table.

A table is an ordered collection of rows whose column order is the header
row. Rows are addressed by *position*: the 0-based index of a data row in
append order. Removing a row shifts every later position up by one, the same
way deleting a spreadsheet row does.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from database import get_table_headers, quote_identifier, table_exists

from .codec import decode_row, encode_cell, encode_row

logger = logging.getLogger(__name__)

Record = Dict[str, Any]


class StoreError(RuntimeError):
    """Base class for failures reported back to API callers."""


class SchemaMissing(StoreError):
    """Raised when a table the operation depends on does not exist."""

    def __init__(self, table_name: str):
        super().__init__(
            f'{table_name} table not found. Make sure the table is named exactly "{table_name}"'
        )
        self.table_name = table_name


class TableStore:
    """Row-level operations over one table of the backing SQLite store."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        table_name: str,
        required: bool = False,
        timezone: str = "UTC",
    ) -> None:
        self.conn = conn
        self.table_name = table_name
        self.required = required
        self.timezone = timezone

    def __repr__(self) -> str:
        return f"TableStore({self.table_name!r}, required={self.required})"

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    def exists(self) -> bool:
        return table_exists(self.conn, self.table_name)

    def _require(self) -> None:
        if not self.exists():
            raise SchemaMissing(self.table_name)

    def headers(self) -> List[str]:
        self._require()
        return get_table_headers(self.conn, self.table_name)

    def _raw_rows(self) -> List[Tuple[int, Tuple[Any, ...]]]:
        cursor = self.conn.execute(
            f"SELECT rowid, * FROM {quote_identifier(self.table_name)} ORDER BY rowid"
        )
        return [(row[0], tuple(row)[1:]) for row in cursor.fetchall()]

    def _rowid_at(self, position: int) -> int:
        rows = self._raw_rows()
        if position < 0 or position >= len(rows):
            raise IndexError(f"Row {position} is out of range for {self.table_name}")
        return rows[position][0]

    def count(self) -> int:
        if not self.exists():
            return 0
        cursor = self.conn.execute(f"SELECT COUNT(*) FROM {quote_identifier(self.table_name)}")
        return cursor.fetchone()[0]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def list_all(self) -> List[Record]:
        if not self.exists():
            if self.required:
                raise SchemaMissing(self.table_name)
            logger.info("%s table not found, returning empty list", self.table_name)
            return []
        headers = get_table_headers(self.conn, self.table_name)
        return [decode_row(headers, cells, self.timezone) for _, cells in self._raw_rows()]

    def find_index_by_id(self, record_id: Any, id_field: Optional[str] = None) -> Optional[int]:
        """Return the position of the first row whose id column equals ``record_id``.

        Ids compare as text, so a cell holding ``42`` matches ``"42"``.
        """
        headers = self.headers()
        column = headers.index(id_field) if id_field else 0
        if record_id in (None, ""):
            return None
        wanted = str(record_id)
        for position, (_, cells) in enumerate(self._raw_rows()):
            if column >= len(cells) or cells[column] in (None, ""):
                continue
            if str(cells[column]) == wanted:
                return position
        return None

    def get_at(self, position: int) -> Record:
        headers = self.headers()
        rows = self._raw_rows()
        if position < 0 or position >= len(rows):
            raise IndexError(f"Row {position} is out of range for {self.table_name}")
        return decode_row(headers, rows[position][1], self.timezone)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def insert(self, record: Mapping[str, Any]) -> None:
        headers = self.headers()
        columns = ", ".join(quote_identifier(header) for header in headers)
        placeholders = ", ".join("?" for _ in headers)
        self.conn.execute(
            f"INSERT INTO {quote_identifier(self.table_name)} ({columns}) VALUES ({placeholders})",
            encode_row(headers, record),
        )

    def update(self, position: int, record: Mapping[str, Any]) -> None:
        headers = self.headers()
        rowid = self._rowid_at(position)
        assignments = ", ".join(f"{quote_identifier(header)} = ?" for header in headers)
        self.conn.execute(
            f"UPDATE {quote_identifier(self.table_name)} SET {assignments} WHERE rowid = ?",
            [*encode_row(headers, record), rowid],
        )

    def update_cell(self, position: int, header: str, value: Any) -> None:
        headers = self.headers()
        if header not in headers:
            raise KeyError(f"Unknown column '{header}' in {self.table_name}")
        rowid = self._rowid_at(position)
        self.conn.execute(
            f"UPDATE {quote_identifier(self.table_name)} SET {quote_identifier(header)} = ? WHERE rowid = ?",
            (encode_cell(header, value), rowid),
        )

    def delete_at(self, position: int) -> None:
        self._require()
        rowid = self._rowid_at(position)
        self.conn.execute(f"DELETE FROM {quote_identifier(self.table_name)} WHERE rowid = ?", (rowid,))

    def delete_where(self, predicate: Callable[[Record], bool]) -> int:
        """Delete every row matching ``predicate``; returns how many were removed."""
        headers = self.headers()
        rows = self._raw_rows()
        removed = 0
        for rowid, cells in reversed(rows):
            if predicate(decode_row(headers, cells, self.timezone)):
                self.conn.execute(
                    f"DELETE FROM {quote_identifier(self.table_name)} WHERE rowid = ?", (rowid,)
                )
                removed += 1
        return removed


__all__ = ["Record", "SchemaMissing", "StoreError", "TableStore"]
