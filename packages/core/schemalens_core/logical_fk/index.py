"""Read-only column index built once per detection run."""

from __future__ import annotations

from collections.abc import Iterable

from schemalens_core.logical_fk.domain import DetectionColumn


def strip_brackets(identifier: str) -> str:
    return identifier.replace("[", "").replace("]", "").strip()


class SchemaIndex:
    """Column snapshot with case-insensitive table and column lookups.

    When two tables share a name (different schemas) the lowest table id wins,
    so lookups stay deterministic.
    """

    def __init__(self, columns: Iterable[DetectionColumn]) -> None:
        self.columns: list[DetectionColumn] = sorted(
            columns, key=lambda c: (c.table_id, c.column_id)
        )
        self._by_table: dict[int, list[DetectionColumn]] = {}
        self._table_ids: dict[str, int] = {}
        self._table_names: dict[int, str] = {}
        self._by_name: dict[tuple[int, str], DetectionColumn] = {}

        for column in self.columns:
            self._by_table.setdefault(column.table_id, []).append(column)
            self._table_ids.setdefault(column.table_name.lower(), column.table_id)
            self._table_names.setdefault(column.table_id, column.table_name)
            self._by_name.setdefault((column.table_id, column.column_name.lower()), column)

    def __len__(self) -> int:
        return len(self.columns)

    @property
    def table_ids(self) -> dict[str, int]:
        """Lower-cased table name to table id."""
        return self._table_ids

    def table_name(self, table_id: int) -> str | None:
        return self._table_names.get(table_id)

    def columns_of(self, table_id: int) -> list[DetectionColumn]:
        return self._by_table.get(table_id, [])

    def find_column(self, table_id: int, column_name: str) -> DetectionColumn | None:
        """Exact case-insensitive match first, then with brackets stripped."""
        column = self._by_name.get((table_id, column_name.lower()))
        if column is None:
            column = self._by_name.get((table_id, strip_brackets(column_name).lower()))
        return column
