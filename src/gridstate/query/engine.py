"""Keyset pagination over the remote records table with a bundled fallback.

Both paths honour one contract: rows ordered by ``(timestamp desc, id
desc)``, conjunctive filters, pages bounded strictly after the cursor, and a
``next_cursor`` that is non-null iff more matching rows exist.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from pydantic import ValidationError

from gridstate._result import Err, Ok, Result
from gridstate.accessor import RemoteClientAccessor
from gridstate.models._base import parse_iso_timestamp
from gridstate.models.records import CursorPayload, ListedRecord, ListQuery, ListResult
from gridstate.query.cursor import decode_cursor, encode_cursor, is_after_cursor
from gridstate.query.static import BUNDLED_RECORDS

_logger = logging.getLogger(__name__)

SELECT_FIELDS = "id,timestamp,title,description,category,version,author"
ORDER_CLAUSE = "timestamp.desc,id.desc"


def _quote(value: str) -> str:
    """Quote a value for use inside a PostgREST logic tree."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def build_remote_params(
    query: ListQuery,
    cursor: CursorPayload | None,
    *,
    search_column: str = "fts",
    fetch_limit: int | None = None,
) -> list[tuple[str, str]]:
    """Translate a listing query into PostgREST query parameters."""
    params: list[tuple[str, str]] = [("select", SELECT_FIELDS), ("order", ORDER_CLAUSE)]
    if query.category:
        params.append(("category", f"eq.{query.category}"))
    if query.start_date:
        params.append(("timestamp", f"gte.{query.start_date}"))
    if query.end_date:
        params.append(("timestamp", f"lte.{query.end_date}"))
    if query.search:
        params.append((search_column, f"plfts.{query.search}"))
    if fetch_limit:
        params.append(("limit", str(fetch_limit)))
    if cursor is not None:
        ts = _quote(cursor.timestamp)
        ident = _quote(cursor.id)
        params.append(("or", f"(timestamp.lt.{ts},and(timestamp.eq.{ts},id.lt.{ident}))"))
    return params


def _matches(record: ListedRecord, query: ListQuery) -> bool:
    if query.category and record.category.value != query.category:
        return False
    if query.start_date and record.moment < parse_iso_timestamp(query.start_date):
        return False
    if query.end_date and record.moment > parse_iso_timestamp(query.end_date):
        return False
    if query.search:
        needle = query.search.lower()
        if needle not in record.title.lower() and needle not in record.description.lower():
            return False
    return True


def filter_records(records: Iterable[ListedRecord], query: ListQuery) -> list[ListedRecord]:
    """Apply the query filters and sort into the natural order."""
    matching = [record for record in records if _matches(record, query)]
    matching.sort(key=lambda record: record.position, reverse=True)
    return matching


def _page(ordered: Sequence[ListedRecord], limit: int | None) -> ListResult:
    if limit is None:
        return ListResult(entries=list(ordered), next_cursor=None)
    entries = list(ordered[:limit])
    next_cursor = encode_cursor(entries[-1]) if len(ordered) > limit and entries else None
    return ListResult(entries=entries, next_cursor=next_cursor)


def paginate_records(records: Iterable[ListedRecord], query: ListQuery) -> ListResult:
    """Serve one page of *records* in memory with the keyset contract."""
    ordered = filter_records(records, query)
    cursor = decode_cursor(query.cursor)
    if cursor is not None:
        ordered = [record for record in ordered if is_after_cursor(record, cursor)]
    return _page(ordered, query.limit)


class PaginationEngine:
    """Serves ``list_records`` from the remote table or the bundled dataset.

    The remote query fetches one row beyond ``limit`` so that ``next_cursor``
    reflects real availability rather than a full-page guess.
    """

    def __init__(
        self,
        accessor: RemoteClientAccessor,
        *,
        table: str = "app_updates",
        search_column: str = "fts",
        dataset: Sequence[ListedRecord] = BUNDLED_RECORDS,
        default_limit: int | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._accessor = accessor
        self._table = table
        self._search_column = search_column
        self._dataset = tuple(dataset)
        self._default_limit = default_limit
        self._logger = logger or _logger

    def _effective(self, query: ListQuery | None) -> ListQuery:
        query = query or ListQuery()
        if query.limit is None and self._default_limit is not None:
            return query.model_copy(update={"limit": self._default_limit})
        return query

    async def list_records(self, query: ListQuery | None = None) -> ListResult:
        """Return one page of records matching *query*."""
        query = self._effective(query)
        cursor = decode_cursor(query.cursor)
        fetch_limit = query.limit + 1 if query.limit else None
        params = build_remote_params(
            query,
            cursor,
            search_column=self._search_column,
            fetch_limit=fetch_limit,
        )

        result = await self._select_records(params)
        match result:
            case Err(reason=reason):
                self._logger.info("Remote records unavailable (%s). Falling back to bundled dataset.", reason)
                return paginate_records(self._dataset, query)
            case Ok(value=rows):
                if not rows and cursor is None:
                    self._logger.info("Remote store returned no records. Falling back to bundled dataset.")
                    return paginate_records(self._dataset, query)
                return _page(rows, query.limit)

    async def list_records_since(self, timestamp: str) -> list[ListedRecord]:
        """Every record at or after *timestamp*, newest first."""
        query = ListQuery(start_date=timestamp)
        params = [
            ("select", SELECT_FIELDS),
            ("timestamp", f"gte.{query.start_date}"),
            ("order", ORDER_CLAUSE),
        ]
        result = await self._select_records(params)
        match result:
            case Err(reason=reason):
                self._logger.info("Remote records unavailable (%s). Falling back to bundled dataset.", reason)
                return filter_records(self._dataset, query)
            case Ok(value=rows):
                if not rows:
                    self._logger.info("Remote store returned no records. Falling back to bundled dataset.")
                    return filter_records(self._dataset, query)
                return rows

    async def _select_records(self, params: list[tuple[str, str]]) -> Result[list[ListedRecord]]:
        with self._accessor.lease() as handle:
            if handle is None:
                return Err("remote store not configured or unreachable")
            try:
                result = await handle.select(self._table, params)
            except Exception as exc:
                result = Err.from_exception(exc, operation="records select")
            match result:
                case Err():
                    self._accessor.invalidate()
                    return result
                case Ok(value=rows):
                    try:
                        return Ok([ListedRecord.model_validate(row) for row in rows])
                    except ValidationError as exc:
                        return Err.from_exception(exc, operation="records decode")
