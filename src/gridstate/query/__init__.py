"""Keyset-paginated listings over the remote records table."""

from gridstate.query.cursor import decode_cursor, encode_cursor, is_after_cursor, is_valid_cursor
from gridstate.query.engine import PaginationEngine, build_remote_params, filter_records, paginate_records
from gridstate.query.static import BUNDLED_RECORDS

__all__ = [
    "BUNDLED_RECORDS",
    "PaginationEngine",
    "build_remote_params",
    "decode_cursor",
    "encode_cursor",
    "filter_records",
    "is_after_cursor",
    "is_valid_cursor",
    "paginate_records",
]
