"""Helpers translating table UI state into store query arguments."""

from typing import Optional, Sequence, Tuple

# Range end used when a table asks for every row.
ALL_ROWS_END = 999999999999999


def table_pagination(page: int, items_per_page: int, sort_by: Optional[Sequence[dict]] = None,
                     default_column: str = "id", is_ascending: bool = True) -> Tuple[int, int, str, bool]:
    """Return `(range_start, range_end, column, ascending)` for a table page.

    `sort_by` is the table's list of `{"key": ..., "order": "asc"|"desc"}`
    entries; only the first is used. `items_per_page == -1` selects all
    rows. Ranges are inclusive and pages start at 1.
    """
    if sort_by:
        column = sort_by[0]["key"]
        ascending = sort_by[0].get("order", "asc") == "asc"
    else:
        column, ascending = default_column, is_ascending

    if items_per_page == -1:
        return 0, ALL_ROWS_END, column, ascending

    if page < 1 or items_per_page < 1:
        raise ValueError("page and items_per_page must be >= 1")
    range_start = (page - 1) * items_per_page
    range_end = range_start + items_per_page - 1
    return range_start, range_end, column, ascending


def table_search(search: Optional[str]) -> str:
    """Normalise an optional search box value to a string."""
    return search or ""
