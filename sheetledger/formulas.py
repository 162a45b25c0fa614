"""Google Sheets formula templates for the Summary tab.

Everything here is a pure function of ``(month, month_index, year)`` so the
formula dialect can change without touching the provisioning code. Month
indexes are zero-based (``0`` is January).

Summary layout::

    A1            Expenses <year>
    A2:B2         Metric | Value
    A3:B5         yearly totals (total, transactions, average per month)
    A12:D12       Month | Total | Count | Daily Average
    A13:D24       one row per calendar month
"""

from __future__ import annotations

from typing import Final

from .config import MONTHS

SUMMARY_TITLE: Final[str] = "Summary"
CATEGORIES_TITLE: Final[str] = "Categories"
CATEGORIES_HEADER: Final[str] = "Category"
MONTH_HEADER: Final[tuple[str, str, str]] = ("Date", "Amount", "Category")

SUMMARY_ROW_COUNT: Final[int] = 30
SUMMARY_COLUMN_COUNT: Final[int] = 5

STATS_HEADER_ROW: Final[int] = 2
FIRST_STATS_ROW: Final[int] = 3
BREAKDOWN_HEADER_ROW: Final[int] = 12
FIRST_MONTH_ROW: Final[int] = 13
LAST_MONTH_ROW: Final[int] = FIRST_MONTH_ROW + len(MONTHS) - 1

STATS_LABELS: Final[tuple[str, str, str]] = ("Total Expenses", "Total Transactions", "Average per Month")
BREAKDOWN_HEADER: Final[tuple[str, str, str, str]] = ("Month", "Total", "Count", "Daily Average")


def quote_sheet(title: str) -> str:
    """Return ``title`` quoted for use in an A1 reference (``'March'``)."""

    return "'" + title.replace("'", "''") + "'"


def month_index(month: str) -> int:
    """Return the zero-based calendar index of ``month``.

    Raises:
        ValueError: If ``month`` is not one of the twelve English month names.
    """

    try:
        return MONTHS.index(month)
    except ValueError as exc:
        raise ValueError(f"Unknown month name: {month!r}") from exc


def month_row(index: int) -> int:
    """Return the 1-based Summary row holding the month at ``index``."""

    if not 0 <= index < len(MONTHS):
        raise ValueError(f"Month index out of range: {index}")
    return FIRST_MONTH_ROW + index


def amount_column_ref(month: str) -> str:
    return f"{quote_sheet(month)}!B2:B"


def total_formula(month: str) -> str:
    return f"=IFERROR(SUM({amount_column_ref(month)}),0)"


def count_formula(month: str) -> str:
    return f"=IFERROR(COUNTA({amount_column_ref(month)}),0)"


def daily_average_formula(month: str, index: int, year: int) -> str:
    """Divide the month total by elapsed days (current month) or by the month length.

    The spreadsheet evaluates the condition, so the value stays correct as
    days pass without this service touching the cell again.
    """

    row = month_row(index)
    number = index + 1
    return (
        f"=IFERROR(IF(AND(YEAR(TODAY())={year},MONTH(TODAY())={number}),"
        f"B{row}/DAY(TODAY()),"
        f"B{row}/DAY(EOMONTH(DATE({year},{number},1),0))),0)"
    )


def month_formulas(month: str, index: int, year: int) -> list[str]:
    """Return the Total, Count and Daily Average formulas of one month row."""

    return [total_formula(month), count_formula(month), daily_average_formula(month, index, year)]


def month_formula_range(index: int) -> str:
    row = month_row(index)
    return f"{SUMMARY_TITLE}!B{row}:D{row}"


def stats_block(year: int) -> list[list[str]]:
    """Return A1:B5: title, stats header and the yearly total formulas."""

    first, last = FIRST_MONTH_ROW, LAST_MONTH_ROW
    return [
        [f"Expenses {year}", ""],
        ["Metric", "Value"],
        [STATS_LABELS[0], f"=SUM(B{first}:B{last})"],
        [STATS_LABELS[1], f"=SUM(C{first}:C{last})"],
        [STATS_LABELS[2], f'=IFERROR(B{FIRST_STATS_ROW}/COUNTIF(B{first}:B{last},">0"),0)'],
    ]


def stats_range() -> str:
    last = FIRST_STATS_ROW + len(STATS_LABELS) - 1
    return f"{SUMMARY_TITLE}!A1:B{last}"


def stats_values_range() -> str:
    """Range holding the computed yearly totals (total, transactions, average)."""

    last = FIRST_STATS_ROW + len(STATS_LABELS) - 1
    return f"{SUMMARY_TITLE}!B{FIRST_STATS_ROW}:B{last}"


def breakdown_block(year: int) -> list[list[str]]:
    """Return A12:D24: the breakdown header and one formula row per month."""

    rows: list[list[str]] = [list(BREAKDOWN_HEADER)]
    for index, month in enumerate(MONTHS):
        rows.append([month, *month_formulas(month, index, year)])
    return rows


def breakdown_range() -> str:
    return f"{SUMMARY_TITLE}!A{BREAKDOWN_HEADER_ROW}:D{LAST_MONTH_ROW}"


def breakdown_values_range() -> str:
    """Range of the twelve month rows without their header."""

    return f"{SUMMARY_TITLE}!A{FIRST_MONTH_ROW}:D{LAST_MONTH_ROW}"


def summary_layout(year: int) -> list[tuple[str, list[list[str]]]]:
    """Return every ``(range, values)`` pair that makes up a complete Summary tab."""

    return [(stats_range(), stats_block(year)), (breakdown_range(), breakdown_block(year))]


def month_header_range(month: str) -> str:
    return f"{quote_sheet(month)}!A1:C1"


def month_append_range(month: str) -> str:
    return f"{quote_sheet(month)}!A:C"


def categories_column_range() -> str:
    return f"{CATEGORIES_TITLE}!A:A"


def categories_cell(row_index: int) -> str:
    """A1 reference of the Categories cell at zero-based ``row_index``."""

    return f"{CATEGORIES_TITLE}!A{row_index + 1}"


__all__ = [
    "CATEGORIES_HEADER",
    "CATEGORIES_TITLE",
    "MONTH_HEADER",
    "SUMMARY_TITLE",
    "breakdown_block",
    "breakdown_range",
    "breakdown_values_range",
    "categories_cell",
    "categories_column_range",
    "count_formula",
    "daily_average_formula",
    "month_append_range",
    "month_formula_range",
    "month_formulas",
    "month_header_range",
    "month_index",
    "month_row",
    "quote_sheet",
    "stats_block",
    "stats_range",
    "stats_values_range",
    "summary_layout",
    "total_formula",
]
