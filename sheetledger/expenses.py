"""Expense rows and yearly summaries read from and written to the monthly tabs."""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from sqlalchemy.orm import Session

from . import crud, formulas, models, schemas
from .config import MONTHS, Settings
from .errors import (
    InvalidInputError,
    NoSheetError,
    NoSpreadsheetError,
    RangeNotFoundError,
    SpreadsheetMissingError,
)
from .provisioning import (
    SheetProvisioner,
    SpreadsheetProvisioner,
    SummarySynchronizer,
    normalise_month,
    validate_year,
)
from .sheets import RAW, SheetsGateway

LOG = logging.getLogger(__name__)

DATE_FORMAT = "%Y-%m-%d"


@dataclass(frozen=True, slots=True)
class NewExpense:
    """A validated expense ready to be appended to its month tab."""

    date: str
    amount: float
    category: str
    year: int
    month: str

    def as_row(self) -> list[Any]:
        return [self.date, self.amount, self.category]


def prepare_expense(payload: schemas.ExpenseCreate, settings: Settings) -> NewExpense:
    """Validate a new expense without touching any external service.

    Raises:
        InvalidInputError: For an unparsable date, an out-of-range year, a
            non-finite amount or a blank category.
    """

    raw_date = (payload.date or "").strip()
    try:
        parsed = datetime.strptime(raw_date, DATE_FORMAT).date()
    except ValueError as exc:
        raise InvalidInputError("Invalid or missing date") from exc
    if not settings.year_in_range(parsed.year):
        raise InvalidInputError("Invalid year derived from date")
    if not math.isfinite(payload.amount):
        raise InvalidInputError("Amount must be a finite number")
    category = (payload.category or "").strip()
    if not category:
        raise InvalidInputError("Category is required")
    return NewExpense(
        date=parsed.strftime(DATE_FORMAT),
        amount=payload.amount,
        category=category,
        year=parsed.year,
        month=MONTHS[parsed.month - 1],
    )


def _as_number(value: Any) -> float:
    """Coerce a cell value to float; error strings and blanks count as zero."""

    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, int | float):
        return float(value) if math.isfinite(value) else 0.0
    try:
        number = float(str(value).replace(",", "").strip())
    except ValueError:
        return 0.0
    return number if math.isfinite(number) else 0.0


def _cell(row: list[Any], index: int) -> Any:
    return row[index] if index < len(row) else None


def _present(value: Any) -> bool:
    return value is not None and str(value).strip() != ""


def empty_summary() -> schemas.SummaryRead:
    return schemas.SummaryRead(
        total_expenses=0,
        total_transactions=0,
        average_per_month=0,
        this_month_total=0,
        this_month_transactions=0,
        daily_average=0,
        monthly_breakdown=[],
    )


def find_cached_spreadsheet(
    session: Session, settings: Settings, user: models.User, year: int
) -> models.UserSpreadsheet | None:
    """Cache-only lookup used by the read paths, which never provision."""

    validate_year(settings, year)
    return crud.find_spreadsheet(session, user.id, year)


def _no_spreadsheet(year: int) -> NoSpreadsheetError:
    return NoSpreadsheetError(f"No expense data found for {year}. Start by adding your first expense for this year.")


def require_spreadsheet(
    session: Session, settings: Settings, user: models.User, year: int
) -> models.UserSpreadsheet:
    record = find_cached_spreadsheet(session, settings, user, year)
    if record is None:
        raise _no_spreadsheet(year)
    return record


class ExpenseService:
    """Expense reads and writes for one user within one request."""

    def __init__(
        self,
        session: Session,
        settings: Settings,
        gateway: SheetsGateway,
        *,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.session = session
        self.settings = settings
        self.gateway = gateway
        self.today = today
        self.synchronizer = SummarySynchronizer(gateway)
        self.spreadsheets = SpreadsheetProvisioner(session, settings, gateway, self.synchronizer)
        self.sheets = SheetProvisioner(session, gateway, self.synchronizer)

    def add_expense(self, user: models.User, expense: NewExpense) -> schemas.ExpenseCreated:
        spreadsheet = self.spreadsheets.ensure(user, expense.year)
        self.sheets.ensure(spreadsheet, expense.month)
        try:
            self._append(spreadsheet, expense)
        except RangeNotFoundError:
            # The cached tab was removed remotely; provision it again and retry once.
            LOG.warning("Cached %s tab missing in %s; re-provisioning", expense.month, spreadsheet.spreadsheet_id)
            self.sheets.forget(spreadsheet, expense.month)
            self.sheets.ensure(spreadsheet, expense.month)
            self._append(spreadsheet, expense)

        try:
            self.synchronizer.sync_month(spreadsheet.spreadsheet_id, expense.month, expense.year)
        except RangeNotFoundError:
            LOG.warning("Summary tab missing in %s; rebuilding", spreadsheet.spreadsheet_id)
            self.spreadsheets.verify_structure(spreadsheet)

        LOG.info("Recorded expense for user %s in %s %d", user.id, expense.month, expense.year)
        return schemas.ExpenseCreated(
            date=expense.date,
            amount=expense.amount,
            category=expense.category,
            month=expense.month,
            year=expense.year,
        )

    def _append(self, spreadsheet: models.UserSpreadsheet, expense: NewExpense) -> None:
        self.gateway.append_values(
            spreadsheet.spreadsheet_id,
            formulas.month_append_range(expense.month),
            [expense.as_row()],
            input_option=RAW,
        )

    def query_expenses(self, spreadsheet: models.UserSpreadsheet, month: str) -> list[list[Any]]:
        """Return the rows below the header that have both a date and an amount."""

        month = normalise_month(month)
        try:
            values = self.gateway.get_values(
                spreadsheet.spreadsheet_id, formulas.month_append_range(month)
            ).values
        except RangeNotFoundError as exc:
            raise NoSheetError(
                f"No expenses found for {month} {spreadsheet.year}. "
                "Add your first expense for this month to get started."
            ) from exc
        except SpreadsheetMissingError as exc:
            year = spreadsheet.year
            self.spreadsheets.forget(spreadsheet)
            raise _no_spreadsheet(year) from exc
        return [row for row in values[1:] if _present(_cell(row, 0)) and _present(_cell(row, 1))]

    def summarize_year(self, spreadsheet: models.UserSpreadsheet) -> schemas.SummaryRead:
        ranges = [formulas.stats_values_range(), formulas.breakdown_values_range()]
        try:
            response = self.gateway.batch_get_values(spreadsheet.spreadsheet_id, ranges)
        except RangeNotFoundError:
            LOG.warning("Summary tab missing in %s; rebuilding", spreadsheet.spreadsheet_id)
            self.spreadsheets.verify_structure(spreadsheet)
            return empty_summary()
        except SpreadsheetMissingError:
            self.spreadsheets.forget(spreadsheet)
            return empty_summary()

        value_ranges = response.value_ranges
        stats = value_ranges[0].values if value_ranges else []
        breakdown_rows = value_ranges[1].values if len(value_ranges) > 1 else []

        breakdown: list[schemas.MonthlyBreakdownEntry] = []
        for row in breakdown_rows:
            name = str(_cell(row, 0) or "").strip()
            if name not in MONTHS:
                continue
            breakdown.append(
                schemas.MonthlyBreakdownEntry(
                    month=name,
                    total=round(_as_number(_cell(row, 1)), 2),
                    transactions=int(_as_number(_cell(row, 2))),
                    daily_average=round(_as_number(_cell(row, 3)), 2),
                )
            )

        current_month = MONTHS[self.today().month - 1]
        this_month = next((entry for entry in breakdown if entry.month == current_month), None)

        def stat(index: int) -> float:
            return _as_number(_cell(stats[index], 0)) if index < len(stats) else 0.0

        active = sorted((entry for entry in breakdown if entry.total != 0), key=lambda e: MONTHS.index(e.month))
        return schemas.SummaryRead(
            total_expenses=round(stat(0), 2),
            total_transactions=int(stat(1)),
            average_per_month=round(stat(2), 2),
            this_month_total=this_month.total if this_month else 0,
            this_month_transactions=this_month.transactions if this_month else 0,
            daily_average=this_month.daily_average if this_month else 0,
            monthly_breakdown=active,
        )


__all__ = [
    "ExpenseService",
    "NewExpense",
    "empty_summary",
    "find_cached_spreadsheet",
    "prepare_expense",
    "require_spreadsheet",
]
