"""Lazy provisioning of yearly spreadsheets, monthly tabs and the Summary formulas.

The relational cache maps ``(user, year)`` to a spreadsheet and
``(spreadsheet, month)`` to a tab. The remote spreadsheet stays authoritative:
every ``ensure`` step is idempotent and treats "already exists" answers from
Google as success, so a request that died half way is repaired by the next one.
"""

from __future__ import annotations

import logging
from typing import Final

from sqlalchemy.orm import Session

from . import crud, formulas, models
from .config import DEFAULT_CATEGORIES, MONTHS, Settings
from .errors import (
    GatewaySignal,
    InvalidInputError,
    SheetAlreadyExistsError,
    SpreadsheetMissingError,
    UpstreamError,
)
from .sheets import RAW, USER_ENTERED, SheetsGateway

LOG = logging.getLogger(__name__)

DEFAULT_TAB_TITLE: Final[str] = "Sheet1"


def spreadsheet_name(year: int) -> str:
    return f"Expenses-{year}"


def validate_year(settings: Settings, year: int) -> int:
    """Reject implausible years before any network call is made."""

    if isinstance(year, bool) or not isinstance(year, int):
        raise InvalidInputError(f"Year must be an integer, got {year!r}")
    if not settings.year_in_range(year):
        raise InvalidInputError(f"Year must be between {settings.year_min} and {settings.year_max}")
    return year


def normalise_month(month: str) -> str:
    """Return the canonical English month name matching ``month`` case-insensitively."""

    candidate = (month or "").strip().lower()
    for name in MONTHS:
        if name.lower() == candidate:
            return name
    raise InvalidInputError(f"Unknown month: {month!r}")


class SummarySynchronizer:
    """Write Summary formula text; never reads computed values back."""

    def __init__(self, gateway: SheetsGateway) -> None:
        self.gateway = gateway

    def sync_all(self, spreadsheet_id: str, year: int) -> None:
        """Rewrite the yearly totals block and all twelve month rows."""

        self.gateway.batch_update_values(
            spreadsheet_id,
            formulas.summary_layout(year),
            input_option=USER_ENTERED,
        )
        LOG.debug("Summary formulas rewritten for %s (%d)", spreadsheet_id, year)

    def sync_month(self, spreadsheet_id: str, month: str, year: int) -> None:
        """Rewrite the Total, Count and Daily Average cells of a single month."""

        index = formulas.month_index(month)
        self.gateway.update_values(
            spreadsheet_id,
            formulas.month_formula_range(index),
            [formulas.month_formulas(month, index, year)],
            input_option=USER_ENTERED,
        )


class SpreadsheetProvisioner:
    """Resolve ``(user, year)`` to a yearly spreadsheet, creating it on first use."""

    def __init__(
        self,
        session: Session,
        settings: Settings,
        gateway: SheetsGateway,
        synchronizer: SummarySynchronizer | None = None,
    ) -> None:
        self.session = session
        self.settings = settings
        self.gateway = gateway
        self.synchronizer = synchronizer or SummarySynchronizer(gateway)

    def lookup(self, user: models.User, year: int) -> models.UserSpreadsheet | None:
        """Cache-only lookup; never creates anything."""

        validate_year(self.settings, year)
        return crud.find_spreadsheet(self.session, user.id, year)

    def ensure(self, user: models.User, year: int) -> models.UserSpreadsheet:
        validate_year(self.settings, year)
        record = crud.find_spreadsheet(self.session, user.id, year)
        if record is not None:
            try:
                self.verify_structure(record)
                return record
            except SpreadsheetMissingError:
                self.forget(record)
        record, fresh = self._create(user, year)
        self.verify_structure(record, fresh=fresh)
        return record

    def forget(self, record: models.UserSpreadsheet) -> None:
        """Drop a cache row whose spreadsheet was deleted from Drive."""

        LOG.warning(
            "Spreadsheet %s for user %s, year %d no longer exists; dropping cache row",
            record.spreadsheet_id,
            record.user_id,
            record.year,
            extra={"user_id": record.user_id, "spreadsheet_id": record.spreadsheet_id},
        )
        crud.delete_spreadsheet_record(self.session, record)

    def _create(self, user: models.User, year: int) -> tuple[models.UserSpreadsheet, bool]:
        remote = self.gateway.create_spreadsheet_file(spreadsheet_name(year))
        LOG.info("Created spreadsheet %s for user %s, year %d", remote.id, user.id, year)
        try:
            return crud.create_spreadsheet_record(self.session, user.id, year, remote.id), True
        except crud.EntityConflictError:
            # A concurrent request cached its spreadsheet first; use theirs.
            LOG.info("Spreadsheet for user %s, year %d created concurrently; re-fetching", user.id, year)
            self._discard_orphan(remote.id)
            winner = crud.find_spreadsheet(self.session, user.id, year)
            if winner is None:
                raise
            return winner, False

    def _discard_orphan(self, file_id: str) -> None:
        try:
            self.gateway.delete_file(file_id)
        except (UpstreamError, GatewaySignal) as exc:
            LOG.warning("Could not delete orphaned spreadsheet %s: %s", file_id, exc)

    def verify_structure(self, record: models.UserSpreadsheet, *, fresh: bool = False) -> None:
        """Make sure the Summary and Categories tabs exist."""

        metadata = self.gateway.get_metadata(record.spreadsheet_id)
        if metadata.find(formulas.SUMMARY_TITLE) is None:
            self._create_summary(record)
        if metadata.find(formulas.CATEGORIES_TITLE) is None:
            self._create_categories(record)
        if fresh:
            default_tab = metadata.find(DEFAULT_TAB_TITLE)
            if default_tab is not None:
                self._remove_default_tab(record, default_tab.sheet_id)

    def _create_summary(self, record: models.UserSpreadsheet) -> None:
        try:
            self.gateway.add_sheet(
                record.spreadsheet_id,
                formulas.SUMMARY_TITLE,
                rows=formulas.SUMMARY_ROW_COUNT,
                columns=formulas.SUMMARY_COLUMN_COUNT,
            )
        except SheetAlreadyExistsError:
            LOG.debug("Summary tab already exists in %s", record.spreadsheet_id)
            return
        self.synchronizer.sync_all(record.spreadsheet_id, record.year)
        LOG.info("Created Summary tab in %s", record.spreadsheet_id)

    def _create_categories(self, record: models.UserSpreadsheet) -> None:
        try:
            self.gateway.add_sheet(record.spreadsheet_id, formulas.CATEGORIES_TITLE)
        except SheetAlreadyExistsError:
            LOG.debug("Categories tab already exists in %s", record.spreadsheet_id)
            return
        values = [[formulas.CATEGORIES_HEADER]] + [[name] for name in DEFAULT_CATEGORIES]
        self.gateway.update_values(
            record.spreadsheet_id,
            f"{formulas.CATEGORIES_TITLE}!A1:A{len(values)}",
            values,
            input_option=RAW,
        )
        LOG.info("Created Categories tab in %s", record.spreadsheet_id)

    def _remove_default_tab(self, record: models.UserSpreadsheet, sheet_id: int) -> None:
        try:
            self.gateway.delete_sheet(record.spreadsheet_id, sheet_id)
        except (UpstreamError, GatewaySignal) as exc:
            LOG.warning("Could not remove default tab from %s: %s", record.spreadsheet_id, exc)


class SheetProvisioner:
    """Resolve ``(spreadsheet, month)`` to a monthly tab, creating it on first use."""

    def __init__(
        self,
        session: Session,
        gateway: SheetsGateway,
        synchronizer: SummarySynchronizer | None = None,
    ) -> None:
        self.session = session
        self.gateway = gateway
        self.synchronizer = synchronizer or SummarySynchronizer(gateway)

    def ensure(self, spreadsheet: models.UserSpreadsheet, month: str) -> models.UserSheet:
        month = normalise_month(month)
        record = crud.find_sheet(self.session, spreadsheet, month)
        if record is not None:
            return record

        sheet_id = self._create_tab(spreadsheet, month)
        try:
            record = crud.create_sheet_record(self.session, spreadsheet, month, sheet_id)
        except crud.EntityConflictError:
            record = crud.find_sheet(self.session, spreadsheet, month)
            if record is None:
                raise
        # A new tab changes which Summary references resolve.
        self.synchronizer.sync_all(spreadsheet.spreadsheet_id, spreadsheet.year)
        LOG.info("Provisioned %s tab in %s", month, spreadsheet.spreadsheet_id)
        return record

    def forget(self, spreadsheet: models.UserSpreadsheet, month: str) -> None:
        """Drop a cache row whose tab no longer exists remotely."""

        record = crud.find_sheet(self.session, spreadsheet, normalise_month(month))
        if record is not None:
            LOG.info("Dropping stale %s cache row for %s", record.month, spreadsheet.spreadsheet_id)
            crud.delete_sheet_record(self.session, record)

    def _create_tab(self, spreadsheet: models.UserSpreadsheet, month: str) -> int:
        try:
            properties = self.gateway.add_sheet(spreadsheet.spreadsheet_id, month)
        except SheetAlreadyExistsError:
            return self._adopt_existing_tab(spreadsheet, month)
        self._write_header(spreadsheet, month)
        return properties.sheet_id

    def _adopt_existing_tab(self, spreadsheet: models.UserSpreadsheet, month: str) -> int:
        metadata = self.gateway.get_metadata(spreadsheet.spreadsheet_id)
        properties = metadata.find(month)
        if properties is None:
            raise UpstreamError(f"Tab {month!r} reported as existing but missing from {spreadsheet.spreadsheet_id}")
        header = self.gateway.get_values(spreadsheet.spreadsheet_id, formulas.month_header_range(month))
        if not header.values:
            self._write_header(spreadsheet, month)
        LOG.debug("Adopted existing %s tab (%d)", month, properties.sheet_id)
        return properties.sheet_id

    def _write_header(self, spreadsheet: models.UserSpreadsheet, month: str) -> None:
        self.gateway.update_values(
            spreadsheet.spreadsheet_id,
            formulas.month_header_range(month),
            [list(formulas.MONTH_HEADER)],
            input_option=RAW,
        )


__all__ = [
    "SheetProvisioner",
    "SpreadsheetProvisioner",
    "SummarySynchronizer",
    "normalise_month",
    "spreadsheet_name",
    "validate_year",
]
