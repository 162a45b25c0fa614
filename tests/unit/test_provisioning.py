from __future__ import annotations

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from sheetledger import crud, models
from sheetledger.database import Base
from sheetledger.errors import InvalidInputError, SheetAlreadyExistsError, UpstreamError
from sheetledger.provisioning import SheetProvisioner, SpreadsheetProvisioner, normalise_month, validate_year
from tests.fakes import FakeSheetsGateway


@pytest.fixture()
def provisioner(db_session, settings, fake_gateway):
    return SpreadsheetProvisioner(db_session, settings, fake_gateway)


@pytest.fixture()
def sheets(db_session, fake_gateway):
    return SheetProvisioner(db_session, fake_gateway)


def test_ensure_creates_and_structures_a_new_spreadsheet(provisioner, fake_gateway, db_session, user):
    record = provisioner.ensure(user, 2024)

    remote = fake_gateway.spreadsheet(record.spreadsheet_id)
    assert remote.name == "Expenses-2024"
    assert [tab.title for tab in remote.tabs] == ["Summary", "Categories"]
    summary = remote.tab("Summary")
    assert (summary.rows, summary.columns) == (30, 5)
    assert fake_gateway.cell(record.spreadsheet_id, "Summary!A1") == "Expenses 2024"
    assert fake_gateway.cell(record.spreadsheet_id, "Summary!B15") == "=IFERROR(SUM('March'!B2:B),0)"
    assert fake_gateway.tab_cells(record.spreadsheet_id, "Categories") == [
        ["Category"],
        ["Food"],
        ["Transport"],
        ["Shopping"],
        ["Bills"],
        ["Other"],
    ]
    assert crud.find_spreadsheet(db_session, user.id, 2024).spreadsheet_id == record.spreadsheet_id


def test_ensure_reuses_the_cached_spreadsheet(provisioner, fake_gateway, user):
    first = provisioner.ensure(user, 2024)
    fake_gateway.calls.clear()

    second = provisioner.ensure(user, 2024)

    assert second.spreadsheet_id == first.spreadsheet_id
    assert fake_gateway.calls_to("create_spreadsheet_file") == []
    assert len(fake_gateway.spreadsheets) == 1


def test_lookup_never_creates(provisioner, fake_gateway, user):
    assert provisioner.lookup(user, 2023) is None
    assert fake_gateway.calls == []


@pytest.mark.parametrize("year", [1899, 2101, -5, 10_000])
def test_implausible_years_are_rejected_before_any_call(provisioner, fake_gateway, user, year):
    with pytest.raises(InvalidInputError):
        provisioner.ensure(user, year)
    with pytest.raises(InvalidInputError):
        provisioner.lookup(user, year)
    assert fake_gateway.calls == []


def test_validate_year_rejects_non_integers(settings):
    assert validate_year(settings, 1900) == 1900
    assert validate_year(settings, 2100) == 2100
    with pytest.raises(InvalidInputError):
        validate_year(settings, "2024")  # type: ignore[arg-type]
    with pytest.raises(InvalidInputError):
        validate_year(settings, True)  # type: ignore[arg-type]


def test_missing_structural_tabs_are_recreated(provisioner, fake_gateway, user):
    record = provisioner.ensure(user, 2024)
    fake_gateway.remove_tab(record.spreadsheet_id, "Summary")
    fake_gateway.remove_tab(record.spreadsheet_id, "Categories")

    provisioner.ensure(user, 2024)

    remote = fake_gateway.spreadsheet(record.spreadsheet_id)
    assert remote.tab("Summary") is not None
    assert remote.tab("Categories") is not None
    assert fake_gateway.cell(record.spreadsheet_id, "Summary!A13") == "January"


def test_already_existing_tab_during_verification_counts_as_success(provisioner, fake_gateway, user):
    fake_gateway.fail("add_sheet", SheetAlreadyExistsError('A sheet with the name "Summary" already exists.'))

    record = provisioner.ensure(user, 2024)

    assert record.spreadsheet_id in fake_gateway.spreadsheets
    assert fake_gateway.spreadsheet(record.spreadsheet_id).tab("Categories") is not None


def test_default_tab_removal_failure_is_swallowed(provisioner, fake_gateway, user, caplog):
    fake_gateway.fail("delete_sheet", UpstreamError("Google API error (500): backend"))

    with caplog.at_level("WARNING", logger="sheetledger.provisioning"):
        record = provisioner.ensure(user, 2024)

    assert fake_gateway.spreadsheet(record.spreadsheet_id).tab("Sheet1") is not None
    assert "Could not remove default tab" in caplog.text


def test_existing_spreadsheet_keeps_its_default_tab(provisioner, fake_gateway, db_session, user):
    remote = fake_gateway.create_spreadsheet_file("Expenses-2023")
    crud.create_spreadsheet_record(db_session, user.id, 2023, remote.id)

    provisioner.ensure(user, 2023)

    assert fake_gateway.spreadsheet(remote.id).tab("Sheet1") is not None
    assert fake_gateway.spreadsheet(remote.id).tab("Summary") is not None


def test_sheet_ensure_creates_month_tab_with_header(provisioner, sheets, fake_gateway, db_session, user):
    spreadsheet = provisioner.ensure(user, 2024)
    fake_gateway.calls.clear()

    record = sheets.ensure(spreadsheet, "March")

    tab = fake_gateway.spreadsheet(spreadsheet.spreadsheet_id).tab("March")
    assert tab is not None
    assert record.sheet_id == tab.sheet_id
    assert tab.cells == [["Date", "Amount", "Category"]]
    assert fake_gateway.calls_to("batch_update_values"), "Summary formulas must be rewritten"
    assert crud.find_sheet(db_session, spreadsheet, "March").sheet_id == tab.sheet_id


def test_sheet_ensure_cache_hit_makes_no_remote_call(provisioner, sheets, fake_gateway, user):
    spreadsheet = provisioner.ensure(user, 2024)
    first = sheets.ensure(spreadsheet, "April")
    fake_gateway.calls.clear()

    assert sheets.ensure(spreadsheet, "april").id == first.id
    assert fake_gateway.calls == []


def test_sheet_ensure_adopts_an_existing_remote_tab(provisioner, sheets, fake_gateway, db_session, user):
    spreadsheet = provisioner.ensure(user, 2024)
    existing = fake_gateway.add_sheet(spreadsheet.spreadsheet_id, "May")

    record = sheets.ensure(spreadsheet, "May")

    assert record.sheet_id == existing.sheet_id
    assert fake_gateway.tab_cells(spreadsheet.spreadsheet_id, "May") == [["Date", "Amount", "Category"]]


def test_adopting_a_tab_keeps_existing_rows(provisioner, sheets, fake_gateway, user):
    spreadsheet = provisioner.ensure(user, 2024)
    fake_gateway.add_sheet(spreadsheet.spreadsheet_id, "June")
    fake_gateway.put(spreadsheet.spreadsheet_id, "'June'!A1:C2", [["Date", "Amount", "Category"], ["2024-06-01", 5, "Food"]])

    sheets.ensure(spreadsheet, "June")

    assert fake_gateway.tab_cells(spreadsheet.spreadsheet_id, "June")[1] == ["2024-06-01", 5, "Food"]


def test_sheet_ensure_rejects_unknown_months(provisioner, sheets, fake_gateway, user):
    spreadsheet = provisioner.ensure(user, 2024)
    fake_gateway.calls.clear()
    with pytest.raises(InvalidInputError):
        sheets.ensure(spreadsheet, "Smarch")
    assert fake_gateway.calls == []


def test_forget_drops_the_cache_row(provisioner, sheets, db_session, user):
    spreadsheet = provisioner.ensure(user, 2024)
    sheets.ensure(spreadsheet, "March")

    sheets.forget(spreadsheet, "March")

    assert crud.find_sheet(db_session, spreadsheet, "March") is None


def test_spreadsheet_deleted_from_drive_is_replaced(provisioner, fake_gateway, db_session, user, caplog):
    stale = provisioner.ensure(user, 2024)
    stale_id = stale.spreadsheet_id
    del fake_gateway.spreadsheets[stale_id]
    fake_gateway.calls.clear()

    with caplog.at_level("WARNING", logger="sheetledger.provisioning"):
        record = provisioner.ensure(user, 2024)

    assert record.spreadsheet_id != stale_id
    assert len(fake_gateway.calls_to("create_spreadsheet_file")) == 1
    assert crud.find_spreadsheet(db_session, user.id, 2024).spreadsheet_id == record.spreadsheet_id
    assert fake_gateway.spreadsheet(record.spreadsheet_id).tab("Summary") is not None
    assert f"Spreadsheet {stale_id}" in caplog.text


def test_normalise_month_is_case_insensitive():
    assert normalise_month(" march ") == "March"
    with pytest.raises(InvalidInputError):
        normalise_month("")


def test_concurrent_creation_keeps_one_row_and_one_spreadsheet(tmp_path, settings):
    """Two requests race to create the same yearly spreadsheet."""

    engine = create_engine(f"sqlite:///{tmp_path / 'race.db'}", future=True)
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, future=True)
    gateway = FakeSheetsGateway()

    with factory() as setup:
        account = models.User(google_id="racer", email="racer@example.com", access_token="a", refresh_token="r")
        setup.add(account)
        setup.commit()
        user_id = account.id

    winner_ids: list[str] = []

    def competitor_finishes_first(_loser_id: str) -> None:
        # The other request creates its own file and commits its cache row first.
        remote = gateway.create_spreadsheet_file("Expenses-2024")
        winner_ids.append(remote.id)
        with factory() as other:
            crud.create_spreadsheet_record(other, user_id, 2024, remote.id)

    gateway.on_create = competitor_finishes_first

    with factory() as session:
        account = session.get(models.User, user_id)
        record = SpreadsheetProvisioner(session, settings, gateway).ensure(account, 2024)

        assert record.spreadsheet_id == winner_ids[0]
        rows = session.scalar(
            select(func.count()).select_from(models.UserSpreadsheet).where(models.UserSpreadsheet.user_id == user_id)
        )
        assert rows == 1

    assert list(gateway.spreadsheets) == [winner_ids[0]]
    assert len(gateway.deleted_files) == 1
    assert gateway.deleted_files[0] != winner_ids[0]
    engine.dispose()
