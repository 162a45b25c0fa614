from __future__ import annotations

from datetime import date

import pytest

from sheetledger import crud, schemas
from sheetledger.errors import InvalidInputError, NoSheetError, NoSpreadsheetError
from sheetledger.expenses import (
    ExpenseService,
    empty_summary,
    find_cached_spreadsheet,
    prepare_expense,
    require_spreadsheet,
)


@pytest.fixture()
def service(db_session, settings, fake_gateway):
    return ExpenseService(db_session, settings, fake_gateway, today=lambda: date(2024, 3, 20))


def _expense(settings, day="2024-03-15", amount=42.50, category="Food"):
    return prepare_expense(schemas.ExpenseCreate(date=day, amount=amount, category=category), settings)


def test_prepare_expense_derives_month_and_year(settings):
    entry = _expense(settings)
    assert (entry.year, entry.month) == (2024, "March")
    assert entry.as_row() == ["2024-03-15", 42.5, "Food"]


@pytest.mark.parametrize("day", ["2024-02-30", "15/03/2024", "", "2024-3-15x", "1899-12-31", "2101-01-01"])
def test_prepare_expense_rejects_bad_dates(settings, day):
    with pytest.raises(InvalidInputError):
        _expense(settings, day=day)


def test_prepare_expense_rejects_blank_category_and_non_finite_amount(settings):
    with pytest.raises(InvalidInputError, match="Category"):
        _expense(settings, category="  ")
    with pytest.raises(InvalidInputError, match="finite"):
        _expense(settings, amount=float("inf"))


def test_first_expense_provisions_everything(service, settings, fake_gateway, db_session, user):
    created = service.add_expense(user, _expense(settings))

    assert created.month == "March"
    assert created.year == 2024
    (remote,) = fake_gateway.by_name("Expenses-2024")
    assert fake_gateway.tab_cells(remote.spreadsheet_id, "March") == [
        ["Date", "Amount", "Category"],
        ["2024-03-15", 42.5, "Food"],
    ]
    assert fake_gateway.cell(remote.spreadsheet_id, "Summary!A15") == "March"
    assert fake_gateway.cell(remote.spreadsheet_id, "Summary!B15") == "=IFERROR(SUM('March'!B2:B),0)"
    assert fake_gateway.cell(remote.spreadsheet_id, "Summary!C15") == "=IFERROR(COUNTA('March'!B2:B),0)"
    spreadsheet = crud.find_spreadsheet(db_session, user.id, 2024)
    assert crud.find_sheet(db_session, spreadsheet, "March") is not None


def test_append_is_raw_and_followed_by_a_targeted_summary_write(service, settings, fake_gateway, user):
    service.add_expense(user, _expense(settings))
    fake_gateway.calls.clear()

    service.add_expense(user, _expense(settings, day="2024-03-16", amount=7, category="Transport"))

    names = [name for name, _ in fake_gateway.calls]
    assert "create_spreadsheet_file" not in names
    assert "add_sheet" not in names
    ((_, append_range, option),) = fake_gateway.calls_to("append_values")
    assert (append_range, option) == ("'March'!A:C", "RAW")
    updates = [args[1] for args in fake_gateway.calls_to("update_values")]
    assert updates == ["Summary!B15:D15"]


def test_stale_cached_tab_is_reprovisioned_and_append_retried(service, settings, fake_gateway, db_session, user):
    service.add_expense(user, _expense(settings))
    spreadsheet = crud.find_spreadsheet(db_session, user.id, 2024)
    old_sheet_id = crud.find_sheet(db_session, spreadsheet, "March").sheet_id
    fake_gateway.remove_tab(spreadsheet.spreadsheet_id, "March")

    service.add_expense(user, _expense(settings, day="2024-03-18", amount=3))

    assert fake_gateway.tab_cells(spreadsheet.spreadsheet_id, "March") == [
        ["Date", "Amount", "Category"],
        ["2024-03-18", 3.0, "Food"],
    ]
    new_record = crud.find_sheet(db_session, spreadsheet, "March")
    assert new_record.sheet_id != old_sheet_id
    assert len(fake_gateway.calls_to("append_values")) == 3


def test_missing_summary_is_rebuilt_after_a_write(service, settings, fake_gateway, db_session, user):
    service.add_expense(user, _expense(settings))
    spreadsheet = crud.find_spreadsheet(db_session, user.id, 2024)
    fake_gateway.remove_tab(spreadsheet.spreadsheet_id, "Summary")

    service.add_expense(user, _expense(settings, day="2024-03-19"))

    assert fake_gateway.cell(spreadsheet.spreadsheet_id, "Summary!B15") == "=IFERROR(SUM('March'!B2:B),0)"


def test_query_returns_complete_rows_after_the_header(service, settings, fake_gateway, db_session, user):
    service.add_expense(user, _expense(settings))
    spreadsheet = crud.find_spreadsheet(db_session, user.id, 2024)
    fake_gateway.put(spreadsheet.spreadsheet_id, "'March'!A3:C4", [["2024-03-16", "", "Food"], ["", 4, "Bills"]])
    service.add_expense(user, _expense(settings, day="2024-03-17", amount=10, category="Bills"))

    rows = service.query_expenses(spreadsheet, "march")

    assert rows == [["2024-03-15", 42.5, "Food"], ["2024-03-17", 10.0, "Bills"]]


def test_query_for_a_month_without_tab(service, settings, db_session, user):
    service.add_expense(user, _expense(settings))
    spreadsheet = crud.find_spreadsheet(db_session, user.id, 2024)

    with pytest.raises(NoSheetError) as excinfo:
        service.query_expenses(spreadsheet, "July")
    assert excinfo.value.message == (
        "No expenses found for July 2024. Add your first expense for this month to get started."
    )
    assert excinfo.value.status_code == 404


def test_cached_lookup_without_spreadsheet(db_session, settings, fake_gateway, user):
    assert find_cached_spreadsheet(db_session, settings, user, 2023) is None
    with pytest.raises(NoSpreadsheetError) as excinfo:
        require_spreadsheet(db_session, settings, user, 2023)
    assert excinfo.value.to_payload() == {
        "error": "no_spreadsheet",
        "message": "No expense data found for 2023. Start by adding your first expense for this year.",
    }
    assert fake_gateway.calls == []


def test_empty_summary_payload():
    assert empty_summary().model_dump(by_alias=True) == {
        "totalExpenses": 0,
        "totalTransactions": 0,
        "averagePerMonth": 0,
        "thisMonthTotal": 0,
        "thisMonthTransactions": 0,
        "dailyAverage": 0,
        "monthlyBreakdown": [],
    }


def test_summary_reads_computed_values(service, settings, fake_gateway, db_session, user):
    service.add_expense(user, _expense(settings))
    spreadsheet = crud.find_spreadsheet(db_session, user.id, 2024)
    sid = spreadsheet.spreadsheet_id
    fake_gateway.put(sid, "Summary!B3:B5", [[142.556], [4], [71.284]])
    fake_gateway.put(sid, "Summary!B13:D13", [[100.056, 3, 3.228]])
    fake_gateway.put(sid, "Summary!B14:D14", [[0, 0, 0]])
    fake_gateway.put(sid, "Summary!B15:D15", [[42.5, 1, 2.126]])
    for row in range(16, 25):
        fake_gateway.put(sid, f"Summary!B{row}:D{row}", [[0, 0, 0]])

    summary = service.summarize_year(spreadsheet)

    assert summary.total_expenses == 142.56
    assert summary.total_transactions == 4
    assert summary.average_per_month == 71.28
    assert [entry.month for entry in summary.monthly_breakdown] == ["January", "March"]
    assert summary.this_month_total == 42.5
    assert summary.this_month_transactions == 1
    assert summary.daily_average == 2.13


def test_summary_tolerates_error_cells(service, settings, fake_gateway, db_session, user):
    service.add_expense(user, _expense(settings))
    spreadsheet = crud.find_spreadsheet(db_session, user.id, 2024)
    fake_gateway.put(spreadsheet.spreadsheet_id, "Summary!B3:B5", [["#REF!"], [""], ["#DIV/0!"]])
    for row in range(13, 25):
        fake_gateway.put(spreadsheet.spreadsheet_id, f"Summary!B{row}:D{row}", [["#REF!", "", ""]])

    summary = service.summarize_year(spreadsheet)

    assert summary == empty_summary()


def test_summary_heals_a_missing_summary_tab(service, settings, fake_gateway, db_session, user):
    service.add_expense(user, _expense(settings))
    spreadsheet = crud.find_spreadsheet(db_session, user.id, 2024)
    fake_gateway.remove_tab(spreadsheet.spreadsheet_id, "Summary")

    summary = service.summarize_year(spreadsheet)

    assert summary == empty_summary()
    assert fake_gateway.spreadsheet(spreadsheet.spreadsheet_id).tab("Summary") is not None


def test_query_after_the_spreadsheet_was_deleted_from_drive(service, settings, fake_gateway, db_session, user):
    service.add_expense(user, _expense(settings))
    spreadsheet = crud.find_spreadsheet(db_session, user.id, 2024)
    del fake_gateway.spreadsheets[spreadsheet.spreadsheet_id]

    with pytest.raises(NoSpreadsheetError) as excinfo:
        service.query_expenses(spreadsheet, "March")

    assert excinfo.value.message == "No expense data found for 2024. Start by adding your first expense for this year."
    assert crud.find_spreadsheet(db_session, user.id, 2024) is None


def test_summary_after_the_spreadsheet_was_deleted_from_drive(service, settings, fake_gateway, db_session, user):
    service.add_expense(user, _expense(settings))
    spreadsheet = crud.find_spreadsheet(db_session, user.id, 2024)
    del fake_gateway.spreadsheets[spreadsheet.spreadsheet_id]

    assert service.summarize_year(spreadsheet) == empty_summary()
    assert crud.find_spreadsheet(db_session, user.id, 2024) is None


def test_next_expense_after_deletion_goes_to_a_new_spreadsheet(service, settings, fake_gateway, db_session, user):
    service.add_expense(user, _expense(settings))
    stale_id = crud.find_spreadsheet(db_session, user.id, 2024).spreadsheet_id
    del fake_gateway.spreadsheets[stale_id]

    service.add_expense(user, _expense(settings, day="2024-03-18", amount=7))

    fresh = crud.find_spreadsheet(db_session, user.id, 2024)
    assert fresh.spreadsheet_id != stale_id
    assert fake_gateway.tab_cells(fresh.spreadsheet_id, "March") == [
        ["Date", "Amount", "Category"],
        ["2024-03-18", 7.0, "Food"],
    ]
