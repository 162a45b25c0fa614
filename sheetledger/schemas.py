"""Pydantic schemas for the HTTP payloads and the Google API responses consumed."""
from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class RemoteModel(BaseModel):
    """Base for Google API payloads; unknown fields are ignored."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# --- Google Sheets / Drive / OAuth response shapes --------------------------


class GridProperties(RemoteModel):
    row_count: int = Field(0, alias="rowCount")
    column_count: int = Field(0, alias="columnCount")


class SheetProperties(RemoteModel):
    sheet_id: int = Field(..., alias="sheetId")
    title: str
    index: int = 0
    grid_properties: Optional[GridProperties] = Field(None, alias="gridProperties")


class SheetEntry(RemoteModel):
    properties: SheetProperties


class SpreadsheetMetadata(RemoteModel):
    spreadsheet_id: str = Field(..., alias="spreadsheetId")
    sheets: List[SheetEntry] = Field(default_factory=list)

    def find(self, title: str) -> Optional[SheetProperties]:
        for entry in self.sheets:
            if entry.properties.title == title:
                return entry.properties
        return None


class ValueRange(RemoteModel):
    range: Optional[str] = None
    major_dimension: str = Field("ROWS", alias="majorDimension")
    values: List[List[Any]] = Field(default_factory=list)


class BatchGetResponse(RemoteModel):
    spreadsheet_id: str = Field(..., alias="spreadsheetId")
    value_ranges: List[ValueRange] = Field(default_factory=list, alias="valueRanges")


class AddSheetReply(RemoteModel):
    properties: SheetProperties


class BatchUpdateReplyEntry(RemoteModel):
    add_sheet: Optional[AddSheetReply] = Field(None, alias="addSheet")


class BatchUpdateReply(RemoteModel):
    spreadsheet_id: str = Field(..., alias="spreadsheetId")
    replies: List[BatchUpdateReplyEntry] = Field(default_factory=list)


class UpdateValuesResponse(RemoteModel):
    updated_range: Optional[str] = Field(None, alias="updatedRange")
    updated_rows: int = Field(0, alias="updatedRows")
    updated_cells: int = Field(0, alias="updatedCells")


class AppendResponse(RemoteModel):
    spreadsheet_id: str = Field(..., alias="spreadsheetId")
    table_range: Optional[str] = Field(None, alias="tableRange")
    updates: Optional[UpdateValuesResponse] = None


class DriveFile(RemoteModel):
    id: str
    name: Optional[str] = None


class GoogleUserInfo(RemoteModel):
    id: str
    email: str
    verified_email: bool = False
    name: Optional[str] = None


# --- HTTP payloads ----------------------------------------------------------


class ExpenseCreate(CamelModel):
    date: str = Field(..., max_length=32)
    amount: float
    category: str = Field("", max_length=100)


class ExpenseCreated(CamelModel):
    date: str
    amount: float
    category: str
    month: str
    year: int


class CategoryWrite(CamelModel):
    category_name: str = Field("", alias="categoryName", max_length=100)


class CategoryRead(CamelModel):
    id: int
    category_name: str = Field(..., alias="categoryName")
    is_default: bool = Field(False, alias="isDefault")


class MonthlyBreakdownEntry(CamelModel):
    month: str
    total: float
    transactions: int
    daily_average: float = Field(..., alias="dailyAverage")


class SummaryRead(CamelModel):
    total_expenses: float = Field(0, alias="totalExpenses")
    total_transactions: int = Field(0, alias="totalTransactions")
    average_per_month: float = Field(0, alias="averagePerMonth")
    this_month_total: float = Field(0, alias="thisMonthTotal")
    this_month_transactions: int = Field(0, alias="thisMonthTransactions")
    daily_average: float = Field(0, alias="dailyAverage")
    monthly_breakdown: List[MonthlyBreakdownEntry] = Field(default_factory=list, alias="monthlyBreakdown")
