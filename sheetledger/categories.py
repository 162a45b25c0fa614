"""Category list stored in column A of the ``Categories`` tab.

Category IDs are zero-based row indexes in that column. Row 0 holds the
header and can never be edited or deleted. Deleting a row shifts every later
row up by one, so any ID held by a client at or after the deleted row points
one row further down afterwards.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from . import formulas, schemas
from .config import DEFAULT_CATEGORIES
from .errors import (
    CategoryNotFoundError,
    DuplicateCategoryError,
    HeaderProtectedError,
    InvalidInputError,
)
from .sheets import RAW, SheetsGateway

LOG = logging.getLogger(__name__)

HEADER_ROW = 0
_UPDATED_ROW = re.compile(r"![A-Z]+(\d+)")


def _cell_text(row: list[Any]) -> str:
    if not row or row[0] is None:
        return ""
    return str(row[0]).strip()


def _clean_name(name: str | None) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise InvalidInputError("Category name is required")
    return cleaned


def default_categories() -> list[schemas.CategoryRead]:
    return [
        schemas.CategoryRead(id=index, category_name=name, is_default=True)
        for index, name in enumerate(DEFAULT_CATEGORIES, start=1)
    ]


class CategoryStore:
    """Read and write category names directly in the spreadsheet."""

    def __init__(self, gateway: SheetsGateway, spreadsheet_id: str) -> None:
        self.gateway = gateway
        self.spreadsheet_id = spreadsheet_id

    def _read_rows(self) -> list[str]:
        values = self.gateway.get_values(self.spreadsheet_id, formulas.categories_column_range()).values
        return [_cell_text(row) for row in values]

    @staticmethod
    def _taken(rows: list[str], *, skip: int | None = None) -> set[str]:
        return {
            text.lower()
            for index, text in enumerate(rows)
            if index != HEADER_ROW and index != skip and text
        }

    @staticmethod
    def _check_target(rows: list[str], index: int) -> None:
        if index == HEADER_ROW:
            raise HeaderProtectedError()
        if index < 0 or index >= len(rows) or not rows[index]:
            raise CategoryNotFoundError()

    def list_categories(self) -> list[schemas.CategoryRead]:
        rows = self._read_rows()
        categories = [
            schemas.CategoryRead(id=index, category_name=text)
            for index, text in enumerate(rows)
            if index != HEADER_ROW and text
        ]
        return categories or default_categories()

    def add(self, name: str | None) -> schemas.CategoryRead:
        cleaned = _clean_name(name)
        rows = self._read_rows()
        if cleaned.lower() in self._taken(rows):
            raise DuplicateCategoryError(f"Category {cleaned!r} already exists")
        if not rows:
            self.gateway.update_values(
                self.spreadsheet_id,
                formulas.categories_cell(HEADER_ROW),
                [[formulas.CATEGORIES_HEADER]],
                input_option=RAW,
            )
            rows = [formulas.CATEGORIES_HEADER]
        response = self.gateway.append_values(
            self.spreadsheet_id,
            formulas.categories_column_range(),
            [[cleaned]],
            input_option=RAW,
        )
        index = len(rows)
        updated_range = response.updates.updated_range if response.updates else None
        match = _UPDATED_ROW.search(updated_range or "")
        if match:
            index = int(match.group(1)) - 1
        LOG.debug("Added category %r at row %d", cleaned, index)
        return schemas.CategoryRead(id=index, category_name=cleaned)

    def update(self, index: int, name: str | None) -> schemas.CategoryRead:
        cleaned = _clean_name(name)
        if index == HEADER_ROW:
            raise HeaderProtectedError()
        rows = self._read_rows()
        self._check_target(rows, index)
        if cleaned.lower() in self._taken(rows, skip=index):
            raise DuplicateCategoryError(f"Category {cleaned!r} already exists")
        self.gateway.update_values(
            self.spreadsheet_id,
            formulas.categories_cell(index),
            [[cleaned]],
            input_option=RAW,
        )
        return schemas.CategoryRead(id=index, category_name=cleaned)

    def delete(self, index: int) -> None:
        if index == HEADER_ROW:
            raise HeaderProtectedError()
        rows = self._read_rows()
        self._check_target(rows, index)
        metadata = self.gateway.get_metadata(self.spreadsheet_id)
        properties = metadata.find(formulas.CATEGORIES_TITLE)
        if properties is None:
            raise CategoryNotFoundError("Categories sheet not found")
        self.gateway.delete_rows(self.spreadsheet_id, properties.sheet_id, index, index + 1)
        LOG.debug("Deleted category row %d (%r)", index, rows[index])


__all__ = ["CategoryStore", "default_categories"]
