"""Error taxonomy shared by the provisioning layer and the HTTP surface."""

from __future__ import annotations

import enum
from typing import ClassVar


class ErrorCode(enum.StrEnum):
    """Machine readable error codes returned in ``{"error": ...}`` bodies."""

    InvalidInput = "invalid_input"
    AuthenticationRequired = "authentication_required"
    ReauthenticationRequired = "reauthentication_required"
    NoSpreadsheet = "no_spreadsheet"
    NoSheet = "no_sheet"
    CategoryNotFound = "category_not_found"
    HeaderProtected = "header_protected"
    DuplicateCategory = "duplicate_category"
    UpstreamError = "upstream_error"
    RateLimited = "rate_limited"
    ConfigurationError = "configuration_error"
    InternalError = "internal_error"


ERROR_MESSAGE: dict[ErrorCode, str] = {
    ErrorCode.InvalidInput: "The request contains invalid values.",
    ErrorCode.AuthenticationRequired: "Please log in to access this resource.",
    ErrorCode.ReauthenticationRequired: "Your Google authorization has expired. Please sign in again.",
    ErrorCode.NoSpreadsheet: "No expense data found for this year.",
    ErrorCode.NoSheet: "No expenses found for this month.",
    ErrorCode.CategoryNotFound: "Category not found.",
    ErrorCode.HeaderProtected: "The header row cannot be modified.",
    ErrorCode.DuplicateCategory: "Category already exists.",
    ErrorCode.UpstreamError: "Google Sheets service error.",
    ErrorCode.RateLimited: "Google Sheets rate limit exceeded. Please retry shortly.",
    ErrorCode.ConfigurationError: "The application is not configured correctly.",
    ErrorCode.InternalError: "Something went wrong.",
}


def get_message(code: ErrorCode) -> str:
    """Return the default user-facing message for ``code``."""

    return ERROR_MESSAGE.get(code, ERROR_MESSAGE[ErrorCode.InternalError])


class SheetLedgerError(Exception):
    """Base class for errors that map onto a structured HTTP response.

    Attributes:
        code: Error code rendered as the ``error`` field.
        status_code: HTTP status used by the exception handler.
        message: Message rendered as the ``message`` field.
    """

    code: ClassVar[ErrorCode] = ErrorCode.InternalError
    status_code: ClassVar[int] = 500

    def __init__(self, message: str | None = None) -> None:
        self.message = message or get_message(self.code)
        super().__init__(self.message)

    def to_payload(self) -> dict[str, str]:
        return {"error": str(self.code), "message": self.message}


class InvalidInputError(SheetLedgerError):
    """Raised for malformed dates, blank names and out-of-range years."""

    code = ErrorCode.InvalidInput
    status_code = 400


class AuthenticationRequiredError(SheetLedgerError):
    """Raised when a protected route is hit without a valid session."""

    code = ErrorCode.AuthenticationRequired
    status_code = 401


class ReauthenticationRequiredError(SheetLedgerError):
    """Raised when stored Google credentials cannot be refreshed."""

    code = ErrorCode.ReauthenticationRequired
    status_code = 401


class NoSpreadsheetError(SheetLedgerError):
    code = ErrorCode.NoSpreadsheet
    status_code = 404


class NoSheetError(SheetLedgerError):
    code = ErrorCode.NoSheet
    status_code = 404


class CategoryNotFoundError(SheetLedgerError):
    code = ErrorCode.CategoryNotFound
    status_code = 404


class HeaderProtectedError(SheetLedgerError):
    code = ErrorCode.HeaderProtected
    status_code = 400


class DuplicateCategoryError(SheetLedgerError):
    code = ErrorCode.DuplicateCategory
    status_code = 409


class UpstreamError(SheetLedgerError):
    """Raised for Google API failures that are not structural signals."""

    code = ErrorCode.UpstreamError
    status_code = 500

    def __init__(self, message: str | None = None, *, http_status: int | None = None) -> None:
        super().__init__(message)
        self.http_status = http_status


class RateLimitedError(UpstreamError):
    code = ErrorCode.RateLimited


class ConfigurationError(SheetLedgerError):
    """Raised at startup when required settings are missing or invalid."""

    code = ErrorCode.ConfigurationError
    status_code = 500


class GatewaySignal(Exception):
    """Base class for transport conditions that callers translate themselves."""


class CredentialsExpiredError(GatewaySignal):
    """Google rejected the access token (HTTP 401)."""


class SheetAlreadyExistsError(GatewaySignal):
    """An ``addSheet`` request collided with an existing tab title."""


class RangeNotFoundError(GatewaySignal):
    """A values request referenced a tab that does not exist."""


class SpreadsheetMissingError(GatewaySignal):
    """The spreadsheet file is gone from Drive (HTTP 404)."""


__all__ = [
    "AuthenticationRequiredError",
    "CategoryNotFoundError",
    "ConfigurationError",
    "CredentialsExpiredError",
    "DuplicateCategoryError",
    "ErrorCode",
    "GatewaySignal",
    "HeaderProtectedError",
    "InvalidInputError",
    "NoSheetError",
    "NoSpreadsheetError",
    "RangeNotFoundError",
    "RateLimitedError",
    "ReauthenticationRequiredError",
    "SheetAlreadyExistsError",
    "SheetLedgerError",
    "SpreadsheetMissingError",
    "UpstreamError",
    "get_message",
]
