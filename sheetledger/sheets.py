"""Thin typed wrapper over the Google Sheets v4 and Drive v3 APIs.

Every method returns one of the DTOs in :mod:`sheetledger.schemas` and
translates :class:`googleapiclient.errors.HttpError` into either a
:class:`~sheetledger.errors.GatewaySignal` (conditions the callers act on) or
an :class:`~sheetledger.errors.UpstreamError`.
"""

from __future__ import annotations

import json
import logging
import socket
import ssl
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import Any, Final, Protocol

import google.oauth2.credentials
import google_auth_httplib2
import httplib2
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from . import schemas
from .errors import (
    CredentialsExpiredError,
    RangeNotFoundError,
    RateLimitedError,
    SheetAlreadyExistsError,
    SpreadsheetMissingError,
    UpstreamError,
)

LOG = logging.getLogger(__name__)

SPREADSHEET_MIME_TYPE: Final[str] = "application/vnd.google-apps.spreadsheet"
METADATA_FIELDS: Final[str] = (
    "spreadsheetId,sheets(properties(sheetId,title,index,gridProperties(rowCount,columnCount)))"
)
HTTP_TIMEOUT: Final[int] = 30
MAX_RETRIES: Final[int] = 2

RAW: Final[str] = "RAW"
USER_ENTERED: Final[str] = "USER_ENTERED"


class SheetsGateway(Protocol):
    """Operations the provisioning layer needs from Google."""

    credentials: Any

    def create_spreadsheet_file(self, name: str) -> schemas.DriveFile: ...

    def delete_file(self, file_id: str) -> None: ...

    def get_metadata(self, spreadsheet_id: str) -> schemas.SpreadsheetMetadata: ...

    def add_sheet(
        self, spreadsheet_id: str, title: str, *, rows: int | None = None, columns: int | None = None
    ) -> schemas.SheetProperties: ...

    def delete_sheet(self, spreadsheet_id: str, sheet_id: int) -> None: ...

    def delete_rows(self, spreadsheet_id: str, sheet_id: int, start: int, end: int) -> None: ...

    def get_values(self, spreadsheet_id: str, range_: str) -> schemas.ValueRange: ...

    def batch_get_values(self, spreadsheet_id: str, ranges: Sequence[str]) -> schemas.BatchGetResponse: ...

    def update_values(
        self, spreadsheet_id: str, range_: str, values: list[list[Any]], *, input_option: str = RAW
    ) -> schemas.UpdateValuesResponse: ...

    def batch_update_values(
        self,
        spreadsheet_id: str,
        data: Sequence[tuple[str, list[list[Any]]]],
        *,
        input_option: str = USER_ENTERED,
    ) -> None: ...

    def append_values(
        self, spreadsheet_id: str, range_: str, values: list[list[Any]], *, input_option: str = RAW
    ) -> schemas.AppendResponse: ...


def _error_message(exc: HttpError) -> str:
    """Extract Google's human readable message from an error response."""

    try:
        payload = json.loads(exc.content.decode("utf-8") if isinstance(exc.content, bytes) else exc.content)
        message = payload.get("error", {}).get("message")
        if message:
            return str(message)
    except (ValueError, AttributeError, TypeError):
        pass
    return getattr(exc, "reason", None) or str(exc)


def _error_reasons(exc: HttpError) -> set[str]:
    try:
        payload = json.loads(exc.content.decode("utf-8") if isinstance(exc.content, bytes) else exc.content)
        errors = payload.get("error", {}).get("errors", [])
        return {str(item.get("reason", "")) for item in errors}
    except (ValueError, AttributeError, TypeError):
        return set()


def translate_http_error(exc: HttpError) -> Exception:
    """Map a Google ``HttpError`` onto the signal or error callers understand."""

    status = getattr(exc.resp, "status", None) if exc.resp is not None else None
    try:
        status = int(status) if status is not None else None
    except (TypeError, ValueError):
        status = None
    message = _error_message(exc)
    lowered = message.lower()

    if status == 401:
        return CredentialsExpiredError(message)
    if status == 404:
        return SpreadsheetMissingError(message)
    if status == 400 and "unable to parse range" in lowered:
        return RangeNotFoundError(message)
    if status == 400 and "already exists" in lowered:
        return SheetAlreadyExistsError(message)
    if status == 429 or (status == 403 and _error_reasons(exc) & {"rateLimitExceeded", "userRateLimitExceeded"}):
        return RateLimitedError(message, http_status=status)
    return UpstreamError(f"Google API error ({status}): {message}", http_status=status)


@contextmanager
def _translated(operation: str) -> Iterator[None]:
    try:
        yield
    except HttpError as exc:
        translated = translate_http_error(exc)
        LOG.debug("%s failed: %s", operation, translated)
        raise translated from exc
    except (socket.timeout, ssl.SSLError, httplib2.HttpLib2Error, ConnectionError) as exc:
        raise UpstreamError(f"{operation} failed: {exc}") from exc


class GoogleSheetsGateway:
    """:class:`SheetsGateway` backed by ``googleapiclient`` resources."""

    def __init__(self, credentials: google.oauth2.credentials.Credentials) -> None:
        self.credentials = credentials
        # Automatic 401 refresh is disabled; the token guard refreshes and persists.
        self._http = google_auth_httplib2.AuthorizedHttp(
            credentials,
            http=httplib2.Http(timeout=HTTP_TIMEOUT),
            refresh_status_codes=(),
        )
        self._sheets = build("sheets", "v4", http=self._http, cache_discovery=False)
        self._drive = build("drive", "v3", http=self._http, cache_discovery=False)

    def close(self) -> None:
        for resource in (self._sheets, self._drive):
            try:
                resource.close()
            except Exception as exc:  # pragma: no cover - best effort
                LOG.debug("Failed closing Google API client: %s", exc)

    def create_spreadsheet_file(self, name: str) -> schemas.DriveFile:
        body = {"name": name, "mimeType": SPREADSHEET_MIME_TYPE}
        with _translated("files.create"):
            data = self._drive.files().create(body=body, fields="id,name").execute(num_retries=MAX_RETRIES)
        return schemas.DriveFile.model_validate(data)

    def delete_file(self, file_id: str) -> None:
        with _translated("files.delete"):
            self._drive.files().delete(fileId=file_id).execute(num_retries=MAX_RETRIES)

    def get_metadata(self, spreadsheet_id: str) -> schemas.SpreadsheetMetadata:
        with _translated("spreadsheets.get"):
            data = (
                self._sheets.spreadsheets()
                .get(spreadsheetId=spreadsheet_id, fields=METADATA_FIELDS)
                .execute(num_retries=MAX_RETRIES)
            )
        return schemas.SpreadsheetMetadata.model_validate(data)

    def _batch_update(self, spreadsheet_id: str, requests: list[dict[str, Any]]) -> schemas.BatchUpdateReply:
        with _translated("spreadsheets.batchUpdate"):
            data = (
                self._sheets.spreadsheets()
                .batchUpdate(spreadsheetId=spreadsheet_id, body={"requests": requests})
                .execute(num_retries=MAX_RETRIES)
            )
        return schemas.BatchUpdateReply.model_validate(data)

    def add_sheet(
        self, spreadsheet_id: str, title: str, *, rows: int | None = None, columns: int | None = None
    ) -> schemas.SheetProperties:
        properties: dict[str, Any] = {"title": title}
        if rows is not None or columns is not None:
            grid: dict[str, int] = {}
            if rows is not None:
                grid["rowCount"] = rows
            if columns is not None:
                grid["columnCount"] = columns
            properties["gridProperties"] = grid
        reply = self._batch_update(spreadsheet_id, [{"addSheet": {"properties": properties}}])
        if not reply.replies or reply.replies[0].add_sheet is None:
            raise UpstreamError(f"addSheet for {title!r} returned no properties")
        return reply.replies[0].add_sheet.properties

    def delete_sheet(self, spreadsheet_id: str, sheet_id: int) -> None:
        self._batch_update(spreadsheet_id, [{"deleteSheet": {"sheetId": sheet_id}}])

    def delete_rows(self, spreadsheet_id: str, sheet_id: int, start: int, end: int) -> None:
        request = {
            "deleteDimension": {
                "range": {
                    "sheetId": sheet_id,
                    "dimension": "ROWS",
                    "startIndex": start,
                    "endIndex": end,
                }
            }
        }
        self._batch_update(spreadsheet_id, [request])

    def get_values(self, spreadsheet_id: str, range_: str) -> schemas.ValueRange:
        with _translated("values.get"):
            data = (
                self._sheets.spreadsheets()
                .values()
                .get(spreadsheetId=spreadsheet_id, range=range_)
                .execute(num_retries=MAX_RETRIES)
            )
        return schemas.ValueRange.model_validate(data)

    def batch_get_values(self, spreadsheet_id: str, ranges: Sequence[str]) -> schemas.BatchGetResponse:
        with _translated("values.batchGet"):
            data = (
                self._sheets.spreadsheets()
                .values()
                .batchGet(
                    spreadsheetId=spreadsheet_id,
                    ranges=list(ranges),
                    valueRenderOption="UNFORMATTED_VALUE",
                )
                .execute(num_retries=MAX_RETRIES)
            )
        return schemas.BatchGetResponse.model_validate(data)

    def update_values(
        self, spreadsheet_id: str, range_: str, values: list[list[Any]], *, input_option: str = RAW
    ) -> schemas.UpdateValuesResponse:
        with _translated("values.update"):
            data = (
                self._sheets.spreadsheets()
                .values()
                .update(
                    spreadsheetId=spreadsheet_id,
                    range=range_,
                    valueInputOption=input_option,
                    body={"values": values},
                )
                .execute(num_retries=MAX_RETRIES)
            )
        return schemas.UpdateValuesResponse.model_validate(data)

    def batch_update_values(
        self,
        spreadsheet_id: str,
        data: Sequence[tuple[str, list[list[Any]]]],
        *,
        input_option: str = USER_ENTERED,
    ) -> None:
        body = {
            "valueInputOption": input_option,
            "data": [{"range": range_, "values": values} for range_, values in data],
        }
        with _translated("values.batchUpdate"):
            (
                self._sheets.spreadsheets()
                .values()
                .batchUpdate(spreadsheetId=spreadsheet_id, body=body)
                .execute(num_retries=MAX_RETRIES)
            )

    def append_values(
        self, spreadsheet_id: str, range_: str, values: list[list[Any]], *, input_option: str = RAW
    ) -> schemas.AppendResponse:
        with _translated("values.append"):
            data = (
                self._sheets.spreadsheets()
                .values()
                .append(
                    spreadsheetId=spreadsheet_id,
                    range=range_,
                    valueInputOption=input_option,
                    insertDataOption="INSERT_ROWS",
                    body={"values": values},
                )
                .execute(num_retries=MAX_RETRIES)
            )
        return schemas.AppendResponse.model_validate(data)


def build_gateway(credentials: google.oauth2.credentials.Credentials) -> GoogleSheetsGateway:
    """Default gateway factory used by the token guard."""

    return GoogleSheetsGateway(credentials)


__all__ = [
    "GoogleSheetsGateway",
    "RAW",
    "SheetsGateway",
    "USER_ENTERED",
    "build_gateway",
    "translate_http_error",
]
