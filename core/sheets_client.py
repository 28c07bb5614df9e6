"""Google Sheets REST gateway with robust A1 range handling.

This module centralises every direct interaction with the Google Sheets API
used by StockLedger. It provides a small surface that the rest of the
application can rely on without knowing about HTTP or bearer tokens:

* :meth:`SheetsGateway.request` appends an endpoint verbatim to the
  spreadsheet resource root (``""`` fetches the spreadsheet metadata,
  ``":batchUpdate"`` and ``"/values/..."`` address the other resources).
* A fresh access token is obtained from the :class:`TokenProvider` for every
  request.
* Failures surface as the typed errors of :mod:`core.errors`: non-2xx answers
  become :class:`ApiError` carrying the status and upstream message, transport
  failures become :class:`NetworkError`.

Titles are always quoted according to the Sheets A1 rules and column
references are calculated with a dedicated helper, so codes containing
hyphens or spaces are safe to use in sheet names.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, MutableSequence, Optional, Sequence
from urllib.parse import quote

import requests

from core.errors import ApiError, NetworkError, NotConfiguredError
from core.google_credentials import TokenProvider
from settings import SHEETS_API_ROOT, GoogleSyncSettings

logger = logging.getLogger(__name__)

# Cells are stored exactly as sent; codes such as "00042" stay text.
VALUE_INPUT_OPTION = "RAW"


@dataclass(frozen=True)
class SheetProperties:
    """Title and numeric id of one worksheet tab."""

    title: str
    sheet_id: int


def _normalise_title(title: str) -> str:
    """Return a worksheet title quoted according to A1 notation rules."""

    safe = (title or "").strip()
    if not safe:
        raise ValueError("Worksheet title must not be empty")
    safe = safe.replace("'", "''")
    return f"'{safe}'"


def column_letter(index: int) -> str:
    if index < 1:
        raise ValueError("Column index must be >= 1")
    letters: MutableSequence[str] = []
    while index:
        index, remainder = divmod(index - 1, 26)
        letters.append(chr(65 + remainder))
    return "".join(reversed(letters))


def a1_headers_range(title: str, *, columns: int) -> str:
    """Return an A1 range covering the header row for ``title``."""

    return f"{_normalise_title(title)}!A1:{column_letter(max(1, columns))}1"


def a1_row_range(title: str, row_index: int, *, columns: int) -> str:
    """Return an A1 range covering ``row_index`` (1-indexed) for ``title``."""

    if row_index < 1:
        raise ValueError("Row index must be >= 1")
    last_column = column_letter(max(1, columns))
    return f"{_normalise_title(title)}!A{row_index}:{last_column}{row_index}"


def a1_table_range(title: str, *, columns: int) -> str:
    """Return an A1 range spanning all rows for ``columns`` columns."""

    return f"{_normalise_title(title)}!A1:{column_letter(max(1, columns))}"


def a1_column_range(title: str, column: str = "A") -> str:
    return f"{_normalise_title(title)}!{column}:{column}"


def _values_endpoint(range_spec: str, suffix: str = "") -> str:
    encoded = quote(range_spec, safe="'!:")
    return f"/values/{encoded}{suffix}"


def _error_message(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.reason or ""
    if isinstance(payload, Mapping):
        error = payload.get("error")
        if isinstance(error, Mapping) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
    return response.reason or ""


class SheetsGateway:
    """Authenticated wrapper around the spreadsheet's REST resources."""

    def __init__(
        self,
        settings: GoogleSyncSettings,
        *,
        token_provider: Optional[TokenProvider] = None,
        session: Optional[requests.Session] = None,
        api_root: str = SHEETS_API_ROOT,
    ) -> None:
        self._settings = settings
        self._token_provider = token_provider or TokenProvider(settings)
        self._session = session or requests.Session()
        self._api_root = api_root.rstrip("/")

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    @property
    def settings(self) -> GoogleSyncSettings:
        return self._settings

    def is_configured(self) -> bool:
        return self._settings.is_configured()

    def reconfigure(self, settings: GoogleSyncSettings) -> None:
        """Swap the credential bundle used by subsequent requests."""

        self._settings = settings
        reconfigure = getattr(self._token_provider, "reconfigure", None)
        if callable(reconfigure):
            reconfigure(settings)
        logger.info("Sheets gateway reconfigured for spreadsheet %s", settings.spreadsheet_id or "<unset>")

    # ------------------------------------------------------------------
    # Raw access
    # ------------------------------------------------------------------
    def request(
        self,
        endpoint: str = "",
        *,
        method: str = "GET",
        body: Optional[Mapping[str, Any]] = None,
        params: Optional[Mapping[str, str]] = None,
    ) -> Dict[str, Any]:
        """Issue one authenticated call and return the decoded JSON body."""

        if not self.is_configured():
            raise NotConfiguredError()

        token = self._token_provider.fetch_token()
        url = f"{self._api_root}/{self._settings.spreadsheet_id}{endpoint}"
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        try:
            response = self._session.request(
                method,
                url,
                headers=headers,
                json=dict(body) if body is not None else None,
                params=dict(params) if params else None,
            )
        except requests.RequestException as exc:
            logger.warning("%s %s failed: %s", method, endpoint or "<metadata>", exc)
            raise NetworkError(f"Request to Google Sheets failed: {exc}") from exc

        if not 200 <= response.status_code < 300:
            message = _error_message(response)
            logger.warning("%s %s returned %s: %s", method, endpoint or "<metadata>", response.status_code, message)
            raise ApiError(response.status_code, message)

        if not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError as exc:
            raise ApiError(response.status_code, "Response body was not valid JSON") from exc
        return payload if isinstance(payload, dict) else {}

    # ------------------------------------------------------------------
    # Spreadsheet helpers
    # ------------------------------------------------------------------
    def get_metadata(self) -> Dict[str, Any]:
        return self.request("")

    def list_sheets(self) -> List[SheetProperties]:
        metadata = self.get_metadata()
        sheets: List[SheetProperties] = []
        for sheet in metadata.get("sheets", []) or []:
            properties = sheet.get("properties", {}) if isinstance(sheet, Mapping) else {}
            title = properties.get("title")
            if isinstance(title, str):
                sheets.append(SheetProperties(title=title, sheet_id=int(properties.get("sheetId", 0))))
        return sheets

    def find_sheet(self, title: str) -> Optional[SheetProperties]:
        """Return the tab whose title matches ``title`` exactly."""

        for sheet in self.list_sheets():
            if sheet.title == title:
                return sheet
        return None

    def batch_update(self, requests_payload: Sequence[Mapping[str, Any]]) -> Dict[str, Any]:
        return self.request(":batchUpdate", method="POST", body={"requests": list(requests_payload)})

    def get_values(self, range_spec: str) -> List[List[Any]]:
        result = self.request(_values_endpoint(range_spec))
        return [list(row) for row in result.get("values", []) or []]

    def update_values(self, range_spec: str, values: Sequence[Sequence[Any]]) -> Dict[str, Any]:
        """Overwrite the cells of ``range_spec``."""

        return self.request(
            _values_endpoint(range_spec),
            method="PUT",
            body={"values": [list(row) for row in values], "majorDimension": "ROWS"},
            params={"valueInputOption": VALUE_INPUT_OPTION},
        )

    def append_values(self, range_spec: str, values: Sequence[Sequence[Any]]) -> Dict[str, Any]:
        """Append rows after the last populated row of the table at ``range_spec``."""

        return self.request(
            _values_endpoint(range_spec, ":append"),
            method="POST",
            body={"values": [list(row) for row in values], "majorDimension": "ROWS"},
            params={"valueInputOption": VALUE_INPUT_OPTION},
        )


__all__ = [
    "SheetProperties",
    "SheetsGateway",
    "VALUE_INPUT_OPTION",
    "a1_column_range",
    "a1_headers_range",
    "a1_row_range",
    "a1_table_range",
    "column_letter",
]
