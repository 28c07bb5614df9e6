from __future__ import annotations

import json
import re
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import unquote

import pytest
import requests

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from core.ledger import LedgerEngine
from core.sheets_client import SheetsGateway
from core.sheets_sync import SheetsSync
from core.sync_service import InventoryService
from db import ItemRepository, MemoryCache, MovementRepository
from settings import SHEETS_API_ROOT, GoogleSyncSettings

SPREADSHEET_ID = "sheet-123"


class FakeTokenProvider:
    def __init__(self, token: str = "test-token") -> None:
        self.token = token
        self.calls = 0
        self.settings: Optional[GoogleSyncSettings] = None

    def fetch_token(self) -> str:
        self.calls += 1
        return self.token

    def reconfigure(self, settings: GoogleSyncSettings) -> None:
        self.settings = settings


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Optional[Dict[str, Any]] = None, reason: str = "") -> None:
        self.status_code = status_code
        self.reason = reason
        self._payload = payload
        self.content = b"" if payload is None else json.dumps(payload).encode("utf-8")

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload


class FakeSheetsSession:
    """In-memory stand-in for the Sheets REST resources used by the gateway."""

    def __init__(self, spreadsheet_id: str = SPREADSHEET_ID, title: str = "Inventory") -> None:
        self.prefix = f"{SHEETS_API_ROOT}/{spreadsheet_id}"
        self.title = title
        self.sheets: Dict[str, Dict[str, Any]] = {}
        self.calls: List[Tuple[str, str, Optional[Dict[str, Any]], Optional[Dict[str, str]]]] = []
        self.headers: List[Dict[str, str]] = []
        self._next_sheet_id = 100
        self._failures: List[Any] = []

    # Test helpers -----------------------------------------------------
    def add_sheet(self, title: str, rows: Optional[List[List[Any]]] = None) -> int:
        sheet_id = self._next_sheet_id
        self._next_sheet_id += 1
        self.sheets[title] = {"sheetId": sheet_id, "rows": [list(row) for row in rows or []]}
        return sheet_id

    def rows(self, title: str) -> List[List[Any]]:
        return self.sheets[title]["rows"]

    def fail_next(self, status: int = 500, message: str = "Backend error") -> None:
        self._failures.append((status, message))

    def disconnect_next(self) -> None:
        self._failures.append(requests.ConnectionError("connection refused"))

    def writes(self) -> List[Tuple[str, str]]:
        return [(method, endpoint) for method, endpoint, _body, _params in self.calls if method != "GET"]

    # Session API ------------------------------------------------------
    def request(self, method: str, url: str, headers=None, json=None, params=None) -> FakeResponse:
        assert url.startswith(self.prefix), url
        endpoint = url[len(self.prefix):]
        self.calls.append((method, endpoint, json, params))
        self.headers.append(dict(headers or {}))

        if self._failures:
            failure = self._failures.pop(0)
            if isinstance(failure, Exception):
                raise failure
            status, message = failure
            return FakeResponse(status, {"error": {"code": status, "message": message}})

        if endpoint == "" and method == "GET":
            return FakeResponse(200, self._metadata())
        if endpoint == ":batchUpdate" and method == "POST":
            return self._batch_update(json or {})
        if endpoint.startswith("/values/"):
            range_spec = unquote(endpoint[len("/values/"):])
            if range_spec.endswith(":append"):
                return self._append(range_spec[: -len(":append")], json or {}, params)
            if method == "GET":
                return self._get_values(range_spec)
            if method == "PUT":
                return self._put_values(range_spec, json or {}, params)
        return FakeResponse(404, {"error": {"code": 404, "message": f"Unknown endpoint {endpoint}"}})

    # Internals --------------------------------------------------------
    def _metadata(self) -> Dict[str, Any]:
        return {
            "spreadsheetId": self.prefix.rsplit("/", 1)[-1],
            "properties": {"title": self.title},
            "sheets": [
                {"properties": {"sheetId": sheet["sheetId"], "title": title}}
                for title, sheet in self.sheets.items()
            ],
        }

    def _split(self, range_spec: str) -> Tuple[Optional[Dict[str, Any]], str, str]:
        match = re.match(r"^'((?:[^']|'')*)'!(.*)$", range_spec)
        assert match, f"Range is not quoted: {range_spec}"
        title = match.group(1).replace("''", "'")
        return self.sheets.get(title), title, match.group(2)

    @staticmethod
    def _missing(title: str) -> FakeResponse:
        return FakeResponse(400, {"error": {"code": 400, "message": f"Unable to parse range: {title}"}})

    @staticmethod
    def _stored(values: List[Any], params: Optional[Dict[str, str]]) -> List[Any]:
        """Mimic USER_ENTERED parsing of numeric-looking text; RAW keeps cells as sent."""

        if (params or {}).get("valueInputOption") != "USER_ENTERED":
            return list(values)
        stored: List[Any] = []
        for value in values:
            if isinstance(value, str):
                try:
                    number = float(value)
                except ValueError:
                    stored.append(value)
                    continue
                value = int(number) if number.is_integer() else number
            stored.append(value)
        return stored

    def _batch_update(self, body: Dict[str, Any]) -> FakeResponse:
        replies = []
        for request in body.get("requests", []):
            if "addSheet" in request:
                title = request["addSheet"]["properties"]["title"]
                if title in self.sheets:
                    return FakeResponse(400, {"error": {"code": 400, "message": f"Sheet {title} already exists"}})
                sheet_id = self.add_sheet(title)
                replies.append({"addSheet": {"properties": {"sheetId": sheet_id, "title": title}}})
            elif "deleteDimension" in request:
                target = request["deleteDimension"]["range"]
                sheet = next(
                    (entry for entry in self.sheets.values() if entry["sheetId"] == target["sheetId"]),
                    None,
                )
                if sheet is None:
                    return FakeResponse(400, {"error": {"code": 400, "message": "No grid with id"}})
                del sheet["rows"][target["startIndex"]:target["endIndex"]]
                replies.append({})
        return FakeResponse(200, {"replies": replies})

    def _get_values(self, range_spec: str) -> FakeResponse:
        sheet, title, cells = self._split(range_spec)
        if sheet is None:
            return self._missing(title)
        rows = sheet["rows"]
        if cells == "A:A":
            values = [[row[0]] if row and row[0] != "" else [] for row in rows]
        else:
            match = re.match(r"^[A-Z]+(\d+)(?::[A-Z]+(\d+)?)?$", cells)
            assert match, cells
            start = int(match.group(1)) - 1
            end = int(match.group(2)) if match.group(2) else len(rows)
            values = [list(row) for row in rows[start:end]]
        while values and not values[-1]:
            values.pop()
        payload: Dict[str, Any] = {"range": range_spec}
        if values:
            payload["values"] = values
        return FakeResponse(200, payload)

    def _put_values(self, range_spec: str, body: Dict[str, Any], params=None) -> FakeResponse:
        sheet, title, cells = self._split(range_spec)
        if sheet is None:
            return self._missing(title)
        start = int(re.match(r"^[A-Z]+(\d+)", cells).group(1)) - 1
        rows = sheet["rows"]
        for offset, values in enumerate(body.get("values", [])):
            while len(rows) <= start + offset:
                rows.append([])
            rows[start + offset] = self._stored(values, params)
        return FakeResponse(200, {"updatedRange": range_spec})

    def _append(self, range_spec: str, body: Dict[str, Any], params=None) -> FakeResponse:
        sheet, title, _cells = self._split(range_spec)
        if sheet is None:
            return self._missing(title)
        rows = sheet["rows"]
        while rows and not rows[-1]:
            rows.pop()
        for values in body.get("values", []):
            rows.append(self._stored(values, params))
        return FakeResponse(200, {"updates": {"updatedRows": len(body.get("values", []))}})


def configured_settings(**overrides: str) -> GoogleSyncSettings:
    values = {
        "api_key": "api-key",
        "client_id": "client-id.apps.googleusercontent.com",
        "client_secret": "client-secret",
        "refresh_token": "refresh-token",
        "spreadsheet_id": SPREADSHEET_ID,
    }
    values.update(overrides)
    return GoogleSyncSettings(**values)


@pytest.fixture
def cache() -> MemoryCache:
    return MemoryCache()


@pytest.fixture
def settings() -> GoogleSyncSettings:
    return configured_settings()


@pytest.fixture
def token_provider() -> FakeTokenProvider:
    return FakeTokenProvider()


@pytest.fixture
def session() -> FakeSheetsSession:
    return FakeSheetsSession()


@pytest.fixture
def gateway(settings, token_provider, session) -> SheetsGateway:
    return SheetsGateway(settings, token_provider=token_provider, session=session)


@pytest.fixture
def sheets_sync(gateway) -> SheetsSync:
    return SheetsSync(gateway)


@pytest.fixture
def ledger(cache) -> LedgerEngine:
    return LedgerEngine(ItemRepository(cache), MovementRepository(cache))


@pytest.fixture
def service(ledger, sheets_sync) -> InventoryService:
    return InventoryService(ledger, sheets_sync)
