"""Application configuration helpers for StockLedger."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Mapping, Optional

from core import app_paths

if TYPE_CHECKING:  # pragma: no cover - typing only
    from db import LocalCache


logger = logging.getLogger(__name__)


TOKEN_URI = "https://oauth2.googleapis.com/token"
SHEETS_API_ROOT = "https://sheets.googleapis.com/v4/spreadsheets"

ITEMS_KEY = "inventory_items"
MOVEMENTS_KEY = "inventory_stocks"
THEME_KEY = "inventory_theme"
SYNC_CONFIG_KEY = "google_sheets_config"

DEFAULT_SPREADSHEET_ID = os.getenv("STOCKLEDGER_SPREADSHEET_ID", "")
DEFAULT_LOW_STOCK_THRESHOLD = 10
DEFAULT_AGENT = "System"
MAX_NOTES_LENGTH = 500
THEMES = ("light", "dark")

# Cache JSON key -> dataclass attribute.
_BUNDLE_FIELDS: Mapping[str, str] = {
    "apiKey": "api_key",
    "clientId": "client_id",
    "clientSecret": "client_secret",
    "refreshToken": "refresh_token",
    "spreadsheetId": "spreadsheet_id",
}


def default_cache_path() -> str:
    """Return the SQLite cache location, honouring ``STOCKLEDGER_DB_PATH``."""

    override = os.environ.get("STOCKLEDGER_DB_PATH")
    if override:
        return override
    return str(app_paths.data_path("stockledger.db"))


def parse_spreadsheet_id(value: str) -> str:
    """Normalise a spreadsheet identifier from raw input or URL."""

    if not value:
        return ""
    value = value.strip()
    if "/spreadsheets/d/" in value:
        value = value.split("/spreadsheets/d/", 1)[1]
        value = value.split("/", 1)[0]
    if "?" in value:
        value = value.split("?", 1)[0]
    if "#" in value:
        value = value.split("#", 1)[0]
    return value


@dataclass
class GoogleSyncSettings:
    """Credential bundle used to talk to the remote spreadsheet."""

    api_key: str = ""
    client_id: str = ""
    client_secret: str = ""
    refresh_token: str = ""
    spreadsheet_id: str = DEFAULT_SPREADSHEET_ID

    def __post_init__(self) -> None:
        self.spreadsheet_id = parse_spreadsheet_id(self.spreadsheet_id)

    def is_configured(self) -> bool:
        return all(
            isinstance(getattr(self, attribute), str) and getattr(self, attribute).strip()
            for attribute in _BUNDLE_FIELDS.values()
        )

    def missing_fields(self) -> list[str]:
        return [
            key
            for key, attribute in _BUNDLE_FIELDS.items()
            if not str(getattr(self, attribute) or "").strip()
        ]

    def to_json(self) -> Dict[str, str]:
        return {key: getattr(self, attribute) for key, attribute in _BUNDLE_FIELDS.items()}

    @classmethod
    def from_json(cls, data: Mapping[str, object]) -> "GoogleSyncSettings":
        values: Dict[str, str] = {}
        for key, attribute in _BUNDLE_FIELDS.items():
            value = data.get(key, data.get(attribute))
            if isinstance(value, str):
                values[attribute] = value.strip()
        return cls(**values)


def load_google_sync_settings(cache: "LocalCache") -> GoogleSyncSettings:
    """Read the credential bundle from ``cache``.

    A missing or unreadable entry yields an unconfigured bundle rather than an
    error so that the local ledger keeps working without remote access.
    """

    raw = cache.get(SYNC_CONFIG_KEY)
    if not raw:
        return GoogleSyncSettings()
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring unreadable sync configuration stored under %s", SYNC_CONFIG_KEY)
        return GoogleSyncSettings()
    if not isinstance(data, Mapping):
        return GoogleSyncSettings()
    return GoogleSyncSettings.from_json(data)


def save_google_sync_settings(settings: GoogleSyncSettings, cache: "LocalCache") -> None:
    cache.set(SYNC_CONFIG_KEY, json.dumps(settings.to_json()))


def load_theme(cache: "LocalCache") -> str:
    value = cache.get(THEME_KEY)
    return value if value in THEMES else "light"


def save_theme(theme: str, cache: "LocalCache") -> None:
    if theme not in THEMES:
        raise ValueError(f"Unknown theme {theme!r}; expected one of {', '.join(THEMES)}")
    cache.set(THEME_KEY, theme)


def toggle_theme(cache: "LocalCache", current: Optional[str] = None) -> str:
    """Flip between the light and dark themes and persist the result."""

    current = current or load_theme(cache)
    new_theme = "light" if current == "dark" else "dark"
    save_theme(new_theme, cache)
    return new_theme


__all__ = [
    "DEFAULT_AGENT",
    "DEFAULT_LOW_STOCK_THRESHOLD",
    "DEFAULT_SPREADSHEET_ID",
    "GoogleSyncSettings",
    "ITEMS_KEY",
    "MAX_NOTES_LENGTH",
    "MOVEMENTS_KEY",
    "SHEETS_API_ROOT",
    "SYNC_CONFIG_KEY",
    "THEME_KEY",
    "THEMES",
    "TOKEN_URI",
    "default_cache_path",
    "load_google_sync_settings",
    "load_theme",
    "parse_spreadsheet_id",
    "save_google_sync_settings",
    "save_theme",
    "toggle_theme",
]
