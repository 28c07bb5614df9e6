"""Helpers for validating the sync credential bundle and minting access tokens."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable, Mapping, Optional

from google.auth import exceptions as google_auth_exceptions
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials

from core.errors import AuthError, NetworkError, NotConfiguredError
from settings import TOKEN_URI, GoogleSyncSettings

logger = logging.getLogger(__name__)

__all__ = [
    "CredentialsBundleInvalidError",
    "REQUIRED_FIELDS",
    "TokenProvider",
    "load_credentials_bundle",
]


class CredentialsBundleInvalidError(Exception):
    """Raised when a credential bundle is unreadable or missing required data."""


REQUIRED_FIELDS: Iterable[str] = (
    "apiKey",
    "clientId",
    "clientSecret",
    "refreshToken",
    "spreadsheetId",
)


def _load_json(text: str) -> Mapping[str, object]:
    payload_text = (text or "").lstrip("\ufeff").strip()
    if not payload_text:
        raise CredentialsBundleInvalidError("Credential bundle is empty.")
    try:
        payload = json.loads(payload_text)
    except json.JSONDecodeError as exc:
        raise CredentialsBundleInvalidError(f"JSON parse error: {exc.msg}") from exc
    if not isinstance(payload, Mapping):
        raise CredentialsBundleInvalidError("Credential bundle must be a JSON object.")
    return payload


def _validate_payload(payload: Mapping[str, object]) -> Dict[str, str]:
    data: Dict[str, str] = {}
    missing: list[str] = []
    for field in REQUIRED_FIELDS:
        value = payload.get(field)
        if not isinstance(value, str) or not value.strip():
            missing.append(field)
        else:
            data[field] = value.strip()
    if missing:
        raise CredentialsBundleInvalidError(f"JSON missing fields: {', '.join(missing)}")
    return data


def load_credentials_bundle(text: str) -> GoogleSyncSettings:
    """Parse and validate a JSON credential bundle (for example a pasted export)."""

    return GoogleSyncSettings.from_json(_validate_payload(_load_json(text)))


class TokenProvider:
    """Exchange the stored refresh token for a short-lived bearer token.

    Every call performs a fresh refresh-token grant against
    ``https://oauth2.googleapis.com/token``; no token is reused between calls.
    """

    def __init__(self, settings: GoogleSyncSettings, *, request: Optional[Any] = None) -> None:
        self._settings = settings
        self._request = request

    def reconfigure(self, settings: GoogleSyncSettings) -> None:
        self._settings = settings

    def _credentials(self) -> Credentials:
        return Credentials(
            token=None,
            refresh_token=self._settings.refresh_token,
            client_id=self._settings.client_id,
            client_secret=self._settings.client_secret,
            token_uri=TOKEN_URI,
        )

    def fetch_token(self) -> str:
        if not self._settings.is_configured():
            raise NotConfiguredError()

        credentials = self._credentials()
        request = self._request if self._request is not None else Request()
        try:
            credentials.refresh(request)
        except google_auth_exceptions.RefreshError as exc:
            logger.warning("Token refresh failed: %s", exc)
            raise AuthError(f"Token refresh failed: {exc}") from exc
        except google_auth_exceptions.TransportError as exc:
            logger.warning("Token endpoint unreachable: %s", exc)
            raise NetworkError(f"Token endpoint unreachable: {exc}") from exc

        if not credentials.token:
            raise AuthError("Token refresh failed: response carried no access_token")
        return credentials.token
