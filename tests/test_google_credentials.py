from __future__ import annotations

import json
from typing import Any, Dict, List
from urllib.parse import parse_qs

import pytest
from google.auth import exceptions as google_auth_exceptions

from conftest import configured_settings
from core.errors import AuthError, NetworkError, NotConfiguredError
from core.google_credentials import (
    CredentialsBundleInvalidError,
    TokenProvider,
    load_credentials_bundle,
)
from settings import TOKEN_URI, GoogleSyncSettings


class _FakeAuthResponse:
    def __init__(self, status: int, payload: Dict[str, Any]) -> None:
        self.status = status
        self.headers = {"content-type": "application/json"}
        self.data = json.dumps(payload).encode("utf-8")


class _FakeAuthRequest:
    """Callable matching ``google.auth.transport.Request``."""

    def __init__(self, status: int, payload: Dict[str, Any]) -> None:
        self._response = _FakeAuthResponse(status, payload)
        self.calls: List[Dict[str, Any]] = []

    def __call__(self, url, method="GET", body=None, headers=None, timeout=None, **kwargs):
        self.calls.append({"url": url, "method": method, "body": body, "headers": headers})
        return self._response


def _bundle(**overrides: str) -> str:
    payload = {
        "apiKey": "key",
        "clientId": "client",
        "clientSecret": "secret",
        "refreshToken": "refresh",
        "spreadsheetId": "https://docs.google.com/spreadsheets/d/abc123/edit#gid=0",
    }
    payload.update(overrides)
    return json.dumps(payload)


def test_load_credentials_bundle_normalises_spreadsheet_url() -> None:
    settings = load_credentials_bundle("\ufeff" + _bundle())

    assert settings.spreadsheet_id == "abc123"
    assert settings.is_configured()


def test_load_credentials_bundle_reports_missing_fields() -> None:
    with pytest.raises(CredentialsBundleInvalidError) as excinfo:
        load_credentials_bundle(_bundle(clientSecret="", refreshToken="  "))

    assert "JSON missing fields" in str(excinfo.value)
    assert "clientSecret" in str(excinfo.value)
    assert "refreshToken" in str(excinfo.value)


def test_load_credentials_bundle_rejects_invalid_json() -> None:
    with pytest.raises(CredentialsBundleInvalidError):
        load_credentials_bundle("{not json")
    with pytest.raises(CredentialsBundleInvalidError):
        load_credentials_bundle("[]")


def test_fetch_token_posts_refresh_grant() -> None:
    request = _FakeAuthRequest(200, {"access_token": "ya29.token", "expires_in": 3599})
    provider = TokenProvider(configured_settings(), request=request)

    assert provider.fetch_token() == "ya29.token"
    assert provider.fetch_token() == "ya29.token"

    assert len(request.calls) == 2
    call = request.calls[0]
    assert call["url"] == TOKEN_URI
    assert call["method"] == "POST"
    body = call["body"].decode("utf-8") if isinstance(call["body"], bytes) else call["body"]
    form = parse_qs(body)
    assert form["grant_type"] == ["refresh_token"]
    assert form["refresh_token"] == ["refresh-token"]
    assert form["client_id"] == ["client-id.apps.googleusercontent.com"]
    assert form["client_secret"] == ["client-secret"]


def test_fetch_token_maps_rejected_grant_to_auth_error() -> None:
    request = _FakeAuthRequest(400, {"error": "invalid_grant", "error_description": "Token has been expired or revoked."})
    provider = TokenProvider(configured_settings(), request=request)

    with pytest.raises(AuthError) as excinfo:
        provider.fetch_token()

    assert "invalid_grant" in str(excinfo.value)


def test_fetch_token_maps_transport_failure_to_network_error(monkeypatch) -> None:
    class _Unreachable:
        token = None

        def refresh(self, request) -> None:
            raise google_auth_exceptions.TransportError("connection reset")

    provider = TokenProvider(configured_settings(), request=object())
    monkeypatch.setattr(provider, "_credentials", lambda: _Unreachable())

    with pytest.raises(NetworkError):
        provider.fetch_token()


def test_fetch_token_requires_complete_bundle() -> None:
    request = _FakeAuthRequest(200, {"access_token": "unused"})
    provider = TokenProvider(GoogleSyncSettings(client_id="only-this"), request=request)

    with pytest.raises(NotConfiguredError):
        provider.fetch_token()
    assert request.calls == []


def test_reconfigure_switches_credentials() -> None:
    request = _FakeAuthRequest(200, {"access_token": "tok"})
    provider = TokenProvider(GoogleSyncSettings(), request=request)

    provider.reconfigure(configured_settings(refresh_token="new-refresh"))
    provider.fetch_token()

    body = request.calls[0]["body"]
    body = body.decode("utf-8") if isinstance(body, bytes) else body
    assert parse_qs(body)["refresh_token"] == ["new-refresh"]
