# task_mirror/services/google_auth.py
from __future__ import annotations

import logging
import os
from typing import Iterable, Optional, Tuple

from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow

from core.exceptions import ConfigurationError, CredentialError
from core.settings import GOOGLE_AUTH_URI, GOOGLE_SYNC, GoogleSyncSettings


logger = logging.getLogger("taskmirror.sync.auth")


def _require_client(settings: GoogleSyncSettings) -> None:
    missing = [
        name
        for name, value in (
            ("GOOGLE_CLIENT_ID", settings.client_id),
            ("GOOGLE_CLIENT_SECRET", settings.client_secret),
        )
        if not value
    ]
    if missing:
        raise ConfigurationError(f"Missing environment variable: {', '.join(missing)}")


def _client_config(settings: GoogleSyncSettings) -> dict:
    return {
        "web": {
            "client_id": settings.client_id,
            "client_secret": settings.client_secret,
            "auth_uri": GOOGLE_AUTH_URI,
            "token_uri": settings.token_uri,
            "redirect_uris": [settings.redirect_uri],
        }
    }


def build_credentials(
    refresh_token: str, settings: GoogleSyncSettings = GOOGLE_SYNC
) -> Credentials:
    return Credentials(
        token=None,
        refresh_token=refresh_token,
        token_uri=settings.token_uri,
        client_id=settings.client_id,
        client_secret=settings.client_secret,
        scopes=list(settings.scopes),
    )


def refresh_credentials(
    refresh_token: Optional[str], settings: GoogleSyncSettings = GOOGLE_SYNC
) -> Credentials:
    """Exchange a long-lived refresh token for credentials carrying an access token."""
    if not refresh_token:
        raise CredentialError("Google is not connected for this account")
    _require_client(settings)

    creds = build_credentials(refresh_token, settings)
    try:
        creds.refresh(Request())
    except (RefreshError, TransportError) as exc:
        logger.warning("Token refresh failed: %s", exc)
        raise CredentialError(f"Failed to refresh access token: {exc}") from exc

    if not creds.token:
        raise CredentialError("Failed to refresh access token")
    return creds


# ----- OAuth consent flow -----
def _build_flow(settings: GoogleSyncSettings, state: Optional[str] = None) -> Flow:
    _require_client(settings)
    flow = Flow.from_client_config(
        _client_config(settings),
        scopes=list(settings.scopes),
        state=state,
    )
    flow.redirect_uri = settings.redirect_uri
    return flow


def build_authorization_url(state: str, settings: GoogleSyncSettings = GOOGLE_SYNC) -> str:
    flow = _build_flow(settings, state=state)
    url, _ = flow.authorization_url(
        access_type="offline",
        prompt="consent",
        include_granted_scopes="true",
    )
    return url


def exchange_code(
    code: str, settings: GoogleSyncSettings = GOOGLE_SYNC
) -> Tuple[Optional[str], list[str]]:
    """Return ``(refresh_token, granted_scopes)`` for an authorization code.

    Google omits the refresh token when the user already granted offline
    access; callers keep the stored one in that case.
    """
    if not code:
        raise CredentialError("Missing authorization code")
    flow = _build_flow(settings)
    # Google may return scopes granted earlier (include_granted_scopes).
    os.environ.setdefault("OAUTHLIB_RELAX_TOKEN_SCOPE", "1")
    try:
        flow.fetch_token(code=code)
    except Exception as exc:
        raise CredentialError(f"Authorization code exchange failed: {exc}") from exc
    creds = flow.credentials
    return creds.refresh_token, _granted_scopes(getattr(creds, "granted_scopes", None) or creds.scopes)


def _granted_scopes(scopes: Optional[Iterable[str]]) -> list[str]:
    if scopes is None:
        return []
    if isinstance(scopes, str):
        return [s for s in scopes.split() if s]
    return sorted({s for s in scopes if s})


__all__ = [
    "build_authorization_url",
    "build_credentials",
    "exchange_code",
    "refresh_credentials",
]
