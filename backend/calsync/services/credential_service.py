"""Loads the stored Google OAuth credential and keeps it refreshed.

Token acquisition (the consent flow) happens elsewhere; this service only
reads the authorized-user file it leaves behind. Both the Python
google-auth format (`token`, `expiry`) and the Node google-auth-library
format (`access_token`, `expiry_date` in epoch ms) are accepted.
"""
from __future__ import annotations
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional
import json
import logging
import threading

from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request as GoogleRequest
from google.oauth2.credentials import Credentials

from ..errors import AuthorizationRequiredError, TransientProviderError

logger = logging.getLogger(__name__)

TOKEN_URI = "https://oauth2.googleapis.com/token"


def _naive_utc(dt: datetime) -> datetime:
    # google-auth compares expiry against a naive UTC clock
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def credentials_from_info(info: Dict[str, Any], client_id: Optional[str], client_secret: Optional[str]) -> Credentials:
    token = info.get("token") or info.get("access_token")
    creds = Credentials(
        token=token,
        refresh_token=info.get("refresh_token"),
        token_uri=info.get("token_uri") or TOKEN_URI,
        client_id=info.get("client_id") or client_id,
        client_secret=info.get("client_secret") or client_secret,
        scopes=info.get("scopes") or CredentialService.SCOPES,
    )
    if info.get("expiry"):
        creds.expiry = _naive_utc(datetime.fromisoformat(info["expiry"].replace("Z", "+00:00")))
    elif info.get("expiry_date"):
        creds.expiry = _naive_utc(datetime.fromtimestamp(int(info["expiry_date"]) / 1000, tz=timezone.utc))
    return creds


class CredentialService:
    SCOPES = ['https://www.googleapis.com/auth/calendar.readonly']

    def __init__(self, token_path: str, client_id: Optional[str] = None, client_secret: Optional[str] = None):
        self.token_path = Path(token_path)
        self.client_id = client_id
        self.client_secret = client_secret
        self._credentials: Optional[Credentials] = None
        self._lock = threading.Lock()

    def load(self) -> Optional[Credentials]:
        if not self.token_path.exists():
            return None
        try:
            info = json.loads(self.token_path.read_text())
            return credentials_from_info(info, self.client_id, self.client_secret)
        except (OSError, ValueError, TypeError) as e:
            logger.error("Failed to load Google credential from %s: %s", self.token_path, e)
            return None

    def get_valid_credentials(self) -> Credentials:
        """Return a usable credential, refreshing (and persisting) it when expired."""
        with self._lock:
            creds = self._credentials or self.load()
            if creds is None or not (creds.token or creds.refresh_token):
                raise AuthorizationRequiredError("No Google credential available")
            if creds.expired or not creds.token:
                if not creds.refresh_token:
                    raise AuthorizationRequiredError("Token expired and no refresh token available")
                try:
                    creds.refresh(GoogleRequest())
                except RefreshError as e:
                    self._credentials = None
                    raise AuthorizationRequiredError(f"Failed to refresh token: {e}")
                except TransportError as e:
                    raise TransientProviderError(f"Token endpoint unreachable: {e}")
                logger.info("Refreshed Google access token")
                self._save(creds)
            self._credentials = creds
            return creds

    def is_authorized(self) -> bool:
        creds = self._credentials or self.load()
        if creds is None or not (creds.token or creds.refresh_token):
            return False
        if creds.expired or not creds.token:
            return bool(creds.refresh_token)
        return True

    def _save(self, creds: Credentials) -> None:
        try:
            self.token_path.parent.mkdir(parents=True, exist_ok=True)
            self.token_path.write_text(creds.to_json())
        except OSError as e:
            logger.warning("Could not persist refreshed credential to %s: %s", self.token_path, e)
