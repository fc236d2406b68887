"""
fastcomm/services/drive_service.py

Google Drive gateway for storing claim documents in the company drive.

Responsibilities:
- Authenticate with the company account's OAuth refresh token
- Find-or-create folders (idempotent)
- Upload file bytes into a folder and return the Drive id + view link

Calls go straight to the Drive v3 REST endpoints through google-auth's
AuthorizedSession (a requests.Session that refreshes the access token).

This service contains NO Discord-specific logic.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass

import requests
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import AuthorizedSession
from google.oauth2.credentials import Credentials

from fastcomm.services.errors import StorageError

logger = logging.getLogger(__name__)

DRIVE_FILES_URL = "https://www.googleapis.com/drive/v3/files"
DRIVE_UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3/files"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
DRIVE_SCOPES = ["https://www.googleapis.com/auth/drive"]
FOLDER_MIME = "application/vnd.google-apps.folder"


@dataclass(frozen=True)
class StoredObject:
    id: str
    name: str
    link: str


def _quote(value: str) -> str:
    """Escape a literal for a Drive `q` expression."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


class DriveService:
    """
    Thin Drive v3 client.

    Blocking requests are executed with asyncio.to_thread.
    """

    def __init__(self, client_id: str = "", client_secret: str = "", refresh_token: str = "",
                 session: requests.Session | None = None, timeout: float = 60.0):
        self.timeout = timeout
        self._configured = session is not None or bool(client_id and client_secret and refresh_token)

        if session is None and self._configured:
            creds = Credentials(
                token=None,
                refresh_token=refresh_token,
                token_uri=GOOGLE_TOKEN_URI,
                client_id=client_id,
                client_secret=client_secret,
                scopes=DRIVE_SCOPES,
            )
            session = AuthorizedSession(creds)
        self.session = session

    @property
    def configured(self) -> bool:
        return self._configured

    def _call(self, method: str, url: str, **kwargs) -> dict:
        if self.session is None:
            raise StorageError("Google Drive is not configured (GOOGLE_OAUTH_SECRETS / COMPANY_DRIVE_REFRESH_TOKEN)")
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except (requests.RequestException, GoogleAuthError) as e:
            raise StorageError(f"Drive request failed: {e}") from e

        if resp.status_code >= 400:
            raise StorageError(f"Drive {method} returned {resp.status_code}: {resp.text}")
        return resp.json()

    # --------------------------------------------------
    # Folders
    # --------------------------------------------------
    def _find_folder(self, name: str, parent_id: str | None) -> str | None:
        q = f"name='{_quote(name)}' and mimeType='{FOLDER_MIME}' and trashed=false"
        if parent_id:
            q += f" and '{_quote(parent_id)}' in parents"

        data = self._call("GET", DRIVE_FILES_URL, params={"q": q, "spaces": "drive", "fields": "files(id, name)"})
        files = data.get("files") or []
        return files[0]["id"] if files else None

    def _create_folder(self, name: str, parent_id: str | None) -> str:
        metadata = {"name": name, "mimeType": FOLDER_MIME}
        if parent_id:
            metadata["parents"] = [parent_id]
        data = self._call("POST", DRIVE_FILES_URL, params={"fields": "id"}, json=metadata)
        logger.info("📁 Created Drive folder: %s", name)
        return data["id"]

    async def ensure_folder(self, name: str, parent_id: str | None = None) -> str:
        """Return the id of folder `name` under `parent_id`, creating it if missing."""

        def run() -> str:
            return self._find_folder(name, parent_id) or self._create_folder(name, parent_id)

        return await asyncio.to_thread(run)

    # --------------------------------------------------
    # Files
    # --------------------------------------------------
    async def upload_file(self, folder_id: str, name: str, mime_type: str, content: bytes) -> StoredObject:
        """Multipart upload of `content` into `folder_id`."""
        boundary = f"fastcomm-{uuid.uuid4().hex}"
        metadata = json.dumps({"name": name, "parents": [folder_id]})
        body = (
            f"--{boundary}\r\n"
            "Content-Type: application/json; charset=UTF-8\r\n\r\n"
            f"{metadata}\r\n"
            f"--{boundary}\r\n"
            f"Content-Type: {mime_type}\r\n\r\n"
        ).encode("utf-8") + content + f"\r\n--{boundary}--\r\n".encode("utf-8")

        def run() -> StoredObject:
            data = self._call(
                "POST",
                DRIVE_UPLOAD_URL,
                params={"uploadType": "multipart", "fields": "id, name, webViewLink"},
                data=body,
                headers={"Content-Type": f"multipart/related; boundary={boundary}"},
            )
            return StoredObject(id=data["id"], name=data.get("name", name), link=data.get("webViewLink", ""))

        stored = await asyncio.to_thread(run)
        logger.info("✅ Uploaded to Drive: %s (%d bytes)", stored.name, len(content))
        return stored
