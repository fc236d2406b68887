"""
fastcomm/services/jotform_service.py

Jotform gateway used to collect claim documents.

Responsibilities:
- Hand out a prefilled upload form URL bound to a session token
- Register the bot's webhook on the template form (once per process)
- List recent form submissions and find the one carrying a token
- Resolve and download the files attached to a submission

All HTTP is done with requests in a worker thread so every call is a
suspension point for the event loop.

This service contains NO Discord-specific logic.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import unquote, urlencode, urlsplit

import requests

from fastcomm.services.errors import FormGatewayError
from fastcomm.services.sessions import SubmissionDraft, UploadForm

logger = logging.getLogger(__name__)

JOTFORM_API_URL = "https://api.jotform.com"
JOTFORM_FORM_URL = "https://form.jotform.com"

# Form fields that may carry the session token
TOKEN_FIELDS = ("session_token", "price_token", "session_id")

FILE_UPLOAD_TYPE = "control_fileupload"


@dataclass(frozen=True)
class FormSubmission:
    """One submission of the upload form."""
    id: str
    answers: dict[str, Any] = field(default_factory=dict)

    def carries_token(self, token: str | None) -> bool:
        """True when some answer equals `token` exactly."""
        if not token:
            return False
        for answer in self.answers.values():
            if not isinstance(answer, dict):
                continue
            value = answer.get("answer")
            if isinstance(value, str) and value.strip() == token:
                return True
        return False


@dataclass(frozen=True)
class FileReference:
    """A file attached to a submission, not downloaded yet."""
    url: str
    question_id: str = ""


@dataclass(frozen=True)
class DownloadedFile:
    name: str
    mime_type: str
    content: bytes
    source_url: str


def extract_session_token(raw_request: Any) -> str:
    """
    Pull the session token out of a webhook `rawRequest` payload.

    Jotform prefixes field names with the question id ("q4_price_token"),
    so both exact and suffix matches are accepted. Returns "" when absent.
    """
    if isinstance(raw_request, str):
        try:
            raw_request = json.loads(raw_request) if raw_request.strip() else {}
        except json.JSONDecodeError:
            return ""
    if not isinstance(raw_request, dict):
        return ""

    for field_name in TOKEN_FIELDS:
        for key, value in raw_request.items():
            if key == field_name or str(key).endswith(f"_{field_name}"):
                if isinstance(value, str) and value.strip():
                    return value.strip()
    return ""


def _filename_from_response(resp: requests.Response, url: str) -> str:
    disposition = resp.headers.get("content-disposition", "")
    match = re.search(r"filename\*?=(?:UTF-8'')?[\"']?([^;\"'\n]+)", disposition, re.IGNORECASE)
    if match:
        return unquote(match.group(1).strip())
    tail = urlsplit(url).path.rsplit("/", 1)[-1]
    return unquote(tail)


def _looks_like_html(content: bytes) -> bool:
    head = content[:200].decode("utf-8", errors="ignore").lower()
    return "<!doctype html" in head or "<html" in head or "access denied" in head


class JotformService:
    """
    Gateway to the Jotform REST API.

    One reusable template form is shared by every user; drafts are told
    apart by the session token prefilled into the form URL.
    """

    def __init__(self, api_key: str, template_id: str, webhook_url: str = "",
                 session: requests.Session | None = None, timeout: float = 30.0,
                 api_url: str = JOTFORM_API_URL, form_url: str = JOTFORM_FORM_URL):
        self.api_key = api_key
        self.template_id = template_id
        self.webhook_url = webhook_url
        self.session = session or requests.Session()
        self.timeout = timeout
        self.api_url = api_url.rstrip("/")
        self.form_url = form_url.rstrip("/")
        self._webhook_ready = False

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.template_id)

    # --------------------------------------------------
    # HTTP helper
    # --------------------------------------------------
    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        headers = kwargs.pop("headers", {})
        headers["APIKEY"] = self.api_key
        url = path if path.startswith("http") else f"{self.api_url}{path}"

        try:
            resp = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise FormGatewayError(f"Jotform request failed: {e}", transient=True) from e

        if resp.status_code == 429 or resp.status_code >= 500:
            raise FormGatewayError(
                f"Jotform {method} {path} returned {resp.status_code}",
                status=resp.status_code,
                transient=True,
            )
        return resp

    @staticmethod
    def _content(resp: requests.Response) -> Any:
        try:
            return resp.json().get("content")
        except ValueError:
            return None

    # --------------------------------------------------
    # Webhook registration
    # --------------------------------------------------
    def _ensure_webhook(self) -> None:
        if self._webhook_ready or not self.webhook_url:
            return

        path = f"/form/{self.template_id}/webhooks"
        existing = self._request("GET", path)
        if existing.ok:
            hooks = self._content(existing) or {}
            urls = hooks.values() if isinstance(hooks, dict) else hooks
            if self.webhook_url in urls:
                self._webhook_ready = True
                return

        resp = self._request("POST", path, data={"webhookURL": self.webhook_url})
        if resp.ok:
            logger.info("✅ Webhook registered for Jotform: %s", self.webhook_url)
            self._webhook_ready = True
            return

        # An already-registered URL is reported as a 400; that is success.
        if resp.status_code == 400 and "already in webhooks list" in resp.text.lower():
            logger.info("✅ Webhook already registered for Jotform: %s", self.webhook_url)
            self._webhook_ready = True
            return

        # The form still works without the webhook (manual status checks),
        # so this is logged rather than raised.
        logger.error("❌ Failed to set Jotform webhook (%s): %s", resp.status_code, resp.text)

    # --------------------------------------------------
    # Public API
    # --------------------------------------------------
    async def create_upload_form(self, draft: SubmissionDraft, session_token: str) -> UploadForm:
        """Return the prefilled upload form for `draft`."""
        if not self.configured:
            raise FormGatewayError("Jotform is not configured (JOTFORM_API_KEY / JOTFORM_TEMPLATE_ID)")

        await asyncio.to_thread(self._ensure_webhook)

        query = urlencode({"user_id": draft.user_id, "price_token": session_token})
        url = f"{self.form_url}/{self.template_id}?{query}"
        logger.info("📝 Upload form ready for %s (%s - %s)", draft.user_id, draft.project_name, draft.unit_no)
        return UploadForm(form_id=self.template_id, url=url, session_token=session_token)

    async def poll_submissions(self, form_id: str, limit: int = 20) -> list[FormSubmission]:
        """Most recent submissions of `form_id`."""

        def fetch() -> list[FormSubmission]:
            resp = self._request(
                "GET",
                f"/form/{form_id}/submissions",
                params={"limit": limit, "orderby": "created_at"},
            )
            if not resp.ok:
                raise FormGatewayError(f"Jotform submissions returned {resp.status_code}", status=resp.status_code)
            rows = self._content(resp) or []
            return [
                FormSubmission(id=str(row.get("id")), answers=row.get("answers") or {})
                for row in rows
                if isinstance(row, dict) and row.get("id")
            ]

        return await asyncio.to_thread(fetch)

    async def find_submission(self, form_id: str, session_token: str) -> FormSubmission | None:
        """The newest submission carrying `session_token`, if any."""
        for submission in await self.poll_submissions(form_id):
            if submission.carries_token(session_token):
                return submission
        return None

    async def fetch_submission_files(self, submission_id: str) -> list[FileReference]:
        """File upload answers of one submission."""

        def fetch() -> list[FileReference]:
            resp = self._request("GET", f"/submission/{submission_id}")
            if not resp.ok:
                raise FormGatewayError(f"Failed to fetch submission {submission_id}: {resp.status_code}", status=resp.status_code)

            content = self._content(resp) or {}
            refs: list[FileReference] = []
            for question_id, answer in (content.get("answers") or {}).items():
                if not isinstance(answer, dict) or answer.get("type") != FILE_UPLOAD_TYPE:
                    continue
                value = answer.get("answer")
                urls = value if isinstance(value, list) else [value]
                for url in urls:
                    if isinstance(url, str) and url.strip():
                        refs.append(FileReference(url=url.strip(), question_id=str(question_id)))
            return refs

        return await asyncio.to_thread(fetch)

    async def download_file(self, url: str) -> DownloadedFile:
        """Download one attachment, rejecting empty bodies and HTML error pages."""

        def fetch() -> DownloadedFile:
            resp = self._request("GET", url, params={"apikey": self.api_key}, headers={"Accept": "*/*"})
            if not resp.ok:
                raise FormGatewayError(f"Failed to download {url}: {resp.status_code}", status=resp.status_code)

            content = resp.content or b""
            if not content:
                raise FormGatewayError(f"Downloaded file is empty: {url}")
            if _looks_like_html(content):
                raise FormGatewayError(f"Downloaded an HTML page instead of a file: {url}")

            return DownloadedFile(
                name=_filename_from_response(resp, url),
                mime_type=resp.headers.get("content-type", "application/octet-stream").split(";")[0].strip(),
                content=content,
                source_url=url,
            )

        return await asyncio.to_thread(fetch)
