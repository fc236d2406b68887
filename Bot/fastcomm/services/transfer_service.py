"""
fastcomm/services/transfer_service.py

Moves the documents of a Jotform submission into the company Google Drive.

Folder layout:
    Discord Uploads / Agent Claim Request / <YYYY-MM-DD> - <user> - <project> - <unit>

The per-submission folder id is cached per (user, project, unit, token) so
files arriving over several calls land in one folder.
"""

from __future__ import annotations

import logging
import mimetypes
import re
import secrets
from datetime import datetime, timezone

from fastcomm.services.drive_service import DriveService
from fastcomm.services.errors import FormGatewayError, StorageError
from fastcomm.services.jotform_service import DownloadedFile, JotformService
from fastcomm.services.sessions import SubmissionDraft, UploadedFile

logger = logging.getLogger(__name__)

GENERIC_MIME_TYPES = {"application/octet-stream", "application/binary", ""}


def _slug(value: str, fallback: str) -> str:
    cleaned = re.sub(r"[^a-zA-Z0-9]", "_", value or "")
    return cleaned or fallback


def clean_filename(name: str) -> str:
    """Keep the original name, replacing only characters Drive/OSes dislike."""
    cleaned = re.sub(r'[<>:"/\\|?*]', "_", name or "").strip()
    if not cleaned or cleaned == "_":
        return f"document_{secrets.token_hex(4)}.bin"
    return cleaned


def resolve_mime_type(file: DownloadedFile, filename: str) -> str:
    """Server content type, falling back to the file extension when generic."""
    if file.mime_type not in GENERIC_MIME_TYPES:
        return file.mime_type
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or "application/octet-stream"


class DocumentTransferService:
    def __init__(self, forms: JotformService, drive: DriveService,
                 root_folder: str = "Discord Uploads", claims_folder: str = "Agent Claim Request"):
        self.forms = forms
        self.drive = drive
        self.root_folder = root_folder
        self.claims_folder = claims_folder
        self._folder_cache: dict[tuple[str, str, str, str], str] = {}

    async def submission_folder(self, draft: SubmissionDraft) -> str:
        """Folder id for this draft's documents (created on first use)."""
        key = (draft.user_id, draft.project_name, draft.unit_no, draft.session_token or "no_token")
        cached = self._folder_cache.get(key)
        if cached:
            return cached

        root_id = await self.drive.ensure_folder(self.root_folder)
        claims_id = await self.drive.ensure_folder(self.claims_folder, root_id)

        today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        owner = draft.username or draft.display_name or "Unknown User"
        name = f"{today} - {owner} - {_slug(draft.project_name, 'Project')} - {_slug(draft.unit_no, 'Unit')}"
        folder_id = await self.drive.ensure_folder(name, claims_id)

        self._folder_cache[key] = folder_id
        logger.info("📁 Using submission folder: %s", name)
        return folder_id

    def _stored_name(self, draft: SubmissionDraft, filename: str) -> str:
        today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        return (
            f"{_slug(draft.project_name, 'project')}_{_slug(draft.unit_no, 'unit')}_"
            f"{today}_{secrets.token_hex(4)}_{filename}"
        )

    async def transfer(self, submission_id: str, draft: SubmissionDraft) -> list[UploadedFile]:
        """
        Copy every attachment of `submission_id` into Drive.

        A file that fails to download or upload is skipped. Failing to
        read the submission itself raises. An empty result means nothing
        was transferred.
        """
        refs = await self.forms.fetch_submission_files(submission_id)
        logger.info("📥 Submission %s has %d attachment(s)", submission_id, len(refs))

        uploaded: list[UploadedFile] = []
        for ref in refs:
            try:
                file = await self.forms.download_file(ref.url)
                filename = clean_filename(file.name)
                mime_type = resolve_mime_type(file, filename)
                stored_name = self._stored_name(draft, filename)

                folder_id = await self.submission_folder(draft)
                stored = await self.drive.upload_file(folder_id, stored_name, mime_type, file.content)
            except (FormGatewayError, StorageError) as e:
                logger.error("❌ Skipping attachment %s: %s", ref.url, e)
                continue

            uploaded.append(UploadedFile(
                original_name=file.name,
                storage_id=stored.id,
                storage_link=stored.link,
                stored_name=stored_name,
                mime_type=mime_type,
                size=len(file.content),
                source_url=ref.url,
            ))

        logger.info("📤 Transferred %d/%d file(s) for submission %s", len(uploaded), len(refs), submission_id)
        return uploaded
