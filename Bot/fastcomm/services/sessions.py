"""
fastcomm/services/sessions.py

Per-user submission state for the FastComm bot.

Responsibilities:
- Define the closed set of workflow states and their transition table
- Hold the mutable SubmissionDraft for each user
- Define the immutable SubmissionRecord persisted to the backup repo
- Own the in-memory SessionStore (lost on restart)

Design notes:
- This module contains NO Discord-specific logic.
- Record JSON keys match the existing submissions.json backup format.
"""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from fastcomm.services.commission import MAX_PARTICIPANTS, Participant, parse_share
from fastcomm.services.errors import InvalidTransitionError, SessionExpiredError, ValidationError


# --------------------------------------------------
# Workflow states
# --------------------------------------------------
class DraftStatus(str, Enum):
    COLLECTING = "collecting"
    AWAITING_CUSTOMER = "awaiting_customer"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    CONFIRMED = "confirmed"
    AWAITING_EXTERNAL_FORM = "awaiting_external_form"
    AWAITING_DOCUMENT = "awaiting_document"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TRANSITIONS: dict[DraftStatus, frozenset[DraftStatus]] = {
    DraftStatus.COLLECTING: frozenset({
        DraftStatus.COLLECTING,
        DraftStatus.AWAITING_CUSTOMER,
        DraftStatus.AWAITING_CONFIRMATION,
        DraftStatus.CANCELLED,
    }),
    DraftStatus.AWAITING_CUSTOMER: frozenset({
        DraftStatus.COLLECTING,
        DraftStatus.AWAITING_CUSTOMER,
        DraftStatus.AWAITING_CONFIRMATION,
        DraftStatus.CANCELLED,
    }),
    DraftStatus.AWAITING_CONFIRMATION: frozenset({
        DraftStatus.COLLECTING,
        DraftStatus.AWAITING_CUSTOMER,
        DraftStatus.CONFIRMED,
        DraftStatus.CANCELLED,
    }),
    DraftStatus.CONFIRMED: frozenset({
        DraftStatus.CONFIRMED,
        DraftStatus.AWAITING_CONFIRMATION,
        DraftStatus.AWAITING_EXTERNAL_FORM,
        DraftStatus.CANCELLED,
    }),
    DraftStatus.AWAITING_EXTERNAL_FORM: frozenset({
        DraftStatus.AWAITING_DOCUMENT,
        DraftStatus.CANCELLED,
    }),
    DraftStatus.AWAITING_DOCUMENT: frozenset({
        DraftStatus.AWAITING_EXTERNAL_FORM,
        DraftStatus.COMPLETED,
    }),
    DraftStatus.COMPLETED: frozenset(),
    DraftStatus.CANCELLED: frozenset(),
}

# States in which the user may still edit fields
EDITABLE_STATES = frozenset({
    DraftStatus.COLLECTING,
    DraftStatus.AWAITING_CUSTOMER,
    DraftStatus.AWAITING_CONFIRMATION,
    DraftStatus.CONFIRMED,
})

PROJECT_FIELDS = ("project_name", "unit_no", "listed_price", "net_price", "commission_rate")
CUSTOMER_FIELDS = ("customer_name", "customer_phone", "customer_address", "contract_date", "loan_approval_date")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def mint_session_token(user_id: str) -> str:
    """Unique, unguessable token binding a draft to its external form."""
    return f"token_{user_id}_{int(time.time() * 1000)}_{secrets.token_hex(6)}"


# --------------------------------------------------
# Value objects
# --------------------------------------------------
@dataclass(frozen=True)
class UploadedFile:
    """A document re-filed into Google Drive."""
    original_name: str
    storage_id: str
    storage_link: str
    stored_name: str = ""
    mime_type: str = ""
    size: int = 0
    source_url: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "originalName": self.original_name,
            "finalName": self.stored_name,
            "driveId": self.storage_id,
            "driveLink": self.storage_link,
            "jotformUrl": self.source_url,
            "fileSize": self.size,
            "mimeType": self.mime_type,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UploadedFile":
        return cls(
            original_name=str(data.get("originalName", "")),
            storage_id=str(data.get("driveId", "")),
            storage_link=str(data.get("driveLink", "")),
            stored_name=str(data.get("finalName", "")),
            mime_type=str(data.get("mimeType", "")),
            size=int(data.get("fileSize") or 0),
            source_url=str(data.get("jotformUrl", "")),
        )


@dataclass(frozen=True)
class UploadForm:
    """The external document-collection form handed to the user."""
    form_id: str
    url: str
    session_token: str


# --------------------------------------------------
# Draft
# --------------------------------------------------
@dataclass
class SubmissionDraft:
    """
    In-progress submission for one user.

    Participants are stored by slot position (index 0 == consultant 1).
    Editing a slot overwrites it in place.
    """
    user_id: str
    display_name: str = ""
    username: str = ""

    project_name: str = ""
    unit_no: str = ""
    listed_price: str = ""
    net_price: str = ""
    commission_rate: str = ""

    participants: list[Participant] = field(default_factory=list)

    customer_name: str = ""
    customer_phone: str = ""
    customer_address: str = ""
    contract_date: str = ""
    loan_approval_date: str = ""

    status: DraftStatus = DraftStatus.COLLECTING
    session_token: str | None = None
    form: UploadForm | None = None
    uploaded_files: list[UploadedFile] = field(default_factory=list)
    submission_id: str | None = None
    created_at: str = field(default_factory=utc_now_iso)

    # Files transferred by an attempt whose persistence failed
    staged_submission_id: str | None = None
    staged_files: list[UploadedFile] = field(default_factory=list)
    recheck_scheduled: bool = False

    # ---------- state machine ----------
    def can_transition(self, target: DraftStatus) -> bool:
        return target in TRANSITIONS[self.status]

    def transition(self, target: DraftStatus) -> None:
        if not self.can_transition(target):
            raise InvalidTransitionError(self.status, target)
        self.status = target

    @property
    def is_terminal(self) -> bool:
        return not TRANSITIONS[self.status]

    # ---------- field helpers ----------
    @property
    def has_project(self) -> bool:
        return bool(self.project_name)

    @property
    def has_customer(self) -> bool:
        return all(getattr(self, name) for name in CUSTOMER_FIELDS)

    @property
    def filled_participants(self) -> list[Participant]:
        return [p for p in self.participants if p.is_filled]

    def participant(self, slot: int) -> Participant | None:
        self._check_slot(slot)
        if slot <= len(self.participants):
            return self.participants[slot - 1]
        return None

    def set_participant(self, slot: int, participant: Participant) -> None:
        self._check_slot(slot)
        while len(self.participants) < slot:
            self.participants.append(Participant())
        self.participants[slot - 1] = participant

    def next_free_slot(self) -> int | None:
        """First empty slot (1-based), or None when all four are used."""
        for idx, p in enumerate(self.participants):
            if not p.is_filled:
                return idx + 1
        if len(self.participants) < MAX_PARTICIPANTS:
            return len(self.participants) + 1
        return None

    def drop_empty_participants(self) -> None:
        self.participants = self.filled_participants

    @staticmethod
    def _check_slot(slot: int) -> None:
        if not 1 <= slot <= MAX_PARTICIPANTS:
            raise ValidationError(f"Consultant slot must be 1-{MAX_PARTICIPANTS}, got {slot}")

    def require(self, *names: str) -> None:
        """Raise SessionExpiredError if an antecedent field is blank."""
        for name in names:
            if not getattr(self, name):
                raise SessionExpiredError(self.user_id, missing=name)


# --------------------------------------------------
# Persisted record
# --------------------------------------------------
@dataclass(frozen=True)
class SubmissionRecord:
    """Immutable snapshot of a completed draft, as stored in the backup repo."""
    user_id: str
    username: str
    submitted_at: str
    project_name: str
    unit_no: str
    listed_price: str
    net_price: str
    commission_rate: str
    participants: tuple[Participant, ...]
    customer_name: str
    customer_phone: str
    customer_address: str
    contract_date: str
    loan_approval_date: str
    uploaded_files: tuple[UploadedFile, ...] = ()
    submission_id: str = ""
    session_token: str = ""

    @classmethod
    def from_draft(cls, draft: SubmissionDraft, files: list[UploadedFile], submission_id: str) -> "SubmissionRecord":
        return cls(
            user_id=draft.user_id,
            username=draft.username or draft.display_name or "Unknown User",
            submitted_at=utc_now_iso(),
            project_name=draft.project_name,
            unit_no=draft.unit_no,
            listed_price=draft.listed_price,
            net_price=draft.net_price,
            commission_rate=draft.commission_rate,
            participants=tuple(replace(p) for p in draft.filled_participants),
            customer_name=draft.customer_name,
            customer_phone=draft.customer_phone,
            customer_address=draft.customer_address,
            contract_date=draft.contract_date,
            loan_approval_date=draft.loan_approval_date,
            uploaded_files=tuple(files),
            submission_id=submission_id,
            session_token=draft.session_token or "",
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "project_name": self.project_name,
            "unit_no": self.unit_no,
            "spa_price": self.listed_price,
            "nett_price": self.net_price,
            "commission_rate": self.commission_rate,
            "agents": [
                {"name": p.name, "code": p.code, "percentage": p.share, "commission": p.payout}
                for p in self.participants
            ],
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "customer_address": self.customer_address,
            "spa_date": self.contract_date,
            "la_date": self.loan_approval_date,
            "user_id": self.user_id,
            "username": self.username,
            "submitted_at": self.submitted_at,
            "uploadedFiles": [f.to_dict() for f in self.uploaded_files],
            "jotformSubmissionId": self.submission_id,
            "sessionToken": self.session_token,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SubmissionRecord":
        agents = data.get("agents") or []
        files = data.get("uploadedFiles") or []
        return cls(
            user_id=str(data.get("user_id", "")),
            username=str(data.get("username", "")),
            submitted_at=str(data.get("submitted_at", "")),
            project_name=str(data.get("project_name", "")),
            unit_no=str(data.get("unit_no", "")),
            listed_price=str(data.get("spa_price", "")),
            net_price=str(data.get("nett_price", "")),
            commission_rate=str(data.get("commission_rate", "")),
            participants=tuple(
                Participant(
                    name=str(a.get("name") or ""),
                    code=str(a.get("code") or ""),
                    share=parse_share(a.get("percentage")),
                    payout=None if a.get("commission") is None else str(a.get("commission")),
                )
                for a in agents
                if isinstance(a, dict)
            ),
            customer_name=str(data.get("customer_name", "")),
            customer_phone=str(data.get("customer_phone", "")),
            customer_address=str(data.get("customer_address", "")),
            contract_date=str(data.get("spa_date", "")),
            loan_approval_date=str(data.get("la_date", "")),
            uploaded_files=tuple(UploadedFile.from_dict(f) for f in files if isinstance(f, dict)),
            submission_id=str(data.get("jotformSubmissionId") or ""),
            session_token=str(data.get("sessionToken") or ""),
        )

    @property
    def filled_participants(self) -> list[Participant]:
        return [p for p in self.participants if p.is_filled]


# --------------------------------------------------
# Store
# --------------------------------------------------
class SessionStore:
    """
    In-memory map of user id -> SubmissionDraft.

    All methods are synchronous, so a lookup followed by a mutation cannot
    be interleaved with another task on the event loop.

    Drafts that reach `completed` are moved to a "finished" slot so a
    later status check can still tell the user their claim went through.
    """

    def __init__(self):
        self._drafts: dict[str, SubmissionDraft] = {}
        self._finished: dict[str, SubmissionDraft] = {}

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._drafts

    def __len__(self) -> int:
        return len(self._drafts)

    def get(self, user_id: str) -> SubmissionDraft | None:
        return self._drafts.get(user_id)

    def require(self, user_id: str) -> SubmissionDraft:
        draft = self._drafts.get(user_id)
        if draft is None:
            raise SessionExpiredError(user_id)
        return draft

    def create(self, user_id: str, display_name: str = "", username: str = "") -> SubmissionDraft:
        draft = SubmissionDraft(user_id=user_id, display_name=display_name, username=username)
        self._drafts[user_id] = draft
        self._finished.pop(user_id, None)
        return draft

    def get_or_create(self, user_id: str, display_name: str = "", username: str = "") -> SubmissionDraft:
        draft = self._drafts.get(user_id)
        if draft is None or draft.is_terminal:
            return self.create(user_id, display_name, username)
        return draft

    def discard(self, user_id: str) -> SubmissionDraft | None:
        return self._drafts.pop(user_id, None)

    def finish(self, user_id: str) -> None:
        """Remove a completed draft, remembering it for status checks."""
        draft = self._drafts.pop(user_id, None)
        if draft is not None:
            self._finished[user_id] = draft

    def finished(self, user_id: str) -> SubmissionDraft | None:
        return self._finished.get(user_id)
