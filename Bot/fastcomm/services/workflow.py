"""
fastcomm/services/workflow.py

Submission workflow for the FastComm bot.

Responsibilities:
- Drive a user's draft through project -> consultants -> customer ->
  confirmation -> document upload
- Create the Jotform upload form on confirmation (with backoff retries)
- Process completed form submissions exactly once, whichever trigger
  (webhook, manual status check, deferred re-check) gets there first
- Persist the finished record and announce it

Every public method returns a structured outcome. Wording for users is
left to the cogs/UI. Missing drafts and antecedent fields surface as
SessionExpiredError; forbidden state changes as InvalidTransitionError.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Awaitable, Callable, Sequence

from fastcomm.services.commission import (
    MAX_PARTICIPANTS,
    Participant,
    calculate_commissions,
    parse_share,
    share_total,
    validate_shares,
)
from fastcomm.services.completion import CompletionTracker
from fastcomm.services.errors import (
    FastCommError,
    FormGatewayError,
    InvalidTransitionError,
    RepositoryError,
    SessionExpiredError,
    ValidationError,
)
from fastcomm.services.jotform_service import JotformService
from fastcomm.services.repository import SubmissionRepository
from fastcomm.services.retry import exponential_delays, retry_async
from fastcomm.services.sessions import (
    DraftStatus,
    SessionStore,
    SubmissionDraft,
    SubmissionRecord,
    UploadedFile,
    mint_session_token,
)
from fastcomm.services.transfer_service import DocumentTransferService
from fastcomm.utils.parsing import is_iso_date

logger = logging.getLogger(__name__)

Notifier = Callable[[SubmissionRecord], Awaitable[None]]

FORM_ATTEMPTS = 3
RECHECK_DELAY_SECONDS = 30.0

REQUIRED_PROJECT_FIELDS = ("project_name", "unit_no", "net_price", "commission_rate")


# --------------------------------------------------
# Outcomes
# --------------------------------------------------
@dataclass(frozen=True)
class ProjectStep:
    draft: SubmissionDraft
    filled_slots: list[int]
    next_slot: int | None
    has_customer: bool


@dataclass(frozen=True)
class ParticipantStep:
    draft: SubmissionDraft
    slot: int
    next_slot: int | None
    has_customer: bool


@dataclass(frozen=True)
class ReviewStep:
    """Result of validating shares before confirmation."""
    draft: SubmissionDraft
    valid: bool
    share_total: Decimal


class ConfirmStatus(str, Enum):
    FORM_READY = "form_ready"
    ALREADY_CONFIRMED = "already_confirmed"
    BUSY = "busy"
    INVALID_SHARES = "invalid_shares"
    FORM_FAILED = "form_failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ConfirmOutcome:
    status: ConfirmStatus
    draft: SubmissionDraft
    error: str | None = None


class CompletionStatus(str, Enum):
    COMPLETED = "completed"
    ALREADY_COMPLETED = "already_completed"
    ALREADY_PROCESSING = "already_processing"
    PENDING = "pending"
    NO_FORM = "no_form"
    UNMATCHED = "unmatched"
    NO_FILES = "no_files"
    TRANSFER_FAILED = "transfer_failed"
    PERSIST_FAILED = "persist_failed"
    POLL_FAILED = "poll_failed"


@dataclass(frozen=True)
class CompletionOutcome:
    status: CompletionStatus
    submission_id: str | None = None
    draft: SubmissionDraft | None = None
    record: SubmissionRecord | None = None
    files: tuple[UploadedFile, ...] = field(default_factory=tuple)
    error: str | None = None


def _is_transient_form_error(exc: BaseException) -> bool:
    return isinstance(exc, FormGatewayError) and exc.transient


class SubmissionWorkflow:
    """
    Single owner of the session store and completion tracker.

    All state checks that gate a claim run synchronously between awaits,
    so two triggers on the same event loop cannot both win.
    """

    def __init__(
        self,
        store: SessionStore,
        tracker: CompletionTracker,
        forms: JotformService,
        transfer: DocumentTransferService,
        repository: SubmissionRepository,
        notifier: Notifier | None = None,
        *,
        form_attempts: int = FORM_ATTEMPTS,
        form_delays: Sequence[float] = exponential_delays(),
        recheck_delay: float = RECHECK_DELAY_SECONDS,
    ):
        self.store = store
        self.tracker = tracker
        self.forms = forms
        self.transfer = transfer
        self.repository = repository
        self.notifier = notifier
        self.form_attempts = form_attempts
        self.form_delays = tuple(form_delays)
        self.recheck_delay = recheck_delay

        self._confirming: set[str] = set()
        self._checking: set[str] = set()
        self._background: set[asyncio.Task] = set()

    def set_notifier(self, notifier: Notifier | None) -> None:
        self.notifier = notifier

    # --------------------------------------------------
    # Collecting
    # --------------------------------------------------
    def start(self, user_id: str, display_name: str = "", username: str = "") -> SubmissionDraft:
        """Resume the user's live draft or open a new one."""
        draft = self.store.get_or_create(user_id, display_name, username)
        if display_name:
            draft.display_name = display_name
        if username:
            draft.username = username
        return draft

    def submit_project(self, user_id: str, *, project_name: str, unit_no: str, listed_price: str,
                       net_price: str, commission_rate: str, display_name: str = "", username: str = "") -> ProjectStep:
        """Store project fields. Consultant and customer fields are preserved."""
        values = {
            "project_name": project_name.strip(),
            "unit_no": unit_no.strip(),
            "listed_price": listed_price.strip(),
            "net_price": net_price.strip(),
            "commission_rate": commission_rate.strip().rstrip("%").strip(),
        }
        missing = [name for name in REQUIRED_PROJECT_FIELDS if not values[name]]
        if missing:
            raise ValidationError(f"Missing project field(s): {', '.join(missing)}")

        draft = self.start(user_id, display_name, username)
        draft.transition(DraftStatus.COLLECTING)
        for name, value in values.items():
            setattr(draft, name, value)

        filled = [idx + 1 for idx, p in enumerate(draft.participants) if p.is_filled]
        return ProjectStep(draft=draft, filled_slots=filled, next_slot=draft.next_free_slot(), has_customer=draft.has_customer)

    def participant(self, user_id: str, slot: int) -> Participant | None:
        """Current contents of a consultant slot (for prefilling the modal)."""
        draft = self.store.require(user_id)
        return draft.participant(slot)

    def submit_participant(self, user_id: str, slot: int, *, name: str, code: str, share: str) -> ParticipantStep:
        """
        Store consultant `slot` (1-4), overwriting what was there.

        A completely blank submission leaves the slot untouched.
        """
        draft = self.store.require(user_id)
        draft.require("project_name")
        if draft.status != DraftStatus.COLLECTING:
            draft.transition(DraftStatus.COLLECTING)

        name, code, share = name.strip(), code.strip(), (share or "").strip()
        if name or code or share not in ("", "0"):
            draft.set_participant(slot, Participant(name=name, code=code, share=parse_share(share)))

        next_slot = slot + 1 if slot < MAX_PARTICIPANTS else None
        return ParticipantStep(draft=draft, slot=slot, next_slot=next_slot, has_customer=draft.has_customer)

    def begin_customer(self, user_id: str) -> SubmissionDraft:
        """User elected to move on from consultants to customer details."""
        draft = self.store.require(user_id)
        draft.require("project_name")
        draft.transition(DraftStatus.AWAITING_CUSTOMER)
        return draft

    def submit_customer(self, user_id: str, *, customer_name: str, customer_phone: str, customer_address: str,
                        contract_date: str, loan_approval_date: str) -> ReviewStep:
        """Store customer fields, then validate shares and compute payouts."""
        draft = self.store.require(user_id)
        draft.require("project_name")
        for label, value in (("SPA date", contract_date), ("LA date", loan_approval_date)):
            if not is_iso_date(value):
                raise ValidationError(f"{label} must be YYYY-MM-DD, got {value.strip()!r}")
        draft.transition(DraftStatus.AWAITING_CUSTOMER)

        draft.customer_name = customer_name.strip()
        draft.customer_phone = customer_phone.strip()
        draft.customer_address = customer_address.strip()
        draft.contract_date = contract_date.strip()
        draft.loan_approval_date = loan_approval_date.strip()

        return self._review(draft)

    def proceed_to_confirmation(self, user_id: str) -> ReviewStep:
        """Re-validate and recompute without re-entering customer details."""
        draft = self.store.require(user_id)
        draft.require(*REQUIRED_PROJECT_FIELDS)
        draft.require("customer_name", "customer_phone", "customer_address", "contract_date", "loan_approval_date")
        return self._review(draft)

    def begin_edit(self, user_id: str, section: str) -> SubmissionDraft:
        """
        Step back to an earlier section without clearing anything.

        section: "project", "participants" or "customer".
        """
        draft = self.store.require(user_id)
        if section in ("project", "participants"):
            target = DraftStatus.COLLECTING
        elif section == "customer":
            target = DraftStatus.AWAITING_CUSTOMER
        else:
            raise ValidationError(f"Unknown section: {section}")

        if draft.status == DraftStatus.CONFIRMED and draft.form is None:
            # form creation failed earlier; editing reopens the review
            draft.transition(DraftStatus.AWAITING_CONFIRMATION)
        draft.transition(target)
        return draft

    def _review(self, draft: SubmissionDraft) -> ReviewStep:
        draft.drop_empty_participants()
        total = share_total(draft.participants)

        if not draft.participants or not validate_shares(draft.participants):
            logger.info("Share total %s%% rejected for %s", total, draft.user_id)
            return ReviewStep(draft=draft, valid=False, share_total=total)

        draft.participants = calculate_commissions(draft.net_price, draft.commission_rate, draft.participants)
        if draft.status != DraftStatus.AWAITING_CONFIRMATION:
            draft.transition(DraftStatus.AWAITING_CONFIRMATION)
        return ReviewStep(draft=draft, valid=True, share_total=total)

    # --------------------------------------------------
    # Confirmation / form creation
    # --------------------------------------------------
    async def confirm(self, user_id: str, username: str = "") -> ConfirmOutcome:
        """
        Confirm the draft and create its upload form.

        The session token is minted once per draft. It only becomes
        matchable (bound) after form creation succeeds; if every attempt
        fails the draft stays `confirmed` and can be retried.
        """
        draft = self.store.require(user_id)

        if draft.form is not None and draft.status in (DraftStatus.AWAITING_EXTERNAL_FORM, DraftStatus.AWAITING_DOCUMENT):
            return ConfirmOutcome(ConfirmStatus.ALREADY_CONFIRMED, draft)
        if user_id in self._confirming:
            return ConfirmOutcome(ConfirmStatus.BUSY, draft)

        draft.require(*REQUIRED_PROJECT_FIELDS)
        if draft.status not in (DraftStatus.AWAITING_CONFIRMATION, DraftStatus.CONFIRMED):
            raise InvalidTransitionError(draft.status, DraftStatus.CONFIRMED)
        if not validate_shares(draft.participants):
            return ConfirmOutcome(ConfirmStatus.INVALID_SHARES, draft)

        self._confirming.add(user_id)
        try:
            if username:
                draft.username = username
            draft.transition(DraftStatus.CONFIRMED)
            if not draft.session_token:
                draft.session_token = mint_session_token(user_id)
            token = draft.session_token

            try:
                form = await retry_async(
                    lambda: self.forms.create_upload_form(draft, token),
                    attempts=self.form_attempts,
                    delays=self.form_delays,
                    retry_if=_is_transient_form_error,
                    label="Jotform form creation",
                )
            except FormGatewayError as e:
                logger.error("❌ Form creation failed for %s: %s", user_id, e)
                return ConfirmOutcome(ConfirmStatus.FORM_FAILED, draft, error=str(e))

            if draft.status != DraftStatus.CONFIRMED or self.store.get(user_id) is not draft:
                logger.info("Draft for %s was cancelled while its form was being created", user_id)
                return ConfirmOutcome(ConfirmStatus.CANCELLED, draft)

            draft.form = form
            self.tracker.bind_token(token, user_id)
            draft.transition(DraftStatus.AWAITING_EXTERNAL_FORM)
            logger.info("✅ Draft for %s confirmed, awaiting documents", user_id)
            return ConfirmOutcome(ConfirmStatus.FORM_READY, draft)
        finally:
            self._confirming.discard(user_id)

    def cancel(self, user_id: str) -> SubmissionDraft | None:
        """
        Discard the user's draft.

        Nothing external is retracted; after form creation only the local
        token binding is dropped so a late submission no longer matches.
        """
        draft = self.store.get(user_id)
        if draft is None:
            return None
        draft.transition(DraftStatus.CANCELLED)
        self.tracker.unbind_token(draft.session_token)
        self.store.discard(user_id)
        logger.info("Draft for %s cancelled", user_id)
        return draft

    # --------------------------------------------------
    # Completion
    # --------------------------------------------------
    async def process_submission(self, submission_id: str, session_token: str | None, trigger: str = "webhook") -> CompletionOutcome:
        """
        Transfer files, persist and notify for one external submission.

        Safe to call concurrently from every trigger: at most one call per
        submission id gets past the claim.
        """
        # Everything up to and including try_claim() is synchronous.
        if not submission_id:
            return CompletionOutcome(CompletionStatus.UNMATCHED)
        if self.tracker.is_processed(submission_id) or self.tracker.is_retired(session_token):
            logger.info("[%s] Submission %s already processed", trigger, submission_id)
            return CompletionOutcome(CompletionStatus.ALREADY_COMPLETED, submission_id)

        user_id = self.tracker.match_token(session_token)
        draft = self.store.get(user_id) if user_id else None
        if draft is None or draft.session_token != session_token:
            logger.info("[%s] No session matches submission %s (token %r)", trigger, submission_id, session_token)
            return CompletionOutcome(CompletionStatus.UNMATCHED, submission_id)

        if draft.uploaded_files:
            return CompletionOutcome(CompletionStatus.ALREADY_COMPLETED, submission_id, draft=draft)
        if draft.status == DraftStatus.AWAITING_DOCUMENT:
            return CompletionOutcome(CompletionStatus.ALREADY_PROCESSING, submission_id, draft=draft)
        if draft.status != DraftStatus.AWAITING_EXTERNAL_FORM:
            return CompletionOutcome(CompletionStatus.UNMATCHED, submission_id, draft=draft)

        if not self.tracker.try_claim(submission_id):
            status = CompletionStatus.ALREADY_COMPLETED if self.tracker.is_processed(submission_id) else CompletionStatus.ALREADY_PROCESSING
            return CompletionOutcome(status, submission_id, draft=draft)
        draft.transition(DraftStatus.AWAITING_DOCUMENT)
        logger.info("[%s] Claimed submission %s for %s", trigger, submission_id, draft.user_id)

        try:
            files = await self._transfer_files(submission_id, draft)
        except FastCommError as e:
            logger.error("❌ File transfer failed for %s: %s", submission_id, e)
            self._release(submission_id, draft)
            return CompletionOutcome(CompletionStatus.TRANSFER_FAILED, submission_id, draft=draft, error=str(e))
        except Exception:
            self._release(submission_id, draft)
            raise

        if not files:
            logger.warning("No files were transferred for %s, not marking as completed", submission_id)
            self._release(submission_id, draft)
            return CompletionOutcome(CompletionStatus.NO_FILES, submission_id, draft=draft)

        record = SubmissionRecord.from_draft(draft, files, submission_id)
        try:
            await self.repository.append(record)
        except RepositoryError as e:
            logger.error("❌ Failed to save submission %s to backup: %s", submission_id, e)
            draft.staged_submission_id = submission_id
            draft.staged_files = list(files)
            self._release(submission_id, draft)
            return CompletionOutcome(CompletionStatus.PERSIST_FAILED, submission_id, draft=draft, files=tuple(files), error=str(e))
        except Exception:
            self._release(submission_id, draft)
            raise

        self.tracker.complete(submission_id, session_token)
        draft.uploaded_files = list(files)
        draft.submission_id = submission_id
        draft.staged_submission_id = None
        draft.staged_files = []
        draft.transition(DraftStatus.COMPLETED)
        self.store.finish(draft.user_id)
        logger.info("✅ [%s] Submission %s completed for %s (%d file(s))", trigger, submission_id, draft.user_id, len(files))

        await self._notify(record)
        return CompletionOutcome(CompletionStatus.COMPLETED, submission_id, draft=draft, record=record, files=tuple(files))

    async def _transfer_files(self, submission_id: str, draft: SubmissionDraft) -> list[UploadedFile]:
        if draft.staged_submission_id == submission_id and draft.staged_files:
            logger.info("Reusing %d staged file(s) for %s", len(draft.staged_files), submission_id)
            return list(draft.staged_files)
        return await self.transfer.transfer(submission_id, draft)

    def _release(self, submission_id: str, draft: SubmissionDraft) -> None:
        self.tracker.release(submission_id)
        if draft.status == DraftStatus.AWAITING_DOCUMENT:
            draft.transition(DraftStatus.AWAITING_EXTERNAL_FORM)

    async def _notify(self, record: SubmissionRecord) -> None:
        if not self.tracker.mark_notified(record.submission_id, record.user_id):
            logger.info("Notification already sent for %s", record.submission_id)
            return
        if self.notifier is None:
            logger.warning("No notifier configured; submission %s not announced", record.submission_id)
            return
        try:
            await self.notifier(record)
        except Exception:
            # The record is already saved; a failed announcement must not undo it.
            logger.exception("❌ Error sending notification for %s", record.submission_id)

    # --------------------------------------------------
    # Status polling
    # --------------------------------------------------
    async def check_status(self, user_id: str) -> CompletionOutcome:
        """Manual "Check Upload Status" poll."""
        draft = self.store.get(user_id)
        if draft is None:
            finished = self.store.finished(user_id)
            if finished is not None:
                return CompletionOutcome(
                    CompletionStatus.ALREADY_COMPLETED,
                    finished.submission_id,
                    draft=finished,
                    files=tuple(finished.uploaded_files),
                )
            raise SessionExpiredError(user_id)

        if draft.form is None:
            return CompletionOutcome(CompletionStatus.NO_FORM, draft=draft)
        if draft.status == DraftStatus.AWAITING_DOCUMENT or user_id in self._checking:
            return CompletionOutcome(CompletionStatus.ALREADY_PROCESSING, draft=draft)

        self._checking.add(user_id)
        try:
            return await self._poll_once(draft, trigger="manual", schedule_recheck=True)
        finally:
            self._checking.discard(user_id)

    async def _poll_once(self, draft: SubmissionDraft, trigger: str, schedule_recheck: bool) -> CompletionOutcome:
        token = draft.session_token
        try:
            submission = await self.forms.find_submission(draft.form.form_id, token)
        except FormGatewayError as e:
            logger.error("❌ Error checking form submissions for %s: %s", draft.user_id, e)
            return CompletionOutcome(CompletionStatus.POLL_FAILED, draft=draft, error=str(e))

        if submission is None:
            if schedule_recheck:
                self._schedule_recheck(draft)
            return CompletionOutcome(CompletionStatus.PENDING, draft=draft)

        return await self.process_submission(submission.id, token, trigger=trigger)

    def _schedule_recheck(self, draft: SubmissionDraft) -> None:
        """Queue one deferred re-check per draft (never a loop)."""
        if draft.recheck_scheduled:
            return
        draft.recheck_scheduled = True
        task = asyncio.create_task(self._deferred_recheck(draft.user_id, draft.session_token))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _deferred_recheck(self, user_id: str, token: str | None) -> None:
        await asyncio.sleep(self.recheck_delay)

        draft = self.store.get(user_id)
        if draft is None or draft.session_token != token:
            return
        draft.recheck_scheduled = False
        if draft.status != DraftStatus.AWAITING_EXTERNAL_FORM:
            return

        try:
            outcome = await self._poll_once(draft, trigger="recheck", schedule_recheck=False)
        except Exception:
            logger.exception("❌ Deferred status re-check failed for %s", user_id)
            return
        logger.info("Deferred re-check for %s: %s", user_id, outcome.status.value)

    async def close(self) -> None:
        """Cancel pending deferred re-checks."""
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
