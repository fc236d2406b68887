from __future__ import annotations

import asyncio

import pytest

from fastcomm.services.commission import MAX_PARTICIPANTS
from fastcomm.services.completion import CompletionTracker
from fastcomm.services.errors import (
    FormGatewayError,
    InvalidTransitionError,
    SessionExpiredError,
    StorageError,
    ValidationError,
)
from fastcomm.services.jotform_service import FormSubmission
from fastcomm.services.sessions import DraftStatus, SessionStore
from fastcomm.services.workflow import CompletionStatus, ConfirmStatus, SubmissionWorkflow


def _answered(forms, submission_id: str, token: str) -> None:
    forms.submissions[token] = FormSubmission(
        id=submission_id,
        answers={"5": {"name": "price_token", "answer": token}},
    )


async def _confirmed(workflow, fill_draft, user_id="u1"):
    fill_draft(workflow, user_id)
    outcome = await workflow.confirm(user_id, username="alice")
    assert outcome.status == ConfirmStatus.FORM_READY
    return outcome.draft


# --------------------------------------------------
# Collecting and review
# --------------------------------------------------
def test_review_computes_payouts(workflow, fill_draft):
    review = fill_draft(workflow)

    assert review.valid
    assert review.draft.status == DraftStatus.AWAITING_CONFIRMATION
    assert [p.payout for p in review.draft.participants] == ["6000.00", "4000.00"]


def test_invalid_shares_stay_on_customer_step(workflow, fill_draft):
    review = fill_draft(workflow, shares=("60", "30"))

    assert not review.valid
    assert review.share_total == 90
    assert review.draft.status == DraftStatus.AWAITING_CUSTOMER
    assert all(p.payout is None for p in review.draft.participants)


@pytest.mark.asyncio
async def test_confirm_refused_before_review(workflow, fill_draft):
    fill_draft(workflow, shares=("60", "30"))

    with pytest.raises(InvalidTransitionError):
        await workflow.confirm("u1")


def test_fix_shares_then_proceed(workflow, fill_draft):
    fill_draft(workflow, shares=("60", "30"))

    workflow.begin_edit("u1", "participants")
    workflow.submit_participant("u1", 2, name="Agent 2", code="C2", share="40")
    review = workflow.proceed_to_confirmation("u1")

    assert review.valid
    assert review.draft.customer_name == "Tan Ah Kow"
    assert review.draft.status == DraftStatus.AWAITING_CONFIRMATION


def test_project_edit_keeps_consultants(workflow, fill_draft):
    fill_draft(workflow)

    workflow.begin_edit("u1", "project")
    step = workflow.submit_project(
        "u1",
        project_name="Sunway Velocity 2",
        unit_no="B-1",
        listed_price="600,000",
        net_price="550,000",
        commission_rate="3%",
    )

    assert step.filled_slots == [1, 2]
    assert step.has_customer
    assert step.draft.commission_rate == "3"


def test_blank_participant_modal_keeps_slot(workflow, fill_draft):
    fill_draft(workflow)
    workflow.begin_edit("u1", "participants")

    workflow.submit_participant("u1", 1, name="", code="", share="")

    assert workflow.participant("u1", 1).name == "Agent 1"


def test_last_participant_slot_offers_no_next(workflow, fill_draft):
    fill_draft(workflow)
    workflow.begin_edit("u1", "participants")

    assert workflow.submit_participant("u1", 3, name="C", code="", share="0").next_slot == 4
    assert workflow.submit_participant("u1", MAX_PARTICIPANTS, name="D", code="", share="0").next_slot is None


def test_unknown_edit_section(workflow, fill_draft):
    fill_draft(workflow)

    with pytest.raises(ValidationError):
        workflow.begin_edit("u1", "payment")


def test_missing_project_field_is_rejected(workflow):
    with pytest.raises(ValidationError):
        workflow.submit_project(
            "u1", project_name="X", unit_no="", listed_price="", net_price="1", commission_rate="2"
        )


def test_expired_session(workflow):
    with pytest.raises(SessionExpiredError):
        workflow.submit_participant("ghost", 1, name="A", code="", share="100")
    with pytest.raises(SessionExpiredError):
        workflow.proceed_to_confirmation("ghost")


def test_customer_step_needs_project(workflow):
    workflow.start("u1")

    with pytest.raises(SessionExpiredError) as info:
        workflow.submit_customer(
            "u1", customer_name="A", customer_phone="1", customer_address="x", contract_date="d", loan_approval_date="d"
        )

    assert info.value.missing == "project_name"


@pytest.mark.parametrize("spa, la", [("01/02/2024", "2024-02-15"), ("2024-02-01", "15 Feb 2024"), ("2024-2-1", "2024-02-15")])
def test_customer_dates_must_be_year_first(workflow, fill_draft, spa, la):
    fill_draft(workflow)

    with pytest.raises(ValidationError):
        workflow.submit_customer(
            "u1", customer_name="B", customer_phone="2", customer_address="y", contract_date=spa, loan_approval_date=la
        )

    draft = workflow.store.get("u1")
    assert draft.customer_name == "Tan Ah Kow"
    assert draft.contract_date == "2024-02-01"


# --------------------------------------------------
# Confirmation
# --------------------------------------------------
@pytest.mark.asyncio
async def test_confirm_binds_token_after_form_exists(workflow, fill_draft, forms):
    draft = await _confirmed(workflow, fill_draft)

    assert forms.create_calls == 1
    assert draft.status == DraftStatus.AWAITING_EXTERNAL_FORM
    assert draft.session_token in draft.form.url
    assert workflow.tracker.match_token(draft.session_token) == "u1"


@pytest.mark.asyncio
async def test_second_confirm_is_noop(workflow, fill_draft, forms):
    await _confirmed(workflow, fill_draft)

    outcome = await workflow.confirm("u1")

    assert outcome.status == ConfirmStatus.ALREADY_CONFIRMED
    assert forms.create_calls == 1


@pytest.mark.asyncio
async def test_concurrent_confirm_creates_one_form(workflow, fill_draft, forms):
    fill_draft(workflow)

    first, second = await asyncio.gather(workflow.confirm("u1"), workflow.confirm("u1"))

    assert {first.status, second.status} == {ConfirmStatus.FORM_READY, ConfirmStatus.BUSY}
    assert forms.create_calls == 1


@pytest.mark.asyncio
async def test_transient_form_errors_are_retried(workflow, fill_draft, forms):
    fill_draft(workflow)
    forms.failures = [FormGatewayError("rate limited", status=429, transient=True)] * 2

    outcome = await workflow.confirm("u1")

    assert outcome.status == ConfirmStatus.FORM_READY
    assert forms.create_calls == 3


@pytest.mark.asyncio
async def test_exhausted_form_creation_keeps_draft(workflow, fill_draft, forms):
    fill_draft(workflow)
    forms.failures = [FormGatewayError("down", status=503, transient=True)] * 3

    outcome = await workflow.confirm("u1")

    draft = outcome.draft
    assert outcome.status == ConfirmStatus.FORM_FAILED
    assert forms.create_calls == 3
    assert draft.status == DraftStatus.CONFIRMED
    assert draft.form is None
    assert draft.customer_name == "Tan Ah Kow"
    assert workflow.tracker.match_token(draft.session_token) is None

    token = draft.session_token
    retried = await workflow.confirm("u1")

    assert retried.status == ConfirmStatus.FORM_READY
    assert retried.draft.session_token == token


@pytest.mark.asyncio
async def test_permanent_form_error_is_not_retried(workflow, fill_draft, forms):
    fill_draft(workflow)
    forms.failures = [FormGatewayError("bad template", status=400)]

    outcome = await workflow.confirm("u1")

    assert outcome.status == ConfirmStatus.FORM_FAILED
    assert forms.create_calls == 1


@pytest.mark.asyncio
async def test_edit_after_failed_form_reopens_review(workflow, fill_draft, forms):
    fill_draft(workflow)
    forms.failures = [FormGatewayError("bad template", status=400)]
    await workflow.confirm("u1")

    draft = workflow.begin_edit("u1", "customer")

    assert draft.status == DraftStatus.AWAITING_CUSTOMER


@pytest.mark.asyncio
async def test_cancel_during_form_creation(workflow, fill_draft):
    fill_draft(workflow)

    task = asyncio.create_task(workflow.confirm("u1"))
    await asyncio.sleep(0)
    workflow.cancel("u1")
    outcome = await task

    assert outcome.status == ConfirmStatus.CANCELLED
    assert workflow.store.get("u1") is None
    assert workflow.tracker.match_token(outcome.draft.session_token) is None


# --------------------------------------------------
# Completion
# --------------------------------------------------
@pytest.mark.asyncio
async def test_webhook_completes_submission(workflow, fill_draft, repository, notifier, transfer):
    draft = await _confirmed(workflow, fill_draft)
    token = draft.session_token

    outcome = await workflow.process_submission("S1", token)

    assert outcome.status == CompletionStatus.COMPLETED
    assert transfer.calls == 1
    assert len(repository.records) == 1
    record = repository.records[0]
    assert record.submission_id == "S1"
    assert record.session_token == token
    assert [p.payout for p in record.participants] == ["6000.00", "4000.00"]
    assert notifier.records == [record]
    assert workflow.tracker.is_retired(token)
    assert workflow.store.get("u1") is None
    assert workflow.store.finished("u1").status == DraftStatus.COMPLETED


@pytest.mark.asyncio
async def test_duplicate_webhook_is_ignored(workflow, fill_draft, repository, notifier, transfer):
    draft = await _confirmed(workflow, fill_draft)
    await workflow.process_submission("S1", draft.session_token)

    again = await workflow.process_submission("S1", draft.session_token)

    assert again.status == CompletionStatus.ALREADY_COMPLETED
    assert transfer.calls == 1
    assert len(repository.records) == 1
    assert len(notifier.records) == 1


@pytest.mark.asyncio
async def test_concurrent_webhooks_process_once(workflow, fill_draft, repository, notifier, transfer):
    draft = await _confirmed(workflow, fill_draft)

    outcomes = await asyncio.gather(
        workflow.process_submission("S1", draft.session_token),
        workflow.process_submission("S1", draft.session_token),
    )

    statuses = sorted(o.status.value for o in outcomes)
    assert statuses == [CompletionStatus.ALREADY_PROCESSING.value, CompletionStatus.COMPLETED.value]
    assert transfer.calls == 1
    assert len(repository.records) == 1
    assert len(notifier.records) == 1


@pytest.mark.asyncio
async def test_retired_token_with_new_submission_id(workflow, fill_draft, transfer):
    draft = await _confirmed(workflow, fill_draft)
    await workflow.process_submission("S1", draft.session_token)

    outcome = await workflow.process_submission("S2", draft.session_token)

    assert outcome.status == CompletionStatus.ALREADY_COMPLETED
    assert transfer.calls == 1


@pytest.mark.asyncio
async def test_unknown_token_is_unmatched(workflow, fill_draft, transfer):
    await _confirmed(workflow, fill_draft)

    unknown = await workflow.process_submission("S9", "token_nobody_1_abc")
    blank = await workflow.process_submission("S9", "")
    no_id = await workflow.process_submission("", "anything")

    assert unknown.status == CompletionStatus.UNMATCHED
    assert blank.status == CompletionStatus.UNMATCHED
    assert no_id.status == CompletionStatus.UNMATCHED
    assert transfer.calls == 0


@pytest.mark.parametrize("manual_first", [False, True])
@pytest.mark.asyncio
async def test_webhook_and_manual_check_race(workflow, fill_draft, forms, repository, notifier, transfer, manual_first):
    draft = await _confirmed(workflow, fill_draft)
    _answered(forms, "S1", draft.session_token)

    webhook = workflow.process_submission("S1", draft.session_token)
    manual = workflow.check_status("u1")
    pair = (manual, webhook) if manual_first else (webhook, manual)
    outcomes = await asyncio.gather(*pair)

    statuses = sorted(o.status.value for o in outcomes)
    assert statuses == [CompletionStatus.ALREADY_PROCESSING.value, CompletionStatus.COMPLETED.value]
    assert transfer.calls == 1
    assert len(repository.records) == 1
    assert len(notifier.records) == 1


@pytest.mark.asyncio
async def test_no_files_releases_claim(workflow, fill_draft, transfer, repository, make_file):
    draft = await _confirmed(workflow, fill_draft)
    transfer.files = []

    outcome = await workflow.process_submission("S1", draft.session_token)

    assert outcome.status == CompletionStatus.NO_FILES
    assert not workflow.tracker.is_processing("S1")
    assert draft.status == DraftStatus.AWAITING_EXTERNAL_FORM
    assert repository.records == []

    transfer.files = [make_file("spa.pdf")]
    retried = await workflow.process_submission("S1", draft.session_token)

    assert retried.status == CompletionStatus.COMPLETED


@pytest.mark.asyncio
async def test_transfer_failure_releases_claim(workflow, fill_draft, transfer):
    draft = await _confirmed(workflow, fill_draft)
    transfer.error = StorageError("Drive upload failed (403)")

    outcome = await workflow.process_submission("S1", draft.session_token)

    assert outcome.status == CompletionStatus.TRANSFER_FAILED
    assert "403" in outcome.error
    assert not workflow.tracker.is_processing("S1")
    assert draft.status == DraftStatus.AWAITING_EXTERNAL_FORM


@pytest.mark.asyncio
async def test_persist_failure_reuses_transferred_files(workflow, fill_draft, transfer, repository, notifier):
    draft = await _confirmed(workflow, fill_draft)
    repository.fail_times = 1

    failed = await workflow.process_submission("S1", draft.session_token)

    assert failed.status == CompletionStatus.PERSIST_FAILED
    assert draft.uploaded_files == []
    assert len(draft.staged_files) == 1
    assert notifier.records == []

    retried = await workflow.process_submission("S1", draft.session_token)

    assert retried.status == CompletionStatus.COMPLETED
    assert transfer.calls == 1
    assert len(repository.records) == 1
    assert draft.staged_files == []


@pytest.mark.asyncio
async def test_notifier_failure_does_not_undo_completion(workflow, fill_draft, repository, notifier):
    draft = await _confirmed(workflow, fill_draft)
    notifier.error = RuntimeError("channel gone")

    outcome = await workflow.process_submission("S1", draft.session_token)

    assert outcome.status == CompletionStatus.COMPLETED
    assert len(repository.records) == 1


@pytest.mark.asyncio
async def test_cancel_unbinds_token(workflow, fill_draft, transfer):
    draft = await _confirmed(workflow, fill_draft)

    workflow.cancel("u1")
    outcome = await workflow.process_submission("S1", draft.session_token)

    assert outcome.status == CompletionStatus.UNMATCHED
    assert transfer.calls == 0


@pytest.mark.asyncio
async def test_cancel_refused_while_transferring(workflow, fill_draft):
    draft = await _confirmed(workflow, fill_draft)
    draft.transition(DraftStatus.AWAITING_DOCUMENT)

    with pytest.raises(InvalidTransitionError):
        workflow.cancel("u1")


# --------------------------------------------------
# Status checks
# --------------------------------------------------
@pytest.mark.asyncio
async def test_check_status_without_draft(workflow):
    with pytest.raises(SessionExpiredError):
        await workflow.check_status("ghost")


@pytest.mark.asyncio
async def test_check_status_without_form(workflow, fill_draft):
    fill_draft(workflow)

    outcome = await workflow.check_status("u1")

    assert outcome.status == CompletionStatus.NO_FORM


@pytest.mark.asyncio
async def test_check_status_after_completion(workflow, fill_draft):
    draft = await _confirmed(workflow, fill_draft)
    await workflow.process_submission("S1", draft.session_token)

    outcome = await workflow.check_status("u1")

    assert outcome.status == CompletionStatus.ALREADY_COMPLETED
    assert outcome.submission_id == "S1"
    assert len(outcome.files) == 1


@pytest.mark.asyncio
async def test_poll_failure_is_reported(workflow, fill_draft, forms):
    await _confirmed(workflow, fill_draft)

    async def broken(form_id, token):
        raise FormGatewayError("Jotform unreachable", transient=True)

    forms.find_submission = broken
    outcome = await workflow.check_status("u1")

    assert outcome.status == CompletionStatus.POLL_FAILED


@pytest.mark.asyncio
async def test_deferred_recheck_completes_submission(workflow, fill_draft, forms, repository):
    draft = await _confirmed(workflow, fill_draft)

    pending = await workflow.check_status("u1")
    assert pending.status == CompletionStatus.PENDING
    assert draft.recheck_scheduled

    _answered(forms, "S1", draft.session_token)
    await asyncio.gather(*list(workflow._background))

    assert len(repository.records) == 1
    assert workflow.store.finished("u1") is draft


@pytest.mark.asyncio
async def test_only_one_recheck_is_scheduled(forms, transfer, repository, notifier, fill_draft):
    workflow = SubmissionWorkflow(
        SessionStore(),
        CompletionTracker(),
        forms,
        transfer,
        repository,
        notifier,
        form_delays=(0,),
        recheck_delay=3600,
    )
    await _confirmed(workflow, fill_draft)

    first = await workflow.check_status("u1")
    second = await workflow.check_status("u1")

    assert first.status == second.status == CompletionStatus.PENDING
    assert len(workflow._background) == 1

    await workflow.close()
    assert not workflow._background
