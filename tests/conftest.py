from __future__ import annotations

import asyncio

import pytest

from fastcomm.services.completion import CompletionTracker
from fastcomm.services.errors import RepositoryError
from fastcomm.services.jotform_service import FormSubmission
from fastcomm.services.sessions import SessionStore, UploadForm, UploadedFile
from fastcomm.services.workflow import SubmissionWorkflow


class FakeForms:
    """Stands in for JotformService inside the workflow."""

    def __init__(self):
        self.create_calls = 0
        self.failures: list[Exception] = []
        self.submissions: dict[str, FormSubmission] = {}
        self.poll_calls = 0

    async def create_upload_form(self, draft, token):
        self.create_calls += 1
        await asyncio.sleep(0)
        if self.failures:
            raise self.failures.pop(0)
        return UploadForm(form_id="form-1", url=f"https://form.example/form-1?price_token={token}", session_token=token)

    async def find_submission(self, form_id, token):
        self.poll_calls += 1
        await asyncio.sleep(0)
        return self.submissions.get(token)


class FakeTransfer:
    def __init__(self, files: list[UploadedFile] | None = None):
        self.files = files if files is not None else [_file("spa.pdf")]
        self.error: Exception | None = None
        self.calls = 0

    async def transfer(self, submission_id, draft):
        self.calls += 1
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return list(self.files)


class FakeRepository:
    def __init__(self):
        self.records = []
        self.fail_times = 0

    async def append(self, record):
        await asyncio.sleep(0)
        if self.fail_times:
            self.fail_times -= 1
            raise RepositoryError("GitHub PUT failed (500)")
        self.records.append(record)
        return len(self.records) - 1


class RecordingNotifier:
    def __init__(self):
        self.records = []
        self.error: Exception | None = None

    async def __call__(self, record):
        self.records.append(record)
        if self.error is not None:
            raise self.error


def _file(name: str) -> UploadedFile:
    return UploadedFile(
        original_name=name,
        storage_id=f"drive-{name}",
        storage_link=f"https://drive.example/{name}",
        stored_name=f"proj_unit_{name}",
        mime_type="application/pdf",
        size=10,
        source_url=f"https://jotform.example/{name}",
    )


@pytest.fixture
def make_file():
    return _file


@pytest.fixture
def forms():
    return FakeForms()


@pytest.fixture
def transfer():
    return FakeTransfer()


@pytest.fixture
def repository():
    return FakeRepository()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def workflow(forms, transfer, repository, notifier):
    return SubmissionWorkflow(
        SessionStore(),
        CompletionTracker(),
        forms,
        transfer,
        repository,
        notifier,
        form_delays=(0, 0, 0),
        recheck_delay=0,
    )


@pytest.fixture
def fill_draft():
    """Drive a user's draft up to the confirmation screen (60/40 split)."""

    def fill(wf: SubmissionWorkflow, user_id: str = "u1", shares=("60", "40")):
        wf.submit_project(
            user_id,
            project_name="Sunway Velocity",
            unit_no="A-12-03",
            listed_price="550,000",
            net_price="500,000",
            commission_rate="2",
            username="alice",
        )
        for slot, share in enumerate(shares, start=1):
            wf.submit_participant(user_id, slot, name=f"Agent {slot}", code=f"C{slot}", share=share)
        return wf.submit_customer(
            user_id,
            customer_name="Tan Ah Kow",
            customer_phone="0123456789",
            customer_address="1 Jalan Ampang",
            contract_date="2024-02-01",
            loan_approval_date="2024-02-15",
        )

    return fill
