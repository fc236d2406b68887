from __future__ import annotations

import json

import pytest
import requests

from fastcomm.services.errors import FormGatewayError
from fastcomm.services.jotform_service import FormSubmission, JotformService, extract_session_token
from fastcomm.services.sessions import SubmissionDraft


class _FakeResponse:
    def __init__(self, status_code=200, payload=None, text="", content=b"", headers=None):
        self.status_code = status_code
        self._payload = payload
        self.text = text or (json.dumps(payload) if payload is not None else "")
        self.content = content
        self.headers = headers or {}

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class _FakeSession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _service(session, webhook_url="https://bot.example/webhook/jotform"):
    return JotformService("key", "T123", webhook_url, session=session)


# --------------------------------------------------
# Token matching
# --------------------------------------------------
@pytest.mark.parametrize(
    "raw, expected",
    [
        ({"q4_price_token": "tok-1"}, "tok-1"),
        ({"session_token": " tok-2 "}, "tok-2"),
        (json.dumps({"q9_session_id": "tok-3"}), "tok-3"),
        ({"q4_price_token": "", "q7_session_id": "tok-4"}, "tok-4"),
        ({"q4_name": "Alice"}, ""),
        ("not json", ""),
        ("", ""),
        (None, ""),
    ],
)
def test_extract_session_token(raw, expected):
    assert extract_session_token(raw) == expected


def test_prefers_session_token_field():
    raw = {"q3_price_token": "price", "q2_session_token": "session"}

    assert extract_session_token(raw) == "session"


def test_carries_token_requires_exact_answer():
    submission = FormSubmission(id="S1", answers={"4": {"answer": "token_1_2_abc"}, "5": {"answer": ["x"]}})

    assert submission.carries_token("token_1_2_abc")
    assert not submission.carries_token("token_1_2")
    assert not submission.carries_token("")


# --------------------------------------------------
# Form creation and webhook registration
# --------------------------------------------------
@pytest.mark.asyncio
async def test_create_form_registers_webhook_once():
    session = _FakeSession(
        _FakeResponse(200, {"content": {}}),
        _FakeResponse(400, text="Webhook URL is already in webhooks list"),
    )
    service = _service(session)
    draft = SubmissionDraft(user_id="42", project_name="P", unit_no="U")

    form = await service.create_upload_form(draft, "token_42_1_abc")
    again = await service.create_upload_form(draft, "token_42_1_abc")

    assert form.form_id == "T123"
    assert form.url.startswith("https://form.jotform.com/T123?")
    assert "price_token=token_42_1_abc" in form.url
    assert again.url == form.url
    assert [c[0] for c in session.calls] == ["GET", "POST"]


@pytest.mark.asyncio
async def test_existing_webhook_is_not_posted_again():
    session = _FakeSession(_FakeResponse(200, {"content": {"0": "https://bot.example/webhook/jotform"}}))
    service = _service(session)

    await service.create_upload_form(SubmissionDraft(user_id="42"), "tok")

    assert len(session.calls) == 1


@pytest.mark.asyncio
async def test_create_form_requires_configuration():
    service = JotformService("", "", session=_FakeSession())

    with pytest.raises(FormGatewayError) as info:
        await service.create_upload_form(SubmissionDraft(user_id="42"), "tok")

    assert not info.value.transient


@pytest.mark.asyncio
async def test_rate_limit_is_transient():
    service = _service(_FakeSession(_FakeResponse(429, text="slow down")), webhook_url="")

    with pytest.raises(FormGatewayError) as info:
        await service.poll_submissions("T123")

    assert info.value.transient
    assert info.value.status == 429


@pytest.mark.asyncio
async def test_network_error_is_transient():
    service = _service(_FakeSession(requests.ConnectionError("down")), webhook_url="")

    with pytest.raises(FormGatewayError) as info:
        await service.poll_submissions("T123")

    assert info.value.transient


# --------------------------------------------------
# Submissions and files
# --------------------------------------------------
@pytest.mark.asyncio
async def test_find_submission_by_token():
    rows = [
        {"id": "S2", "answers": {"4": {"answer": "other"}}},
        {"id": "S1", "answers": {"4": {"answer": "tok"}}},
        {"answers": {}},
    ]
    service = _service(_FakeSession(_FakeResponse(200, {"content": rows})), webhook_url="")

    found = await service.find_submission("T123", "tok")

    assert found.id == "S1"


@pytest.mark.asyncio
async def test_find_submission_none():
    service = _service(_FakeSession(_FakeResponse(200, {"content": []})), webhook_url="")

    assert await service.find_submission("T123", "tok") is None


@pytest.mark.asyncio
async def test_fetch_submission_files_keeps_upload_answers():
    content = {
        "answers": {
            "3": {"type": "control_textbox", "answer": "Alice"},
            "7": {"type": "control_fileupload", "answer": ["https://files/a.pdf", " "]},
            "8": {"type": "control_fileupload", "answer": "https://files/b.jpg"},
        }
    }
    service = _service(_FakeSession(_FakeResponse(200, {"content": content})), webhook_url="")

    refs = await service.fetch_submission_files("S1")

    assert [(r.url, r.question_id) for r in refs] == [("https://files/a.pdf", "7"), ("https://files/b.jpg", "8")]


@pytest.mark.asyncio
async def test_download_file_uses_content_disposition():
    response = _FakeResponse(
        200,
        content=b"%PDF-1.4 data",
        headers={"content-disposition": 'attachment; filename="SPA%20signed.pdf"', "content-type": "application/pdf; charset=binary"},
    )
    service = _service(_FakeSession(response), webhook_url="")

    file = await service.download_file("https://files/abc")

    assert file.name == "SPA signed.pdf"
    assert file.mime_type == "application/pdf"
    assert file.content == b"%PDF-1.4 data"


@pytest.mark.asyncio
async def test_download_rejects_html_page():
    response = _FakeResponse(200, content=b"<!DOCTYPE html><html>Login</html>", headers={"content-type": "text/html"})
    service = _service(_FakeSession(response), webhook_url="")

    with pytest.raises(FormGatewayError):
        await service.download_file("https://files/x.pdf")


@pytest.mark.asyncio
async def test_download_rejects_empty_body():
    service = _service(_FakeSession(_FakeResponse(200, content=b"")), webhook_url="")

    with pytest.raises(FormGatewayError):
        await service.download_file("https://files/x.pdf")
