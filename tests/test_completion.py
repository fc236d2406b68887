import pytest

from fastcomm.services.completion import CompletionTracker


def test_claim_is_granted_once():
    tracker = CompletionTracker()

    assert tracker.try_claim("S1")
    assert not tracker.try_claim("S1")
    assert tracker.is_processing("S1")


def test_released_claim_can_be_retaken():
    tracker = CompletionTracker()
    tracker.try_claim("S1")

    tracker.release("S1")

    assert not tracker.is_processing("S1")
    assert tracker.try_claim("S1")


def test_completed_submission_is_never_claimed_again():
    tracker = CompletionTracker()
    tracker.bind_token("tok", "u1")
    tracker.try_claim("S1")

    tracker.complete("S1", "tok")

    assert tracker.is_processed("S1")
    assert not tracker.is_processing("S1")
    assert not tracker.try_claim("S1")


def test_token_is_retired_on_completion():
    tracker = CompletionTracker()
    tracker.bind_token("tok", "u1")
    tracker.try_claim("S1")

    tracker.complete("S1", "tok")

    assert tracker.match_token("tok") is None
    assert tracker.is_retired("tok")
    with pytest.raises(ValueError):
        tracker.bind_token("tok", "u1")


def test_token_matching_is_exact():
    tracker = CompletionTracker()
    tracker.bind_token("token_1_2_abc", "u1")

    assert tracker.match_token("token_1_2_abc") == "u1"
    assert tracker.match_token("token_1_2") is None
    assert tracker.match_token("") is None
    assert tracker.match_token(None) is None


def test_unbind_does_not_retire():
    tracker = CompletionTracker()
    tracker.bind_token("tok", "u1")

    tracker.unbind_token("tok")

    assert tracker.match_token("tok") is None
    assert not tracker.is_retired("tok")


def test_notification_key_used_once():
    tracker = CompletionTracker()

    assert tracker.mark_notified("S1", "u1")
    assert not tracker.mark_notified("S1", "u1")
    assert tracker.mark_notified("S1", "u2")
