"""
fastcomm/services/completion.py

Deduplication bookkeeping for asynchronous form completions.

A Jotform submission can reach the bot three ways: the webhook, a manual
"Check Upload Status" click and the single deferred re-check. Any of them
may race the others. This tracker guarantees that only one of them gets
to transfer files, persist the record and notify for a given submission.

Invariants:
- try_claim() is a single synchronous check-and-insert. Callers must not
  await between asking for a claim and acting on the answer.
- A submission id is either unseen, processing, or processed.
- A retired session token never matches again.
- A (submission id, user id) notification key is used at most once.

This module contains NO Discord logic and performs NO I/O.
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class CompletionTracker:
    def __init__(self):
        self._processing: set[str] = set()
        self._processed: set[str] = set()
        self._token_owner: dict[str, str] = {}
        self._retired_tokens: set[str] = set()
        self._notified: set[tuple[str, str]] = set()

    # --------------------------------------------------
    # Session tokens
    # --------------------------------------------------
    def bind_token(self, token: str, user_id: str) -> None:
        """Make `token` resolvable to `user_id` (after the form exists)."""
        if token in self._retired_tokens:
            raise ValueError(f"Session token {token} was already retired")
        self._token_owner[token] = user_id

    def match_token(self, token: str | None) -> str | None:
        """Exact-match lookup. Blank or unknown tokens never match."""
        if not token:
            return None
        return self._token_owner.get(token)

    def unbind_token(self, token: str | None) -> None:
        """Drop local bookkeeping for a token without retiring it."""
        if token:
            self._token_owner.pop(token, None)

    def retire_token(self, token: str | None) -> None:
        if token:
            self._token_owner.pop(token, None)
            self._retired_tokens.add(token)

    def is_retired(self, token: str | None) -> bool:
        return bool(token) and token in self._retired_tokens

    # --------------------------------------------------
    # Claims
    # --------------------------------------------------
    def try_claim(self, submission_id: str) -> bool:
        """
        Atomically claim `submission_id` for processing.

        Returns True for exactly one caller until the claim is released.
        """
        if submission_id in self._processed or submission_id in self._processing:
            return False
        self._processing.add(submission_id)
        return True

    def release(self, submission_id: str) -> None:
        """Give up a claim after a failed attempt so a later trigger can retry."""
        self._processing.discard(submission_id)
        logger.info("🔓 Released claim on submission %s", submission_id)

    def complete(self, submission_id: str, token: str | None) -> None:
        """Mark `submission_id` done for good and retire its token."""
        self._processing.discard(submission_id)
        self._processed.add(submission_id)
        self.retire_token(token)

    def is_processing(self, submission_id: str) -> bool:
        return submission_id in self._processing

    def is_processed(self, submission_id: str) -> bool:
        return submission_id in self._processed

    # --------------------------------------------------
    # Notifications
    # --------------------------------------------------
    def mark_notified(self, submission_id: str, user_id: str) -> bool:
        """Return True the first time a (submission, user) pair is announced."""
        key = (submission_id, user_id)
        if key in self._notified:
            return False
        self._notified.add(key)
        return True
