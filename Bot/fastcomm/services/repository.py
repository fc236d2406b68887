"""
fastcomm/services/repository.py

GitHub-backed persistence for the FastComm bot.

A GitHub repository is used as a tiny datastore: finished submissions live
in `<backup_path>/submissions.json` and per-project fast-commission
percentages in `<backup_path>/fast_commission_settings.json`.

Responsibilities:
- Read/write JSON files through the GitHub contents API
- Append / replace / delete submission records with optimistic concurrency
  (re-read the sha and retry on conflicts)
- Keep the fast-commission percentage map in memory and persist changes

Hazard:
Records are addressed by their position in the list. A delete is only safe
if nobody changed the list between the operator viewing it and confirming.

This service contains NO Discord-specific logic.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable

import requests

from fastcomm.services.errors import ConflictError, InvalidIndexError, RepositoryError
from fastcomm.services.retry import fixed_delays, retry_async
from fastcomm.services.sessions import SubmissionRecord

logger = logging.getLogger(__name__)

WRITE_ATTEMPTS = 3
WRITE_RETRY_DELAY = 1.0


# --------------------------------------------------
# Low-level GitHub contents client (blocking)
# --------------------------------------------------
class GitHubContentStore:
    """
    Minimal wrapper around GET/PUT /repos/{owner}/{repo}/contents/{path}.

    Methods are blocking (requests); callers run them with asyncio.to_thread.
    """

    API_URL = "https://api.github.com"

    def __init__(self, owner: str, repo: str, token: str, session: requests.Session | None = None, timeout: float = 30.0):
        self.owner = owner
        self.repo = repo
        self.token = token
        self.session = session or requests.Session()
        self.timeout = timeout

    def _url(self, path: str) -> str:
        return f"{self.API_URL}/repos/{self.owner}/{self.repo}/contents/{path}"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "fastcomm-bot",
        }

    def get_file(self, path: str) -> tuple[bytes | None, str | None]:
        """
        Return (content, sha). A missing file is (None, None), not an error.
        """
        try:
            resp = self.session.get(self._url(path), headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as e:
            raise RepositoryError(f"GitHub GET {path} failed: {e}") from e

        if resp.status_code == 404:
            return None, None
        if resp.status_code >= 400:
            raise RepositoryError(f"GitHub GET {path} failed ({resp.status_code}): {resp.text}")

        payload = resp.json()
        sha = payload.get("sha")
        encoded = payload.get("content") or ""
        if encoded:
            return base64.b64decode(encoded.encode("utf-8")), sha
        if payload.get("size"):
            # Files over 1 MB come back without inline content
            return self._get_raw(path), sha
        return b"", sha

    def _get_raw(self, path: str) -> bytes:
        headers = {**self._headers(), "Accept": "application/vnd.github.raw"}
        try:
            resp = self.session.get(self._url(path), headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise RepositoryError(f"GitHub raw GET {path} failed: {e}") from e

        if resp.status_code >= 400:
            raise RepositoryError(f"GitHub raw GET {path} failed ({resp.status_code}): {resp.text}")
        if not resp.content:
            raise RepositoryError(f"GitHub raw GET {path} returned no content")
        return resp.content

    def put_file(self, path: str, content: bytes, sha: str | None, message: str) -> str | None:
        """
        Create or update `path`. Raises ConflictError when `sha` is stale.

        Returns the new sha.
        """
        body: dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content).decode("utf-8"),
        }
        if sha:
            body["sha"] = sha

        try:
            resp = self.session.put(self._url(path), headers=self._headers(), json=body, timeout=self.timeout)
        except requests.RequestException as e:
            raise RepositoryError(f"GitHub PUT {path} failed: {e}") from e

        if resp.status_code == 409 or (resp.status_code == 422 and "sha" in resp.text.lower()):
            raise ConflictError(f"GitHub PUT {path} conflicted ({resp.status_code})")
        if resp.status_code >= 400:
            raise RepositoryError(f"GitHub PUT {path} failed ({resp.status_code}): {resp.text}")

        payload = resp.json()
        return (payload.get("content") or {}).get("sha")


def _decode_json(content: bytes | None, default):
    if not content:
        return default
    try:
        return json.loads(content.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise RepositoryError(f"Backup file is not valid JSON: {e}") from e


def _encode_json(data) -> bytes:
    return json.dumps(data, indent=2, ensure_ascii=False).encode("utf-8")


def _stamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _is_conflict(exc: BaseException) -> bool:
    return isinstance(exc, ConflictError)


# --------------------------------------------------
# Submission records
# --------------------------------------------------
class SubmissionRepository:
    """
    Ordered list of SubmissionRecords stored as one JSON array.

    Every write is a read-modify-write: load the current list and sha,
    apply a mutation, PUT with that sha. On a conflict the whole cycle is
    repeated (up to 3 attempts, 1s apart). After that the ConflictError
    propagates to the caller.
    """

    FILE_NAME = "submissions.json"

    def __init__(self, store: GitHubContentStore, backup_path: str = "backups",
                 attempts: int = WRITE_ATTEMPTS, retry_delay: float = WRITE_RETRY_DELAY):
        self.store = store
        self.path = f"{backup_path.strip('/')}/{self.FILE_NAME}" if backup_path else self.FILE_NAME
        self.attempts = attempts
        self.retry_delay = retry_delay

    async def _load_raw(self) -> tuple[list[dict[str, Any]], str | None]:
        content, sha = await asyncio.to_thread(self.store.get_file, self.path)
        data = _decode_json(content, [])
        if not isinstance(data, list):
            raise RepositoryError(f"{self.path} does not contain a JSON list")
        return [row for row in data if isinstance(row, dict)], sha

    async def load(self) -> list[SubmissionRecord]:
        """All records in stored order. Missing file -> empty list."""
        rows, _ = await self._load_raw()
        return [SubmissionRecord.from_dict(r) for r in rows]

    async def update(self, mutate: Callable[[list[dict[str, Any]]], list[dict[str, Any]]], message: str) -> list[dict[str, Any]]:
        """
        Apply `mutate` to a fresh snapshot and write it back.

        `mutate` may be called once per attempt, each time with the latest
        remote list. It must not have side effects beyond its return value.
        """

        async def attempt() -> list[dict[str, Any]]:
            rows, sha = await self._load_raw()
            new_rows = mutate(list(rows))
            await asyncio.to_thread(
                self.store.put_file, self.path, _encode_json(new_rows), sha, f"{message} - {_stamp()}"
            )
            return new_rows

        return await retry_async(
            attempt,
            attempts=self.attempts,
            delays=fixed_delays(self.retry_delay, self.attempts),
            retry_if=_is_conflict,
            label=f"GitHub write {self.path}",
        )

    async def append(self, record: SubmissionRecord) -> int:
        """Append a record and return its index in the stored list."""
        row = record.to_dict()
        rows = await self.update(lambda current: current + [row], "Update submissions backup")
        logger.info("💾 Backup saved to GitHub (%d record(s))", len(rows))
        return len(rows) - 1

    async def delete_indices(self, indices: list[int]) -> list[SubmissionRecord]:
        """
        Delete several records addressed by position.

        All indices are validated against one snapshot and removed in
        descending order within that snapshot, so earlier removals cannot
        shift later ones. Returns the removed records (descending index order).
        """
        unique = sorted(set(indices), reverse=True)
        removed: list[dict[str, Any]] = []

        def mutate(current: list[dict[str, Any]]) -> list[dict[str, Any]]:
            invalid = [i for i in unique if i < 0 or i >= len(current)]
            if invalid:
                raise InvalidIndexError(sorted(invalid), len(current))
            removed.clear()
            for i in unique:
                removed.append(current.pop(i))
            return current

        await self.update(mutate, f"Delete submission(s) {', '.join(str(i) for i in sorted(unique))}")
        logger.info("🗑️ Deleted %d submission(s) from backup", len(removed))
        return [SubmissionRecord.from_dict(r) for r in removed]


# --------------------------------------------------
# Fast commission settings
# --------------------------------------------------
class FastCommissionSettings:
    """
    Per-project fast-commission percentage (case-insensitive project name).

    Projects without an entry use DEFAULT_PERCENTAGE. Changes are written
    back as a whole map; concurrent admins resolve as last writer wins.
    """

    FILE_NAME = "fast_commission_settings.json"
    DEFAULT_PERCENTAGE = 50.0

    def __init__(self, store: GitHubContentStore, backup_path: str = "backups",
                 attempts: int = WRITE_ATTEMPTS, retry_delay: float = WRITE_RETRY_DELAY):
        self.store = store
        self.path = f"{backup_path.strip('/')}/{self.FILE_NAME}" if backup_path else self.FILE_NAME
        self.attempts = attempts
        self.retry_delay = retry_delay
        self._percentages: dict[str, float] = {}

    @staticmethod
    def _key(project_name: str) -> str:
        return str(project_name).strip().lower()

    async def load(self) -> int:
        """Load settings into memory. Returns the number of entries."""
        content, _ = await asyncio.to_thread(self.store.get_file, self.path)
        data = _decode_json(content, {})
        if not isinstance(data, dict):
            raise RepositoryError(f"{self.path} does not contain a JSON object")

        self._percentages = {}
        for project, pct in data.items():
            try:
                self._percentages[self._key(project)] = float(pct)
            except (TypeError, ValueError):
                logger.warning("Ignoring bad fast commission value for %s: %r", project, pct)

        logger.info("✅ Loaded %d fast commission setting(s)", len(self._percentages))
        return len(self._percentages)

    def get(self, project_name: str) -> float:
        return self._percentages.get(self._key(project_name), self.DEFAULT_PERCENTAGE)

    def all(self) -> dict[str, float]:
        return dict(self._percentages)

    async def set(self, project_name: str, percentage: float) -> None:
        """Update one project and persist the whole map."""
        if not 0 <= float(percentage) <= 100:
            raise ValueError("Fast commission percentage must be between 0 and 100")

        updated = {**self._percentages, self._key(project_name): float(percentage)}
        payload = _encode_json(updated)
        message = f"Update fast commission percentage for {project_name}: {percentage}% - {_stamp()}"

        async def attempt() -> None:
            _, sha = await asyncio.to_thread(self.store.get_file, self.path)
            await asyncio.to_thread(self.store.put_file, self.path, payload, sha, message)

        await retry_async(
            attempt,
            attempts=self.attempts,
            delays=fixed_delays(self.retry_delay, self.attempts),
            retry_if=_is_conflict,
            label=f"GitHub write {self.path}",
        )
        self._percentages = updated
        logger.info("✅ Saved fast commission %s%% for %s", percentage, project_name)
