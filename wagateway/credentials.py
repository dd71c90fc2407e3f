"""File-backed credential storage, one directory per session."""

from __future__ import annotations

import asyncio
import json
import os
import shutil
import tempfile

import structlog

from wagateway.engine.base import CredentialState
from wagateway.settings import settings

logger = structlog.get_logger(__name__)

CREDENTIALS_PREFIX = "md_"
LEGACY_PREFIX = "legacy_"
HISTORY_SUFFIX = "_store"
CREDS_FILE = "creds.json"


KEY_CATEGORIES = (
    "pre-key",
    "session",
    "sender-key",
    "sender-key-memory",
    "app-state-sync-key",
    "app-state-sync-version",
    "lid-mapping",
    "device-list",
    "tctoken",
)


def _key_file_name(category: str, key_id: str) -> str:
    return f"{category}-{str(key_id).replace('/', '__')}.json"


def _parse_key_file_name(stem: str) -> tuple[str, str] | None:
    # Category names contain dashes, so match the longest known one.
    for category in sorted(KEY_CATEGORIES, key=len, reverse=True):
        if stem.startswith(f"{category}-"):
            return category, stem[len(category) + 1:].replace("__", "/")
    return None


def write_json_atomic(path: str, payload: object) -> None:
    directory = os.path.dirname(path)
    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp-", suffix=".json")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, separators=(",", ":"))
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


class CredentialStore:
    """Loads and persists per-session authentication state.

    Layout under the sessions root::

        md_<session_id>/creds.json
        md_<session_id>/<category>-<key id>.json
    """

    def __init__(self, root: str | None = None) -> None:
        self.root = root or settings.sessions_dir()
        os.makedirs(self.root, exist_ok=True)
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    def session_dir(self, session_id: str) -> str:
        current = os.path.join(self.root, f"{CREDENTIALS_PREFIX}{session_id}")
        legacy = os.path.join(self.root, f"{LEGACY_PREFIX}{session_id}")
        if not os.path.isdir(current) and os.path.isdir(legacy):
            return legacy
        return current

    def history_path(self, session_id: str) -> str:
        """Path of the history cache file that lives beside the credentials."""
        return os.path.join(self.root, f"{session_id}{HISTORY_SUFFIX}.json")

    def exists(self, session_id: str) -> bool:
        return os.path.isdir(self.session_dir(session_id))

    def list_session_ids(self) -> list[str]:
        """Return ids of sessions with persisted credentials.

        Raises OSError when the sessions root cannot be read.
        """
        session_ids: list[str] = []
        for entry in sorted(os.listdir(self.root)):
            name = entry[: -len(".json")] if entry.endswith(".json") else entry
            if name.endswith(HISTORY_SUFFIX):
                continue
            for prefix in (CREDENTIALS_PREFIX, LEGACY_PREFIX):
                if name.startswith(prefix) and len(name) > len(prefix):
                    session_ids.append(name[len(prefix):])
                    break
        return session_ids

    async def load(self, session_id: str) -> CredentialState:
        """Load stored credentials, or an empty state for a new session."""
        async with self._lock(session_id):
            return await asyncio.to_thread(self._read, session_id)

    async def save(self, session_id: str, update: dict) -> None:
        """Merge a ``creds.update`` payload into the stored state.

        Args:
            session_id: Session owning the credentials.
            update: ``{"creds": {...partial creds}, "keys": {category: {id: value | None}}}``.
                A ``None`` key value deletes that key.
        """
        # A cancelled caller cannot stop the writer thread, so the write keeps
        # the lock until it is done and a following remove() runs after it.
        await asyncio.shield(self._locked_write(session_id, update))

    async def _locked_write(self, session_id: str, update: dict) -> None:
        async with self._lock(session_id):
            await asyncio.to_thread(self._write, session_id, update)

    async def remove(self, session_id: str) -> None:
        """Delete the credential directory. Missing directories are ignored."""
        async with self._lock(session_id):
            await asyncio.to_thread(shutil.rmtree, self.session_dir(session_id), ignore_errors=True)
        self._locks.pop(session_id, None)

    def _read(self, session_id: str) -> CredentialState:
        directory = self.session_dir(session_id)
        state = CredentialState()
        if not os.path.isdir(directory):
            return state
        for entry in os.listdir(directory):
            if not entry.endswith(".json") or entry.startswith(".tmp-"):
                continue
            path = os.path.join(directory, entry)
            try:
                with open(path, "r", encoding="utf-8") as handle:
                    value = json.load(handle)
            except (OSError, json.JSONDecodeError) as exc:
                logger.warning("Skipping unreadable credential file", path=path, error=str(exc))
                continue
            if entry == CREDS_FILE:
                state.creds = value if isinstance(value, dict) else {}
                continue
            parsed = _parse_key_file_name(entry[: -len(".json")])
            if parsed is None:
                continue
            category, key_id = parsed
            state.keys.setdefault(category, {})[key_id] = value
        return state

    def _write(self, session_id: str, update: dict) -> None:
        directory = self.session_dir(session_id)
        os.makedirs(directory, exist_ok=True)
        creds = update.get("creds")
        if creds:
            path = os.path.join(directory, CREDS_FILE)
            current: dict = {}
            if os.path.exists(path):
                try:
                    with open(path, "r", encoding="utf-8") as handle:
                        current = json.load(handle)
                except (OSError, json.JSONDecodeError):
                    current = {}
            current.update(creds)
            write_json_atomic(path, current)
        for category, entries in (update.get("keys") or {}).items():
            for key_id, value in (entries or {}).items():
                path = os.path.join(directory, _key_file_name(category, key_id))
                if value is None:
                    if os.path.exists(path):
                        os.remove(path)
                else:
                    write_json_atomic(path, value)
