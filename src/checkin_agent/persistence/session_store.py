"""File-backed cache of browser sessions, one JSON file per target."""
from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from ..errors import SessionStoreError
from ..schemas import SessionInfo, SessionRecord, StorageState


LOGGER = logging.getLogger("checkin_agent.sessions")

SESSION_SUFFIX = "_state.json"
DEFAULT_TTL = timedelta(days=7)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStore:
    """
    Persist and validate cached authentication state per target.

    Every record carries an explicit ``last_written_at`` timestamp; filesystem
    modification times are never consulted. Records older than the TTL are
    purged as soon as they are detected. Writes go to a temporary file in the
    same directory and are moved into place with ``os.replace`` so a reader
    never observes a half-written record.
    """

    def __init__(self, directory: Path, ttl: timedelta = DEFAULT_TTL, clock: Clock = _utcnow) -> None:
        self._directory = Path(directory)
        self._ttl = ttl
        self._clock = clock

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def path_for(self, target_id: str) -> Path:
        return self._directory / f"{target_id}{SESSION_SUFFIX}"

    def load(self, target_id: str) -> Optional[SessionRecord]:
        """Return the stored record, or ``None`` (purging the file) when it is missing or corrupt."""
        try:
            return self._read(target_id)
        except SessionStoreError as exc:
            LOGGER.warning("%s - session file is corrupt: %s", target_id, exc)
            self.purge(target_id)
            return None

    def is_valid(self, target_id: str) -> bool:
        return self.load_valid(target_id) is not None

    def load_valid(self, target_id: str) -> Optional[SessionRecord]:
        """Return the record only if it holds session data and is within the TTL."""
        record = self.load(target_id)
        if record is None:
            return None
        if record.storage_state.element_count() == 0:
            LOGGER.info("%s - cached session holds no cookies or storage entries", target_id)
            return None
        age = self._clock() - record.last_written_at
        if age > self._ttl:
            LOGGER.info(
                "%s - cached session expired (%.1f days old), removing it",
                target_id,
                age.total_seconds() / 86400.0,
            )
            self.purge(target_id)
            return None
        return record

    def save(self, target_id: str, storage_state: Dict[str, Any]) -> Optional[SessionRecord]:
        """
        Overwrite the record for *target_id*.

        Failures are logged and swallowed: the caller's run must not abort
        because the cache could not be written.
        """
        try:
            record = SessionRecord(
                target_id=target_id,
                storage_state=StorageState.model_validate(storage_state),
                last_written_at=self._clock(),
            )
            self._atomic_write(self.path_for(target_id), record.model_dump_json(indent=2))
        except (OSError, ValidationError, TypeError, ValueError) as exc:
            LOGGER.error("%s - failed to save session: %s", target_id, exc)
            return None
        LOGGER.info("%s - session saved", target_id)
        return record

    def purge(self, target_id: str) -> bool:
        """Delete the record; returns ``True`` if a file was removed."""
        path = self.path_for(target_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            LOGGER.error("%s - failed to remove session file: %s", target_id, exc)
            return False
        LOGGER.info("%s - session cleared", target_id)
        return True

    def purge_expired(self) -> int:
        """Remove every expired (or unreadable) record and return how many were removed."""
        purged = 0
        now = self._clock()
        for target_id in self._stored_ids():
            try:
                record = self._read(target_id)
            except SessionStoreError as exc:
                LOGGER.warning("%s - removing corrupt session file: %s", target_id, exc)
                purged += int(self.purge(target_id))
                continue
            if record is not None and now - record.last_written_at > self._ttl:
                purged += int(self.purge(target_id))
        if purged:
            LOGGER.info("Cleaned up %d expired session file(s)", purged)
        return purged

    def purge_all(self) -> int:
        return sum(int(self.purge(target_id)) for target_id in self._stored_ids())

    def list_all(self) -> List[SessionInfo]:
        """Inventory of stored records. Never modifies the store."""
        now = self._clock()
        sessions: List[SessionInfo] = []
        for target_id in self._stored_ids():
            try:
                record = self._read(target_id)
            except SessionStoreError:
                sessions.append(SessionInfo(target_id=target_id, is_valid=False))
                continue
            if record is None:
                continue
            age = record.age_days(now)
            sessions.append(
                SessionInfo(
                    target_id=target_id,
                    is_valid=age <= self._ttl.total_seconds() / 86400.0
                    and record.storage_state.element_count() > 0,
                    age_days=age,
                    last_written_at=record.last_written_at,
                )
            )
        return sessions

    def _read(self, target_id: str) -> Optional[SessionRecord]:
        path = self.path_for(target_id)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise SessionStoreError(f"cannot read {path}: {exc}") from exc
        except UnicodeDecodeError as exc:
            raise SessionStoreError(f"{path} is not valid UTF-8: {exc}") from exc
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise SessionStoreError(f"{path} is not valid JSON: {exc}") from exc
        try:
            record = SessionRecord.model_validate(payload)
        except ValidationError as exc:
            raise SessionStoreError(f"{path} is missing required fields: {exc.error_count()} error(s)") from exc
        if record.target_id != target_id:
            raise SessionStoreError(f"{path} belongs to target {record.target_id!r}")
        return record

    def _stored_ids(self) -> List[str]:
        if not self._directory.is_dir():
            return []
        return sorted(
            entry.name[: -len(SESSION_SUFFIX)]
            for entry in self._directory.iterdir()
            if entry.is_file() and entry.name.endswith(SESSION_SUFFIX)
        )

    def _atomic_write(self, path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise
