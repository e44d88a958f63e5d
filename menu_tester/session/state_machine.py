"""Persisted session record of one test run, resumable after a crash."""

from __future__ import annotations

import calendar
import json
import logging
import os
import time
import uuid
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from menu_tester.errors import PersistenceFailure, SessionCorrupt
from menu_tester.models.config import MenuTesterConfig
from menu_tester.models.session import (
    RESUMABLE_TARGET_STATUSES,
    ErrorEntry,
    SessionInfo,
    SessionTimestamps,
    TargetDescriptor,
    TargetRecord,
    TargetResult,
    TestSession,
)

logger = logging.getLogger(__name__)

SESSION_FILE_PREFIX = "session-"
_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

# Allowed target status moves; terminal statuses have none.
_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"running", "completed", "failed", "skipped"},
    "running": {"running", "completed", "failed", "skipped"},
    "completed": set(),
    "failed": set(),
    "skipped": set(),
}


def _now_ms() -> int:
    return int(time.time() * 1000)


def _timestamp() -> str:
    return time.strftime(_TIMESTAMP_FORMAT, time.gmtime())


def _parse_timestamp(value: str) -> Optional[float]:
    try:
        return float(calendar.timegm(time.strptime(value, _TIMESTAMP_FORMAT)))
    except (TypeError, ValueError):
        return None


def generate_session_id() -> str:
    stamp = time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime())
    return f"{stamp.replace(':', '-').replace('.', '-')}-{uuid.uuid4().hex[:6]}"


def session_path(output_dir: Path, session_id: str) -> Path:
    return Path(output_dir) / f"{SESSION_FILE_PREFIX}{session_id}.json"


def can_transition(current: str, new: str) -> bool:
    return new in _TRANSITIONS.get(current, set())


class SessionStateMachine:
    """Owns the TestSession of a run and every mutation of its target records.

    Every mutation is followed by a full rewrite of the snapshot file. A
    failed write is logged and swallowed: the in-memory session stays
    authoritative for the rest of the run.
    """

    def __init__(
        self,
        output_dir: Path | str,
        config: Optional[MenuTesterConfig] = None,
        session_id: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.output_dir = Path(output_dir)
        self.config = config
        self.session_id = session_id or generate_session_id()
        self.session: Optional[TestSession] = None
        self.log = logger or logging.getLogger(__name__)

    @property
    def session_file(self) -> Path:
        return session_path(self.output_dir, self.session_id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self, targets: list[TargetDescriptor]) -> TestSession:
        """Create one pending record per target and start the run."""
        if self.session is not None:
            raise SessionCorrupt(f"Session {self.session_id} is already initialized")

        now = _timestamp()
        records: dict[str, TargetRecord] = {}
        for target in targets:
            record = TargetRecord.from_descriptor(target)
            record.status = "pending"
            record.attempts = 0
            records[record.id] = record

        self.session = TestSession(
            session_id=self.session_id,
            start_time=_now_ms(),
            status="running",
            current_step="initialized",
            config=self.config.sanitized() if self.config else {},
            total_menus=len(records),
            menus=records,
            timestamps=SessionTimestamps(started=now, updated=now),
        )
        self.log.info("Session %s started with %d targets", self.session_id, len(records))
        self.persist()
        return self.session

    def resume_from(self, snapshot: TestSession) -> TestSession:
        """Adopt a loaded snapshot so the remaining targets land in the same file."""
        if self.session is not None:
            raise SessionCorrupt(f"Session {self.session_id} is already initialized")
        self.session = snapshot.model_copy(deep=True)
        self.session_id = snapshot.session_id
        self.session.status = "running"
        self.session.timestamps.resumed = _timestamp()
        self.session.timestamps.completed = None
        self.session.error = None
        self.log.info(
            "Resuming session %s (%d/%d done)",
            self.session_id,
            self._done_count(),
            self.session.total_menus,
        )
        self.persist()
        return self.session

    def update_step(self, step: str, details: Optional[dict[str, Any]] = None) -> None:
        session = self._require_session()
        session.current_step = step
        session.step_details = details or {}
        self.persist()

    def complete(self, summary: Optional[dict[str, Any]] = None) -> None:
        """Terminal transition: the run finished."""
        session = self._require_session()
        if session.status in ("completed", "failed"):
            self.log.warning("Session %s already %s, ignoring complete()", self.session_id, session.status)
            return
        session.status = "completed"
        session.summary = summary or {}
        self._finish(session)
        self._log_final_summary()

    def fail(self, error: str) -> None:
        """Terminal transition: the run aborted."""
        session = self._require_session()
        if session.status in ("completed", "failed"):
            self.log.warning("Session %s already %s, ignoring fail()", self.session_id, session.status)
            return
        session.status = "failed"
        session.error = error
        self._finish(session)
        self.log.error("Session %s failed: %s", self.session_id, error)

    def _finish(self, session: TestSession) -> None:
        session.timestamps.completed = _timestamp()
        session.duration = _now_ms() - session.start_time
        session.current_step = session.status
        self.persist()

    # ------------------------------------------------------------------
    # Target transitions
    # ------------------------------------------------------------------

    def start_target(self, target_id: str) -> bool:
        record = self._record(target_id)
        if record is None or not self._move(record, "running"):
            return False
        record.attempts += 1
        record.start_time = _now_ms()
        record.end_time = None
        record.duration = None
        self.session.current_step = f"testing:{target_id}"
        self.log.debug("Target %s started (attempt %d)", target_id, record.attempts)
        self.persist()
        return True

    def complete_target(self, target_id: str, result: TargetResult) -> bool:
        record = self._record(target_id)
        new_status = "completed" if result.success else "failed"
        if record is None or not self._move(record, new_status):
            return False

        record.end_time = _now_ms()
        record.duration = record.end_time - record.start_time if record.start_time else 0
        record.error = result.error
        record.screenshot_ref = result.screenshot_ref

        session = self.session
        if result.success:
            session.completed_menus += 1
        else:
            session.failed_menus += 1
            session.errors.append(ErrorEntry(
                target_id=target_id,
                menu_text=record.display_text,
                message=result.error,
                timestamp=_timestamp(),
                attempt=record.attempts,
            ))
        self.persist()
        self._log_progress(record)
        return True

    def skip_target(self, target_id: str, reason: str) -> bool:
        """Mark a target skipped; ``reason`` is kept in the record's error field."""
        record = self._record(target_id)
        if record is None or not self._move(record, "skipped"):
            return False
        record.error = reason
        record.end_time = _now_ms()
        self.session.skipped_menus += 1
        self.log.info("Skipped %s: %s", record.display_text, reason)
        self.persist()
        return True

    def _record(self, target_id: str) -> Optional[TargetRecord]:
        session = self._require_session()
        record = session.menus.get(target_id)
        if record is None:
            self.log.warning("Unknown target id %r, ignoring", target_id)
        return record

    def _move(self, record: TargetRecord, new_status: str) -> bool:
        if not can_transition(record.status, new_status):
            self.log.warning(
                "Rejected transition %s -> %s for target %s",
                record.status, new_status, record.id,
            )
            return False
        record.status = new_status
        return True

    def _require_session(self) -> TestSession:
        if self.session is None:
            raise SessionCorrupt("Session has not been initialized")
        return self.session

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def persist(self) -> bool:
        """Rewrite the snapshot. Returns False (after logging) if the write failed."""
        if self.session is None:
            return False
        self.session.timestamps.updated = _timestamp()
        try:
            self._write(self.session.to_snapshot())
        except PersistenceFailure as e:
            self.log.warning("Session snapshot not saved: %s", e)
            return False
        return True

    def _write(self, data: dict[str, Any]) -> None:
        path = self.session_file
        tmp = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(tmp, path)
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceFailure(f"{path}: {e}") from e

    def load_for_resume(self, session_id: str) -> TestSession:
        """Read a snapshot from disk. Raises SessionCorrupt if it can't be used."""
        path = session_path(self.output_dir, session_id)
        if not path.exists():
            raise SessionCorrupt(f"Session file not found: {path}")
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise SessionCorrupt(f"Unreadable session file {path}: {e}") from e

        if not isinstance(data, dict) or not data.get("sessionId") or "menus" not in data:
            raise SessionCorrupt(f"Invalid session file {path}: missing sessionId or menus")
        try:
            snapshot = TestSession.from_snapshot(data)
        except (ValidationError, TypeError, AttributeError) as e:
            raise SessionCorrupt(f"Invalid session file {path}: {e}") from e

        self.log.info("Loaded session %s from %s", snapshot.session_id, path)
        return snapshot

    @staticmethod
    def resumable_targets(snapshot: TestSession) -> list[TargetDescriptor]:
        """Targets still to test: pending ones plus those interrupted while running.

        The snapshot is left untouched; attempt counts carry over.
        """
        return [
            record.to_descriptor()
            for record in snapshot.menus.values()
            if record.status in RESUMABLE_TARGET_STATUSES
        ]

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def _done_count(self) -> int:
        s = self.session
        return s.completed_menus + s.failed_menus + s.skipped_menus

    def status(self) -> dict[str, Any]:
        session = self._require_session()
        done = self._done_count()
        total = session.total_menus
        return {
            "session_id": session.session_id,
            "status": session.status,
            "current_step": session.current_step,
            "total": total,
            "completed": session.completed_menus,
            "failed": session.failed_menus,
            "skipped": session.skipped_menus,
            "pending": total - done,
            "percentage": round(done / total * 100) if total else 0,
            "error_count": len(session.errors),
        }

    def _log_progress(self, record: TargetRecord) -> None:
        st = self.status()
        width = 20
        filled = round(st["percentage"] / 100 * width)
        bar = "█" * filled + "░" * (width - filled)
        mark = "✓" if record.status == "completed" else "✗"
        self.log.info(
            "%s %s [%s] %d%% (%d/%d)",
            mark, record.display_text, bar, st["percentage"],
            st["total"] - st["pending"], st["total"],
        )

    def _log_final_summary(self) -> None:
        session = self.session
        st = self.status()
        tested = session.completed_menus + session.failed_menus
        success_rate = session.completed_menus / tested * 100 if tested else 0.0
        self.log.info(
            "Session %s finished: %d passed, %d failed, %d skipped (%.1f%% success) in %.1fs",
            session.session_id, st["completed"], st["failed"], st["skipped"],
            success_rate, (session.duration or 0) / 1000,
        )
        for entry in session.errors:
            self.log.info("  %s: %s", entry.menu_text or entry.target_id, entry.message)


def list_sessions(output_dir: Path | str) -> list[SessionInfo]:
    """Unfinished sessions in ``output_dir``, newest first."""
    found: list[tuple[int, SessionInfo]] = []
    for path in Path(output_dir).glob(f"{SESSION_FILE_PREFIX}*.json"):
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.debug("Skipping unreadable session file %s: %s", path, e)
            continue
        if not isinstance(data, dict) or not data.get("sessionId"):
            continue
        if data.get("status") == "completed":
            continue
        found.append((
            int(data.get("startTime") or 0),
            SessionInfo(
                session_id=data["sessionId"],
                status=data.get("status", "unknown"),
                started=(data.get("timestamps") or {}).get("started", ""),
                total_menus=data.get("totalMenus", 0),
                completed_menus=data.get("completedMenus", 0),
                target_url=(data.get("config") or {}).get("url", ""),
            ),
        ))
    found.sort(key=lambda item: item[0], reverse=True)
    return [info for _, info in found]


def cleanup_old_sessions(output_dir: Path | str, keep_days: int = 7) -> int:
    """Delete completed session files finished more than ``keep_days`` ago."""
    cutoff = time.time() - keep_days * 24 * 60 * 60
    removed = 0
    for path in Path(output_dir).glob(f"{SESSION_FILE_PREFIX}*.json"):
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError):
            continue
        if not isinstance(data, dict) or data.get("status") != "completed":
            continue
        finished = _parse_timestamp((data.get("timestamps") or {}).get("completed"))
        if finished is not None and finished < cutoff:
            try:
                path.unlink()
                removed += 1
                logger.info("Removed old session file %s", path.name)
            except OSError as e:
                logger.warning("Could not remove %s: %s", path, e)
    return removed
