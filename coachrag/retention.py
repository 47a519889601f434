"""Retention sweep for stale conversation sessions.

A sweep selects at most ``batch_size`` sessions whose ``last_message_at`` is older
than ``now - days_old`` (oldest first, a snapshot of ids), then deletes each one
in its own transaction: its messages, its scratch-context chunk references, then
the session row. Source documents and their chunks are never touched.

- dry_run: same selection, reports what would be deleted, writes nothing.
- verbose: the report previews up to 10 due sessions, then up to 10 sessions
  still inside the window with the days left before they become due.

A session that fails to delete is rolled back, recorded and skipped. A failure
outside one session's scope raises RetentionJobError with the partial report.
Running the sweep again with no new data deletes nothing.

Usage:
  python -m coachrag.retention --days 30 --batch-size 100 [--dry-run] [--verbose]
"""
from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

import orjson
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from coachrag.cache import advisory_lock, get_redis
from coachrag.config import settings
from coachrag.errors import InvalidRequest, RetentionJobError, SweepInProgress
from coachrag.models import ConversationMessage, ConversationSession, SessionContext
from coachrag.utils import utc_now

logger = logging.getLogger(__name__)

LOCK_KEY = "coachrag:retention:lock"
MAX_BATCH_SIZE = 1000
DRY_RUN_MESSAGE = "DRY RUN - No actual deletions performed"


@dataclass
class CleanupOptions:
    days_old: int = 30
    batch_size: int = 100
    dry_run: bool = False
    verbose: bool = False

    def validate(self) -> None:
        if self.days_old < 0:
            raise InvalidRequest("days_old must be >= 0")
        if not 1 <= self.batch_size <= MAX_BATCH_SIZE:
            raise InvalidRequest(f"batch_size must be between 1 and {MAX_BATCH_SIZE}")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ScheduledSession:
    id: str
    title: str
    last_message_at: datetime
    age_days: int
    days_until_deletion: int


@dataclass
class SessionFailure:
    session_id: str
    error: str


@dataclass
class CleanupReport:
    sessions_deleted: int = 0
    messages_deleted: int = 0
    chunk_refs_deleted: int = 0
    scheduled_preview: List[ScheduledSession] = field(default_factory=list)
    session_ids: List[str] = field(default_factory=list)
    failures: List[SessionFailure] = field(default_factory=list)
    dry_run: bool = False
    message: str = ""

    @property
    def partial(self) -> bool:
        return bool(self.failures)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SweepOutcome:
    options: CleanupOptions
    scheduled_sessions_found: int
    report: CleanupReport
    started_at: datetime

    @property
    def success(self) -> bool:
        return not self.report.partial

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready operator report; verbose runs add the preview and mode."""
        out: Dict[str, Any] = {
            "success": self.success,
            "timestamp": self.started_at,
            "options": self.options.to_dict(),
            "scheduled_sessions_found": self.scheduled_sessions_found,
            "result": self.report.to_dict(),
        }
        if self.options.verbose:
            out["scheduled_sessions"] = [asdict(s) for s in self.report.scheduled_preview]
            out["execution_mode"] = "DRY_RUN" if self.options.dry_run else "LIVE"
        return out


class RetentionSweeper:
    """Deletes sessions past the retention horizon in bounded batches.

    Args:
        db: Session used for the whole sweep; committed once per deleted session.
        lock_client: Redis client for the advisory lock. Only used when
            ``use_lock`` is true (default settings.SWEEP_LOCK_ENABLED).
    """

    def __init__(self, db: Session, lock_client=None, use_lock: Optional[bool] = None):
        self.db = db
        self.use_lock = settings.SWEEP_LOCK_ENABLED if use_lock is None else use_lock
        self._lock_client = lock_client

    def run(self, options: Optional[CleanupOptions] = None) -> SweepOutcome:
        options = options or CleanupOptions(
            days_old=settings.RETENTION_DAYS, batch_size=settings.RETENTION_BATCH_SIZE
        )
        options.validate()
        if not self.use_lock:
            return self._run(options)
        client = self._lock_client or get_redis()
        with advisory_lock(client, LOCK_KEY, settings.SWEEP_LOCK_TTL_SECONDS) as acquired:
            if not acquired:
                raise SweepInProgress("another retention sweep is running")
            return self._run(options)

    def _run(self, options: CleanupOptions) -> SweepOutcome:
        started = utc_now()
        cutoff = started - timedelta(days=options.days_old)
        report = CleanupReport(dry_run=options.dry_run)

        limit = settings.RETENTION_PREVIEW_LIMIT
        try:
            candidates = self._select(cutoff, options.batch_size)
            upcoming = self._select_upcoming(cutoff, limit) if options.verbose else []
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("retention selection failed")
            raise RetentionJobError("could not select sessions for retention", report=report) from exc

        report.session_ids = [sid for sid, _, _ in candidates]
        if options.verbose:
            report.scheduled_preview = self._preview(candidates[:limit] + upcoming, started, options.days_old)

        if options.dry_run:
            try:
                self._count_only(report)
            except SQLAlchemyError as exc:
                self.db.rollback()
                logger.exception("retention dry-run count failed")
                raise RetentionJobError("could not count sessions for retention", report=report) from exc
        else:
            for sid, _, _ in candidates:
                self._delete_session(sid, cutoff, report)

        outcome = SweepOutcome(
            options=options,
            scheduled_sessions_found=len(candidates),
            report=report,
            started_at=started,
        )
        logger.info(
            "retention sweep finished",
            extra={
                "ctx_event": "retention.sweep",
                "ctx_dry_run": options.dry_run,
                "ctx_days_old": options.days_old,
                "ctx_scheduled": len(candidates),
                "ctx_sessions_deleted": report.sessions_deleted,
                "ctx_messages_deleted": report.messages_deleted,
                "ctx_chunk_refs_deleted": report.chunk_refs_deleted,
                "ctx_failures": len(report.failures),
            },
        )
        return outcome

    def _select(self, cutoff: datetime, limit: int) -> List[Tuple[str, str, datetime]]:
        stmt = (
            select(ConversationSession.id, ConversationSession.title, ConversationSession.last_message_at)
            .where(ConversationSession.last_message_at < cutoff)
            .order_by(ConversationSession.last_message_at, ConversationSession.id)
            .limit(limit)
        )
        rows = [(r[0], r[1], r[2]) for r in self.db.execute(stmt).all()]
        # end the read so each delete starts a fresh transaction
        self.db.commit()
        return rows

    def _select_upcoming(self, cutoff: datetime, limit: int) -> List[Tuple[str, str, datetime]]:
        """Sessions still inside the window, closest to the horizon first."""
        stmt = (
            select(ConversationSession.id, ConversationSession.title, ConversationSession.last_message_at)
            .where(ConversationSession.last_message_at >= cutoff)
            .order_by(ConversationSession.last_message_at, ConversationSession.id)
            .limit(limit)
        )
        rows = [(r[0], r[1], r[2]) for r in self.db.execute(stmt).all()]
        self.db.commit()
        return rows

    @staticmethod
    def _preview(
        rows: Sequence[Tuple[str, str, datetime]], now: datetime, days_old: int
    ) -> List[ScheduledSession]:
        preview = []
        for sid, title, last in rows:
            age = (now - last).days
            preview.append(
                ScheduledSession(
                    id=sid,
                    title=title,
                    last_message_at=last,
                    age_days=age,
                    days_until_deletion=max(0, days_old - age),
                )
            )
        return preview

    def _count_only(self, report: CleanupReport) -> None:
        ids = report.session_ids
        if ids:
            report.messages_deleted = self.db.execute(
                select(func.count()).select_from(ConversationMessage).where(ConversationMessage.session_id.in_(ids))
            ).scalar_one()
            report.chunk_refs_deleted = self.db.execute(
                select(func.count()).select_from(SessionContext).where(SessionContext.session_id.in_(ids))
            ).scalar_one()
        report.sessions_deleted = len(ids)
        report.message = DRY_RUN_MESSAGE
        self.db.rollback()

    def _delete_session(self, session_id: str, cutoff: datetime, report: CleanupReport) -> None:
        try:
            still_stale = self.db.execute(
                select(ConversationSession.id)
                .where(ConversationSession.id == session_id, ConversationSession.last_message_at < cutoff)
                .with_for_update()
            ).first()
            if still_stale is None:
                # got new messages since selection, or already gone
                self.db.rollback()
                return
            messages = self.db.execute(
                delete(ConversationMessage).where(ConversationMessage.session_id == session_id)
            ).rowcount
            refs = self.db.execute(
                delete(SessionContext).where(SessionContext.session_id == session_id)
            ).rowcount
            self.db.execute(delete(ConversationSession).where(ConversationSession.id == session_id))
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.warning(
                "failed to delete session %s", session_id, exc_info=True,
                extra={"ctx_session_id": session_id},
            )
            report.failures.append(SessionFailure(session_id=session_id, error=exc.__class__.__name__))
            return
        report.sessions_deleted += 1
        report.messages_deleted += messages
        report.chunk_refs_deleted += refs


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Delete conversation sessions past the retention horizon.")
    p.add_argument("--days", type=int, default=settings.RETENTION_DAYS, help="Retention horizon in days")
    p.add_argument("--batch-size", type=int, default=settings.RETENTION_BATCH_SIZE, help="Sessions per run")
    p.add_argument("--dry-run", action="store_true", help="Report without deleting")
    p.add_argument("--verbose", action="store_true", help="Include a preview of scheduled sessions")
    return p.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    from coachrag.db import init_db, session_scope
    from coachrag.logging_config import configure_logging

    configure_logging(stream=sys.stderr)
    args = _parse_args(argv)
    options = CleanupOptions(
        days_old=args.days, batch_size=args.batch_size, dry_run=args.dry_run, verbose=args.verbose
    )
    init_db()
    try:
        with session_scope() as db:
            outcome = RetentionSweeper(db).run(options)
    except RetentionJobError as exc:
        partial = exc.report.to_dict() if exc.report is not None else None
        sys.stdout.write(orjson.dumps({"success": False, "error": exc.code, "result": partial}).decode() + "\n")
        return 2
    sys.stdout.write(orjson.dumps(outcome.to_dict(), option=orjson.OPT_INDENT_2).decode() + "\n")
    return 0 if outcome.success else 1


if __name__ == "__main__":
    sys.exit(main())
