"""SQLite persistence layer for candidates, workflows, executions and offers."""

from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Iterator

from coreflow.schemas import (
    Candidate,
    CandidateStage,
    EmailLog,
    EmailTemplate,
    EmailWorkflow,
    ExecutionStatus,
    InterviewDetails,
    Job,
    NegotiationEvent,
    Offer,
    OfferStatus,
    ScheduledSend,
    ScheduledSendStatus,
    TemplateType,
    UserProfile,
    WorkflowExecution,
)

# Offer statuses a candidate may still answer through the response link
RESPONDABLE_OFFER_STATUSES = (
    OfferStatus.SENT.value,
    OfferStatus.VIEWED.value,
    OfferStatus.NEGOTIATING.value,
)


def _iso(value: datetime | date | None) -> str | None:
    return value.isoformat() if value else None


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _date(value: str | None) -> date | None:
    return date.fromisoformat(value) if value else None


class Database:
    def __init__(self, db_path: Path | str = "coreflow.db") -> None:
        self.db_path = str(db_path)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        if self.db_path != ":memory:":
            self.conn.execute("PRAGMA journal_mode=WAL")
        self._lock = threading.RLock()
        self._init_tables()

    def _init_tables(self) -> None:
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                name TEXT,
                email TEXT,
                company TEXT,
                created_at TEXT
            );

            CREATE TABLE IF NOT EXISTS jobs (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                title TEXT,
                company TEXT,
                created_at TEXT
            );

            CREATE TABLE IF NOT EXISTS candidates (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                name TEXT,
                email TEXT,
                stage TEXT DEFAULT 'New',
                source TEXT,
                match_score REAL,           -- NULL when never scored
                job_id TEXT,
                role TEXT,
                cv_file_url TEXT,
                is_test INTEGER DEFAULT 0,
                created_at TEXT,
                updated_at TEXT
            );

            CREATE TABLE IF NOT EXISTS email_templates (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                name TEXT,
                type TEXT NOT NULL,
                subject TEXT,
                content TEXT,
                created_at TEXT
            );

            CREATE TABLE IF NOT EXISTS email_workflows (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                name TEXT,
                trigger_stage TEXT NOT NULL,
                email_template_id TEXT NOT NULL,
                min_match_score REAL,
                source_filter TEXT,         -- JSON array
                enabled INTEGER DEFAULT 1,
                delay_minutes INTEGER DEFAULT 0,
                created_at TEXT,
                updated_at TEXT
            );

            CREATE TABLE IF NOT EXISTS workflow_executions (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                candidate_id TEXT NOT NULL,
                status TEXT NOT NULL,
                email_log_id TEXT,
                error_message TEXT,
                created_at TEXT
            );

            -- at most one in-flight execution per (workflow, candidate)
            CREATE UNIQUE INDEX IF NOT EXISTS idx_executions_one_pending
                ON workflow_executions (workflow_id, candidate_id)
                WHERE status = 'pending';

            CREATE TABLE IF NOT EXISTS email_logs (
                id TEXT PRIMARY KEY,
                user_id TEXT,
                candidate_id TEXT,
                to_email TEXT,
                subject TEXT,
                content TEXT,
                email_type TEXT,
                status TEXT,
                sent_at TEXT
            );

            CREATE TABLE IF NOT EXISTS scheduled_sends (
                id TEXT PRIMARY KEY,
                execution_id TEXT NOT NULL,
                workflow_id TEXT NOT NULL,
                candidate_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                stage TEXT NOT NULL,
                due_at TEXT NOT NULL,
                status TEXT DEFAULT 'queued',
                attempts INTEGER DEFAULT 0,
                interview TEXT,
                created_at TEXT
            );

            CREATE TABLE IF NOT EXISTS offers (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                candidate_id TEXT,          -- NULL for general offers
                job_id TEXT,
                position_title TEXT,
                salary_amount REAL,
                salary_currency TEXT DEFAULT 'USD',
                salary_period TEXT DEFAULT 'yearly',
                start_date TEXT,
                benefits TEXT,              -- JSON array
                notes TEXT,
                status TEXT DEFAULT 'draft',
                expires_at TEXT,
                offer_token TEXT UNIQUE,
                offer_token_expires_at TEXT,
                sent_at TEXT,
                viewed_at TEXT,
                responded_at TEXT,
                response TEXT,
                negotiation_history TEXT,   -- JSON array of events
                created_at TEXT,
                updated_at TEXT
            );
        """)
        self.conn.commit()

    @contextmanager
    def _tx(self, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """Serialize access to the shared connection; commit or roll back."""
        with self._lock:
            if immediate:
                self.conn.execute("BEGIN IMMEDIATE")
            try:
                yield self.conn
            except Exception:
                self.conn.rollback()
                raise
            else:
                self.conn.commit()

    # -- Users and jobs -------------------------------------------------------

    def save_user(self, user: UserProfile) -> None:
        with self._tx() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO users (id, name, email, company, created_at) VALUES (?, ?, ?, ?, ?)",
                (user.id, user.name, user.email, user.company, user.created_at.isoformat()),
            )

    def get_user(self, user_id: str) -> UserProfile | None:
        with self._tx() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if not row:
            return None
        return UserProfile(
            id=row["id"],
            name=row["name"] or "",
            email=row["email"] or "",
            company=row["company"] or "",
            created_at=_dt(row["created_at"]) or datetime.now(),
        )

    def save_job(self, job: Job) -> None:
        with self._tx() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO jobs (id, user_id, title, company, created_at) VALUES (?, ?, ?, ?, ?)",
                (job.id, job.user_id, job.title, job.company, job.created_at.isoformat()),
            )

    def get_job(self, job_id: str, user_id: str | None = None) -> Job | None:
        query = "SELECT * FROM jobs WHERE id = ?"
        params: list = [job_id]
        if user_id:
            query += " AND user_id = ?"
            params.append(user_id)
        with self._tx() as conn:
            row = conn.execute(query, params).fetchone()
        if not row:
            return None
        return Job(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"] or "",
            company=row["company"] or "",
            created_at=_dt(row["created_at"]) or datetime.now(),
        )

    # -- Candidates -----------------------------------------------------------

    def save_candidate(self, c: Candidate) -> None:
        with self._tx() as conn:
            conn.execute(
                """INSERT OR REPLACE INTO candidates
                   (id, user_id, name, email, stage, source, match_score, job_id,
                    role, cv_file_url, is_test, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    c.id, c.user_id, c.name, c.email, c.stage.value, c.source,
                    c.match_score, c.job_id, c.role, c.cv_file_url, int(c.is_test),
                    c.created_at.isoformat(), c.updated_at.isoformat(),
                ),
            )

    def get_candidate(self, candidate_id: str, user_id: str | None = None) -> Candidate | None:
        query = "SELECT * FROM candidates WHERE id = ?"
        params: list = [candidate_id]
        if user_id:
            query += " AND user_id = ?"
            params.append(user_id)
        with self._tx() as conn:
            row = conn.execute(query, params).fetchone()
        return self._row_to_candidate(row) if row else None

    def list_candidates(self, user_id: str, stage: CandidateStage | None = None) -> list[Candidate]:
        query = "SELECT * FROM candidates WHERE user_id = ?"
        params: list = [user_id]
        if stage:
            query += " AND stage = ?"
            params.append(stage.value)
        query += " ORDER BY created_at DESC"
        with self._tx() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_candidate(r) for r in rows]

    def update_candidate(
        self,
        candidate_id: str,
        updates: dict,
        expected_stage: CandidateStage | None = None,
    ) -> bool:
        """Apply `updates`. With `expected_stage`, only while the row is still in that stage."""
        sets = []
        params = []
        for k, v in updates.items():
            if isinstance(v, CandidateStage):
                v = v.value
            elif isinstance(v, bool):
                v = int(v)
            elif isinstance(v, datetime):
                v = v.isoformat()
            sets.append(f"{k} = ?")
            params.append(v)
        if not sets:
            return False
        sets.append("updated_at = ?")
        params.append(datetime.now().isoformat())
        params.append(candidate_id)
        where = "id = ?"
        if expected_stage is not None:
            where += " AND stage = ?"
            params.append(expected_stage.value)
        with self._tx() as conn:
            cur = conn.execute(f"UPDATE candidates SET {', '.join(sets)} WHERE {where}", params)
        return cur.rowcount > 0

    def delete_candidate(self, candidate_id: str) -> bool:
        with self._tx() as conn:
            cur = conn.execute("DELETE FROM candidates WHERE id = ?", (candidate_id,))
        return cur.rowcount > 0

    def _row_to_candidate(self, row: sqlite3.Row) -> Candidate:
        return Candidate(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"] or "",
            email=row["email"] or "",
            stage=CandidateStage(row["stage"]),
            source=row["source"] or "",
            match_score=row["match_score"],
            job_id=row["job_id"],
            role=row["role"] or "",
            cv_file_url=row["cv_file_url"] or "",
            is_test=bool(row["is_test"]),
            created_at=_dt(row["created_at"]) or datetime.now(),
            updated_at=_dt(row["updated_at"]) or datetime.now(),
        )

    # -- Email templates ------------------------------------------------------

    def save_template(self, t: EmailTemplate) -> None:
        with self._tx() as conn:
            conn.execute(
                """INSERT OR REPLACE INTO email_templates
                   (id, user_id, name, type, subject, content, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (t.id, t.user_id, t.name, t.type.value, t.subject, t.content, t.created_at.isoformat()),
            )

    def get_template(self, template_id: str, user_id: str | None = None) -> EmailTemplate | None:
        query = "SELECT * FROM email_templates WHERE id = ?"
        params: list = [template_id]
        if user_id:
            query += " AND user_id = ?"
            params.append(user_id)
        with self._tx() as conn:
            row = conn.execute(query, params).fetchone()
        return self._row_to_template(row) if row else None

    def list_templates(self, user_id: str, template_type: TemplateType | None = None) -> list[EmailTemplate]:
        query = "SELECT * FROM email_templates WHERE user_id = ?"
        params: list = [user_id]
        if template_type:
            query += " AND type = ?"
            params.append(template_type.value)
        query += " ORDER BY created_at ASC"
        with self._tx() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_template(r) for r in rows]

    def find_template_by_type(self, user_id: str, template_type: TemplateType) -> EmailTemplate | None:
        templates = self.list_templates(user_id, template_type)
        return templates[0] if templates else None

    def _row_to_template(self, row: sqlite3.Row) -> EmailTemplate:
        return EmailTemplate(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"] or "",
            type=TemplateType(row["type"]),
            subject=row["subject"] or "",
            content=row["content"] or "",
            created_at=_dt(row["created_at"]) or datetime.now(),
        )

    # -- Email workflows ------------------------------------------------------

    def save_workflow(self, w: EmailWorkflow) -> None:
        with self._tx() as conn:
            conn.execute(
                """INSERT OR REPLACE INTO email_workflows
                   (id, user_id, name, trigger_stage, email_template_id, min_match_score,
                    source_filter, enabled, delay_minutes, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    w.id, w.user_id, w.name, w.trigger_stage.value, w.email_template_id,
                    w.min_match_score, json.dumps(w.source_filter), int(w.enabled),
                    w.delay_minutes, w.created_at.isoformat(), w.updated_at.isoformat(),
                ),
            )

    def get_workflow(self, workflow_id: str, user_id: str | None = None) -> EmailWorkflow | None:
        query = "SELECT * FROM email_workflows WHERE id = ?"
        params: list = [workflow_id]
        if user_id:
            query += " AND user_id = ?"
            params.append(user_id)
        with self._tx() as conn:
            row = conn.execute(query, params).fetchone()
        return self._row_to_workflow(row) if row else None

    def list_workflows(
        self,
        user_id: str,
        trigger_stage: CandidateStage | None = None,
        enabled_only: bool = False,
    ) -> list[EmailWorkflow]:
        query = "SELECT * FROM email_workflows WHERE user_id = ?"
        params: list = [user_id]
        if trigger_stage:
            query += " AND trigger_stage = ?"
            params.append(trigger_stage.value)
        if enabled_only:
            query += " AND enabled = 1"
        query += " ORDER BY created_at ASC"
        with self._tx() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_workflow(r) for r in rows]

    def delete_workflow(self, workflow_id: str) -> bool:
        with self._tx() as conn:
            cur = conn.execute("DELETE FROM email_workflows WHERE id = ?", (workflow_id,))
        return cur.rowcount > 0

    def _row_to_workflow(self, row: sqlite3.Row) -> EmailWorkflow:
        return EmailWorkflow(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"] or "",
            trigger_stage=CandidateStage(row["trigger_stage"]),
            email_template_id=row["email_template_id"],
            min_match_score=row["min_match_score"],
            source_filter=json.loads(row["source_filter"]) if row["source_filter"] else [],
            enabled=bool(row["enabled"]),
            delay_minutes=row["delay_minutes"] or 0,
            created_at=_dt(row["created_at"]) or datetime.now(),
            updated_at=_dt(row["updated_at"]) or datetime.now(),
        )

    # -- Workflow executions --------------------------------------------------

    def insert_execution(self, e: WorkflowExecution) -> None:
        """Raises sqlite3.IntegrityError if a pending execution already exists."""
        with self._tx() as conn:
            conn.execute(
                """INSERT INTO workflow_executions
                   (id, workflow_id, candidate_id, status, email_log_id, error_message, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    e.id, e.workflow_id, e.candidate_id, e.status.value,
                    e.email_log_id, e.error_message, e.created_at.isoformat(),
                ),
            )

    def complete_execution(
        self,
        execution_id: str,
        status: ExecutionStatus,
        email_log_id: str | None = None,
        error_message: str | None = None,
    ) -> bool:
        """Move a pending execution to its outcome. Only the first call wins."""
        with self._tx() as conn:
            cur = conn.execute(
                """UPDATE workflow_executions
                   SET status = ?, email_log_id = ?, error_message = ?
                   WHERE id = ? AND status = 'pending'""",
                (status.value, email_log_id, error_message, execution_id),
            )
        return cur.rowcount > 0

    def get_execution(self, execution_id: str) -> WorkflowExecution | None:
        with self._tx() as conn:
            row = conn.execute(
                "SELECT * FROM workflow_executions WHERE id = ?", (execution_id,)
            ).fetchone()
        return self._row_to_execution(row) if row else None

    def list_executions(
        self,
        user_id: str,
        workflow_id: str | None = None,
        candidate_id: str | None = None,
        limit: int = 100,
    ) -> list[WorkflowExecution]:
        query = """SELECT e.* FROM workflow_executions e
                   JOIN email_workflows w ON e.workflow_id = w.id
                   WHERE w.user_id = ?"""
        params: list = [user_id]
        if workflow_id:
            query += " AND e.workflow_id = ?"
            params.append(workflow_id)
        if candidate_id:
            query += " AND e.candidate_id = ?"
            params.append(candidate_id)
        query += " ORDER BY e.created_at DESC LIMIT ?"
        params.append(limit)
        with self._tx() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_execution(r) for r in rows]

    def has_execution(self, workflow_id: str, candidate_id: str, status: ExecutionStatus) -> bool:
        with self._tx() as conn:
            row = conn.execute(
                """SELECT 1 FROM workflow_executions
                   WHERE workflow_id = ? AND candidate_id = ? AND status = ? LIMIT 1""",
                (workflow_id, candidate_id, status.value),
            ).fetchone()
        return row is not None

    def count_executions_for_candidate(self, candidate_id: str) -> int:
        with self._tx() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS c FROM workflow_executions WHERE candidate_id = ?",
                (candidate_id,),
            ).fetchone()
        return row["c"]

    def _row_to_execution(self, row: sqlite3.Row) -> WorkflowExecution:
        return WorkflowExecution(
            id=row["id"],
            workflow_id=row["workflow_id"],
            candidate_id=row["candidate_id"],
            status=ExecutionStatus(row["status"]),
            email_log_id=row["email_log_id"],
            error_message=row["error_message"],
            created_at=_dt(row["created_at"]) or datetime.now(),
        )

    # -- Email logs -----------------------------------------------------------

    def insert_email_log(self, log: EmailLog) -> None:
        with self._tx() as conn:
            conn.execute(
                """INSERT INTO email_logs
                   (id, user_id, candidate_id, to_email, subject, content, email_type, status, sent_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    log.id, log.user_id, log.candidate_id, log.to_email, log.subject,
                    log.content, log.email_type, log.status, log.sent_at.isoformat(),
                ),
            )

    def list_email_logs(self, candidate_id: str) -> list[EmailLog]:
        with self._tx() as conn:
            rows = conn.execute(
                "SELECT * FROM email_logs WHERE candidate_id = ? ORDER BY sent_at DESC",
                (candidate_id,),
            ).fetchall()
        return [
            EmailLog(
                id=r["id"], user_id=r["user_id"] or "", candidate_id=r["candidate_id"],
                to_email=r["to_email"] or "", subject=r["subject"] or "",
                content=r["content"] or "", email_type=r["email_type"] or "",
                status=r["status"] or "", sent_at=_dt(r["sent_at"]) or datetime.now(),
            )
            for r in rows
        ]

    def has_sent_email_of_type(self, candidate_id: str, email_type: str) -> bool:
        with self._tx() as conn:
            row = conn.execute(
                """SELECT 1 FROM email_logs
                   WHERE candidate_id = ? AND email_type = ? AND status = 'sent' LIMIT 1""",
                (candidate_id, email_type),
            ).fetchone()
        return row is not None

    # -- Scheduled sends (outbox) ---------------------------------------------

    def insert_scheduled_send(self, s: ScheduledSend) -> None:
        with self._tx() as conn:
            conn.execute(
                """INSERT INTO scheduled_sends
                   (id, execution_id, workflow_id, candidate_id, user_id, stage,
                    due_at, status, attempts, interview, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    s.id, s.execution_id, s.workflow_id, s.candidate_id, s.user_id,
                    s.stage.value, s.due_at.isoformat(), s.status.value, s.attempts,
                    s.interview.model_dump_json() if s.interview else None,
                    s.created_at.isoformat(),
                ),
            )

    def list_due_sends(self, now: datetime) -> list[ScheduledSend]:
        with self._tx() as conn:
            rows = conn.execute(
                """SELECT * FROM scheduled_sends
                   WHERE status = 'queued' AND due_at <= ? ORDER BY due_at ASC""",
                (now.isoformat(),),
            ).fetchall()
        return [self._row_to_scheduled_send(r) for r in rows]

    def claim_scheduled_send(self, send_id: str) -> bool:
        """Flip a queued send to processing. False if someone else claimed it."""
        with self._tx() as conn:
            cur = conn.execute(
                """UPDATE scheduled_sends SET status = 'processing', attempts = attempts + 1
                   WHERE id = ? AND status = 'queued'""",
                (send_id,),
            )
        return cur.rowcount > 0

    def finish_scheduled_send(self, send_id: str) -> None:
        with self._tx() as conn:
            conn.execute("UPDATE scheduled_sends SET status = 'done' WHERE id = ?", (send_id,))

    def get_scheduled_send(self, send_id: str) -> ScheduledSend | None:
        with self._tx() as conn:
            row = conn.execute("SELECT * FROM scheduled_sends WHERE id = ?", (send_id,)).fetchone()
        return self._row_to_scheduled_send(row) if row else None

    def _row_to_scheduled_send(self, row: sqlite3.Row) -> ScheduledSend:
        return ScheduledSend(
            id=row["id"],
            execution_id=row["execution_id"],
            workflow_id=row["workflow_id"],
            candidate_id=row["candidate_id"],
            user_id=row["user_id"],
            stage=CandidateStage(row["stage"]),
            due_at=datetime.fromisoformat(row["due_at"]),
            status=ScheduledSendStatus(row["status"]),
            attempts=row["attempts"] or 0,
            interview=(
                InterviewDetails.model_validate_json(row["interview"]) if row["interview"] else None
            ),
            created_at=_dt(row["created_at"]) or datetime.now(),
        )

    # -- Offers ---------------------------------------------------------------

    def save_offer(self, o: Offer) -> None:
        with self._tx() as conn:
            conn.execute(
                """INSERT OR REPLACE INTO offers
                   (id, user_id, candidate_id, job_id, position_title, salary_amount,
                    salary_currency, salary_period, start_date, benefits, notes, status,
                    expires_at, offer_token, offer_token_expires_at, sent_at, viewed_at,
                    responded_at, response, negotiation_history, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    o.id, o.user_id, o.candidate_id, o.job_id, o.position_title,
                    o.salary_amount, o.salary_currency, o.salary_period.value,
                    _iso(o.start_date), json.dumps(o.benefits), o.notes, o.status.value,
                    _iso(o.expires_at), o.offer_token, _iso(o.offer_token_expires_at),
                    _iso(o.sent_at), _iso(o.viewed_at), _iso(o.responded_at), o.response,
                    json.dumps([e.model_dump(mode="json") for e in o.negotiation_history]),
                    o.created_at.isoformat(), o.updated_at.isoformat(),
                ),
            )

    def get_offer(self, offer_id: str, user_id: str | None = None) -> Offer | None:
        query = "SELECT * FROM offers WHERE id = ?"
        params: list = [offer_id]
        if user_id:
            query += " AND user_id = ?"
            params.append(user_id)
        with self._tx() as conn:
            row = conn.execute(query, params).fetchone()
        return self._row_to_offer(row) if row else None

    def get_offer_by_token(self, token: str) -> Offer | None:
        with self._tx() as conn:
            row = conn.execute("SELECT * FROM offers WHERE offer_token = ?", (token,)).fetchone()
        return self._row_to_offer(row) if row else None

    def list_offers(
        self,
        user_id: str,
        candidate_id: str | None = None,
        status: OfferStatus | None = None,
        general_only: bool = False,
    ) -> list[Offer]:
        query = "SELECT * FROM offers WHERE user_id = ?"
        params: list = [user_id]
        if status:
            query += " AND status = ?"
            params.append(status.value)
        if candidate_id:
            query += " AND candidate_id = ?"
            params.append(candidate_id)
        elif general_only:
            query += " AND candidate_id IS NULL"
        query += " ORDER BY created_at DESC"
        with self._tx() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_offer(r) for r in rows]

    def list_overdue_offers(self, now: datetime) -> list[Offer]:
        with self._tx() as conn:
            rows = conn.execute(
                """SELECT * FROM offers
                   WHERE expires_at IS NOT NULL AND expires_at <= ?
                   AND status IN ('draft', 'sent', 'viewed', 'negotiating')""",
                (now.isoformat(),),
            ).fetchall()
        return [self._row_to_offer(r) for r in rows]

    def update_offer(
        self,
        offer_id: str,
        updates: dict,
        expected_statuses: tuple[str, ...] | None = None,
    ) -> bool:
        """Conditional update: only applies while the offer is in one of `expected_statuses`."""
        sets, params = self._offer_assignments(updates)
        if not sets:
            return False
        query = f"UPDATE offers SET {', '.join(sets)} WHERE id = ?"
        params.append(offer_id)
        if expected_statuses:
            query += f" AND status IN ({', '.join('?' for _ in expected_statuses)})"
            params.extend(expected_statuses)
        with self._tx() as conn:
            cur = conn.execute(query, params)
        return cur.rowcount > 0

    def append_negotiation_event(
        self,
        offer_id: str,
        event: NegotiationEvent,
        expected_statuses: tuple[str, ...],
        updates: dict | None = None,
        candidate_stage: CandidateStage | None = None,
    ) -> NegotiationEvent | None:
        """Append `event` to the offer's history and apply `updates` atomically.

        The event gets the next sequence number. Returns the stored event, or
        None when the offer is no longer in one of `expected_statuses`. When
        `candidate_stage` is given the linked candidate moves there in the
        same transaction.
        """
        with self._tx(immediate=True) as conn:
            row = conn.execute(
                "SELECT status, candidate_id, negotiation_history FROM offers WHERE id = ?",
                (offer_id,),
            ).fetchone()
            if not row or row["status"] not in expected_statuses:
                return None

            history = [
                NegotiationEvent.model_validate(e)
                for e in json.loads(row["negotiation_history"] or "[]")
            ]
            stored = event.model_copy(
                update={"sequence": max((e.sequence for e in history), default=0) + 1}
            )
            history.append(stored)

            sets, params = self._offer_assignments({**(updates or {}), "negotiation_history": history})
            params.append(offer_id)
            conn.execute(f"UPDATE offers SET {', '.join(sets)} WHERE id = ?", params)

            if candidate_stage and row["candidate_id"]:
                conn.execute(
                    "UPDATE candidates SET stage = ?, updated_at = ? WHERE id = ?",
                    (candidate_stage.value, datetime.now().isoformat(), row["candidate_id"]),
                )
        return stored

    @staticmethod
    def _offer_assignments(updates: dict) -> tuple[list[str], list]:
        sets = []
        params: list = []
        for k, v in updates.items():
            if k == "benefits":
                v = json.dumps(v or [])
            elif k == "negotiation_history":
                v = json.dumps([e.model_dump(mode="json") for e in v])
            elif isinstance(v, Enum):
                v = v.value
            elif isinstance(v, (datetime, date)):
                v = v.isoformat()
            sets.append(f"{k} = ?")
            params.append(v)
        if sets:
            sets.append("updated_at = ?")
            params.append(datetime.now().isoformat())
        return sets, params

    def respond_to_offer_atomic(
        self,
        token: str,
        new_status: OfferStatus,
        response: str | None,
        now: datetime,
    ) -> dict:
        """Resolve an offer by token in one write transaction.

        Returns {"success": True, "offer_id", "candidate_id"} or
        {"success": False, "error": <reason>, "status": <current status>}.
        An accept also moves the linked candidate to Hired in the same
        transaction.
        """
        with self._tx(immediate=True) as conn:
            row = conn.execute(
                "SELECT id, candidate_id, status, offer_token_expires_at FROM offers WHERE offer_token = ?",
                (token,),
            ).fetchone()
            if not row:
                return {"success": False, "error": "not_found", "status": None}

            expires_at = _dt(row["offer_token_expires_at"])
            if expires_at and expires_at < now:
                return {"success": False, "error": "token_expired", "status": row["status"]}

            if row["status"] not in RESPONDABLE_OFFER_STATUSES:
                error = (
                    "already_responded"
                    if row["status"] in (OfferStatus.ACCEPTED.value, OfferStatus.DECLINED.value)
                    else "invalid_status"
                )
                return {"success": False, "error": error, "status": row["status"]}

            cur = conn.execute(
                f"""UPDATE offers SET status = ?, responded_at = ?, response = ?, updated_at = ?
                    WHERE id = ? AND offer_token = ?
                    AND status IN ({', '.join('?' for _ in RESPONDABLE_OFFER_STATUSES)})""",
                (
                    new_status.value, now.isoformat(), response, now.isoformat(),
                    row["id"], token, *RESPONDABLE_OFFER_STATUSES,
                ),
            )
            if cur.rowcount == 0:
                return {"success": False, "error": "already_responded", "status": None}

            if new_status == OfferStatus.ACCEPTED and row["candidate_id"]:
                conn.execute(
                    "UPDATE candidates SET stage = ?, updated_at = ? WHERE id = ?",
                    (CandidateStage.HIRED.value, now.isoformat(), row["candidate_id"]),
                )

        return {"success": True, "offer_id": row["id"], "candidate_id": row["candidate_id"]}

    def _row_to_offer(self, row: sqlite3.Row) -> Offer:
        history = json.loads(row["negotiation_history"]) if row["negotiation_history"] else []
        return Offer(
            id=row["id"],
            user_id=row["user_id"],
            candidate_id=row["candidate_id"],
            job_id=row["job_id"] or "",
            position_title=row["position_title"] or "",
            salary_amount=row["salary_amount"],
            salary_currency=row["salary_currency"] or "USD",
            salary_period=row["salary_period"] or "yearly",
            start_date=_date(row["start_date"]),
            benefits=json.loads(row["benefits"]) if row["benefits"] else [],
            notes=row["notes"] or "",
            status=OfferStatus(row["status"]),
            expires_at=_dt(row["expires_at"]),
            offer_token=row["offer_token"],
            offer_token_expires_at=_dt(row["offer_token_expires_at"]),
            sent_at=_dt(row["sent_at"]),
            viewed_at=_dt(row["viewed_at"]),
            responded_at=_dt(row["responded_at"]),
            response=row["response"],
            negotiation_history=[NegotiationEvent.model_validate(e) for e in history],
            created_at=_dt(row["created_at"]) or datetime.now(),
            updated_at=_dt(row["updated_at"]) or datetime.now(),
        )

    def close(self) -> None:
        self.conn.close()
